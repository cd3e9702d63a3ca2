"""
Validation Module - Checks LLM grading output before it is stored.
"""
from .grade_validator import GradeOutputValidator, StageOutput, round_half_up

__all__ = ["GradeOutputValidator", "StageOutput", "round_half_up"]
