"""
Criteria module - Exam rubric and question normalization.
"""
from .rubric import (
    RubricItem,
    ExamQuestion,
    parse_rubric,
    parse_questions,
    format_rubric_text
)

__all__ = [
    'RubricItem',
    'ExamQuestion',
    'parse_rubric',
    'parse_questions',
    'format_rubric_text'
]
