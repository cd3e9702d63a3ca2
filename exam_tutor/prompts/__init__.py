"""
Prompts Module - Grading, summary and tutor prompt templates.
"""
from .templates import (
    PromptTemplates,
    STAGE_CHAT,
    STAGE_ANSWER,
    STAGE_FEEDBACK,
    STAGES,
    NO_MATERIAL_NOTICE
)

__all__ = [
    "PromptTemplates",
    "STAGE_CHAT",
    "STAGE_ANSWER",
    "STAGE_FEEDBACK",
    "STAGES",
    "NO_MATERIAL_NOTICE"
]
