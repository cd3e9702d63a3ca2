"""
Storage Module - Relational persistence (SQLAlchemy) for exam sessions and grades.
"""
from .database import Database, Base
from .models import (
    STATUS_UNGRADED,
    STATUS_GRADING,
    STATUS_GRADED_AUTO,
    STATUS_GRADED_MANUAL,
    ORIGIN_AUTO,
    ORIGIN_MANUAL,
    PHASE_CHAT,
    PHASE_FEEDBACK,
    AUTO_COMMENT_MARKERS,
    classify_origin
)
from .repository import (
    ExamRepository,
    GradeRepository,
    ExamData,
    SessionData,
    SubmissionData,
    GradeData,
    GradingInput
)

__all__ = [
    "Database",
    "Base",
    "STATUS_UNGRADED",
    "STATUS_GRADING",
    "STATUS_GRADED_AUTO",
    "STATUS_GRADED_MANUAL",
    "ORIGIN_AUTO",
    "ORIGIN_MANUAL",
    "PHASE_CHAT",
    "PHASE_FEEDBACK",
    "AUTO_COMMENT_MARKERS",
    "classify_origin",
    "ExamRepository",
    "GradeRepository",
    "ExamData",
    "SessionData",
    "SubmissionData",
    "GradeData",
    "GradingInput",
]
