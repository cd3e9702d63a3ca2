"""Utility modules for indexing and grading runs."""
from .logger import AssessmentLogger, LogLevel, create_logger, PerformanceTimer

__all__ = [
    'AssessmentLogger',
    'LogLevel',
    'create_logger',
    'PerformanceTimer'
]
