"""
Grading Module - Multi-stage, rubric-based exam grading.

Pipeline:
1. Stage tools - chat, answer and feedback stages graded by the LLM
2. Orchestrator - per-question concurrency, aggregation, state machine
3. Queue - background handoff after submission
"""
from .core import (
    QuestionContext,
    QuestionGrade,
    ToolResult,
    BaseTool,
    aggregate_stage_scores,
    auto_comment,
    mean_score
)
from .stages import (
    ChatStageTool,
    AnswerStageTool,
    FeedbackStageTool,
    SessionSummaryTool,
    default_stage_tools
)
from .orchestrator import (
    GradingOrchestrator,
    GradingRun,
    SessionReport,
    RUN_COMPLETED,
    RUN_PARTIAL,
    RUN_FAILED,
    RUN_SKIPPED
)
from .queue import GradingQueue, GradingJob, JobStatus

__all__ = [
    "QuestionContext",
    "QuestionGrade",
    "ToolResult",
    "BaseTool",
    "aggregate_stage_scores",
    "auto_comment",
    "mean_score",
    "ChatStageTool",
    "AnswerStageTool",
    "FeedbackStageTool",
    "SessionSummaryTool",
    "default_stage_tools",
    "GradingOrchestrator",
    "GradingRun",
    "SessionReport",
    "RUN_COMPLETED",
    "RUN_PARTIAL",
    "RUN_FAILED",
    "RUN_SKIPPED",
    "GradingQueue",
    "GradingJob",
    "JobStatus",
]
