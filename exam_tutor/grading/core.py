"""
Grading Core - Shared types for multi-stage exam grading.

Each question is graded in up to three stages:
1. Chat stage - the clarification dialogue with the tutor
2. Answer stage - the final submitted answer
3. Feedback stage - the student's reply to AI feedback (only when it exists)

The question score is the rounded mean of the stages that produced a score.
"""
import logging
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field

import config
from ..criteria import ExamQuestion, RubricItem
from ..prompts import STAGES, STAGE_CHAT, STAGE_ANSWER, STAGE_FEEDBACK
from ..validation import GradeOutputValidator, StageOutput, round_half_up

logger = logging.getLogger(__name__)

STAGE_LABELS = {
    STAGE_CHAT: "Chat stage",
    STAGE_ANSWER: "Answer stage",
    STAGE_FEEDBACK: "Feedback stage",
}


@dataclass
class QuestionContext:
    """Everything the stage graders see for one question."""
    q_idx: int
    question: ExamQuestion
    rubric: List[RubricItem] = field(default_factory=list)
    messages: List[Dict[str, str]] = field(default_factory=list)
    answer: str = ""
    ai_feedback: Optional[str] = None
    student_reply: Optional[str] = None
    feedback_messages: List[Dict[str, str]] = field(default_factory=list)

    def has_chat(self) -> bool:
        return bool(self.messages)

    def has_answer(self) -> bool:
        return bool(self.answer and self.answer.strip())

    def has_feedback(self) -> bool:
        if self.feedback_messages:
            return True
        return bool(self.ai_feedback and self.student_reply)

    def available_stages(self) -> List[str]:
        checks = {
            STAGE_CHAT: self.has_chat,
            STAGE_ANSWER: self.has_answer,
            STAGE_FEEDBACK: self.has_feedback,
        }
        return [stage for stage in STAGES if checks[stage]()]


@dataclass
class ToolResult:
    """Result from a tool execution."""
    tool_name: str
    success: bool
    data: Dict[str, Any]
    error: Optional[str] = None


class BaseTool:
    """Base class for grading tools."""
    name: str = "base_tool"
    description: str = "Base tool"

    def execute(self, context: QuestionContext, **kwargs) -> ToolResult:
        raise NotImplementedError


class LLMTool(BaseTool):
    """A tool backed by one LLM call."""

    temperature: float = config.LLMConfig.GRADING_TEMPERATURE

    def __init__(self, llm, validator: Optional[GradeOutputValidator] = None):
        self.llm = llm
        self.validator = validator or GradeOutputValidator()

    def _call_llm(self, prompt: str, system_prompt: str = "", temperature: Optional[float] = None) -> str:
        """Call the LLM in JSON mode."""
        return self.llm.generate(
            prompt,
            system_prompt=system_prompt,
            temperature=self.temperature if temperature is None else temperature,
            max_tokens=config.LLMConfig.MAX_OUTPUT_TOKENS,
            json_mode=True
        )


@dataclass
class QuestionGrade:
    """Aggregated outcome for one question."""
    q_idx: int
    stage_grading: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    stage_errors: Dict[str, str] = field(default_factory=dict)

    @property
    def score(self) -> Optional[int]:
        return aggregate_stage_scores(self.stage_grading)

    @property
    def comment(self) -> str:
        return auto_comment(self.stage_grading)

    @property
    def is_graded(self) -> bool:
        return self.score is not None

    def add_stage(self, stage: str, output: StageOutput):
        self.stage_grading[stage] = output.to_dict()


def aggregate_stage_scores(stage_grading: Dict[str, Dict[str, Any]]) -> Optional[int]:
    """Rounded mean of the stage scores present; None when no stage scored."""
    scores = [
        stage_grading[stage]['score']
        for stage in STAGES
        if stage in stage_grading and stage_grading[stage].get('score') is not None
    ]
    if not scores:
        return None
    return max(0, min(100, round_half_up(sum(scores) / len(scores))))


def auto_comment(stage_grading: Dict[str, Dict[str, Any]]) -> str:
    """Comment written on automatic grades, e.g. 'Chat stage: 80, Answer stage: N/A, ...'."""
    parts = []
    for stage in STAGES:
        stage_data = stage_grading.get(stage)
        value = stage_data.get('score') if stage_data else None
        parts.append(f"{STAGE_LABELS[stage]}: {value if value is not None else 'N/A'}")
    return ", ".join(parts)


def mean_score(scores: List[int]) -> Optional[int]:
    """Session overall score: rounded mean, None for no scores."""
    if not scores:
        return None
    return round_half_up(sum(scores) / len(scores))
