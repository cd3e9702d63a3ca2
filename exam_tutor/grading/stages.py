"""
Stage Graders - One LLM tool per grading stage, plus the session summary tool.

Every stage tool returns ToolResult(success=False) instead of raising, so a
failed stage only drops that stage from the question's aggregate.
"""
from typing import Dict, Any, List, Optional
import logging

import config
from ..criteria import RubricItem
from ..errors import StageGradingFailure
from ..prompts import PromptTemplates, STAGE_CHAT, STAGE_ANSWER, STAGE_FEEDBACK
from .core import LLMTool, QuestionContext, ToolResult

logger = logging.getLogger(__name__)


class StageGraderTool(LLMTool):
    """Grades one stage of one question against the rubric."""
    stage: str = ""

    def build_prompt(self, context: QuestionContext) -> str:
        raise NotImplementedError

    def execute(self, context: QuestionContext, **kwargs) -> ToolResult:
        system_prompt = PromptTemplates.format_grader_system(self.stage, context.rubric)
        prompt = self.build_prompt(context)

        try:
            response = self._call_llm(prompt, system_prompt=system_prompt)
            output = self.validator.validate_stage(response, self.stage, context.q_idx, context.rubric)
        except StageGradingFailure as e:
            logger.error(f"❌ {e}")
            return ToolResult(tool_name=self.name, success=False, data={}, error=e.reason)
        except Exception as e:
            # timeouts and connection failures surface here after the client's retries
            logger.error(f"❌ Q{context.q_idx} {self.stage} stage LLM call failed: {e}")
            return ToolResult(tool_name=self.name, success=False, data={}, error=str(e))

        logger.info(f"✅ Q{context.q_idx} {self.stage} stage: {output.score}")
        return ToolResult(
            tool_name=self.name,
            success=True,
            data={'output': output, 'stage': self.stage}
        )


class ChatStageTool(StageGraderTool):
    """Grades the clarification dialogue."""
    name = "grade_chat_stage"
    description = "Grade question quality and understanding shown in the tutor dialogue"
    stage = STAGE_CHAT

    def build_prompt(self, context: QuestionContext) -> str:
        return PromptTemplates.format_chat_stage(context.question, context.messages)


class AnswerStageTool(StageGraderTool):
    """Grades the final answer."""
    name = "grade_answer_stage"
    description = "Grade completeness, correctness and rubric coverage of the final answer"
    stage = STAGE_ANSWER

    def build_prompt(self, context: QuestionContext) -> str:
        return PromptTemplates.format_answer_stage(context.question, context.answer)


class FeedbackStageTool(StageGraderTool):
    """Grades engagement with AI feedback."""
    name = "grade_feedback_stage"
    description = "Grade the student's reply to AI feedback on their answer"
    stage = STAGE_FEEDBACK

    def build_prompt(self, context: QuestionContext) -> str:
        feedback = context.ai_feedback or ""
        reply = context.student_reply or ""

        # A feedback chat stands in for the single feedback/reply pair
        if context.feedback_messages:
            ai_turns = [m['content'] for m in context.feedback_messages if m.get('role') != 'user']
            user_turns = [m['content'] for m in context.feedback_messages if m.get('role') == 'user']
            feedback = "\n\n".join([t for t in [feedback] + ai_turns if t])
            reply = "\n\n".join([t for t in [reply] + user_turns if t])

        return PromptTemplates.format_feedback_stage(context.question, context.answer, feedback, reply)


class SessionSummaryTool(LLMTool):
    """Writes an overall summary of a graded session."""
    name = "summarize_session"
    description = "Summarize strengths, weaknesses and key quotes across all answers"
    temperature = config.LLMConfig.SUMMARY_TEMPERATURE

    def summarize(
        self,
        title: str,
        rubric: List[RubricItem],
        entries: List[Dict[str, Any]]
    ) -> ToolResult:
        prompt = PromptTemplates.format_summary(title, rubric, entries)

        try:
            response = self._call_llm(prompt, system_prompt=PromptTemplates.SUMMARY_SYSTEM_PROMPT)
        except Exception as e:
            logger.error(f"❌ Summary LLM call failed: {e}")
            return ToolResult(tool_name=self.name, success=False, data={}, error=str(e))

        summary: Optional[Dict[str, Any]] = self.validator.validate_summary(response)
        if summary is None:
            return ToolResult(tool_name=self.name, success=False, data={}, error="unusable summary response")

        return ToolResult(tool_name=self.name, success=True, data={'summary': summary})


def default_stage_tools(llm) -> Dict[str, StageGraderTool]:
    """One tool per stage, keyed by stage name."""
    tools = [ChatStageTool(llm), AnswerStageTool(llm), FeedbackStageTool(llm)]
    return {tool.stage: tool for tool in tools}
