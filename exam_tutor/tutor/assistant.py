"""
Tutor Assistant - Material-grounded replies to in-exam clarification questions.

Flow per student message:
    store user turn -> ContextBuilder.build -> tutor system prompt
    -> llm.chat(history + message) -> store AI turn
"""
from typing import Optional
from dataclasses import dataclass
import logging

from ..errors import ExamTutorError
from ..prompts import PromptTemplates
from ..retrieval import ContextBuilder, RetrievalOutcome
from ..storage import ExamRepository, GradeRepository, ExamData, PHASE_CHAT

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "I'm sorry, I couldn't process your question. Please try rephrasing it."


@dataclass
class TutorReply:
    """The tutor's answer and the retrieval that grounded it."""
    text: str
    retrieval: RetrievalOutcome

    @property
    def grounded(self) -> bool:
        return not self.retrieval.is_empty


class TutorAssistant:
    """Exam tutor backed by course material retrieval and a chat LLM."""

    def __init__(
        self,
        llm,
        context_builder: ContextBuilder,
        exam_repo: ExamRepository,
        grade_repo: GradeRepository
    ):
        self.llm = llm
        self.context_builder = context_builder
        self.exam_repo = exam_repo
        self.grade_repo = grade_repo

    def reply(self, session_id: str, q_idx: int, message: str) -> TutorReply:
        """
        Answer one student message for question `q_idx` of a session.

        Both turns are stored compressed. Retrieval failures only remove the
        material context; an LLM failure propagates after the user turn is stored.

        Raises:
            SessionNotFound: unknown session
            RuntimeError: the LLM call failed after retries
        """
        if not message or not message.strip():
            raise ExamTutorError("Empty tutor message")

        session = self.grade_repo.get_session(session_id)
        exam = self.exam_repo.get_exam(session.exam_id) or ExamData(id=session.exam_id, title="")

        history = self.grade_repo.get_messages(session_id, q_idx, PHASE_CHAT)
        self.grade_repo.add_message(session_id, q_idx, 'user', message, PHASE_CHAT)

        retrieval = self.context_builder.build(message, session.exam_id)
        system_prompt = PromptTemplates.format_tutor_system(
            exam.title, exam.question(q_idx), exam.rubric, retrieval.text
        )

        try:
            text = self.llm.chat(history + [{'role': 'user', 'content': message}], system_prompt=system_prompt)
        except Exception as e:
            logger.error(f"❌ Tutor reply failed for {session_id} Q{q_idx}: {e}")
            raise

        if not text or not text.strip():
            logger.warning(f"⚠️ Empty tutor reply for {session_id} Q{q_idx}")
            text = FALLBACK_REPLY

        self.grade_repo.add_message(session_id, q_idx, 'ai', text, PHASE_CHAT)
        logger.info(
            f"💬 Tutor reply {session_id} Q{q_idx} ({retrieval.method}, "
            f"{retrieval.results_count} passages)"
        )
        return TutorReply(text=text, retrieval=retrieval)
