"""ORM models for exams, materials, sessions, messages, submissions and grades.

Free text written by students and the tutor is stored compressed (see
compression.CompressionCodec); JSON columns are stored as text.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column, String, Integer, DateTime, ForeignKey, Text, UniqueConstraint, Index
)

from .database import Base

STATUS_UNGRADED = "ungraded"
STATUS_GRADING = "grading"
STATUS_GRADED_AUTO = "graded_auto"
STATUS_GRADED_MANUAL = "graded_manual"

ORIGIN_AUTO = "auto"
ORIGIN_MANUAL = "manual"

# Stage labels that only the automatic aggregation writes into a comment
AUTO_COMMENT_MARKERS = ("Chat stage:", "Answer stage:", "Feedback stage:")

PHASE_CHAT = "chat"
PHASE_FEEDBACK = "feedback"


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


def classify_origin(origin: Optional[str], comment: Optional[str]) -> str:
    """
    Grade origin: the stored value, else inferred from the comment text.

    The inference only applies to rows written before origin was stored; a
    manual comment that happens to contain the stage labels is misread as auto.
    """
    if origin in (ORIGIN_AUTO, ORIGIN_MANUAL):
        return origin
    if comment and any(marker in comment for marker in AUTO_COMMENT_MARKERS):
        return ORIGIN_AUTO
    return ORIGIN_MANUAL


class ExamRecord(Base):
    __tablename__ = "exams"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False, default="")
    questions = Column(Text, nullable=False, default="[]")  # JSON array
    rubric = Column(Text, nullable=False, default="[]")  # JSON array
    created_at = Column(DateTime, nullable=False, default=_now)


class MaterialRecord(Base):
    __tablename__ = "materials"
    __table_args__ = (UniqueConstraint("exam_id", "file_url", name="uq_material_exam_file"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    exam_id = Column(String(36), ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
    file_url = Column(String(1024), nullable=False)
    file_name = Column(String(512), nullable=False, default="")
    compressed_text = Column(Text, nullable=True)
    compression_metadata = Column(Text, nullable=True)  # JSON object
    extraction_error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_now)
    updated_at = Column(DateTime, nullable=False, default=_now, onupdate=_now)


class SessionRecord(Base):
    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=_uuid)
    exam_id = Column(String(36), ForeignKey("exams.id"), nullable=False, index=True)
    student_id = Column(String(255), nullable=False)
    grading_status = Column(String(20), nullable=False, default=STATUS_UNGRADED)
    compressed_session_data = Column(Text, nullable=True)
    compression_metadata = Column(Text, nullable=True)  # JSON object
    ai_summary = Column(Text, nullable=True)  # JSON object
    submitted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_now)
    updated_at = Column(DateTime, nullable=False, default=_now, onupdate=_now)


class SubmissionRecord(Base):
    __tablename__ = "submissions"
    __table_args__ = (UniqueConstraint("session_id", "q_idx", name="uq_submission_session_question"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    q_idx = Column(Integer, nullable=False)
    compressed_answer = Column(Text, nullable=True)
    compression_metadata = Column(Text, nullable=True)  # JSON object
    ai_feedback = Column(Text, nullable=True)
    student_reply = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_now)
    updated_at = Column(DateTime, nullable=False, default=_now, onupdate=_now)


class MessageRecord(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_session_question", "session_id", "q_idx"),
        UniqueConstraint("session_id", "q_idx", "turn", name="uq_message_session_question_turn"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    q_idx = Column(Integer, nullable=False)
    turn = Column(Integer, nullable=False, default=0)  # order within (session, q_idx)
    role = Column(String(10), nullable=False)  # "user" | "ai"
    phase = Column(String(10), nullable=False, default=PHASE_CHAT)
    compressed_content = Column(Text, nullable=False)
    original_size = Column(Integer, nullable=False, default=0)
    compressed_size = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=_now)


class GradeRecord(Base):
    __tablename__ = "grades"
    __table_args__ = (UniqueConstraint("session_id", "q_idx", name="uq_grade_session_question"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    q_idx = Column(Integer, nullable=False)
    score = Column(Integer, nullable=False)
    comment = Column(Text, nullable=False, default="")
    stage_grading = Column(Text, nullable=True)  # JSON object
    origin = Column(String(10), nullable=True)  # NULL on rows written before origin existed
    created_at = Column(DateTime, nullable=False, default=_now)
    updated_at = Column(DateTime, nullable=False, default=_now, onupdate=_now)
