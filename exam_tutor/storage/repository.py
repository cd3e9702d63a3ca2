"""
Repositories - Data access for exams, materials, sessions and grades.

Callers get plain dataclasses back, never ORM objects, so results stay usable
after the database session closes and across worker threads.
"""
from typing import List, Dict, Any, Optional, Iterable
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from collections import defaultdict
import json
import logging

from sqlalchemy import update, func
from sqlalchemy.exc import IntegrityError

from ..compression import CompressionCodec, CompressedPayload
from ..criteria import ExamQuestion, RubricItem, parse_questions, parse_rubric
from ..errors import SessionNotFound
from ..retrieval.keyword_retriever import MaterialText
from .database import Database
from .models import (
    ExamRecord, MaterialRecord, SessionRecord, SubmissionRecord, MessageRecord, GradeRecord,
    ORIGIN_AUTO, ORIGIN_MANUAL, PHASE_CHAT, PHASE_FEEDBACK, classify_origin
)

logger = logging.getLogger(__name__)

MESSAGE_INSERT_ATTEMPTS = 5


def _dumps(value: Any) -> Optional[str]:
    return json.dumps(value, ensure_ascii=False) if value is not None else None


def _loads(text: Optional[str], default: Any = None) -> Any:
    if not text:
        return default
    try:
        return json.loads(text)
    except ValueError:
        logger.warning(f"Unreadable JSON column value: {text[:80]!r}")
        return default


@dataclass
class ExamData:
    id: str
    title: str
    questions: List[ExamQuestion] = field(default_factory=list)
    rubric: List[RubricItem] = field(default_factory=list)

    def question(self, q_idx: int) -> ExamQuestion:
        for question in self.questions:
            if question.idx == q_idx:
                return question
        return ExamQuestion(idx=q_idx)


@dataclass
class SessionData:
    id: str
    exam_id: str
    student_id: str
    grading_status: str
    ai_summary: Optional[Dict[str, Any]] = None
    submitted_at: Optional[datetime] = None


@dataclass
class SubmissionData:
    q_idx: int
    answer: str = ""
    ai_feedback: Optional[str] = None
    student_reply: Optional[str] = None


@dataclass
class GradeData:
    session_id: str
    q_idx: int
    score: int
    comment: str = ""
    stage_grading: Optional[Dict[str, Any]] = None
    origin: Optional[str] = None

    @property
    def resolved_origin(self) -> str:
        return classify_origin(self.origin, self.comment)

    @property
    def is_manual(self) -> bool:
        return self.resolved_origin == ORIGIN_MANUAL

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['origin'] = self.resolved_origin
        return data


@dataclass
class GradingInput:
    """Everything the grader reads for one session, decompressed."""
    session: SessionData
    submissions: Dict[int, SubmissionData] = field(default_factory=dict)
    chat: Dict[int, List[Dict[str, str]]] = field(default_factory=dict)
    feedback_chat: Dict[int, List[Dict[str, str]]] = field(default_factory=dict)

    def question_indices(self) -> List[int]:
        return sorted(set(self.submissions) | set(self.chat) | set(self.feedback_chat))


class ExamRepository:
    """Exams and their material text."""

    def __init__(self, db: Database, codec: Optional[CompressionCodec] = None):
        self.db = db
        self.codec = codec or CompressionCodec()

    def create_exam(
        self,
        title: str,
        questions: Optional[List[Any]] = None,
        rubric: Optional[List[Any]] = None,
        exam_id: Optional[str] = None
    ) -> str:
        questions_data = [q.to_dict() for q in parse_questions(questions)]
        rubric_data = [r.to_dict() for r in parse_rubric(rubric)]

        with self.db.session_scope() as s:
            record = ExamRecord(
                title=title,
                questions=_dumps(questions_data),
                rubric=_dumps(rubric_data)
            )
            if exam_id:
                record.id = exam_id
            s.add(record)
            s.flush()
            return record.id

    def get_exam(self, exam_id: str) -> Optional[ExamData]:
        with self.db.session_scope() as s:
            record = s.get(ExamRecord, exam_id)
            if record is None:
                return None
            return ExamData(
                id=record.id,
                title=record.title,
                questions=parse_questions(_loads(record.questions, [])),
                rubric=parse_rubric(_loads(record.rubric, []))
            )

    def save_material_text(
        self,
        exam_id: str,
        file_url: str,
        file_name: str,
        text: Optional[str],
        extraction_error: Optional[str] = None
    ) -> Optional[CompressedPayload]:
        """Store (or replace) a material's extracted text, compressed."""
        payload = self.codec.compress({'text': text}) if text else None

        with self.db.session_scope() as s:
            record = s.query(MaterialRecord).filter_by(
                exam_id=exam_id, file_url=file_url
            ).one_or_none()
            if record is None:
                record = MaterialRecord(exam_id=exam_id, file_url=file_url)
                s.add(record)

            record.file_name = file_name or ""
            record.compressed_text = payload.data if payload else None
            record.compression_metadata = _dumps(payload.metadata.to_dict()) if payload else None
            record.extraction_error = extraction_error

        return payload

    def get_material_texts(self, exam_id: str) -> List[MaterialText]:
        """Readable material text for keyword retrieval; unreadable rows are skipped."""
        with self.db.session_scope() as s:
            rows = [
                (r.file_url, r.file_name, r.compressed_text)
                for r in s.query(MaterialRecord).filter_by(exam_id=exam_id).order_by(MaterialRecord.created_at)
            ]

        materials = []
        for file_url, file_name, data in rows:
            if not data:
                continue
            value = self.codec.decompress_or_placeholder(data, placeholder=None, context=file_url)
            text = value.get('text') if isinstance(value, dict) else value
            if not isinstance(text, str) or not text:
                continue
            materials.append(MaterialText(url=file_url, text=text, file_name=file_name))
        return materials

    def delete_materials(self, exam_id: str) -> int:
        with self.db.session_scope() as s:
            return s.query(MaterialRecord).filter_by(exam_id=exam_id).delete()


class GradeRepository:
    """Sessions, their chat/submission data, and grades."""

    def __init__(self, db: Database, codec: Optional[CompressionCodec] = None):
        self.db = db
        self.codec = codec or CompressionCodec()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, exam_id: str, student_id: str, session_id: Optional[str] = None) -> str:
        with self.db.session_scope() as s:
            record = SessionRecord(exam_id=exam_id, student_id=student_id)
            if session_id:
                record.id = session_id
            s.add(record)
            s.flush()
            return record.id

    @staticmethod
    def _session_data(record: SessionRecord) -> SessionData:
        return SessionData(
            id=record.id,
            exam_id=record.exam_id,
            student_id=record.student_id,
            grading_status=record.grading_status,
            ai_summary=_loads(record.ai_summary),
            submitted_at=record.submitted_at
        )

    def get_session(self, session_id: str) -> SessionData:
        with self.db.session_scope() as s:
            record = s.get(SessionRecord, session_id)
            if record is None:
                raise SessionNotFound(f"Session not found: {session_id}")
            return self._session_data(record)

    def sessions_for_exam(self, exam_id: str) -> List[SessionData]:
        with self.db.session_scope() as s:
            records = s.query(SessionRecord).filter_by(exam_id=exam_id).order_by(SessionRecord.created_at)
            return [self._session_data(r) for r in records]

    def mark_submitted(self, session_id: str, snapshot: Optional[Dict[str, Any]] = None):
        """Record submission time and an optional compressed session snapshot."""
        payload = self.codec.compress(snapshot) if snapshot else None
        with self.db.session_scope() as s:
            record = s.get(SessionRecord, session_id)
            if record is None:
                raise SessionNotFound(f"Session not found: {session_id}")
            record.submitted_at = datetime.now(timezone.utc)
            if payload:
                record.compressed_session_data = payload.data
                record.compression_metadata = _dumps(payload.metadata.to_dict())

    def get_session_snapshot(self, session_id: str) -> Any:
        with self.db.session_scope() as s:
            record = s.get(SessionRecord, session_id)
            if record is None:
                raise SessionNotFound(f"Session not found: {session_id}")
            data = record.compressed_session_data
        if not data:
            return None
        return self.codec.decompress_or_placeholder(data, context=f"session {session_id}")

    def transition_status(
        self, session_id: str, from_states: Iterable[str], to_state: str
    ) -> bool:
        """
        Atomically move a session to `to_state` if it is in one of `from_states`.

        Returns:
            True when this call made the transition
        """
        with self.db.session_scope() as s:
            result = s.execute(
                update(SessionRecord)
                .where(SessionRecord.id == session_id)
                .where(SessionRecord.grading_status.in_(list(from_states)))
                .values(grading_status=to_state, updated_at=datetime.now(timezone.utc))
            )
            return result.rowcount == 1

    def set_status(self, session_id: str, status: str):
        with self.db.session_scope() as s:
            s.execute(
                update(SessionRecord)
                .where(SessionRecord.id == session_id)
                .values(grading_status=status, updated_at=datetime.now(timezone.utc))
            )

    def save_summary(self, session_id: str, summary: Dict[str, Any]):
        with self.db.session_scope() as s:
            record = s.get(SessionRecord, session_id)
            if record is None:
                raise SessionNotFound(f"Session not found: {session_id}")
            record.ai_summary = _dumps(summary)

    # ------------------------------------------------------------------
    # Messages and submissions
    # ------------------------------------------------------------------

    def add_message(
        self, session_id: str, q_idx: int, role: str, content: str, phase: str = PHASE_CHAT
    ) -> CompressedPayload:
        """
        Append a turn to a question's transcript.

        The turn number is MAX(turn) + 1; a concurrent writer that took the same
        number trips the unique constraint and the insert is retried.
        """
        payload = self.codec.compress({'content': content})
        for attempt in range(MESSAGE_INSERT_ATTEMPTS):
            try:
                with self.db.session_scope() as s:
                    last = s.query(func.max(MessageRecord.turn)).filter_by(
                        session_id=session_id, q_idx=q_idx
                    ).scalar()
                    s.add(MessageRecord(
                        session_id=session_id,
                        q_idx=q_idx,
                        turn=0 if last is None else last + 1,
                        role=role,
                        phase=phase,
                        compressed_content=payload.data,
                        original_size=payload.metadata.original_size,
                        compressed_size=payload.metadata.compressed_size
                    ))
                return payload
            except IntegrityError:
                if attempt == MESSAGE_INSERT_ATTEMPTS - 1:
                    raise
                logger.warning(f"Turn clash for {session_id} Q{q_idx}, retrying message insert")

    def get_messages(
        self, session_id: str, q_idx: int, phase: Optional[str] = PHASE_CHAT
    ) -> List[Dict[str, str]]:
        """Decompressed turns for one question in order; phase None returns both phases."""
        with self.db.session_scope() as s:
            query = s.query(MessageRecord).filter_by(session_id=session_id, q_idx=q_idx)
            if phase is not None:
                query = query.filter_by(phase=phase)
            rows = [
                (r.role, r.compressed_content)
                for r in query.order_by(MessageRecord.turn, MessageRecord.created_at)
            ]

        return [
            {'role': role, 'content': self._unwrap(data, 'content', f"message q{q_idx}")}
            for role, data in rows
        ]

    def save_submission(
        self,
        session_id: str,
        q_idx: int,
        answer: Optional[str],
        ai_feedback: Optional[str] = None,
        student_reply: Optional[str] = None
    ) -> Optional[CompressedPayload]:
        """Write (or overwrite) the submission for one question."""
        payload = self.codec.compress({'answer': answer}) if answer else None

        with self.db.session_scope() as s:
            record = s.query(SubmissionRecord).filter_by(
                session_id=session_id, q_idx=q_idx
            ).one_or_none()
            if record is None:
                record = SubmissionRecord(session_id=session_id, q_idx=q_idx)
                s.add(record)

            record.compressed_answer = payload.data if payload else None
            record.compression_metadata = _dumps(payload.metadata.to_dict()) if payload else None
            if ai_feedback is not None:
                record.ai_feedback = ai_feedback
            if student_reply is not None:
                record.student_reply = student_reply

        return payload

    def _unwrap(self, data: Optional[str], key: str, context: str) -> str:
        if not data:
            return ""
        value = self.codec.decompress_or_placeholder(data, context=context)
        if isinstance(value, dict):
            return str(value.get(key) or "")
        return str(value)

    def load_grading_input(self, session_id: str) -> GradingInput:
        """Decompressed submissions and chat transcripts grouped by question."""
        with self.db.session_scope() as s:
            record = s.get(SessionRecord, session_id)
            if record is None:
                raise SessionNotFound(f"Session not found: {session_id}")
            session = self._session_data(record)

            submission_rows = [
                (r.q_idx, r.compressed_answer, r.ai_feedback, r.student_reply)
                for r in s.query(SubmissionRecord).filter_by(session_id=session_id)
            ]
            message_rows = [
                (r.q_idx, r.phase, r.role, r.compressed_content)
                for r in s.query(MessageRecord)
                .filter_by(session_id=session_id)
                .order_by(MessageRecord.q_idx, MessageRecord.turn, MessageRecord.created_at)
            ]

        grading_input = GradingInput(session=session)

        for q_idx, data, ai_feedback, student_reply in submission_rows:
            grading_input.submissions[q_idx] = SubmissionData(
                q_idx=q_idx,
                answer=self._unwrap(data, 'answer', f"answer q{q_idx}"),
                ai_feedback=ai_feedback,
                student_reply=student_reply
            )

        chat: Dict[int, List[Dict[str, str]]] = defaultdict(list)
        feedback_chat: Dict[int, List[Dict[str, str]]] = defaultdict(list)
        for q_idx, phase, role, data in message_rows:
            target = feedback_chat if phase == PHASE_FEEDBACK else chat
            target[q_idx].append({
                'role': role,
                'content': self._unwrap(data, 'content', f"message q{q_idx}")
            })

        grading_input.chat = dict(chat)
        grading_input.feedback_chat = dict(feedback_chat)
        return grading_input

    # ------------------------------------------------------------------
    # Grades
    # ------------------------------------------------------------------

    def upsert_grade(
        self,
        session_id: str,
        q_idx: int,
        score: int,
        comment: str,
        stage_grading: Optional[Dict[str, Any]] = None,
        origin: str = ORIGIN_AUTO
    ) -> Optional[GradeData]:
        """
        Write the current grade for (session_id, q_idx), replacing any earlier one.

        An automatic grade never replaces a manual one; None is returned then.
        A concurrent insert of the same key is retried once as an update.
        """
        for attempt in range(2):
            try:
                with self.db.session_scope() as s:
                    record = s.query(GradeRecord).filter_by(
                        session_id=session_id, q_idx=q_idx
                    ).one_or_none()
                    if (
                        record is not None
                        and origin == ORIGIN_AUTO
                        and classify_origin(record.origin, record.comment) == ORIGIN_MANUAL
                    ):
                        logger.info(f"Keeping manual grade for {session_id} Q{q_idx}")
                        return None
                    if record is None:
                        record = GradeRecord(session_id=session_id, q_idx=q_idx)
                        s.add(record)

                    record.score = int(score)
                    record.comment = comment or ""
                    if stage_grading is not None or origin == ORIGIN_AUTO:
                        record.stage_grading = _dumps(stage_grading)
                    record.origin = origin
                break
            except IntegrityError:
                if attempt:
                    raise
                logger.warning(f"Concurrent grade insert for {session_id} Q{q_idx}, retrying as update")

        return GradeData(
            session_id=session_id,
            q_idx=q_idx,
            score=int(score),
            comment=comment or "",
            stage_grading=stage_grading,
            origin=origin
        )

    def get_grades(self, session_id: str) -> List[GradeData]:
        with self.db.session_scope() as s:
            records = s.query(GradeRecord).filter_by(session_id=session_id).order_by(GradeRecord.q_idx)
            return [
                GradeData(
                    session_id=r.session_id,
                    q_idx=r.q_idx,
                    score=r.score,
                    comment=r.comment,
                    stage_grading=_loads(r.stage_grading),
                    origin=r.origin
                )
                for r in records
            ]

    def has_manual_grade(self, session_id: str) -> bool:
        return any(grade.is_manual for grade in self.get_grades(session_id))

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def compression_totals(self, session_id: Optional[str] = None) -> Dict[str, int]:
        """Original and compressed byte totals over stored messages and answers."""
        original = 0
        compressed = 0

        with self.db.session_scope() as s:
            messages = s.query(
                func.coalesce(func.sum(MessageRecord.original_size), 0),
                func.coalesce(func.sum(MessageRecord.compressed_size), 0)
            )
            submissions = s.query(SubmissionRecord.compression_metadata)
            if session_id:
                messages = messages.filter(MessageRecord.session_id == session_id)
                submissions = submissions.filter(SubmissionRecord.session_id == session_id)

            msg_original, msg_compressed = messages.one()
            original += int(msg_original)
            compressed += int(msg_compressed)

            for (metadata,) in submissions:
                meta = _loads(metadata, {})
                original += int(meta.get('original_size', 0))
                compressed += int(meta.get('compressed_size', 0))

        return {'original_size': original, 'compressed_size': compressed}
