"""
Grading Orchestrator - Runs per-question, multi-stage grading over a session.

Session states:
    ungraded -> grading -> graded_auto -> graded_manual

- trigger_grading only starts from `ungraded` (atomic compare-and-set), so a
  second trigger while the first runs is a no-op
- regrade starts from `graded_auto` and is skipped when any grade is manual
- questions are graded concurrently, each with its own failure boundary
- scores are never cached: reports are computed from current grades on read
"""
import time
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field

from config import CompressionConfig, GradingConfig
from ..errors import ExamTutorError
from ..storage import (
    ExamRepository, GradeRepository, ExamData, GradeData, GradingInput,
    STATUS_UNGRADED, STATUS_GRADING, STATUS_GRADED_AUTO, STATUS_GRADED_MANUAL,
    ORIGIN_AUTO, ORIGIN_MANUAL
)
from ..utils import create_logger, LogLevel
from .core import QuestionContext, QuestionGrade, mean_score
from .stages import StageGraderTool, SessionSummaryTool, default_stage_tools

logger = logging.getLogger(__name__)

RUN_COMPLETED = "completed"
RUN_PARTIAL = "partial"
RUN_FAILED = "failed"
RUN_SKIPPED = "skipped"


@dataclass
class GradingRun:
    """Outcome of one grading or regrade request."""
    session_id: str
    status: str
    grades: List[GradeData] = field(default_factory=list)
    ungraded_questions: List[int] = field(default_factory=list)
    stage_errors: Dict[int, Dict[str, str]] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    reason: str = ""
    summary: Optional[Dict[str, Any]] = None
    duration_s: float = 0.0

    @property
    def skipped(self) -> bool:
        return self.status == RUN_SKIPPED


@dataclass
class SessionReport:
    """Current grading state of a session, computed on read."""
    session_id: str
    exam_id: str
    student_id: str
    grading_status: str
    grades: List[GradeData]
    overall_score: Optional[int]
    total_questions: int
    summary: Optional[Dict[str, Any]] = None

    @property
    def graded_questions(self) -> int:
        return len(self.grades)

    @property
    def is_partial(self) -> bool:
        return 0 < self.graded_questions < self.total_questions

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_id': self.session_id,
            'exam_id': self.exam_id,
            'student_id': self.student_id,
            'grading_status': self.grading_status,
            'overall_score': self.overall_score,
            'graded_questions': self.graded_questions,
            'total_questions': self.total_questions,
            'is_partial': self.is_partial,
            'grades': [g.to_dict() for g in self.grades],
            'summary': self.summary,
        }


class GradingOrchestrator:
    """Grades exam sessions and serves grade reports."""

    def __init__(
        self,
        llm,
        exam_repo: ExamRepository,
        grade_repo: GradeRepository,
        stage_tools: Optional[Dict[str, StageGraderTool]] = None,
        max_question_workers: int = GradingConfig.MAX_QUESTION_WORKERS,
        max_stage_workers: int = GradingConfig.MAX_STAGE_WORKERS,
        generate_summary: bool = GradingConfig.GENERATE_SUMMARY,
        verbose: bool = False
    ):
        self.llm = llm
        self.exam_repo = exam_repo
        self.grade_repo = grade_repo
        self.stage_tools = stage_tools or default_stage_tools(llm)
        self.summary_tool = SessionSummaryTool(llm)
        self.max_question_workers = max(1, max_question_workers)
        self.max_stage_workers = max(1, max_stage_workers)
        self.generate_summary = generate_summary
        self.log = create_logger("Grading", verbose=verbose)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def trigger_grading(self, session_id: str) -> GradingRun:
        """
        Grade a freshly submitted session.

        Only an `ungraded` session is graded; any other state returns a
        skipped run, which makes repeated triggers harmless.
        """
        if not self.grade_repo.transition_status(session_id, [STATUS_UNGRADED], STATUS_GRADING):
            status = self.grade_repo.get_session(session_id).grading_status
            self.log.info(f"Session {session_id} is {status}; grading trigger ignored")
            return GradingRun(session_id, RUN_SKIPPED, reason=f"session is {status}")

        return self._run(session_id, restore_status=STATUS_UNGRADED)

    def regrade(self, session_id: str) -> GradingRun:
        """
        Regenerate automatic grades.

        Skipped when any question already has a manual grade.
        """
        if self.grade_repo.has_manual_grade(session_id):
            self.log.info(f"Session {session_id} has manual grades; regrade skipped")
            return GradingRun(session_id, RUN_SKIPPED, reason="manual grade present")

        status = self.grade_repo.get_session(session_id).grading_status
        if status not in (STATUS_GRADED_AUTO, STATUS_UNGRADED) or not self.grade_repo.transition_status(
            session_id, [status], STATUS_GRADING
        ):
            return GradingRun(session_id, RUN_SKIPPED, reason=f"session is {status}")

        return self._run(session_id, restore_status=status)

    def override_grade(
        self,
        session_id: str,
        q_idx: int,
        score: int,
        comment: str = ""
    ) -> GradeData:
        """Instructor override; always allowed and always authoritative."""
        if not 0 <= int(score) <= 100:
            raise ValueError(f"Score must be between 0 and 100, got {score}")

        self.grade_repo.get_session(session_id)
        grade = self.grade_repo.upsert_grade(
            session_id, q_idx, int(score), comment, stage_grading=None, origin=ORIGIN_MANUAL
        )
        self.grade_repo.set_status(session_id, STATUS_GRADED_MANUAL)
        logger.info(f"✏️ Manual grade for {session_id} Q{q_idx}: {score}")
        return grade

    # ------------------------------------------------------------------
    # Grading run
    # ------------------------------------------------------------------

    def _run(self, session_id: str, restore_status: str) -> GradingRun:
        start = time.time()
        self.log.phase(f"Grading session {session_id}")

        try:
            grading_input = self.grade_repo.load_grading_input(session_id)
            exam = self.exam_repo.get_exam(grading_input.session.exam_id) or ExamData(
                id=grading_input.session.exam_id, title=""
            )
            run = self._grade_questions(session_id, exam, grading_input)
        except Exception as e:
            logger.exception(f"Grading run failed for session {session_id}")
            self.grade_repo.set_status(session_id, restore_status)
            if isinstance(e, ExamTutorError):
                return GradingRun(session_id, RUN_FAILED, errors=[str(e)], duration_s=time.time() - start)
            raise

        if self.grade_repo.has_manual_grade(session_id):
            final_status = STATUS_GRADED_MANUAL
        elif run.grades:
            final_status = STATUS_GRADED_AUTO
        else:
            final_status = restore_status
        self.grade_repo.set_status(session_id, final_status)

        if run.grades and self.generate_summary:
            run.summary = self._summarize(session_id, exam, grading_input)

        run.duration_s = time.time() - start
        self.log.metric(f"{session_id}.duration_s", round(run.duration_s, 2))
        self.log.success(
            f"Session {session_id}: {len(run.grades)} graded, "
            f"{len(run.ungraded_questions)} ungraded ({run.status}, {run.duration_s:.1f}s)"
        )
        return run

    def build_contexts(self, exam: ExamData, grading_input: GradingInput) -> List[QuestionContext]:
        """One QuestionContext per question that has any submitted data."""
        contexts = []
        for q_idx in grading_input.question_indices():
            submission = grading_input.submissions.get(q_idx)
            answer = submission.answer if submission else ""
            if answer == CompressionConfig.UNAVAILABLE_PLACEHOLDER:
                logger.warning(f"⚠️ Answer for Q{q_idx} is unavailable; answer stage skipped")
                answer = ""

            contexts.append(QuestionContext(
                q_idx=q_idx,
                question=exam.question(q_idx),
                rubric=exam.rubric,
                messages=grading_input.chat.get(q_idx, []),
                answer=answer,
                ai_feedback=submission.ai_feedback if submission else None,
                student_reply=submission.student_reply if submission else None,
                feedback_messages=grading_input.feedback_chat.get(q_idx, [])
            ))
        return contexts

    def _grade_questions(
        self, session_id: str, exam: ExamData, grading_input: GradingInput
    ) -> GradingRun:
        contexts = self.build_contexts(exam, grading_input)
        run = GradingRun(session_id, RUN_COMPLETED)

        if not contexts:
            self.log.warning(f"Session {session_id} has no submitted data")
            run.status = RUN_FAILED
            run.reason = "no submitted data"
            return run

        workers = min(self.max_question_workers, len(contexts))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="grade-q") as pool:
            futures = {pool.submit(self.grade_question, ctx): ctx.q_idx for ctx in contexts}

            # Grades are written from this thread as each question finishes
            for future in as_completed(futures):
                q_idx = futures[future]
                try:
                    question_grade = future.result()
                except Exception as e:
                    logger.exception(f"Question {q_idx} grading crashed")
                    run.errors.append(f"Q{q_idx}: {e}")
                    run.ungraded_questions.append(q_idx)
                    continue

                if question_grade.stage_errors:
                    run.stage_errors[q_idx] = dict(question_grade.stage_errors)

                score = question_grade.score
                self.log.grade_decision(q_idx, score, len(question_grade.stage_grading))
                if score is None:
                    run.ungraded_questions.append(q_idx)
                    continue

                grade = self.grade_repo.upsert_grade(
                    session_id,
                    q_idx,
                    score,
                    question_grade.comment,
                    stage_grading=question_grade.stage_grading,
                    origin=ORIGIN_AUTO
                )
                if grade is not None:
                    run.grades.append(grade)

        run.grades.sort(key=lambda g: g.q_idx)
        run.ungraded_questions.sort()

        if not run.grades and not self.grade_repo.get_grades(session_id):
            run.status = RUN_FAILED
        elif run.ungraded_questions or run.stage_errors or run.errors:
            run.status = RUN_PARTIAL
        return run

    def grade_question(self, context: QuestionContext) -> QuestionGrade:
        """Run every available stage for one question, concurrently."""
        result = QuestionGrade(q_idx=context.q_idx)
        stages = context.available_stages()

        if not stages:
            return result

        workers = min(self.max_stage_workers, len(stages))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"grade-q{context.q_idx}") as pool:
            futures = {
                pool.submit(self.stage_tools[stage].execute, context): stage
                for stage in stages
            }
            for future in as_completed(futures):
                stage = futures[future]
                try:
                    tool_result = future.result()
                except Exception as e:
                    logger.exception(f"Q{context.q_idx} {stage} stage crashed")
                    result.stage_errors[stage] = str(e)
                    continue

                if tool_result.success:
                    output = tool_result.data['output']
                    result.add_stage(stage, output)
                    self.log.stage_result(context.q_idx, stage, output.score)
                else:
                    result.stage_errors[stage] = tool_result.error or "unknown error"
                    self.log.stage_result(context.q_idx, stage, None, tool_result.error)

        return result

    def _summarize(
        self, session_id: str, exam: ExamData, grading_input: GradingInput
    ) -> Optional[Dict[str, Any]]:
        """LLM summary of the session; failures never touch the grades."""
        grades = {g.q_idx: g.score for g in self.grade_repo.get_grades(session_id)}
        entries = []
        for q_idx in grading_input.question_indices():
            submission = grading_input.submissions.get(q_idx)
            entries.append({
                'prompt': exam.question(q_idx).prompt,
                'answer': submission.answer if submission else "",
                'score': grades.get(q_idx),
            })

        result = self.summary_tool.summarize(exam.title, exam.rubric, entries)
        if not result.success:
            self.log.warning(f"Summary for {session_id} not generated: {result.error}", LogLevel.STANDARD)
            return None

        summary = result.data['summary']
        try:
            self.grade_repo.save_summary(session_id, summary)
        except Exception as e:
            self.log.error(f"Could not save summary for {session_id}", e)
        return summary

    # ------------------------------------------------------------------
    # Reporting (computed on read)
    # ------------------------------------------------------------------

    def overall_score(self, session_id: str) -> Optional[int]:
        """Rounded mean of current per-question scores; None when nothing is graded."""
        return mean_score([g.score for g in self.grade_repo.get_grades(session_id)])

    def session_report(self, session_id: str) -> SessionReport:
        session = self.grade_repo.get_session(session_id)
        grades = self.grade_repo.get_grades(session_id)
        exam = self.exam_repo.get_exam(session.exam_id)

        total = len(exam.questions) if exam and exam.questions else 0
        total = max(total, len(grades))

        return SessionReport(
            session_id=session.id,
            exam_id=session.exam_id,
            student_id=session.student_id,
            grading_status=session.grading_status,
            grades=grades,
            overall_score=mean_score([g.score for g in grades]),
            total_questions=total,
            summary=session.ai_summary
        )

    def final_grades(self, exam_id: str) -> List[Dict[str, Any]]:
        """Instructor-finalised sessions (at least one manual grade) with their scores."""
        finals = []
        for session in self.grade_repo.sessions_for_exam(exam_id):
            grades = self.grade_repo.get_grades(session.id)
            if not any(g.is_manual for g in grades):
                continue
            finals.append({
                'session_id': session.id,
                'student_id': session.student_id,
                'overall_score': mean_score([g.score for g in grades]),
                'grades': [g.to_dict() for g in grades],
            })
        return finals

    def compression_report(self, session_id: Optional[str] = None) -> Dict[str, Any]:
        """Storage efficiency of compressed messages and answers."""
        totals = self.grade_repo.compression_totals(session_id)
        original = totals['original_size']
        compressed = totals['compressed_size']
        return {
            'original_size': original,
            'compressed_size': compressed,
            'compression_ratio': compressed / original if original > 0 else 0.0,
            'space_saved': original - compressed,
        }
