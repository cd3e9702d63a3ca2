"""
Error taxonomy for retrieval, compression, indexing and grading.

Retrieval-path errors are caught by callers and degrade to empty context.
Grading-path errors are isolated per stage and per question.
"""
from typing import Optional


class ExamTutorError(Exception):
    """Base class for all errors raised by this package."""


class ExtractionUnavailable(ExamTutorError):
    """Upstream text extraction produced nothing usable for a material."""

    def __init__(self, file_url: str, reason: str = "no text extracted"):
        self.file_url = file_url
        self.reason = reason
        super().__init__(f"Material unavailable for retrieval ({file_url}): {reason}")


class EmbeddingDimensionMismatch(ExamTutorError):
    """Query and stored vectors (or model and config) disagree on dimension."""

    def __init__(self, expected: int, actual: int, context: str = ""):
        self.expected = expected
        self.actual = actual
        where = f" in {context}" if context else ""
        super().__init__(
            f"Embedding dimension mismatch{where}: expected {expected}, got {actual}"
        )


class EmbeddingCountMismatch(ExamTutorError):
    """The embedding provider returned a different number of vectors than requested."""

    def __init__(self, requested: int, returned: int):
        self.requested = requested
        self.returned = returned
        super().__init__(
            f"Embedding provider returned {returned} vectors for {requested} inputs"
        )


class DecompressionError(ExamTutorError):
    """A stored payload could not be decompressed; treat as data loss."""


class UpsertBatchFailure(ExamTutorError):
    """A chunk batch failed to insert; the whole replacement must be retried."""

    def __init__(self, exam_id: str, file_url: str, batch_number: int,
                 cause: Optional[BaseException] = None):
        self.exam_id = exam_id
        self.file_url = file_url
        self.batch_number = batch_number
        self.cause = cause
        super().__init__(
            f"Chunk upsert failed at batch {batch_number} for "
            f"exam {exam_id} / {file_url}: {cause}"
        )


class StageGradingFailure(ExamTutorError):
    """One grading stage failed or returned unparsable output."""

    def __init__(self, stage: str, q_idx: int, reason: str):
        self.stage = stage
        self.q_idx = q_idx
        self.reason = reason
        super().__init__(f"{stage} stage failed for question {q_idx}: {reason}")


class SessionNotFound(ExamTutorError):
    """No session with the given id exists."""
