"""
Context Builder - Picks a retrieval strategy per question and returns tutor context.

Strategy:
1. Vector search when the exam has indexed chunks
2. Keyword search over stored material text otherwise, or when vector search
   returns nothing
3. Any retrieval error degrades to empty context ("no reference material")
"""
from typing import Callable, List, Optional
import re
import logging

from ..embeddings import Embedder
from ..vector_store import ChromaStore
from ..utils import AssessmentLogger, create_logger
from .base import RetrievalOutcome, METHOD_NONE
from .keyword_retriever import KeywordRetriever, KeywordContextRetriever, MaterialText
from .vector_retriever import VectorContextRetriever

logger = logging.getLogger(__name__)

MaterialLoader = Callable[[str], List[MaterialText]]


def clean_context(text: str) -> str:
    """Strip extraction noise (repeated letters/words, runs of whitespace)."""
    if not text:
        return ""

    # "G G G" style single-letter repeats
    cleaned = re.sub(r"\b([A-Za-z])(?:\s+\1){2,}\b", "", text)
    # "GGGGGG" style runs; digits are kept
    cleaned = re.sub(r"([^\d\s])\1{4,}", "", cleaned)
    # a word repeated four or more times collapses to one
    cleaned = re.sub(r"\b(\w+)(?:\s+\1){3,}\b", r"\1", cleaned, flags=re.IGNORECASE)

    cleaned = re.sub(r"[ \t]{2,}", " ", cleaned)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


class ContextBuilder:
    """
    Builds retrieval context for tutor prompts.

    The vector and keyword strategies stay separate; this class only chooses
    between them.
    """

    def __init__(
        self,
        embedder: Optional[Embedder] = None,
        vector_store: Optional[ChromaStore] = None,
        keyword_retriever: Optional[KeywordRetriever] = None,
        material_loader: Optional[MaterialLoader] = None,
        run_logger: Optional[AssessmentLogger] = None
    ):
        """
        Args:
            embedder: Query embedder (vector search disabled when None)
            vector_store: Chunk store (vector search disabled when None)
            keyword_retriever: Keyword strategy
            material_loader: Returns stored material text for an exam id
            run_logger: Optional AssessmentLogger for retrieval stats
        """
        self.embedder = embedder
        self.vector_store = vector_store
        self.keyword_retriever = keyword_retriever or KeywordRetriever()
        self.material_loader = material_loader
        self.log = run_logger or create_logger("Retrieval")

    def _has_vector_index(self, exam_id: str) -> bool:
        if self.embedder is None or self.vector_store is None:
            return False
        return self.vector_store.has_chunks(exam_id)

    def build(
        self,
        question: str,
        exam_id: Optional[str],
        materials: Optional[List[MaterialText]] = None
    ) -> RetrievalOutcome:
        """
        Retrieve context for one student question.

        Args:
            question: Student question
            exam_id: Exam whose materials are searched
            materials: Material text already in memory (loaded when None)

        Returns:
            RetrievalOutcome; empty with method 'none' when nothing was found
        """
        if not exam_id or not question or not question.strip():
            return RetrievalOutcome.empty()

        try:
            outcome = self._retrieve(question, exam_id, materials)
        except Exception as e:
            logger.error(f"❌ Retrieval failed for exam {exam_id}: {e}")
            return RetrievalOutcome.empty()

        outcome.text = clean_context(outcome.text)
        if not outcome.text:
            return RetrievalOutcome.empty()

        self.log.retrieval_stats(
            outcome.method, outcome.results_count,
            outcome.top_similarity, outcome.low_confidence
        )
        return outcome

    def _retrieve(
        self,
        question: str,
        exam_id: str,
        materials: Optional[List[MaterialText]]
    ) -> RetrievalOutcome:
        if self._has_vector_index(exam_id):
            outcome = VectorContextRetriever(
                self.embedder, self.vector_store, exam_id
            ).search(question)
            if not outcome.is_empty:
                return outcome
            logger.info("⚠️ Vector search returned nothing, falling back to keyword search")

        if materials is None and self.material_loader is not None:
            materials = self.material_loader(exam_id)

        if not materials:
            return RetrievalOutcome(text="", method=METHOD_NONE)

        return KeywordContextRetriever(materials, self.keyword_retriever).search(question)
