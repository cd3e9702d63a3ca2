"""
Vector Retriever - Embeds a question and searches an exam's indexed chunks.
"""
from typing import List, Optional
import logging

from config import RetrievalConfig
from ..embeddings import Embedder
from ..vector_store import ChromaStore, ScoredChunk, SearchResponse
from .base import BaseRetriever, RetrievalOutcome, METHOD_VECTOR

logger = logging.getLogger(__name__)

RESULT_SEPARATOR = "\n\n---\n\n"
LOW_CONFIDENCE_BANNER = (
    "[Low confidence: no material passed the relevance threshold. "
    "The closest passages are shown; they may not answer the question.]"
)


def format_results_as_context(
    results: List[ScoredChunk],
    low_confidence: bool = False
) -> str:
    """
    Render search results as numbered, file-annotated passages.

    Low-confidence results are prefixed with a banner so the prompt can tell
    the model not to rely on them blindly.
    """
    if not results:
        return ""

    blocks = [
        f"[Material {i}: {result.file_name}]\n{result.content}"
        for i, result in enumerate(results, start=1)
    ]
    context = RESULT_SEPARATOR.join(blocks)

    if low_confidence:
        context = f"{LOW_CONFIDENCE_BANNER}\n\n{context}"
    return context


class VectorContextRetriever(BaseRetriever):
    """Vector search over one exam's chunks."""

    method = METHOD_VECTOR

    def __init__(
        self,
        embedder: Embedder,
        vector_store: ChromaStore,
        exam_id: str,
        match_threshold: float = RetrievalConfig.MATCH_THRESHOLD,
        match_count: int = RetrievalConfig.MATCH_COUNT,
        ignore_threshold: bool = RetrievalConfig.IGNORE_THRESHOLD_FALLBACK
    ):
        self.embedder = embedder
        self.vector_store = vector_store
        self.exam_id = exam_id
        self.match_threshold = match_threshold
        self.match_count = match_count
        self.ignore_threshold = ignore_threshold
        self.last_response: Optional[SearchResponse] = None

    def search(self, query: str) -> RetrievalOutcome:
        query_embedding = self.embedder.embed(query)
        response = self.vector_store.search(
            query_embedding,
            exam_id=self.exam_id,
            match_threshold=self.match_threshold,
            match_count=self.match_count,
            ignore_threshold=self.ignore_threshold
        )
        self.last_response = response

        return RetrievalOutcome(
            text=format_results_as_context(response.results, response.low_confidence),
            method=self.method,
            top_similarity=response.top_similarity,
            results_count=len(response),
            low_confidence=response.low_confidence
        )
