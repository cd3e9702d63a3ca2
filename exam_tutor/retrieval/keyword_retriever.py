"""
Keyword Retriever - Stopword-filtered keyword scoring over in-memory material text.

Used where no vector index exists for an exam. Materials are re-chunked with a
smaller window than the indexer uses, scored by keyword frequency plus keyword
density, and the best chunks are concatenated within a character budget.
"""
from typing import List, Dict, Any, Iterable, Optional, Union
from dataclasses import dataclass
import re
import logging

from config import ChunkingConfig, RetrievalConfig
from ..chunking import TextChunker
from .base import BaseRetriever, RetrievalOutcome, METHOD_KEYWORD

logger = logging.getLogger(__name__)

# Korean particles/endings and interrogatives, plus English function words
STOPWORDS = frozenset([
    "은", "는", "이", "가", "을", "를", "의", "에", "에서", "로", "으로",
    "와", "과", "도", "만", "부터", "까지", "에게", "한테", "께",
    "이다", "입니다", "있습니다", "합니다", "됩니다",
    "어떻게", "무엇", "왜", "언제", "어디", "누구",
    "그", "저", "그것", "이것", "저것",
    "the", "an", "and", "or", "of", "to", "in", "on", "at", "for", "by",
    "with", "is", "are", "was", "were", "be", "do", "does", "did",
    "what", "how", "why", "when", "where", "who", "which",
    "it", "this", "that", "these", "those", "can", "could", "should",
])

CONTEXT_HEADER = "[Course material reference]\n"
RESULT_SEPARATOR = "\n\n---\n\n"
DEFAULT_FILE_NAME = "Course material"


@dataclass
class MaterialText:
    """Extracted text of one uploaded material."""
    url: str
    text: str
    file_name: str = ""

    @property
    def display_name(self) -> str:
        return self.file_name or self.url.rstrip('/').split('/')[-1] or DEFAULT_FILE_NAME

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MaterialText":
        return cls(
            url=data.get('url', ''),
            text=data.get('text', '') or '',
            file_name=data.get('file_name') or data.get('fileName') or ''
        )


@dataclass
class ScoredText:
    """A keyword-scored chunk of material text."""
    text: str
    file_name: str
    score: float


def extract_keywords(question: str) -> List[str]:
    """
    Pull search keywords out of a question.

    Punctuation is stripped; single characters, stopwords and pure digits are
    dropped; duplicates removed in order. When nothing survives, the whole
    trimmed question is the only keyword.
    """
    cleaned = re.sub(r"[^\w\s가-힣]", " ", question)

    keywords: List[str] = []
    for word in cleaned.split():
        word = word.strip()
        if len(word) <= 1 or word.lower() in STOPWORDS or word.isdigit():
            continue
        if word not in keywords:
            keywords.append(word)

    return keywords if keywords else [question.strip()]


def relevance_score(chunk: str, keywords: List[str]) -> float:
    """2 x total keyword occurrences + 100 x distinct keywords present / words in chunk."""
    lower_chunk = chunk.lower()
    score = 0.0
    present = 0

    for keyword in keywords:
        needle = keyword.lower()
        if not needle:
            continue
        occurrences = lower_chunk.count(needle)
        score += occurrences * 2
        if occurrences:
            present += 1

    words = len(chunk.split())
    if words > 0:
        score += (present / words) * 100

    return score


class KeywordRetriever:
    """
    Keyword-based material search.

    Independent of the vector store: needs only material text, which is
    re-chunked on every call.
    """

    def __init__(
        self,
        chunk_size: int = ChunkingConfig.KEYWORD_CHUNK_SIZE,
        overlap: int = ChunkingConfig.KEYWORD_OVERLAP,
        min_truncated_length: int = RetrievalConfig.KEYWORD_MIN_TRUNCATED_LENGTH,
        chunker: Optional[TextChunker] = None
    ):
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.min_truncated_length = min_truncated_length
        self.chunker = chunker or TextChunker(chunk_size=chunk_size, overlap=overlap)

    def score_materials(
        self,
        materials: Iterable[Union[MaterialText, Dict[str, Any]]],
        keywords: List[str]
    ) -> List[ScoredText]:
        """Score every chunk of every material; only positive scores are kept."""
        scored: List[ScoredText] = []

        for material in materials:
            if isinstance(material, dict):
                material = MaterialText.from_dict(material)
            if not material.text or not material.text.strip():
                continue

            for chunk in self.chunker.chunk_texts(material.text, self.chunk_size, self.overlap):
                score = relevance_score(chunk, keywords)
                if score > 0:
                    scored.append(ScoredText(
                        text=chunk.strip(),
                        file_name=material.display_name,
                        score=score
                    ))

        # Stable sort keeps material order among ties
        scored.sort(key=lambda s: s.score, reverse=True)
        return scored

    def search(
        self,
        materials: Iterable[Union[MaterialText, Dict[str, Any]]],
        question: str,
        max_results: int = RetrievalConfig.KEYWORD_MAX_RESULTS,
        max_length: int = RetrievalConfig.KEYWORD_MAX_LENGTH
    ) -> str:
        """
        Find material passages relevant to a question.

        Args:
            materials: MaterialText objects (or dicts with text/file_name)
            question: Student question
            max_results: Maximum passages in the context
            max_length: Maximum length of the returned string

        Returns:
            Context string with each passage annotated by file name, or ""
        """
        materials = list(materials or [])
        if not materials:
            logger.debug("Keyword search: no materials")
            return ""

        keywords = extract_keywords(question)
        logger.debug(f"Keyword search: keywords={keywords}")

        ranked = self.score_materials(materials, keywords)
        if not ranked:
            logger.info("Keyword search: no chunk matched")
            return ""

        used = len(CONTEXT_HEADER)
        parts: List[str] = []

        for result in ranked[:max_results]:
            separator = len(RESULT_SEPARATOR) if parts else 0
            entry = f"{result.text} [{result.file_name}]"

            if used + separator + len(entry) > max_length:
                suffix = f"... [{result.file_name}]"
                remaining = max_length - used - separator - len(suffix)
                if remaining > self.min_truncated_length:
                    parts.append(f"{result.text[:remaining]}{suffix}")
                break

            parts.append(entry)
            used += separator + len(entry)

        if not parts:
            return ""

        context = CONTEXT_HEADER + RESULT_SEPARATOR.join(parts)
        logger.info(
            f"📝 Keyword search: {len(parts)} passages, {len(context)} chars "
            f"(top score {ranked[0].score:.1f})"
        )
        return context


class KeywordContextRetriever(BaseRetriever):
    """KeywordRetriever bound to a fixed set of materials."""

    method = METHOD_KEYWORD

    def __init__(
        self,
        materials: List[Union[MaterialText, Dict[str, Any]]],
        retriever: Optional[KeywordRetriever] = None,
        max_results: int = RetrievalConfig.KEYWORD_MAX_RESULTS,
        max_length: int = RetrievalConfig.KEYWORD_MAX_LENGTH
    ):
        self.materials = materials
        self.retriever = retriever or KeywordRetriever()
        self.max_results = max_results
        self.max_length = max_length

    def search(self, query: str) -> RetrievalOutcome:
        text = self.retriever.search(self.materials, query, self.max_results, self.max_length)
        return RetrievalOutcome(
            text=text,
            method=self.method,
            results_count=text.count(RESULT_SEPARATOR) + 1 if text else 0
        )
