"""
Text Chunker - Positional, overlapping character windows.

Two call sites use it with different windows:
- Material indexing: larger chunks (800 chars, 200 overlap) stored with vectors
- Keyword retrieval: smaller chunks (500 chars, 100 overlap) built per query

Boundaries are purely positional. Consecutive chunks share `overlap`
characters so a concept spanning a boundary is whole in at least one chunk.
"""
from typing import List, Dict, Any, Optional
from dataclasses import dataclass, field
import logging

import tiktoken

from config import ChunkingConfig

logger = logging.getLogger(__name__)


@dataclass
class TextChunk:
    """A chunk of text with positional metadata for retrieval."""
    content: str
    chunk_index: int
    start_char: int
    end_char: int
    token_count: int = 0

    # Source metadata
    file_name: Optional[str] = None

    # Extra metadata for filtering
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for the vector store."""
        return {
            'content': self.content,
            'chunk_index': self.chunk_index,
            'start_char': self.start_char,
            'end_char': self.end_char,
            'token_count': self.token_count,
            'file_name': self.file_name or '',
        }


class TextChunker:
    """
    Splits raw extracted text into overlapping fixed-size segments.

    No sentence or paragraph awareness: a chunk is `text[start:end]` with
    `end - start <= chunk_size`, and the next chunk starts `overlap`
    characters before the previous one ended.
    """

    def __init__(
        self,
        chunk_size: int = ChunkingConfig.INDEX_CHUNK_SIZE,
        overlap: int = ChunkingConfig.INDEX_OVERLAP,
        encoding_name: str = ChunkingConfig.TOKEN_ENCODING
    ):
        """
        Initialize the chunker.

        Args:
            chunk_size: Maximum characters per chunk
            overlap: Characters shared by consecutive chunks
            encoding_name: Tiktoken encoding used for token counts
        """
        self._validate_window(chunk_size, overlap)
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.encoding_name = encoding_name
        self._tokenizer = None

    @property
    def tokenizer(self):
        """Tiktoken encoding, loaded on first use."""
        if self._tokenizer is None:
            self._tokenizer = tiktoken.get_encoding(self.encoding_name)
        return self._tokenizer

    @staticmethod
    def _validate_window(chunk_size: int, overlap: int):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError(
                f"overlap must be in [0, chunk_size), got {overlap} for chunk_size {chunk_size}"
            )

    def count_tokens(self, text: str) -> int:
        """Count tokens in text."""
        return len(self.tokenizer.encode(text, disallowed_special=()))

    def chunk(
        self,
        text: str,
        chunk_size: Optional[int] = None,
        overlap: Optional[int] = None,
        file_name: Optional[str] = None,
        with_tokens: bool = True
    ) -> List[TextChunk]:
        """
        Split text into overlapping chunks.

        Args:
            text: Raw extracted text
            chunk_size: Override the configured window size
            overlap: Override the configured overlap
            file_name: Source file name recorded on every chunk
            with_tokens: Count tokens per chunk (left at 0 when False)

        Returns:
            Chunks in document order with contiguous chunk_index from 0.
            Empty text yields an empty list.
        """
        size = self.chunk_size if chunk_size is None else chunk_size
        step_back = self.overlap if overlap is None else overlap
        self._validate_window(size, step_back)

        if not text:
            return []

        chunks = []
        start = 0
        length = len(text)

        while True:
            end = min(start + size, length)
            content = text[start:end]
            chunks.append(TextChunk(
                content=content,
                chunk_index=len(chunks),
                start_char=start,
                end_char=end,
                token_count=self.count_tokens(content) if with_tokens else 0,
                file_name=file_name
            ))
            if end >= length:
                break
            start = end - step_back

        logger.debug(
            f"Chunked {length} chars into {len(chunks)} chunks "
            f"(size={size}, overlap={step_back})"
        )
        return chunks

    def chunk_texts(self, text: str, chunk_size: int, overlap: int) -> List[str]:
        """Chunk and return only the content strings."""
        return [c.content for c in self.chunk(text, chunk_size, overlap, with_tokens=False)]

    def get_chunking_stats(self, chunks: List[TextChunk]) -> Dict[str, Any]:
        """Get statistics about the chunked document."""
        if not chunks:
            return {'total_chunks': 0}

        token_counts = [c.token_count for c in chunks]
        char_counts = [c.end_char - c.start_char for c in chunks]

        return {
            'total_chunks': len(chunks),
            'total_tokens': sum(token_counts),
            'avg_tokens': sum(token_counts) / len(chunks),
            'min_chars': min(char_counts),
            'max_chars': max(char_counts),
            'covered_chars': chunks[-1].end_char,
        }
