"""
Material Indexer - Write path from extracted material text to the vector store.

upload -> TextChunker (800/200) -> Embedder.embed_batch -> ChromaStore.upsert_chunks

The extracted text is also stored compressed so keyword retrieval works for
exams (or files) without vectors.
"""
from typing import Callable, Dict, Any, List, Optional, Tuple
from dataclasses import dataclass, field
import logging

from config import ChunkingConfig
from ..chunking import TextChunker
from ..embeddings import Embedder
from ..errors import ExtractionUnavailable
from ..storage import ExamRepository
from ..utils import create_logger
from ..vector_store import ChromaStore

logger = logging.getLogger(__name__)

TextExtractor = Callable[[str], str]


@dataclass
class IndexResult:
    """Outcome of indexing one material."""
    exam_id: str
    file_url: str
    file_name: str
    chunks_stored: int = 0
    characters: int = 0
    skipped_reason: Optional[str] = None

    @property
    def indexed(self) -> bool:
        return self.chunks_stored > 0


@dataclass
class ReindexReport:
    reindexed: List[IndexResult] = field(default_factory=list)
    missing_text: List[Tuple[str, str]] = field(default_factory=list)


class MaterialIndexer:
    """Chunks, embeds and stores exam materials."""

    def __init__(
        self,
        embedder: Embedder,
        vector_store: ChromaStore,
        exam_repo: Optional[ExamRepository] = None,
        chunker: Optional[TextChunker] = None,
        count_tokens: bool = True,
        verbose: bool = False
    ):
        self.embedder = embedder
        self.vector_store = vector_store
        self.exam_repo = exam_repo
        self.chunker = chunker or TextChunker(
            chunk_size=ChunkingConfig.INDEX_CHUNK_SIZE,
            overlap=ChunkingConfig.INDEX_OVERLAP
        )
        self.count_tokens = count_tokens
        self.log = create_logger("Indexer", verbose=verbose)

        if vector_store.embedding_model != embedder.model_tag:
            logger.warning(
                f"⚠️ Store records model '{vector_store.embedding_model}' but embedder is "
                f"'{embedder.model_tag}'; new chunks are tagged with the embedder's model"
            )

    def index_material(
        self,
        exam_id: str,
        file_url: str,
        file_name: str,
        text: Optional[str]
    ) -> IndexResult:
        """
        Index one material, replacing any chunks from an earlier upload.

        Empty text is not an error: the material is recorded as unavailable
        for retrieval, chunks from an earlier upload are removed, and it is
        skipped.

        Raises:
            UpsertBatchFailure: the caller must retry the whole upload
            EmbeddingDimensionMismatch / EmbeddingCountMismatch: configuration error
        """
        result = IndexResult(exam_id=exam_id, file_url=file_url, file_name=file_name)

        if not text or not text.strip():
            return self._skip(result, ExtractionUnavailable(file_url))

        result.characters = len(text)
        if self.exam_repo is not None:
            self.exam_repo.save_material_text(exam_id, file_url, file_name, text)

        with self.log.timer(f"index {file_name}"):
            chunks = self.chunker.chunk(text, file_name=file_name, with_tokens=self.count_tokens)
            self.log.metric(f"{file_name}.chunks", len(chunks))

            embeddings = self.embedder.embed_batch([c.content for c in chunks])
            result.chunks_stored = self.vector_store.upsert_chunks(
                exam_id, file_url, chunks, embeddings,
                file_name=file_name, model_tag=self.embedder.model_tag
            )

        self.log.success(f"Indexed {file_name}: {result.chunks_stored} chunks")
        return result

    def index_with_extractor(
        self,
        exam_id: str,
        file_url: str,
        file_name: str,
        extractor: TextExtractor
    ) -> IndexResult:
        """Extract text with an external extractor, then index it."""
        result = IndexResult(exam_id=exam_id, file_url=file_url, file_name=file_name)
        try:
            text = extractor(file_url)
        except ExtractionUnavailable as e:
            return self._skip(result, e)

        return self.index_material(exam_id, file_url, file_name, text)

    def _skip(self, result: IndexResult, error: ExtractionUnavailable) -> IndexResult:
        result.skipped_reason = error.reason
        self.log.warning(str(error))
        removed = self.vector_store.delete_material(result.exam_id, result.file_url)
        if removed:
            self.log.info(f"Removed {removed} chunks of the previous {result.file_name}")
        if self.exam_repo is not None:
            self.exam_repo.save_material_text(
                result.exam_id, result.file_url, result.file_name, None,
                extraction_error=error.reason
            )
        return result

    def reindex_stale(self) -> ReindexReport:
        """Re-embed every material indexed with a different embedding model."""
        report = ReindexReport()
        stale = self.vector_store.stale_materials(self.embedder.model_tag)
        if not stale:
            return report

        self.log.phase(f"Reindexing {len(stale)} stale material(s)")
        texts: Dict[str, Dict[str, Any]] = {}

        for exam_id, file_url in stale:
            if exam_id not in texts:
                materials = self.exam_repo.get_material_texts(exam_id) if self.exam_repo else []
                texts[exam_id] = {m.url: m for m in materials}

            material = texts[exam_id].get(file_url)
            if material is None:
                report.missing_text.append((exam_id, file_url))
                self.log.warning(f"No stored text for stale material {file_url}; re-upload needed")
                continue

            report.reindexed.append(
                self.index_material(exam_id, file_url, material.file_name, material.text)
            )

        return report

    def delete_exam(self, exam_id: str) -> int:
        """Remove every chunk (and stored material text) of an exam."""
        removed = self.vector_store.delete_exam(exam_id)
        if self.exam_repo is not None:
            self.exam_repo.delete_materials(exam_id)
        return removed
