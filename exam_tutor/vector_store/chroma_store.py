"""
ChromaDB Vector Store - Persistent (chunk, vector, metadata) storage per material.

One cosine-space collection holds every exam's material chunks. Each chunk
records the exam, source file, character offsets and the embedding model that
produced its vector.
"""
from typing import List, Dict, Any, Optional, Iterator, Tuple
from dataclasses import dataclass, field
from pathlib import Path
import threading
import logging

try:
    import chromadb
    from chromadb.config import Settings
except ImportError:
    chromadb = None

import numpy as np

import config
from config import RetrievalConfig
from ..chunking import TextChunk
from ..errors import EmbeddingDimensionMismatch, UpsertBatchFailure

logger = logging.getLogger(__name__)


@dataclass
class ScoredChunk:
    """A stored chunk with its similarity to a query."""
    chunk_id: str
    content: str
    similarity: float
    exam_id: str = ''
    file_url: str = ''
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def file_name(self) -> str:
        name = self.metadata.get('file_name') or ''
        if name:
            return name
        return self.file_url.rstrip('/').split('/')[-1] or 'unknown'


@dataclass
class SearchResponse:
    """
    Search results plus how they were obtained.

    low_confidence is True when no chunk cleared the threshold and the top
    matches were returned anyway.
    """
    results: List[ScoredChunk]
    low_confidence: bool = False
    match_threshold: float = 0.0
    candidates_considered: int = 0

    @property
    def top_similarity(self) -> Optional[float]:
        return self.results[0].similarity if self.results else None

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self) -> Iterator[ScoredChunk]:
        return iter(self.results)


class ChromaStore:
    """
    ChromaDB-based chunk store.

    Features:
    - Delete-then-insert replacement per (exam, file)
    - Batched inserts; a failed batch fails the whole replacement
    - Cosine similarity search with threshold and low-confidence fallback
    - Embedding model recorded per chunk for stale-vector detection
    """

    def __init__(
        self,
        persist_directory: str = config.CHROMA_PERSIST_DIR,
        collection_name: str = config.CHROMA_COLLECTION,
        embedding_dim: int = config.EMBEDDING_DIMENSION,
        embedding_model: str = f"{config.EMBEDDING_MODEL}@{config.EMBEDDING_MODEL_VERSION}",
        batch_size: int = RetrievalConfig.UPSERT_BATCH_SIZE,
        client: Optional[Any] = None
    ):
        """
        Initialize the store.

        Args:
            persist_directory: Directory for the persistent Chroma client
            collection_name: Collection holding material chunks
            embedding_dim: Dimension every stored and query vector must have
            embedding_model: Model tag written on each chunk
            batch_size: Chunks per insert batch
            client: Existing Chroma client (persist_directory is then ignored)
        """
        if chromadb is None:
            raise ImportError("chromadb is required. Install with: pip install chromadb")

        self.collection_name = collection_name
        self.embedding_dim = embedding_dim
        self.embedding_model = embedding_model
        self.batch_size = batch_size

        if client is None:
            self.persist_directory = Path(persist_directory)
            self.persist_directory.mkdir(parents=True, exist_ok=True)
            client = chromadb.PersistentClient(
                path=str(self.persist_directory),
                settings=Settings(anonymized_telemetry=False, allow_reset=True)
            )
            logger.info(f"ChromaDB initialized at {self.persist_directory}")
        else:
            self.persist_directory = None

        self.client = client
        self._collection = None

        self._locks_guard = threading.Lock()
        self._exam_locks: Dict[str, threading.RLock] = {}

    @property
    def collection(self):
        """Get or create the chunk collection."""
        if self._collection is None:
            self._collection = self.client.get_or_create_collection(
                name=self.collection_name,
                embedding_function=None,
                metadata={
                    "description": "Exam material chunks",
                    "hnsw:space": "cosine",
                }
            )
        return self._collection

    def _lock_for(self, exam_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._exam_locks.get(exam_id)
            if lock is None:
                lock = threading.RLock()
                self._exam_locks[exam_id] = lock
            return lock

    @staticmethod
    def _material_filter(exam_id: str, file_url: str) -> Dict[str, Any]:
        return {"$and": [{"exam_id": {"$eq": exam_id}}, {"file_url": {"$eq": file_url}}]}

    @staticmethod
    def _chunk_id(exam_id: str, file_url: str, chunk_index: int) -> str:
        return f"{exam_id}::{file_url}::{chunk_index}"

    def _prepare_metadata(
        self, exam_id: str, file_url: str, chunk: TextChunk,
        file_name: Optional[str], model_tag: str
    ) -> Dict[str, Any]:
        """Prepare metadata for ChromaDB storage."""
        return {
            'exam_id': str(exam_id),
            'file_url': str(file_url),
            'file_name': str(chunk.file_name or file_name or '')[:500],
            'chunk_index': int(chunk.chunk_index),
            'start_char': int(chunk.start_char),
            'end_char': int(chunk.end_char),
            'token_count': int(chunk.token_count),
            'embedding_model': model_tag,
            'embedding_dim': int(self.embedding_dim),
        }

    def _check_dimension(self, width: int, context: str):
        if width != self.embedding_dim:
            raise EmbeddingDimensionMismatch(self.embedding_dim, width, context=context)

    def upsert_chunks(
        self,
        exam_id: str,
        file_url: str,
        chunks: List[TextChunk],
        embeddings: np.ndarray,
        file_name: Optional[str] = None,
        model_tag: Optional[str] = None
    ) -> int:
        """
        Replace every stored chunk of (exam_id, file_url) with `chunks`.

        Old chunks are deleted first, new ones inserted in batches. If any batch
        fails, the new chunks written so far are removed and UpsertBatchFailure
        is raised; the caller must retry the whole upload.

        Args:
            exam_id: Owning exam
            file_url: Source material identity
            chunks: Chunks from TextChunker, in order
            embeddings: Array of shape (len(chunks), embedding_dim)
            file_name: Display name used when a chunk carries none
            model_tag: Model that produced `embeddings` (defaults to the
                store's embedding_model)

        Returns:
            Number of chunks stored
        """
        embeddings = np.asarray(embeddings, dtype=np.float32)
        if len(chunks) != len(embeddings):
            raise ValueError(
                f"{len(chunks)} chunks but {len(embeddings)} embeddings for {file_url}"
            )
        if len(chunks) > 0:
            self._check_dimension(embeddings.shape[1], f"upsert {file_url}")
        model_tag = model_tag or self.embedding_model

        with self._lock_for(exam_id):
            removed = self._delete_where(self._material_filter(exam_id, file_url))
            if removed:
                logger.info(f"Removed {removed} old chunks for {exam_id} / {file_url}")

            if not chunks:
                return 0

            written_ids: List[str] = []
            for start in range(0, len(chunks), self.batch_size):
                batch = chunks[start:start + self.batch_size]
                batch_embeddings = embeddings[start:start + self.batch_size]
                batch_number = start // self.batch_size + 1

                ids = [self._chunk_id(exam_id, file_url, c.chunk_index) for c in batch]
                try:
                    self.collection.add(
                        ids=ids,
                        documents=[c.content for c in batch],
                        metadatas=[
                            self._prepare_metadata(exam_id, file_url, c, file_name, model_tag)
                            for c in batch
                        ],
                        embeddings=batch_embeddings.tolist()
                    )
                except Exception as e:
                    logger.error(
                        f"❌ Batch {batch_number} failed for {exam_id} / {file_url}: {e}"
                    )
                    self._rollback(written_ids)
                    raise UpsertBatchFailure(exam_id, file_url, batch_number, e) from e

                written_ids.extend(ids)
                logger.debug(f"Batch {batch_number}: stored {len(batch)} chunks")

        logger.info(f"✅ Stored {len(written_ids)} chunks for {exam_id} / {file_url}")
        return len(written_ids)

    def _rollback(self, ids: List[str]):
        if not ids:
            return
        try:
            self.collection.delete(ids=ids)
        except Exception as e:
            logger.error(f"❌ Could not remove {len(ids)} partially written chunks: {e}")

    def _delete_where(self, where: Dict[str, Any]) -> int:
        existing = self.collection.get(where=where, include=[])
        ids = existing.get('ids') or []
        if ids:
            self.collection.delete(ids=ids)
        return len(ids)

    def search(
        self,
        query_embedding: np.ndarray,
        exam_id: Optional[str] = None,
        match_threshold: float = RetrievalConfig.MATCH_THRESHOLD,
        match_count: int = RetrievalConfig.MATCH_COUNT,
        ignore_threshold: bool = False
    ) -> SearchResponse:
        """
        Find the chunks most similar to a query vector.

        Args:
            query_embedding: Vector of the store's embedding dimension
            exam_id: Restrict to one exam (whole corpus when None)
            match_threshold: Results must score strictly above this
            match_count: Maximum number of results
            ignore_threshold: When nothing clears the threshold, return the top
                match_count anyway and flag the response low_confidence

        Returns:
            SearchResponse ordered by descending cosine similarity
        """
        query = np.asarray(query_embedding, dtype=np.float32).reshape(-1)
        self._check_dimension(query.shape[0], "search query")

        if match_count <= 0:
            return SearchResponse(results=[], match_threshold=match_threshold)

        if exam_id is None:
            candidates = self._query_candidates(query, None, match_count)
        else:
            with self._lock_for(exam_id):
                candidates = self._query_candidates(
                    query, {"exam_id": {"$eq": exam_id}}, match_count
                )

        valid = [c for c in candidates if c.similarity > match_threshold][:match_count]

        if valid:
            logger.info(
                f"🎯 Vector search: {len(valid)} results "
                f"(top {valid[0].similarity:.3f}, threshold {match_threshold})"
            )
            return SearchResponse(
                results=valid,
                match_threshold=match_threshold,
                candidates_considered=len(candidates)
            )

        if ignore_threshold and candidates:
            top = candidates[:match_count]
            logger.warning(
                f"⚠️ No chunk above threshold {match_threshold}; returning top "
                f"{len(top)} (best {top[0].similarity:.3f}) as low-confidence context"
            )
            return SearchResponse(
                results=top,
                low_confidence=True,
                match_threshold=match_threshold,
                candidates_considered=len(candidates)
            )

        logger.info(f"Vector search: no results above threshold {match_threshold}")
        return SearchResponse(
            results=[],
            match_threshold=match_threshold,
            candidates_considered=len(candidates)
        )

    def _query_candidates(
        self, query: np.ndarray, where: Optional[Dict[str, Any]], match_count: int
    ) -> List[ScoredChunk]:
        """Nearest neighbours by cosine similarity, best first."""
        # k must not exceed the filtered set or HNSW cannot fill the result
        if where is None:
            total = self.collection.count()
        else:
            total = len(self.collection.get(where=where, include=[]).get('ids') or [])
        if total == 0:
            return []

        n_results = min(max(match_count, RetrievalConfig.CANDIDATE_POOL), total)
        results = self.collection.query(
            query_embeddings=[query.tolist()],
            n_results=n_results,
            where=where,
            include=["documents", "metadatas", "distances"]
        )
        return sorted(self._format_results(results), key=lambda c: c.similarity, reverse=True)

    def _format_results(self, results: Dict) -> List[ScoredChunk]:
        """Format ChromaDB results into ScoredChunks."""
        formatted = []

        if results['ids'] and results['ids'][0]:
            for i in range(len(results['ids'][0])):
                distance = results['distances'][0][i] if results.get('distances') else 1.0
                metadata = results['metadatas'][0][i] if results.get('metadatas') else {}
                metadata = dict(metadata or {})

                formatted.append(ScoredChunk(
                    chunk_id=results['ids'][0][i],
                    content=results['documents'][0][i],
                    # cosine space: distance = 1 - cosine similarity
                    similarity=1.0 - float(distance),
                    exam_id=metadata.get('exam_id', ''),
                    file_url=metadata.get('file_url', ''),
                    metadata=metadata
                ))

        return formatted

    def get_material_chunks(self, exam_id: str, file_url: str) -> List[Dict[str, Any]]:
        """All chunks of one material ordered by chunk_index."""
        with self._lock_for(exam_id):
            result = self.collection.get(
                where=self._material_filter(exam_id, file_url),
                include=["documents", "metadatas"]
            )

        chunks = []
        for i, chunk_id in enumerate(result.get('ids') or []):
            chunks.append({
                'chunk_id': chunk_id,
                'content': result['documents'][i],
                'metadata': result['metadatas'][i] if result.get('metadatas') else {}
            })
        chunks.sort(key=lambda c: c['metadata'].get('chunk_index', 0))
        return chunks

    def count_chunks(self, exam_id: Optional[str] = None) -> int:
        """Number of stored chunks, optionally for one exam."""
        if exam_id is None:
            return self.collection.count()
        result = self.collection.get(where={"exam_id": {"$eq": exam_id}}, include=[])
        return len(result.get('ids') or [])

    def has_chunks(self, exam_id: str) -> bool:
        """Whether a vector index exists for the exam."""
        return self.count_chunks(exam_id) > 0

    def delete_material(self, exam_id: str, file_url: str) -> int:
        """Delete every chunk of one material."""
        with self._lock_for(exam_id):
            return self._delete_where(self._material_filter(exam_id, file_url))

    def delete_exam(self, exam_id: str) -> int:
        """Delete every chunk of an exam."""
        with self._lock_for(exam_id):
            removed = self._delete_where({"exam_id": {"$eq": exam_id}})
        logger.info(f"Deleted {removed} chunks for exam {exam_id}")
        return removed

    def stale_materials(self, current_model: Optional[str] = None) -> List[Tuple[str, str]]:
        """
        Materials whose chunks were embedded with a different model tag.

        Returns:
            Sorted (exam_id, file_url) pairs needing reindexing
        """
        current = current_model or self.embedding_model
        result = self.collection.get(
            where={"embedding_model": {"$ne": current}},
            include=["metadatas"]
        )
        stale = {
            (m.get('exam_id', ''), m.get('file_url', ''))
            for m in (result.get('metadatas') or [])
        }
        return sorted(stale)

    def clear_all(self):
        """Clear all data."""
        try:
            existing = [getattr(c, 'name', c) for c in self.client.list_collections()]
            if self.collection_name in existing:
                self.client.delete_collection(self.collection_name)
                logger.info("Chunk collection cleared")
        except Exception as e:
            logger.warning(f"Could not clear chunk collection: {e}")
        self._collection = None

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about stored data."""
        return {
            'chunk_count': self.collection.count(),
            'embedding_model': self.embedding_model,
            'embedding_dim': self.embedding_dim,
            'persist_directory': str(self.persist_directory) if self.persist_directory else None,
        }
