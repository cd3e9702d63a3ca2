"""
Embedder - Local embedding generation using sentence-transformers.

Uses all-MiniLM-L6-v2 by default:
- 384 dimensions
- ~80MB model size
- Optimized for CPU

The configured dimension is checked against the loaded model so that an index
built with one model is never queried with vectors from another.
"""
from typing import List, Optional, Any
import logging

import numpy as np

try:
    from sentence_transformers import SentenceTransformer
except ImportError:
    SentenceTransformer = None

import config
from ..errors import EmbeddingCountMismatch, EmbeddingDimensionMismatch

logger = logging.getLogger(__name__)


class Embedder:
    """
    Converts text to fixed-dimension vectors, singly or batched.

    Stateless apart from the loaded model: the same text always maps to the
    same vector, and batch output preserves input order and count.
    """

    def __init__(
        self,
        model_name: str = config.EMBEDDING_MODEL,
        expected_dimension: Optional[int] = config.EMBEDDING_DIMENSION,
        model_version: str = config.EMBEDDING_MODEL_VERSION,
        device: str = config.EMBEDDING_DEVICE,
        batch_size: int = config.EMBEDDING_BATCH_SIZE,
        model: Optional[Any] = None
    ):
        """
        Initialize the embedder.

        Args:
            model_name: HuggingFace model name or path
            expected_dimension: Dimension the index was built with (None skips the check)
            model_version: Version tag recorded with every stored vector
            device: Device to run on ('cpu' or 'cuda')
            batch_size: Batch size for embedding generation
            model: Preloaded model exposing encode() and
                get_sentence_embedding_dimension(); loaded from model_name when omitted
        """
        self.model_name = model_name
        self.model_version = model_version
        self.device = device
        self.batch_size = batch_size

        if model is None:
            if SentenceTransformer is None:
                raise ImportError(
                    "sentence-transformers is required. "
                    "Install with: pip install sentence-transformers"
                )
            logger.info(f"Loading embedding model: {model_name}")
            model = SentenceTransformer(model_name, device=device)

        self.model = model
        self.embedding_dim = int(self.model.get_sentence_embedding_dimension())

        if expected_dimension is not None and self.embedding_dim != expected_dimension:
            raise EmbeddingDimensionMismatch(
                expected_dimension, self.embedding_dim, context=f"model {model_name}"
            )

        logger.info(f"Model loaded. Embedding dimension: {self.embedding_dim}")

    @property
    def model_tag(self) -> str:
        """Model identity stored alongside vectors, e.g. 'all-MiniLM-L6-v2@1'."""
        return f"{self.model_name}@{self.model_version}"

    def embed(self, text: str) -> np.ndarray:
        """
        Embed a single text.

        Returns 1D array of shape (embedding_dim,)
        """
        return self.embed_batch([text])[0]

    def embed_batch(
        self,
        texts: List[str],
        show_progress: bool = False,
        normalize: bool = True
    ) -> np.ndarray:
        """
        Generate embeddings for a list of texts.

        Args:
            texts: Texts to embed (whitespace-trimmed before encoding)
            show_progress: Show progress bar for large batches
            normalize: L2 normalize embeddings (recommended for similarity)

        Returns:
            numpy array of shape (len(texts), embedding_dim)

        Raises:
            EmbeddingCountMismatch: the model returned a different number of vectors
            EmbeddingDimensionMismatch: a returned vector has the wrong dimension
        """
        if not texts:
            return np.zeros((0, self.embedding_dim), dtype=np.float32)

        embeddings = self.model.encode(
            [t.strip() for t in texts],
            batch_size=self.batch_size,
            show_progress_bar=show_progress,
            normalize_embeddings=normalize,
            convert_to_numpy=True
        )
        embeddings = np.asarray(embeddings, dtype=np.float32)
        if embeddings.ndim == 1:
            embeddings = embeddings.reshape(1, -1)

        if embeddings.shape[0] != len(texts):
            raise EmbeddingCountMismatch(len(texts), embeddings.shape[0])
        if embeddings.shape[1] != self.embedding_dim:
            raise EmbeddingDimensionMismatch(
                self.embedding_dim, embeddings.shape[1], context="embed_batch"
            )

        return embeddings

    @staticmethod
    def similarity(
        query_embedding: np.ndarray,
        document_embeddings: np.ndarray
    ) -> np.ndarray:
        """
        Compute cosine similarity between query and documents.

        Args:
            query_embedding: Shape (embedding_dim,)
            document_embeddings: Shape (n_docs, embedding_dim)

        Returns:
            Similarity scores of shape (n_docs,)
        """
        query = np.asarray(query_embedding, dtype=np.float32).reshape(-1)
        docs = np.asarray(document_embeddings, dtype=np.float32)
        if docs.size == 0:
            return np.zeros(0, dtype=np.float32)
        if docs.ndim == 1:
            docs = docs.reshape(1, -1)

        norms = np.linalg.norm(docs, axis=1) * np.linalg.norm(query)
        norms[norms == 0] = 1.0
        return (docs @ query) / norms

    def get_model_info(self) -> dict:
        """Get information about the loaded model."""
        return {
            'model_name': self.model_name,
            'model_version': self.model_version,
            'embedding_dimension': self.embedding_dim,
            'device': self.device,
        }
