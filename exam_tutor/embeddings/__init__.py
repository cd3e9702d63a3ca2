"""
Embeddings Module - Local embedding generation for semantic search.
"""
from .embedder import Embedder

__all__ = ["Embedder"]
