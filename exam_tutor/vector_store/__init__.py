"""
Vector Store Module - ChromaDB storage of exam material chunks.

Features:
- Per-material replacement (delete then batched insert)
- Cosine similarity search with threshold and low-confidence fallback
- Embedding model recorded per chunk
"""
from .chroma_store import ChromaStore, ScoredChunk, SearchResponse

__all__ = ["ChromaStore", "ScoredChunk", "SearchResponse"]
