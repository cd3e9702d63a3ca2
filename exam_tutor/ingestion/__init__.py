"""
Ingestion Module - Indexes extracted material text for retrieval.
"""
from .indexer import MaterialIndexer, IndexResult, ReindexReport

__all__ = ["MaterialIndexer", "IndexResult", "ReindexReport"]
