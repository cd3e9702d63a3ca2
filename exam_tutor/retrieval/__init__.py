"""
Retrieval Module - Tutor context from exam materials.

Two independent strategies behind one interface:
- Vector search over indexed chunks (recall-oriented, low-confidence fallback)
- Keyword frequency/density scoring over raw material text
"""
from .base import BaseRetriever, RetrievalOutcome, METHOD_VECTOR, METHOD_KEYWORD, METHOD_NONE
from .keyword_retriever import (
    KeywordRetriever, KeywordContextRetriever, MaterialText, extract_keywords, relevance_score
)
from .vector_retriever import VectorContextRetriever, format_results_as_context
from .context_builder import ContextBuilder, clean_context

__all__ = [
    "BaseRetriever",
    "RetrievalOutcome",
    "METHOD_VECTOR",
    "METHOD_KEYWORD",
    "METHOD_NONE",
    "KeywordRetriever",
    "KeywordContextRetriever",
    "MaterialText",
    "extract_keywords",
    "relevance_score",
    "VectorContextRetriever",
    "format_results_as_context",
    "ContextBuilder",
    "clean_context",
]
