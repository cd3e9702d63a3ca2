"""
Exam Tutor - Source Package

Material retrieval for the exam tutor and multi-stage grading of submitted
exam sessions.
"""
from .chunking import TextChunker, TextChunk
from .embeddings import Embedder
from .vector_store import ChromaStore, SearchResponse
from .compression import CompressionCodec
from .retrieval import ContextBuilder, KeywordRetriever, RetrievalOutcome
from .llm import OllamaClient
from .prompts import PromptTemplates
from .criteria import RubricItem, ExamQuestion
from .storage import Database, ExamRepository, GradeRepository
from .ingestion import MaterialIndexer
from .tutor import TutorAssistant

from .grading import (
    GradingOrchestrator,
    GradingQueue,
    GradingRun,
    SessionReport
)

__all__ = [
    # Processing
    "TextChunker",
    "TextChunk",
    "Embedder",
    "ChromaStore",
    "SearchResponse",
    "CompressionCodec",

    # Retrieval
    "ContextBuilder",
    "KeywordRetriever",
    "RetrievalOutcome",
    "OllamaClient",
    "PromptTemplates",

    # Exams and storage
    "RubricItem",
    "ExamQuestion",
    "Database",
    "ExamRepository",
    "GradeRepository",
    "MaterialIndexer",
    "TutorAssistant",

    # Grading
    "GradingOrchestrator",
    "GradingQueue",
    "GradingRun",
    "SessionReport",
]
