"""
Configuration settings for the Exam Tutor Assistant.

Every value can be overridden through the environment; components read their
defaults from here and accept explicit constructor arguments.
"""
import os
from pathlib import Path

# Base paths
BASE_DIR = Path(__file__).parent
DATA_DIR = Path(os.getenv("EXAM_TUTOR_DATA_DIR", str(BASE_DIR / "data")))
INDEX_DIR = DATA_DIR / "indexes"


# Ollama settings
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "mistral:7b")
OLLAMA_TIMEOUT = int(os.getenv("OLLAMA_TIMEOUT", "120"))

# Embedding settings
# The model name plus version is recorded on every stored chunk so that a model
# upgrade can find vectors that need reindexing.
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2")
EMBEDDING_MODEL_VERSION = os.getenv("EMBEDDING_MODEL_VERSION", "1")
EMBEDDING_DIMENSION = int(os.getenv("EMBEDDING_DIMENSION", "384"))
EMBEDDING_BATCH_SIZE = 32
EMBEDDING_DEVICE = os.getenv("EMBEDDING_DEVICE", "cpu")

# Vector store settings
CHROMA_PERSIST_DIR = os.getenv("CHROMA_PERSIST_DIR", str(INDEX_DIR))
CHROMA_COLLECTION = "exam_material_chunks"

# Relational store (sessions, submissions, messages, grades, material text)
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR / 'exam_tutor.db'}")

# Logging verbosity for AssessmentLogger: minimal | standard | verbose
LOG_LEVEL = os.getenv("LOG_LEVEL", "standard")


class ChunkingConfig:
    """Character windows for the two chunking call sites."""
    INDEX_CHUNK_SIZE = 800       # vector index
    INDEX_OVERLAP = 200
    KEYWORD_CHUNK_SIZE = 500     # keyword retrieval, re-chunked on every query
    KEYWORD_OVERLAP = 100
    TOKEN_ENCODING = "cl100k_base"


class RetrievalConfig:
    """Configuration for retrieval pipeline."""
    MATCH_THRESHOLD = 0.2        # cosine similarity floor
    MATCH_COUNT = 5
    CANDIDATE_POOL = 20          # neighbours fetched before threshold filtering
    IGNORE_THRESHOLD_FALLBACK = True
    UPSERT_BATCH_SIZE = 100
    KEYWORD_MAX_RESULTS = 3
    KEYWORD_MAX_LENGTH = 2000
    KEYWORD_MIN_TRUNCATED_LENGTH = 100


class CompressionConfig:
    """Compression codec settings."""
    ALGORITHM = "zlib+base64"
    VERSION = "2.0.0"
    LEGACY_ALGORITHM = "zlib+base85"
    LEGACY_VERSION = "1.0.0"
    LEVEL = 9
    UNAVAILABLE_PLACEHOLDER = "[content unavailable]"


class LLMConfig:
    """Configuration for LLM generation."""
    GRADING_TEMPERATURE = 0.2
    SUMMARY_TEMPERATURE = 0.3
    TUTOR_TEMPERATURE = 0.4
    MAX_OUTPUT_TOKENS = 1500
    MAX_RETRIES = 2
    RETRY_DELAY = 2


class GradingConfig:
    """Configuration for the staged grading pipeline."""
    MAX_QUESTION_WORKERS = 4
    MAX_STAGE_WORKERS = 3
    QUEUE_WORKERS = 1
    JOB_MAX_ATTEMPTS = 2
    JOB_HISTORY = 200         # finished jobs kept for lookup
    RUBRIC_AREA_MAX = 5
    GENERATE_SUMMARY = True
