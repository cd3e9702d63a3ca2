"""
Shared fixtures: offline stand-ins for the embedding model and the LLM, plus
throwaway SQLite and Chroma stores.
"""
import json
import re
import sys
import threading
import uuid
import zlib
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))


class FakeSentenceModel:
    """Hashed bag-of-words vectors; same text, same vector."""

    def __init__(self, dimension: int = 384):
        self.dimension = dimension
        self.calls = 0

    def get_sentence_embedding_dimension(self):
        return self.dimension

    def _vector(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype=np.float32)
        for word in re.findall(r"\w+", text.lower()):
            vector[zlib.crc32(word.encode("utf-8")) % self.dimension] += 1.0
        if not vector.any():
            vector[0] = 1.0
        return vector

    def encode(self, texts, batch_size=32, show_progress_bar=False,
               normalize_embeddings=True, convert_to_numpy=True):
        self.calls += 1
        vectors = np.stack([self._vector(t) for t in texts])
        if normalize_embeddings:
            vectors = vectors / np.linalg.norm(vectors, axis=1, keepdims=True)
        return vectors


class FakeLLM:
    """
    Scripted LLM.

    Grading calls are answered per stage (recognised from the system prompt);
    a stage mapped to an Exception raises it, a string is returned verbatim and
    an int becomes {"score": n, "comment": ...}.
    """

    STAGE_MARKERS = {
        "chat": "dialogue between a student and an AI tutor",
        "answer": "grade a student's final answer",
        "feedback": "reply to AI feedback",
    }

    def __init__(self, stage_scores=None, summary=None, chat_reply="Use the demand curve."):
        self.stage_scores = dict(stage_scores or {})
        self.summary = summary
        self.chat_reply = chat_reply
        self.calls = []
        self.chat_calls = []
        self._lock = threading.Lock()

    def _stage(self, system_prompt: str):
        for stage, marker in self.STAGE_MARKERS.items():
            if marker in (system_prompt or ""):
                return stage
        return None

    def generate(self, prompt, system_prompt=None, temperature=0.3, max_tokens=1500,
                 json_mode=False, stream=False):
        stage = self._stage(system_prompt)
        with self._lock:
            self.calls.append({'stage': stage, 'prompt': prompt, 'json_mode': json_mode})

        if stage is None:
            if isinstance(self.summary, Exception):
                raise self.summary
            return json.dumps(self.summary or {
                "sentiment": "positive",
                "summary": "Solid reasoning overall.",
                "strengths": ["clear structure"],
                "weaknesses": ["thin evidence"],
                "key_quotes": ["price rises when demand rises"],
            })

        value = self.stage_scores.get(stage, 70)
        if isinstance(value, Exception):
            raise value
        if isinstance(value, str):
            return value
        return json.dumps({"score": value, "comment": f"{stage} looks fine"})

    def chat(self, messages, system_prompt=None, temperature=0.4, max_tokens=1500, stream=False):
        self.chat_calls.append({'messages': list(messages), 'system_prompt': system_prompt})
        if isinstance(self.chat_reply, Exception):
            raise self.chat_reply
        return self.chat_reply

    def stages_called(self):
        return sorted(c['stage'] for c in self.calls if c['stage'])


@pytest.fixture
def fake_model():
    return FakeSentenceModel()


@pytest.fixture
def embedder(fake_model):
    from exam_tutor.embeddings import Embedder

    return Embedder(model=fake_model, model_name="fake-model", model_version="1")


@pytest.fixture
def chroma_store(tmp_path, embedder):
    from exam_tutor.vector_store import ChromaStore

    return ChromaStore(
        persist_directory=str(tmp_path / "chroma"),
        collection_name=f"test_{uuid.uuid4().hex[:8]}",
        embedding_model=embedder.model_tag
    )


@pytest.fixture
def database(tmp_path):
    from exam_tutor.storage import Database

    db = Database(f"sqlite:///{tmp_path / 'exam_tutor.db'}")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def exam_repo(database):
    from exam_tutor.storage import ExamRepository

    return ExamRepository(database)


@pytest.fixture
def grade_repo(database):
    from exam_tutor.storage import GradeRepository

    return GradeRepository(database)


@pytest.fixture
def exam_id(exam_repo):
    return exam_repo.create_exam(
        "Economics 101",
        questions=[
            {"idx": 0, "prompt": "How is price determined in a competitive market?"},
            {"idx": 1, "prompt": "Explain price elasticity of demand."},
        ],
        rubric=[
            {"evaluationArea": "Accuracy", "detailedCriteria": "Concepts are correct"},
            {"evaluation_area": "Reasoning", "detailed_criteria": "Steps follow logically"},
        ]
    )
