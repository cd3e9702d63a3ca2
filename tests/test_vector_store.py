"""
Tests for ChromaStore and the material indexer.

Run with: pytest tests/test_vector_store.py -v
"""
import threading

import numpy as np
import pytest


def unit(dim, *weights):
    """Unit vector whose first components are `weights`."""
    vector = np.zeros(dim, dtype=np.float32)
    vector[:len(weights)] = weights
    return vector / np.linalg.norm(vector)


def make_chunks(texts, file_name="notes.pdf"):
    from exam_tutor.chunking import TextChunk

    start = 0
    chunks = []
    for i, text in enumerate(texts):
        chunks.append(TextChunk(
            content=text, chunk_index=i, start_char=start,
            end_char=start + len(text), file_name=file_name
        ))
        start += len(text)
    return chunks


class FlakyCollection:
    """Delegates to a real collection but fails the n-th add call."""

    def __init__(self, collection, fail_on_call):
        self._collection = collection
        self._fail_on_call = fail_on_call
        self.add_calls = 0

    def add(self, **kwargs):
        self.add_calls += 1
        if self.add_calls == self._fail_on_call:
            raise RuntimeError("simulated write failure")
        return self._collection.add(**kwargs)

    def __getattr__(self, name):
        return getattr(self._collection, name)


class PausingCollection:
    """Delegates to a real collection but parks the n-th add call until released."""

    def __init__(self, collection, pause_on_call):
        self._collection = collection
        self._pause_on_call = pause_on_call
        self.add_calls = 0
        self.paused = threading.Event()
        self.release = threading.Event()

    def add(self, **kwargs):
        self.add_calls += 1
        if self.add_calls == self._pause_on_call:
            self.paused.set()
            self.release.wait(timeout=10)
        return self._collection.add(**kwargs)

    def __getattr__(self, name):
        return getattr(self._collection, name)


class TestChromaStoreSearch:
    """match_count, threshold and fallback behaviour."""

    @pytest.fixture
    def populated(self, chroma_store):
        dim = chroma_store.embedding_dim
        chunks = make_chunks(["close match", "related", "far away", "opposite"])
        embeddings = np.stack([
            unit(dim, 1.0, 0.1),
            unit(dim, 1.0, 1.0),
            unit(dim, 0.0, 1.0),
            unit(dim, -1.0, 0.0),
        ])
        chroma_store.upsert_chunks("exam-1", "https://files/notes.pdf", chunks, embeddings)
        return chroma_store

    def test_results_sorted_above_threshold(self, populated):
        dim = populated.embedding_dim
        response = populated.search(unit(dim, 1.0), exam_id="exam-1", match_threshold=0.2)

        sims = [r.similarity for r in response]
        assert [r.content for r in response] == ["close match", "related"]
        assert sims == sorted(sims, reverse=True)
        assert all(s > 0.2 for s in sims)
        assert response.low_confidence is False

    def test_match_count_limits_results(self, populated):
        dim = populated.embedding_dim
        response = populated.search(unit(dim, 1.0), exam_id="exam-1", match_threshold=-1.0, match_count=3)

        assert len(response) == 3

    def test_no_hits_without_fallback(self, populated):
        dim = populated.embedding_dim
        response = populated.search(unit(dim, 0.0, 0.0, 1.0), exam_id="exam-1", match_threshold=0.5)

        assert len(response) == 0
        assert response.low_confidence is False

    def test_low_confidence_fallback(self, populated):
        dim = populated.embedding_dim
        response = populated.search(
            unit(dim, 0.0, 0.0, 1.0), exam_id="exam-1",
            match_threshold=0.5, match_count=2, ignore_threshold=True
        )

        assert len(response) == 2
        assert response.low_confidence is True

    def test_exam_scope(self, populated):
        dim = populated.embedding_dim
        chunks = make_chunks(["other exam chunk"], file_name="other.pdf")
        populated.upsert_chunks("exam-2", "https://files/other.pdf", chunks, np.stack([unit(dim, 1.0)]))

        scoped = populated.search(unit(dim, 1.0), exam_id="exam-2")
        corpus = populated.search(unit(dim, 1.0), match_count=10, match_threshold=0.0)

        assert [r.exam_id for r in scoped] == ["exam-2"]
        assert {r.exam_id for r in corpus} == {"exam-1", "exam-2"}

    def test_query_dimension_mismatch(self, populated):
        from exam_tutor.errors import EmbeddingDimensionMismatch

        with pytest.raises(EmbeddingDimensionMismatch):
            populated.search(np.ones(12, dtype=np.float32), exam_id="exam-1")

    def test_result_metadata(self, populated):
        dim = populated.embedding_dim
        top = populated.search(unit(dim, 1.0), exam_id="exam-1").results[0]

        assert top.file_name == "notes.pdf"
        assert top.file_url == "https://files/notes.pdf"
        assert top.metadata['chunk_index'] == 0
        assert top.metadata['embedding_model'] == populated.embedding_model


class TestChromaStoreWrites:
    """Replacement, batching and stale detection."""

    def test_upsert_replaces_previous_version(self, chroma_store, embedder):
        texts_v1 = ["old one", "old two", "old three"]
        texts_v2 = ["new only"]
        url = "https://files/notes.pdf"

        chroma_store.upsert_chunks("exam-1", url, make_chunks(texts_v1), embedder.embed_batch(texts_v1))
        chroma_store.upsert_chunks("exam-1", url, make_chunks(texts_v2), embedder.embed_batch(texts_v2))

        stored = chroma_store.get_material_chunks("exam-1", url)
        assert [c['content'] for c in stored] == ["new only"]
        assert chroma_store.count_chunks("exam-1") == 1

    def test_batches_and_order(self, chroma_store, embedder):
        chroma_store.batch_size = 2
        texts = [f"chunk {i}" for i in range(5)]
        stored = chroma_store.upsert_chunks(
            "exam-1", "u", make_chunks(texts), embedder.embed_batch(texts)
        )

        assert stored == 5
        chunks = chroma_store.get_material_chunks("exam-1", "u")
        assert [c['metadata']['chunk_index'] for c in chunks] == [0, 1, 2, 3, 4]

    def test_batch_failure_rolls_back(self, chroma_store, embedder):
        from exam_tutor.errors import UpsertBatchFailure

        chroma_store.batch_size = 2
        flaky = FlakyCollection(chroma_store.collection, fail_on_call=2)
        chroma_store._collection = flaky
        texts = [f"chunk {i}" for i in range(5)]

        with pytest.raises(UpsertBatchFailure) as excinfo:
            chroma_store.upsert_chunks("exam-1", "u", make_chunks(texts), embedder.embed_batch(texts))

        assert excinfo.value.batch_number == 2
        assert chroma_store.count_chunks("exam-1") == 0

    def test_search_waits_for_replacement(self, chroma_store, embedder):
        url = "https://files/notes.pdf"
        old_texts = ["old chunk 0", "old chunk 1", "old chunk 2"]
        new_texts = [f"new chunk {i}" for i in range(5)]
        chroma_store.upsert_chunks("exam-1", url, make_chunks(old_texts), embedder.embed_batch(old_texts))

        chroma_store.batch_size = 2
        pausing = PausingCollection(chroma_store.collection, pause_on_call=2)
        chroma_store._collection = pausing
        seen, errors = [], []

        def replace():
            try:
                chroma_store.upsert_chunks("exam-1", url, make_chunks(new_texts), embedder.embed_batch(new_texts))
            except Exception as e:
                errors.append(e)

        def search():
            try:
                response = chroma_store.search(
                    embedder.embed("new chunk"), exam_id="exam-1", match_threshold=-1.0, match_count=10
                )
                seen.extend(r.content for r in response)
            except Exception as e:
                errors.append(e)

        writer = threading.Thread(target=replace)
        writer.start()
        assert pausing.paused.wait(timeout=10)

        searcher = threading.Thread(target=search)
        searcher.start()
        searcher.join(timeout=0.2)
        assert searcher.is_alive()

        pausing.release.set()
        writer.join(timeout=10)
        searcher.join(timeout=10)

        assert errors == []
        assert sorted(seen) == new_texts

    def test_chunks_tagged_with_producing_model(self, chroma_store, embedder):
        chroma_store.embedding_model = "old-model@0"
        chroma_store.upsert_chunks(
            "exam-1", "u", make_chunks(["x"]), embedder.embed_batch(["x"]), model_tag=embedder.model_tag
        )

        stored = chroma_store.get_material_chunks("exam-1", "u")
        assert {c['metadata']['embedding_model'] for c in stored} == {"fake-model@1"}
        assert chroma_store.stale_materials(embedder.model_tag) == []
        assert chroma_store.stale_materials("old-model@0") == [("exam-1", "u")]

    def test_count_mismatch_rejected(self, chroma_store, embedder):
        with pytest.raises(ValueError):
            chroma_store.upsert_chunks("exam-1", "u", make_chunks(["a", "b"]), embedder.embed_batch(["a"]))

    def test_delete_exam(self, chroma_store, embedder):
        chroma_store.upsert_chunks("exam-1", "a", make_chunks(["x"]), embedder.embed_batch(["x"]))
        chroma_store.upsert_chunks("exam-1", "b", make_chunks(["y"]), embedder.embed_batch(["y"]))

        assert chroma_store.delete_exam("exam-1") == 2
        assert not chroma_store.has_chunks("exam-1")

    def test_stale_materials(self, chroma_store, embedder):
        chroma_store.upsert_chunks("exam-1", "a", make_chunks(["x"]), embedder.embed_batch(["x"]))

        assert chroma_store.stale_materials() == []
        assert chroma_store.stale_materials("fake-model@2") == [("exam-1", "a")]


class TestMaterialIndexer:
    """Chunk, embed, store and keep text for keyword retrieval."""

    @pytest.fixture
    def indexer(self, embedder, chroma_store, exam_repo):
        from exam_tutor.ingestion import MaterialIndexer

        return MaterialIndexer(embedder, chroma_store, exam_repo, count_tokens=False)

    def test_index_material(self, indexer, chroma_store, exam_repo, exam_id):
        text = "Supply and demand determine price. " * 60
        result = indexer.index_material(exam_id, "https://files/l1.pdf", "l1.pdf", text)

        assert result.indexed
        assert result.chunks_stored == chroma_store.count_chunks(exam_id)
        materials = exam_repo.get_material_texts(exam_id)
        assert [m.file_name for m in materials] == ["l1.pdf"]
        assert materials[0].text == text

    def test_empty_text_skipped(self, indexer, chroma_store, exam_id):
        result = indexer.index_material(exam_id, "https://files/scan.pdf", "scan.pdf", "   ")

        assert not result.indexed
        assert result.skipped_reason
        assert chroma_store.count_chunks(exam_id) == 0

    def test_extractor_unavailable(self, indexer, exam_id):
        from exam_tutor.errors import ExtractionUnavailable

        def extractor(url):
            raise ExtractionUnavailable(url, "password protected")

        result = indexer.index_with_extractor(exam_id, "https://files/x.pdf", "x.pdf", extractor)

        assert result.skipped_reason == "password protected"

    def test_reupload_without_text_drops_old_chunks(self, indexer, chroma_store, exam_repo, exam_id):
        url = "https://files/l1.pdf"
        indexer.index_material(exam_id, url, "l1.pdf", "Supply and demand determine price. " * 40)
        assert chroma_store.count_chunks(exam_id) > 0

        result = indexer.index_material(exam_id, url, "l1.pdf", "")

        assert result.skipped_reason
        assert chroma_store.count_chunks(exam_id) == 0
        assert chroma_store.get_material_chunks(exam_id, url) == []
        assert exam_repo.get_material_texts(exam_id) == []

    def test_chunks_carry_embedder_model(self, embedder, chroma_store, exam_repo, exam_id):
        from exam_tutor.ingestion import MaterialIndexer

        chroma_store.embedding_model = "old-model@0"
        indexer = MaterialIndexer(embedder, chroma_store, exam_repo, count_tokens=False)
        indexer.index_material(exam_id, "https://files/l1.pdf", "l1.pdf", "price theory " * 30)

        stored = chroma_store.get_material_chunks(exam_id, "https://files/l1.pdf")
        assert {c['metadata']['embedding_model'] for c in stored} == {"fake-model@1"}

    def test_reindex_stale(self, indexer, embedder, chroma_store, exam_id):
        indexer.index_material(exam_id, "https://files/l1.pdf", "l1.pdf", "price theory " * 30)
        embedder.model_version = "2"

        report = indexer.reindex_stale()

        assert len(report.reindexed) == 1
        assert chroma_store.stale_materials(embedder.model_tag) == []
