"""
Tests for TextChunker and Embedder.

Run with: pytest tests/test_chunking.py -v
"""
import numpy as np
import pytest


class TestTextChunker:
    """Tests for positional chunking."""

    def test_scenario_supply_and_demand(self):
        from exam_tutor.chunking import TextChunker

        text = "Supply and demand determine price."
        chunks = TextChunker(chunk_size=20, overlap=5).chunk(text, with_tokens=False)

        assert [(c.start_char, c.end_char) for c in chunks] == [(0, 20), (15, len(text))]
        assert chunks[0].content == text[0:20]
        assert chunks[1].content == text[15:]

    def test_chunks_cover_text_with_overlap(self):
        from exam_tutor.chunking import TextChunker

        text = "".join(chr(ord('a') + i % 26) for i in range(2500))
        chunks = TextChunker(chunk_size=800, overlap=200).chunk(text, with_tokens=False)

        assert chunks[0].start_char == 0
        assert chunks[-1].end_char == len(text)
        for i, chunk in enumerate(chunks):
            assert chunk.chunk_index == i
            assert chunk.start_char < chunk.end_char
            assert chunk.end_char - chunk.start_char <= 800
            assert chunk.content == text[chunk.start_char:chunk.end_char]
        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt.start_char == prev.end_char - 200

    def test_short_text_is_one_chunk(self):
        from exam_tutor.chunking import TextChunker

        chunks = TextChunker(chunk_size=500, overlap=100).chunk("short text", with_tokens=False)

        assert len(chunks) == 1
        assert (chunks[0].start_char, chunks[0].end_char) == (0, 10)

    def test_empty_text(self):
        from exam_tutor.chunking import TextChunker

        assert TextChunker().chunk("") == []

    @pytest.mark.parametrize("size,overlap", [(100, 100), (100, 150), (0, 0), (100, -1)])
    def test_invalid_window(self, size, overlap):
        from exam_tutor.chunking import TextChunker

        with pytest.raises(ValueError):
            TextChunker(chunk_size=size, overlap=overlap)

    def test_override_window_per_call(self):
        from exam_tutor.chunking import TextChunker

        chunker = TextChunker(chunk_size=800, overlap=200)
        texts = chunker.chunk_texts("x" * 1200, 500, 100)

        assert [len(t) for t in texts] == [500, 500, 400]

    def test_file_name_and_stats(self):
        from exam_tutor.chunking import TextChunker

        chunker = TextChunker(chunk_size=50, overlap=10)
        chunks = chunker.chunk("word " * 40, file_name="lecture1.pdf", with_tokens=False)
        stats = chunker.get_chunking_stats(chunks)

        assert all(c.file_name == "lecture1.pdf" for c in chunks)
        assert stats['total_chunks'] == len(chunks)
        assert stats['covered_chars'] == 200
        assert stats['max_chars'] <= 50


class TestEmbedder:
    """Tests for the Embedder class."""

    def test_scenario_chunks_embed_to_same_dimension(self, embedder):
        from exam_tutor.chunking import TextChunker

        chunks = TextChunker(chunk_size=20, overlap=5).chunk(
            "Supply and demand determine price.", with_tokens=False
        )
        vectors = embedder.embed_batch([c.content for c in chunks])

        assert vectors.shape == (2, 384)

    def test_embed_single(self, embedder):
        embedding = embedder.embed("Test sentence")

        assert embedding.shape == (384,)
        assert np.isclose(np.linalg.norm(embedding), 1.0, atol=1e-5)

    def test_deterministic_and_ordered(self, embedder):
        texts = ["supply curve", "demand curve", "market price"]
        batch = embedder.embed_batch(texts)

        for i, text in enumerate(texts):
            assert np.allclose(batch[i], embedder.embed(text))

    def test_empty_batch(self, embedder):
        assert embedder.embed_batch([]).shape == (0, 384)

    def test_model_tag(self, embedder):
        assert embedder.model_tag == "fake-model@1"
        assert embedder.get_model_info()['embedding_dimension'] == 384

    def test_configured_dimension_mismatch(self, fake_model):
        from exam_tutor.embeddings import Embedder
        from exam_tutor.errors import EmbeddingDimensionMismatch

        with pytest.raises(EmbeddingDimensionMismatch):
            Embedder(model=fake_model, expected_dimension=768)

    def test_count_mismatch_is_loud(self, fake_model):
        from exam_tutor.embeddings import Embedder
        from exam_tutor.errors import EmbeddingCountMismatch

        class DroppingModel(type(fake_model)):
            def encode(self, texts, **kwargs):
                return super().encode(texts[:-1], **kwargs)

        embedder = Embedder(model=DroppingModel())
        with pytest.raises(EmbeddingCountMismatch):
            embedder.embed_batch(["one", "two", "three"])

    def test_similarity(self, embedder):
        same = embedder.similarity(embedder.embed("price"), embedder.embed("price"))

        assert same[0] == pytest.approx(1.0, abs=1e-5)
