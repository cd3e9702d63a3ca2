"""
Tests for keyword retrieval, vector context formatting and the context builder.

Run with: pytest tests/test_retrieval.py -v
"""
import pytest


PRICE_MATERIAL = {
    "url": "https://files/econ/lecture1.pdf",
    "text": "가격은 수요와 공급에 의해 결정된다",
    "file_name": "lecture1.pdf",
}


class TestKeywordExtraction:
    """Keyword extraction and scoring."""

    def test_korean_question(self):
        from exam_tutor.retrieval import extract_keywords

        assert extract_keywords("가격은 어떻게 결정되나요?") == ["가격은", "결정되나요"]

    def test_drops_stopwords_digits_and_duplicates(self):
        from exam_tutor.retrieval import extract_keywords

        keywords = extract_keywords("What is the price in 2024, and why does price rise? a")

        assert keywords == ["price", "rise"]

    def test_stopword_only_question_falls_back(self):
        from exam_tutor.retrieval import extract_keywords

        assert extract_keywords("  what is the  ") == ["what is the"]

    def test_relevance_score(self):
        from exam_tutor.retrieval import relevance_score

        # 2 x 4 occurrences + 100 x 2 distinct / 5 words
        score = relevance_score("price price demand supply price", ["price", "demand"])

        assert score == pytest.approx(8 + 40)
        assert relevance_score("nothing relevant", ["price"]) == 0


class TestKeywordRetriever:
    """KeywordRetriever.search."""

    def test_scenario_price_question(self):
        from exam_tutor.retrieval import KeywordRetriever

        context = KeywordRetriever().search([PRICE_MATERIAL], "가격은 어떻게 결정되나요?")

        assert "가격은 수요와 공급에 의해 결정된다" in context
        assert "lecture1.pdf" in context
        assert 0 < len(context) <= 2000

    def test_no_materials_or_no_match(self):
        from exam_tutor.retrieval import KeywordRetriever

        retriever = KeywordRetriever()

        assert retriever.search([], "price") == ""
        assert retriever.search([PRICE_MATERIAL], "elasticity") == ""

    def test_stopword_only_question_does_not_crash(self):
        from exam_tutor.retrieval import KeywordRetriever

        assert isinstance(KeywordRetriever().search([PRICE_MATERIAL], "what is the?"), str)

    def test_best_chunks_first_and_max_results(self):
        from exam_tutor.retrieval import KeywordRetriever, MaterialText

        materials = [
            MaterialText(url="u1", text="demand shifts the curve", file_name="weak.pdf"),
            MaterialText(url="u2", text="price price price demand", file_name="strong.pdf"),
            MaterialText(url="u3", text="price ceilings", file_name="middle.pdf"),
        ]
        context = KeywordRetriever().search(materials, "price demand", max_results=2)

        assert context.index("strong.pdf") < context.index("middle.pdf")
        assert "weak.pdf" not in context
        assert context.count("[") - context.count("[Course material reference]") == 2

    @pytest.mark.parametrize("max_length", [150, 400, 700, 1200])
    def test_length_budget(self, max_length):
        from exam_tutor.retrieval import KeywordRetriever

        materials = [
            {"url": f"u{i}", "text": ("market price equilibrium " * 40), "file_name": f"m{i}.pdf"}
            for i in range(3)
        ]
        context = KeywordRetriever().search(materials, "market price", max_length=max_length)

        assert len(context) <= max_length

    def test_truncated_entry_has_ellipsis_and_name(self):
        from exam_tutor.retrieval import KeywordRetriever

        materials = [{"url": "u", "text": "market price " * 100, "file_name": "long.pdf"}]
        context = KeywordRetriever().search(materials, "market price", max_results=3, max_length=700)

        assert context.endswith("... [long.pdf]")

    def test_context_retriever_interface(self):
        from exam_tutor.retrieval import KeywordContextRetriever, METHOD_KEYWORD

        outcome = KeywordContextRetriever([PRICE_MATERIAL]).search("가격은 어떻게 결정되나요?")

        assert outcome.method == METHOD_KEYWORD
        assert outcome.results_count == 1
        assert not outcome.is_empty


class TestContextFormatting:
    """Vector result rendering and noise cleanup."""

    def test_format_results(self):
        from exam_tutor.retrieval import format_results_as_context
        from exam_tutor.vector_store import ScoredChunk

        results = [
            ScoredChunk("a", "first passage", 0.9, metadata={"file_name": "l1.pdf"}),
            ScoredChunk("b", "second passage", 0.5, file_url="https://files/l2.pdf"),
        ]
        context = format_results_as_context(results)

        assert context.startswith("[Material 1: l1.pdf]\nfirst passage")
        assert "[Material 2: l2.pdf]\nsecond passage" in context

    def test_low_confidence_banner(self):
        from exam_tutor.retrieval import format_results_as_context
        from exam_tutor.retrieval.vector_retriever import LOW_CONFIDENCE_BANNER
        from exam_tutor.vector_store import ScoredChunk

        context = format_results_as_context([ScoredChunk("a", "text", 0.1)], low_confidence=True)

        assert context.startswith(LOW_CONFIDENCE_BANNER)

    def test_clean_context(self):
        from exam_tutor.retrieval import clean_context

        cleaned = clean_context("Price G G G G rises   now\n\n\n\nGGGGGGG total 100000")

        assert "G G G" not in cleaned
        assert "GGGGG" not in cleaned
        assert "100000" in cleaned
        assert "\n\n\n" not in cleaned


class TestContextBuilder:
    """Strategy selection and graceful degradation."""

    def test_keyword_when_no_vector_index(self, embedder, chroma_store, exam_repo, exam_id):
        from exam_tutor.retrieval import ContextBuilder, METHOD_KEYWORD

        exam_repo.save_material_text(exam_id, PRICE_MATERIAL["url"], "lecture1.pdf", PRICE_MATERIAL["text"])
        builder = ContextBuilder(embedder, chroma_store, material_loader=exam_repo.get_material_texts)

        outcome = builder.build("가격은 어떻게 결정되나요?", exam_id)

        assert outcome.method == METHOD_KEYWORD
        assert "lecture1.pdf" in outcome.text

    def test_vector_when_indexed(self, embedder, chroma_store, exam_repo, exam_id):
        from exam_tutor.ingestion import MaterialIndexer
        from exam_tutor.retrieval import ContextBuilder, METHOD_VECTOR

        MaterialIndexer(embedder, chroma_store, exam_repo, count_tokens=False).index_material(
            exam_id, "https://files/l1.pdf", "l1.pdf",
            "Market price is set where supply equals demand."
        )
        builder = ContextBuilder(embedder, chroma_store, material_loader=exam_repo.get_material_texts)

        outcome = builder.build("market price supply demand", exam_id)

        assert outcome.method == METHOD_VECTOR
        assert outcome.text.startswith("[Material 1: l1.pdf]")
        assert outcome.top_similarity is not None

    def test_nothing_found(self, embedder, chroma_store, exam_id):
        from exam_tutor.retrieval import ContextBuilder, METHOD_NONE

        outcome = ContextBuilder(embedder, chroma_store, material_loader=lambda _: []).build("price?", exam_id)

        assert outcome.is_empty
        assert outcome.method == METHOD_NONE

    def test_retrieval_error_degrades_to_empty(self, exam_id):
        from exam_tutor.retrieval import ContextBuilder, METHOD_NONE

        def broken_loader(_):
            raise RuntimeError("storage offline")

        outcome = ContextBuilder(material_loader=broken_loader).build("price?", exam_id)

        assert outcome.is_empty
        assert outcome.method == METHOD_NONE

    def test_blank_question(self):
        from exam_tutor.retrieval import ContextBuilder

        assert ContextBuilder().build("   ", "exam-1").is_empty
