"""
Tests for CompressionCodec.

Run with: pytest tests/test_compression.py -v
"""
import base64
import zlib

import pytest


@pytest.fixture
def codec():
    from exam_tutor.compression import CompressionCodec

    return CompressionCodec()


class TestRoundTrip:
    """Compress then decompress returns the original value."""

    @pytest.mark.parametrize("value", [
        "plain ASCII text",
        "가격은 수요와 공급에 의해 결정된다",
        "emoji and astral plane \U0001F600 \U0001D11E",
        {"answers": [{"q": 0, "text": "price"}, {"q": 1, "text": None}], "nested": {"ok": True}},
        [1, "two", 3.5, None],
    ])
    def test_values(self, codec, value):
        payload = codec.compress(value)

        assert codec.decompress(payload.data) == value

    def test_lone_surrogate_survives(self, codec):
        text = "broken pair \ud83d here"

        assert codec.decompress(codec.compress(text).data) == text

    def test_json_looking_string_reparsed(self, codec):
        # strings that are valid JSON come back as the parsed value
        assert codec.decompress(codec.compress("42").data) == 42


class TestMetadata:
    """Size and ratio invariants."""

    def test_ratio_invariant(self, codec):
        payload = codec.compress("exam answer " * 200)
        meta = payload.metadata

        assert meta.compressed_size == len(payload.data)
        assert meta.original_size == len("exam answer " * 200)
        assert meta.compression_ratio == pytest.approx(meta.compressed_size / meta.original_size)
        assert meta.compression_ratio < 1.0
        assert meta.algorithm == "zlib+base64"
        assert meta.version == "2.0.0"

    def test_original_size_counts_utf8_bytes(self, codec):
        payload = codec.compress("가격")

        assert payload.metadata.original_size == len("가격".encode("utf-8"))

    def test_empty_string(self, codec):
        payload = codec.compress("")

        assert payload.metadata.original_size == 0
        assert payload.metadata.compression_ratio == 0.0

    def test_canonical_json(self, codec):
        first = codec.compress({"b": 1, "a": [1, 2]})
        second = codec.compress({"a": [1, 2], "b": 1})

        assert first.data == second.data
        assert codec.serialize({"b": 1, "a": "é"}) == '{"a":"é","b":1}'

    def test_aggregate_metadata(self, codec):
        payloads = [codec.compress("first " * 50), codec.compress({"x": "second " * 50})]
        total = codec.aggregate_metadata(payloads)

        assert total.original_size == sum(p.metadata.original_size for p in payloads)
        assert total.compressed_size == sum(p.metadata.compressed_size for p in payloads)


class TestLegacyAndErrors:
    """Legacy stream support and data-loss handling."""

    def test_legacy_base85_readable(self, codec):
        legacy = codec.compress_legacy({"content": "old message"})

        assert legacy.metadata.version == "1.0.0"
        assert codec.decompress(legacy.data) == {"content": "old message"}

    def test_hand_written_legacy_stream(self, codec):
        data = base64.b85encode(zlib.compress("hello".encode("utf-8"))).decode("ascii")

        assert codec.decompress(data) == "hello"

    @pytest.mark.parametrize("data", ["", "not compressed at all", "AAAA"])
    def test_garbage_raises(self, codec, data):
        from exam_tutor.errors import DecompressionError

        with pytest.raises(DecompressionError):
            codec.decompress(data)

    def test_placeholder_on_data_loss(self, codec):
        assert codec.decompress_or_placeholder("%%%") == "[content unavailable]"
        assert codec.decompress_or_placeholder(None, placeholder=None) is None


class TestSubmissionBundle:
    """Whole-submission compression."""

    def test_only_present_parts(self, codec):
        bundle = codec.compress_submission_bundle(
            chat_history=[{"role": "user", "content": "Is tax included?"}],
            answers=[{"q": 0, "text": "Price is set where supply meets demand."}]
        )

        assert set(bundle) == {"chat_history", "answers", "metadata"}
        assert bundle["metadata"].original_size == (
            bundle["chat_history"].metadata.original_size + bundle["answers"].metadata.original_size
        )

    def test_reverse_tolerates_bad_parts(self, codec):
        bundle = codec.compress_submission_bundle(feedback="Good start")
        restored = codec.decompress_submission_bundle({
            "feedback": bundle["feedback"].data,
            "answers": "%%%",
            "chat_history": None,
        })

        assert restored == {"feedback": "Good start", "answers": "[content unavailable]"}
