"""
Compression Codec - Reversible, metadata-tagged compression for stored payloads.

Chat messages, submissions, session snapshots and material text are stored
compressed. Every payload carries metadata (sizes, ratio, algorithm version)
for storage-efficiency reporting.

Stream format:
- Primary (v2.0.0): zlib over UTF-8, base64 text
- Legacy (v1.0.0): zlib over UTF-8, base85 text, still readable
"""
import base64
import binascii
import json
import zlib
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional
import logging

from config import CompressionConfig
from ..errors import DecompressionError

logger = logging.getLogger(__name__)

# Lone surrogates survive the UTF-8 round trip
_TEXT_ERRORS = "surrogatepass"


@dataclass
class CompressionMetadata:
    """Provenance and size information for one compressed payload."""
    algorithm: str
    version: str
    original_size: int
    compressed_size: int
    compression_ratio: float
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CompressedPayload:
    """Compressed text plus its metadata."""
    data: str
    metadata: CompressionMetadata

    def to_dict(self) -> Dict[str, Any]:
        return {'data': self.data, 'metadata': self.metadata.to_dict()}


def _ratio(compressed_size: int, original_size: int) -> float:
    return compressed_size / original_size if original_size > 0 else 0.0


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CompressionCodec:
    """
    Compresses strings and JSON values into text-safe payloads.

    `decompress` re-parses the result as JSON and falls back to the raw
    string, so both plain text and structured values round-trip.
    """

    def __init__(self, level: int = CompressionConfig.LEVEL):
        self.level = level
        self.algorithm = CompressionConfig.ALGORITHM
        self.version = CompressionConfig.VERSION

    @staticmethod
    def serialize(value: Any) -> str:
        """Canonical JSON for non-string values; strings pass through."""
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False, sort_keys=True, separators=(",", ":"))

    def compress(self, value: Any) -> CompressedPayload:
        """
        Compress a string or JSON-serializable value.

        Args:
            value: Plain string, or any value json.dumps accepts

        Returns:
            CompressedPayload with compressed_size == len(data)
        """
        original = self.serialize(value)
        raw = original.encode("utf-8", _TEXT_ERRORS)
        data = base64.b64encode(zlib.compress(raw, self.level)).decode("ascii")

        metadata = CompressionMetadata(
            algorithm=self.algorithm,
            version=self.version,
            original_size=len(raw),
            compressed_size=len(data),
            compression_ratio=_ratio(len(data), len(raw)),
            timestamp=_now()
        )
        return CompressedPayload(data=data, metadata=metadata)

    def compress_legacy(self, value: Any) -> CompressedPayload:
        """Write a payload in the v1.0.0 base85 format (migration tooling and tests)."""
        original = self.serialize(value)
        raw = original.encode("utf-8", _TEXT_ERRORS)
        data = base64.b85encode(zlib.compress(raw, self.level)).decode("ascii")
        return CompressedPayload(
            data=data,
            metadata=CompressionMetadata(
                algorithm=CompressionConfig.LEGACY_ALGORITHM,
                version=CompressionConfig.LEGACY_VERSION,
                original_size=len(raw),
                compressed_size=len(data),
                compression_ratio=_ratio(len(data), len(raw)),
                timestamp=_now()
            )
        )

    def decompress(self, data: str) -> Any:
        """
        Decompress a payload's data string.

        Tries the primary base64 stream first, then the legacy base85 stream.

        Returns:
            The parsed JSON value, or the raw string when it is not JSON

        Raises:
            DecompressionError: no data, or neither encoding yields a stream
        """
        if not data:
            raise DecompressionError("No compressed data provided")

        text = self._decode_primary(data)
        if text is None:
            text = self._decode_legacy(data)
        if text is None:
            raise DecompressionError(
                f"Failed to decompress data ({len(data)} chars): "
                "not a base64 or base85 zlib stream"
            )

        try:
            return json.loads(text)
        except ValueError:
            return text

    def decompress_or_placeholder(
        self,
        data: Optional[str],
        placeholder: Any = CompressionConfig.UNAVAILABLE_PLACEHOLDER,
        context: str = ""
    ) -> Any:
        """Decompress, substituting a placeholder on data loss instead of raising."""
        try:
            return self.decompress(data)
        except DecompressionError as e:
            where = f" ({context})" if context else ""
            logger.error(f"❌ Stored payload unreadable{where}: {e}")
            return placeholder

    @staticmethod
    def _inflate(compressed: bytes) -> Optional[str]:
        try:
            return zlib.decompress(compressed).decode("utf-8", _TEXT_ERRORS)
        except (zlib.error, UnicodeDecodeError):
            return None

    def _decode_primary(self, data: str) -> Optional[str]:
        try:
            compressed = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError):
            return None
        return self._inflate(compressed)

    def _decode_legacy(self, data: str) -> Optional[str]:
        try:
            compressed = base64.b85decode(data)
        except ValueError:
            return None
        return self._inflate(compressed)

    def aggregate_metadata(self, payloads: Iterable[CompressedPayload]) -> CompressionMetadata:
        """Combined sizes and ratio over several payloads."""
        original = 0
        compressed = 0
        for payload in payloads:
            original += payload.metadata.original_size
            compressed += payload.metadata.compressed_size

        return CompressionMetadata(
            algorithm=self.algorithm,
            version=self.version,
            original_size=original,
            compressed_size=compressed,
            compression_ratio=_ratio(compressed, original),
            timestamp=_now()
        )

    def compress_submission_bundle(
        self,
        chat_history: Optional[list] = None,
        answers: Optional[list] = None,
        feedback: Optional[str] = None,
        feedback_responses: Optional[list] = None
    ) -> Dict[str, Any]:
        """
        Compress the parts of an exam submission that are present.

        Returns:
            Dict with one CompressedPayload per non-empty part and an aggregate
            'metadata' entry (CompressionMetadata).
        """
        parts = {
            'chat_history': chat_history,
            'answers': answers,
            'feedback': feedback,
            'feedback_responses': feedback_responses,
        }
        bundle: Dict[str, Any] = {}
        for name, value in parts.items():
            if value:
                bundle[name] = self.compress(value)

        bundle['metadata'] = self.aggregate_metadata(
            p for k, p in bundle.items() if k != 'metadata'
        )
        return bundle

    def decompress_submission_bundle(self, stored: Dict[str, Optional[str]]) -> Dict[str, Any]:
        """
        Reverse of compress_submission_bundle over stored data strings.

        Unreadable parts are replaced by the unavailable placeholder.
        """
        result = {}
        for name, data in stored.items():
            if data:
                result[name] = self.decompress_or_placeholder(data, context=name)
        return result
