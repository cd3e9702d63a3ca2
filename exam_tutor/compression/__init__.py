"""
Compression Module - Metadata-tagged payload compression for storage.
"""
from .codec import CompressionCodec, CompressedPayload, CompressionMetadata

__all__ = ["CompressionCodec", "CompressedPayload", "CompressionMetadata"]
