"""
Chunking Module - Positional text chunking with overlap.

Features:
- Fixed-size character windows
- Overlap so boundary-spanning concepts stay findable
- Character offsets and token counts per chunk
"""
from .chunker import TextChunker, TextChunk

__all__ = ["TextChunker", "TextChunk"]
