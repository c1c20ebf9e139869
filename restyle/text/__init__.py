"""
Text chunking for the rewrite pipeline.
"""

from .chunker import Chunk, ChunkPolicy, chunk_text, leading_text, reassemble, separators

__all__ = [
    'Chunk',
    'ChunkPolicy',
    'chunk_text',
    'leading_text',
    'reassemble',
    'separators',
]
