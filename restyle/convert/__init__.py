"""
Streaming rewrite pipeline: prompt building, tag extraction, job events.
"""

from .events import (
    CancelledEvent,
    ChunkCompleteEvent,
    ChunkPositionsEvent,
    ChunkResult,
    ChunkStartEvent,
    CompleteEvent,
    ConversionEvent,
    ConversionResult,
    ErrorEvent,
    SeparatorEvent,
    StartEvent,
    TokenEvent,
)
from .pipeline import ConversionJob, RewritePipeline
from .prompts import build_chat_request, build_rewrite_prompt, merge_sampling
from .tag_parser import ExtractorState, TagExtractor

__all__ = [
    'CancelledEvent',
    'ChunkCompleteEvent',
    'ChunkPositionsEvent',
    'ChunkResult',
    'ChunkStartEvent',
    'CompleteEvent',
    'ConversionEvent',
    'ConversionJob',
    'ConversionResult',
    'ErrorEvent',
    'ExtractorState',
    'RewritePipeline',
    'SeparatorEvent',
    'StartEvent',
    'TagExtractor',
    'TokenEvent',
    'build_chat_request',
    'build_rewrite_prompt',
    'merge_sampling',
]
