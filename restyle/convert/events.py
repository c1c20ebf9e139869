"""
Typed events emitted by a conversion job, in order:

    StartEvent
    ChunkPositionsEvent
    for each chunk:
        ChunkStartEvent
        TokenEvent*
        ChunkCompleteEvent
        SeparatorEvent        (only when the separator is non-empty)
    CompleteEvent | ErrorEvent | CancelledEvent

Exactly one terminal event ends every job.
"""

from dataclasses import dataclass, field

from restyle.text import Chunk


@dataclass(frozen=True)
class ChunkResult:
    index: int
    text: str
    approx_token_count: int
    elapsed_ms: int

    def to_dict(self) -> dict:
        return {
            'chunkIndex': self.index,
            'text': self.text,
            'tokensGenerated': self.approx_token_count,
            'msElapsed': self.elapsed_ms,
        }


@dataclass(frozen=True)
class ConversionResult:
    text: str
    chunks: list[ChunkResult] = field(default_factory=list)
    total_tokens: int = 0
    total_ms: int = 0

    def to_dict(self) -> dict:
        return {
            'text': self.text,
            'chunks': [c.to_dict() for c in self.chunks],
            'totalTokens': self.total_tokens,
            'totalMs': self.total_ms,
        }


@dataclass(frozen=True)
class ConversionEvent:
    job_id: str

    type = "event"
    terminal = False


@dataclass(frozen=True)
class StartEvent(ConversionEvent):
    total_chunks: int = 0
    type = "start"


@dataclass(frozen=True)
class ChunkPositionsEvent(ConversionEvent):
    positions: tuple[Chunk, ...] = ()
    base_text: str = ""
    type = "chunk_positions"


@dataclass(frozen=True)
class ChunkStartEvent(ConversionEvent):
    chunk_index: int = 0
    type = "chunk_start"


@dataclass(frozen=True)
class TokenEvent(ConversionEvent):
    chunk_index: int = 0
    text: str = ""
    type = "token"


@dataclass(frozen=True)
class ChunkCompleteEvent(ConversionEvent):
    chunk_index: int = 0
    result: ChunkResult = None
    type = "chunk_complete"


@dataclass(frozen=True)
class SeparatorEvent(ConversionEvent):
    chunk_index: int = 0
    text: str = ""
    type = "separator"


@dataclass(frozen=True)
class CompleteEvent(ConversionEvent):
    result: ConversionResult = None
    type = "complete"
    terminal = True


@dataclass(frozen=True)
class ErrorEvent(ConversionEvent):
    message: str = ""
    code: str = "CONVERSION_FAILED"
    type = "error"
    terminal = True


@dataclass(frozen=True)
class CancelledEvent(ConversionEvent):
    type = "cancelled"
    terminal = True
