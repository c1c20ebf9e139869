"""
Tag-aware extraction of rewritten text from a token stream.

The model answers with free text that wraps the rewrite in
<rephrase> ... </rephrase>. Tokens arrive in arbitrary pieces, so either
marker can be split across deliveries. TagExtractor is a small state
machine that emits only the text between the markers as soon as it is
safe to do so:

    AWAITING_OPEN  --open marker found-->  AWAITING_CLOSE  --close found-->  DONE

The emitted text is the same however the stream is split.
"""

from enum import Enum

from restyle.config import (
    CLOSE_TAG_OVERLAP,
    OPEN_TAG_SEARCH_WINDOW,
    REWRITE_CLOSE_TAG,
    REWRITE_OPEN_TAG,
)


class ExtractorState(Enum):
    AWAITING_OPEN = "awaiting_open"
    AWAITING_CLOSE = "awaiting_close"
    DONE = "done"


class TagExtractor:
    """
    Incremental extractor for text between an open and a close marker.

    The close marker also counts when its final character is missing
    ("</rephrase" without ">"), since stop sequences can cut it there.

    Args:
        open_tag: Opening marker.
        close_tag: Closing marker.
        search_window: Characters kept while looking for the open marker.
        close_overlap: Characters held back while looking for the close marker.

    Example:
        extractor = TagExtractor()
        for piece in ["Sure! <reph", "rase>Hello", " world</reph", "rase>"]:
            out = extractor.feed(piece)
        extractor.finish()
        extractor.text   # "Hello world"
    """

    def __init__(self, open_tag: str = REWRITE_OPEN_TAG, close_tag: str = REWRITE_CLOSE_TAG,
                 search_window: int = OPEN_TAG_SEARCH_WINDOW, close_overlap: int = CLOSE_TAG_OVERLAP):
        self.open_tag = open_tag
        self.close_tag = close_tag
        self._close_stem = close_tag[:-1] if len(close_tag) > 1 else close_tag
        self.search_window = max(search_window, len(open_tag))
        self.close_overlap = max(close_overlap, len(close_tag))
        self.state = ExtractorState.AWAITING_OPEN
        self._buffer = ''
        self._emitted: list[str] = []

    @property
    def text(self) -> str:
        """Everything emitted so far."""
        return ''.join(self._emitted)

    @property
    def found_open(self) -> bool:
        return self.state is not ExtractorState.AWAITING_OPEN

    @property
    def done(self) -> bool:
        return self.state is ExtractorState.DONE

    def _emit(self, piece: str) -> str:
        if piece:
            self._emitted.append(piece)
        return piece

    def feed(self, piece: str) -> str:
        """
        Consume one delivery from the stream.

        Returns:
            Text that became safe to emit (may be empty).
        """
        if not piece or self.state is ExtractorState.DONE:
            return ''

        if self.state is ExtractorState.AWAITING_OPEN:
            self._buffer += piece
            idx = self._buffer.find(self.open_tag)
            if idx == -1:
                self._buffer = self._buffer[-self.search_window:]
                return ''
            rest = self._buffer[idx + len(self.open_tag):]
            self._buffer = ''
            self.state = ExtractorState.AWAITING_CLOSE
            return self._consume_body(rest)

        return self._consume_body(piece)

    def _consume_body(self, piece: str) -> str:
        self._buffer += piece
        idx = self._buffer.find(self._close_stem)
        if idx != -1:
            out = self._buffer[:idx]
            self._buffer = ''
            self.state = ExtractorState.DONE
            return self._emit(out)

        if len(self._buffer) > self.close_overlap:
            out = self._buffer[:-self.close_overlap]
            self._buffer = self._buffer[-self.close_overlap:]
            return self._emit(out)
        return ''

    def finish(self) -> str:
        """
        Flush at end of stream.

        Inside the body, a trailing partial close marker is dropped and the
        rest emitted. Without an open marker nothing is emitted.
        """
        if self.state is not ExtractorState.AWAITING_CLOSE:
            self._buffer = ''
            return ''
        remaining = self._buffer
        for k in range(len(self.close_tag) - 1, 0, -1):
            if remaining.endswith(self.close_tag[:k]):
                remaining = remaining[:-k]
                break
        self._buffer = ''
        self.state = ExtractorState.DONE
        return self._emit(remaining)
