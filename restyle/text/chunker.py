"""
Boundary-Aware Text Chunking

Splits input text into bounded chunks for rewriting while remembering the
exact original text between them, so the rewritten document can be
stitched back with the author's spacing intact.

Algorithm:
1. Paragraphs are separated by runs of two or more newlines. A paragraph
   that fits in max_char_length becomes one chunk. Whitespace-only
   paragraphs stay in the separator.
2. Oversized paragraphs are cut near cursor + max_char_length:
   a. forward up to `lookahead` chars for the earliest boundary character,
      cutting just after it
   b. otherwise back up to `backscan` chars for whitespace, cutting just
      after it
   c. otherwise a hard cut
   If the cut still lands right after a word character, it is nudged
   forward to just past the next whitespace (within `nudge` chars).
3. Optionally, a trailing piece shorter than min_char_length is folded into
   the piece before it.
4. Any gap between chunks that holds a non-whitespace character is merged
   into the following chunk, so separators never carry content.

Chunks are half-open [start, end) offsets into the original string, and
    leading_text(text, chunks) + sum(text[c.start:c.end] + sep) == text
for the separators returned by separators().
"""

import re
from dataclasses import dataclass

from restyle.config import (
    CHUNK_BACKSCAN_CHARS,
    CHUNK_BOUNDARY_CHARS,
    CHUNK_LOOKAHEAD_CHARS,
    CHUNK_MAX_CHARS,
    CHUNK_MIN_CHARS,
    CHUNK_NUDGE_CHARS,
    get_setting,
)
from restyle.logging_config import debug_log

_PARAGRAPH_BREAK = re.compile(r'\n{2,}')
_WORD_CHAR = re.compile(r'\w')


@dataclass(frozen=True)
class Chunk:
    """A [start, end) slice of the original text."""
    index: int
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start

    def text_of(self, text: str) -> str:
        return text[self.start:self.end]

    def to_dict(self) -> dict:
        return {'index': self.index, 'start': self.start, 'end': self.end}


@dataclass(frozen=True)
class ChunkPolicy:
    """Tunable split behaviour for oversized paragraphs."""
    boundary_chars: tuple = CHUNK_BOUNDARY_CHARS
    lookahead: int = CHUNK_LOOKAHEAD_CHARS
    backscan: int = CHUNK_BACKSCAN_CHARS
    nudge: int = CHUNK_NUDGE_CHARS

    @classmethod
    def from_settings(cls) -> "ChunkPolicy":
        """Policy with config/restyle.yaml `chunking` overrides applied."""
        boundary = get_setting('chunking', 'boundary_chars', CHUNK_BOUNDARY_CHARS)
        return cls(
            boundary_chars=tuple(str(c) for c in boundary if c),
            lookahead=int(get_setting('chunking', 'lookahead', CHUNK_LOOKAHEAD_CHARS)),
            backscan=int(get_setting('chunking', 'backscan', CHUNK_BACKSCAN_CHARS)),
            nudge=int(get_setting('chunking', 'nudge', CHUNK_NUDGE_CHARS)),
        )


def _paragraph_spans(text: str):
    """Yield (start, end) for each paragraph, skipping whitespace-only ones."""
    pos = 0
    for match in _PARAGRAPH_BREAK.finditer(text):
        if text[pos:match.start()].strip():
            yield pos, match.start()
        pos = match.end()
    if pos < len(text) and text[pos:].strip():
        yield pos, len(text)


def _find_cut(text: str, cursor: int, para_end: int, max_len: int, policy: ChunkPolicy) -> int:
    end = cursor + max_len

    # a. earliest boundary character ahead of the hard cut
    window = text[end:min(end + policy.lookahead, para_end)]
    hits = [window.find(ch) for ch in policy.boundary_chars]
    hits = [h for h in hits if h != -1]
    if hits:
        end = end + min(hits) + 1
    else:
        # b. last whitespace just behind the hard cut
        back_limit = max(cursor, end - policy.backscan)
        for j in range(end - 1, back_limit - 1, -1):
            if text[j].isspace():
                if j + 1 > cursor:
                    end = j + 1
                break

    # Never leave a word split across two chunks if it can be avoided
    if end < para_end and _WORD_CHAR.match(text[end - 1]):
        ahead = text[end:min(end + policy.nudge, para_end)]
        for offset, ch in enumerate(ahead):
            if ch.isspace():
                end += offset + 1
                break
    return end


def _split_paragraph(text: str, start: int, end: int, max_len: int, min_len: int,
                     policy: ChunkPolicy) -> list[tuple[int, int]]:
    if end - start <= max_len:
        return [(start, end)]

    pieces = []
    cursor = start
    while cursor < end:
        if cursor + max_len >= end:
            pieces.append((cursor, end))
            break
        cut = _find_cut(text, cursor, end, max_len, policy)
        pieces.append((cursor, cut))
        cursor = cut

    if min_len > 0 and len(pieces) > 1 and pieces[-1][1] - pieces[-1][0] < min_len:
        tail = pieces.pop()
        head = pieces.pop()
        pieces.append((head[0], tail[1]))
        debug_log(f"[CHUNKING] Folded short tail ({tail[1] - tail[0]} chars) into previous piece")
    return pieces


def chunk_text(text: str, max_char_length: int = None, min_char_length: int = None,
               policy: ChunkPolicy = None) -> list[Chunk]:
    """
    Split text into boundary-respecting chunks.

    Args:
        text: Input document.
        max_char_length: Target maximum chunk size (default from settings, 830).
        min_char_length: Fold trailing pieces shorter than this (0 disables).
        policy: Boundary/lookahead/backscan/nudge policy (default from settings).

    Returns:
        Ordered, non-overlapping chunks.
    """
    if max_char_length is None:
        max_char_length = int(get_setting('chunking', 'max_chars', CHUNK_MAX_CHARS))
    if min_char_length is None:
        min_char_length = int(get_setting('chunking', 'min_chars', CHUNK_MIN_CHARS))
    if max_char_length <= 0:
        raise ValueError(f"max_char_length must be positive, got {max_char_length}")
    policy = policy or ChunkPolicy.from_settings()

    spans = []
    for para_start, para_end in _paragraph_spans(text):
        spans.extend(_split_paragraph(text, para_start, para_end, max_char_length,
                                      min_char_length, policy))

    # Separators must never carry content: fold contentful gaps forward
    for i in range(len(spans) - 1):
        prev_end = spans[i][1]
        next_start = spans[i + 1][0]
        if text[prev_end:next_start].strip():
            spans[i + 1] = (prev_end, spans[i + 1][1])
            debug_log(f"[CHUNKING] Merged contentful separator {i} into next chunk")

    chunks = [Chunk(index=i, start=s, end=e) for i, (s, e) in enumerate(spans)]
    debug_log(f"[CHUNKING] {len(text)} chars -> {len(chunks)} chunks (max={max_char_length})")
    return chunks


def leading_text(text: str, chunks: list[Chunk]) -> str:
    """Text before the first chunk (the whole text when there are no chunks)."""
    if not chunks:
        return text
    return text[:chunks[0].start]


def separators(text: str, chunks: list[Chunk]) -> list[str]:
    """Original text following each chunk up to the next one; the last entry is the tail."""
    result = []
    for i, chunk in enumerate(chunks):
        next_start = chunks[i + 1].start if i + 1 < len(chunks) else len(text)
        result.append(text[chunk.end:next_start])
    return result


def reassemble(text: str, chunks: list[Chunk], pieces: list[str]) -> str:
    """
    Stitch replacement pieces into the original spacing.

    Args:
        text: Original text the chunks index into.
        chunks: Chunks from chunk_text(text).
        pieces: One replacement string per chunk.
    """
    if len(pieces) != len(chunks):
        raise ValueError(f"Expected {len(chunks)} pieces, got {len(pieces)}")
    parts = [leading_text(text, chunks)]
    for piece, sep in zip(pieces, separators(text, chunks)):
        parts.append(piece)
        parts.append(sep)
    return ''.join(parts)
