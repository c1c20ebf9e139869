"""
Tests for boundary-aware text chunking.

Tests cover:
- Paragraph splitting and separator preservation
- Oversized paragraph cuts (boundary, backscan, hard cut, nudge)
- Reassembly with replacement pieces
- Configurable chunk policy
"""

import re

import pytest

from restyle.text import Chunk, ChunkPolicy, chunk_text, leading_text, reassemble, separators

SCENARIO = (
    "Para one.\n\nPara two is a very long paragraph exceeding the max length and "
    "containing multiple sentences. It should split on sentence boundaries."
)

SAMPLES = [
    SCENARIO,
    "Single short paragraph.",
    "\n\n  Leading blank lines and indentation.\n\n\n\nTrailing too.\n\n",
    "First.\n\n   \n\nSecond after a whitespace-only paragraph.",
    "word " * 400,
    "A" * 2000,
    "Line one\nline two\nline three\n\nNext paragraph! With? Marks. " * 30,
]


def _rebuild(text, chunks):
    parts = [leading_text(text, chunks)]
    for chunk, sep in zip(chunks, separators(text, chunks)):
        parts.append(chunk.text_of(text))
        parts.append(sep)
    return ''.join(parts)


class TestScenario:
    """The worked example from the chunking docs."""

    def test_yields_three_chunks(self):
        """The worked example splits into three chunks."""
        chunks = chunk_text(SCENARIO, max_char_length=60)
        assert len(chunks) == 3

    def test_chunk_positions(self):
        """Chunk offsets match the worked example."""
        chunks = chunk_text(SCENARIO, max_char_length=60)
        assert [(c.start, c.end) for c in chunks] == [(0, 9), (11, 104), (104, 144)]

    def test_third_chunk_is_not_mid_word(self):
        """The last cut lands on a word boundary."""
        chunks = chunk_text(SCENARIO, max_char_length=60)
        third = chunks[2].text_of(SCENARIO)
        assert third == " It should split on sentence boundaries."
        assert not re.match(r'\w', SCENARIO[chunks[2].start - 1])

    def test_round_trip(self):
        """Chunks and separators rebuild the input exactly."""
        chunks = chunk_text(SCENARIO, max_char_length=60)
        assert _rebuild(SCENARIO, chunks) == SCENARIO


class TestInvariants:
    """Laws that hold for every input."""

    @pytest.mark.parametrize("text", SAMPLES)
    @pytest.mark.parametrize("max_len", [20, 60, 830])
    def test_round_trip(self, text, max_len):
        """Chunks and separators rebuild the input exactly."""
        chunks = chunk_text(text, max_char_length=max_len)
        assert _rebuild(text, chunks) == text

    @pytest.mark.parametrize("text", SAMPLES)
    @pytest.mark.parametrize("max_len", [20, 60, 830])
    def test_separators_have_no_alphanumerics(self, text, max_len):
        """Separators only hold whitespace and punctuation."""
        chunks = chunk_text(text, max_char_length=max_len)
        for sep in separators(text, chunks) + [leading_text(text, chunks)]:
            assert not any(ch.isalnum() for ch in sep)

    @pytest.mark.parametrize("text", SAMPLES)
    @pytest.mark.parametrize("max_len", [20, 60, 830])
    def test_chunk_length_is_bounded(self, text, max_len):
        """No chunk exceeds the maximum plus lookahead and nudge."""
        policy = ChunkPolicy()
        bound = max_len + policy.lookahead + policy.nudge
        for chunk in chunk_text(text, max_char_length=max_len, policy=policy):
            assert 0 < chunk.length <= bound

    def test_chunks_are_ordered_and_disjoint(self):
        """Chunks are sorted and never overlap."""
        text = SAMPLES[-1]
        chunks = chunk_text(text, max_char_length=40)
        for prev, nxt in zip(chunks, chunks[1:]):
            assert prev.end <= nxt.start
        assert [c.index for c in chunks] == list(range(len(chunks)))

    def test_deterministic(self):
        """The same input always gives the same chunks."""
        assert chunk_text(SCENARIO, 60) == chunk_text(SCENARIO, 60)


class TestParagraphs:
    """Paragraph-level behaviour."""

    def test_short_paragraphs_become_one_chunk_each(self):
        """Each short paragraph is its own chunk."""
        text = "One.\n\nTwo.\n\n\nThree."
        chunks = chunk_text(text, max_char_length=830)
        assert [c.text_of(text) for c in chunks] == ["One.", "Two.", "Three."]
        assert separators(text, chunks) == ["\n\n", "\n\n\n", ""]

    def test_single_newline_does_not_split(self):
        """A single newline stays inside a paragraph."""
        text = "line one\nline two"
        chunks = chunk_text(text, max_char_length=830)
        assert len(chunks) == 1

    def test_whitespace_only_paragraph_stays_in_separator(self):
        """Blank paragraphs are never chunks."""
        text = "First.\n\n   \n\nSecond."
        chunks = chunk_text(text, max_char_length=830)
        assert [c.text_of(text) for c in chunks] == ["First.", "Second."]
        assert separators(text, chunks)[0] == "\n\n   \n\n"

    def test_leading_text_is_preserved(self):
        """Text before the first chunk is kept."""
        text = "\n\nBody."
        chunks = chunk_text(text)
        assert leading_text(text, chunks) == "\n\n"

    def test_empty_and_blank_text_have_no_chunks(self):
        """Empty or blank input yields no chunks."""
        assert chunk_text("") == []
        assert chunk_text("  \n\n \n") == []
        assert leading_text("  \n", []) == "  \n"

    def test_invalid_max_length(self):
        """A non-positive maximum is rejected."""
        with pytest.raises(ValueError):
            chunk_text("text", max_char_length=0)


class TestOversizedParagraphs:
    """Cut selection inside long paragraphs."""

    def test_cuts_after_earliest_boundary_ahead(self):
        """The cut follows the first boundary in the lookahead."""
        text = "abcdefghij klmno! pqrst. uvwxyz"
        chunks = chunk_text(text, max_char_length=10)
        assert chunks[0].text_of(text) == "abcdefghij klmno!"

    def test_backscans_to_whitespace_without_boundary(self):
        """Without a boundary the cut moves back to whitespace."""
        text = "alpha beta gamma delta epsilon zeta"
        policy = ChunkPolicy(lookahead=5, nudge=0)
        chunks = chunk_text(text, max_char_length=13, policy=policy)
        assert chunks[0].text_of(text) == "alpha beta "

    def test_nudges_forward_out_of_a_word(self):
        """A cut inside a word is nudged forward past it."""
        text = "x" * 30 + " tail words here"
        policy = ChunkPolicy(lookahead=0, backscan=0, nudge=50)
        chunks = chunk_text(text, max_char_length=10, policy=policy)
        assert chunks[0].text_of(text) == "x" * 30 + " "

    def test_hard_cut_when_nothing_helps(self):
        """Unbroken text is cut at the maximum."""
        text = "y" * 100
        chunks = chunk_text(text, max_char_length=30)
        assert [c.length for c in chunks] == [30, 30, 30, 10]

    def test_min_length_folds_short_tail(self):
        """A tail under the minimum joins the chunk before it."""
        chunks = chunk_text(SCENARIO, max_char_length=60, min_char_length=50)
        assert len(chunks) == 2
        assert chunks[1].end == len(SCENARIO)

    def test_custom_boundary_chars(self):
        """Policy boundary characters replace the defaults."""
        text = "one two three; four five six; seven"
        policy = ChunkPolicy(boundary_chars=(";",))
        chunks = chunk_text(text, max_char_length=8, policy=policy)
        assert chunks[0].text_of(text) == "one two three;"


class TestReassemble:
    """Stitching rewritten pieces into the original spacing."""

    def test_reassemble_keeps_separators(self):
        """Rewritten pieces keep the original spacing."""
        text = "\n\nOne.\n\nTwo.\n\n"
        chunks = chunk_text(text)
        assert reassemble(text, chunks, ["Uno.", "Dos."]) == "\n\nUno.\n\nDos.\n\n"

    def test_reassemble_with_originals_is_identity(self):
        """Reassembling the original pieces gives the input back."""
        chunks = chunk_text(SCENARIO, 60)
        assert reassemble(SCENARIO, chunks, [c.text_of(SCENARIO) for c in chunks]) == SCENARIO

    def test_reassemble_rejects_wrong_piece_count(self):
        """One piece per chunk is required."""
        chunks = chunk_text(SCENARIO, 60)
        with pytest.raises(ValueError):
            reassemble(SCENARIO, chunks, ["only one"])

    def test_chunk_to_dict(self):
        """Chunks serialize to index, start and end."""
        assert Chunk(index=1, start=2, end=5).to_dict() == {'index': 1, 'start': 2, 'end': 5}
