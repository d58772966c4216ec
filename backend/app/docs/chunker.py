"""Document chunker - deterministic overlapping text splitting."""

import math
from dataclasses import dataclass

# Boundary tiers, most preferred first. A cut lands right after the separator
# so the separator stays with the preceding chunk.
_BOUNDARY_TIERS: tuple[tuple[str, ...], ...] = (
    ("\n\n",),
    (". ", "! ", "? ", ".\n", "!\n", "?\n"),
    (" ", "\n", "\t"),
)


@dataclass(frozen=True)
class TextChunk:
    """A slice ``text[start:end]`` of the source document."""

    index: int
    text: str
    start: int
    end: int


class RecursiveTextSplitter:
    """Fixed-size splitter with overlap that prefers natural boundaries.

    Chunks are exact slices of the input, so no text is normalized or lost.
    Each chunk is at most ``chunk_size`` characters and consecutive chunks
    share between 0 and ``chunk_overlap`` characters.
    """

    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = 200) -> None:
        """Initialize splitter.

        Args:
            chunk_size: Maximum characters per chunk
            chunk_overlap: Target characters shared by consecutive chunks

        Raises:
            ValueError: If parameters are out of range
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if chunk_overlap < 0:
            raise ValueError(f"chunk_overlap must be non-negative, got {chunk_overlap}")
        if chunk_overlap >= chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must be less than chunk_size ({chunk_size})"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def split(self, text: str) -> list[TextChunk]:
        """Split text into ordered, overlapping chunks.

        Args:
            text: Raw document text

        Returns:
            Chunks with contiguous indices starting at 0; empty for empty text
        """
        if not text:
            return []

        chunks: list[TextChunk] = []
        length = len(text)
        start = 0

        while True:
            if length - start <= self.chunk_size:
                chunks.append(TextChunk(len(chunks), text[start:], start, length))
                break

            cut = self._find_cut(text, start)
            chunks.append(TextChunk(len(chunks), text[start:cut], start, cut))
            start = self._next_start(text, cut)

        return chunks

    def _find_cut(self, text: str, start: int) -> int:
        """Pick the end offset for the chunk beginning at ``start``.

        Chunks are packed up to ``chunk_size``. A paragraph or sentence end
        wins only when it falls near the window end; otherwise the cut goes
        to the last word boundary in the back half of the window, and only
        then to a hard character cut. Cuts never land at or before
        ``start + chunk_overlap``, so the next chunk always advances.
        """
        hi = start + self.chunk_size
        floor = start + self.chunk_overlap + 1
        near_end = max(hi - max(self.chunk_overlap, self.chunk_size // 10), floor)

        for separators in _BOUNDARY_TIERS[:-1]:
            best = self._last_boundary(text, separators, near_end, hi)
            if best != -1:
                return best

        # The window ends exactly before whitespace
        if text[hi].isspace():
            return hi

        word_cut = self._last_boundary(
            text, _BOUNDARY_TIERS[-1], max(floor, start + self.chunk_size // 2), hi
        )
        if word_cut != -1:
            return word_cut

        # No boundary in range: hard cut
        return hi

    @staticmethod
    def _last_boundary(text: str, separators: tuple[str, ...], lo: int, hi: int) -> int:
        """Largest offset in ``[lo, hi]`` right after one of ``separators``, or -1."""
        best = -1
        for sep in separators:
            pos = text.rfind(sep, max(lo - len(sep), 0), hi)
            if pos != -1 and pos + len(sep) >= lo:
                best = max(best, pos + len(sep))
        return best

    def _next_start(self, text: str, cut: int) -> int:
        """Start of the next chunk: ``cut - chunk_overlap`` nudged to a word start.

        When the rest of the text fits in one chunk from some start inside
        the overlap region, the search begins there so no short trailing
        chunk is produced.
        """
        region_start = cut - self.chunk_overlap
        tail_start = len(text) - self.chunk_size
        if region_start < tail_start <= cut:
            word_start = self._word_start(text, tail_start, cut)
            if word_start is not None:
                return word_start

        word_start = self._word_start(text, region_start, cut)
        return region_start if word_start is None else word_start

    @staticmethod
    def _word_start(text: str, lo: int, hi: int) -> int | None:
        for i in range(lo, hi):
            if text[i].isspace():
                j = i + 1
                while j < hi and text[j].isspace():
                    j += 1
                return j
        return None


def split_text(text: str, *, chunk_size: int = 1000, chunk_overlap: int = 200) -> list[TextChunk]:
    """Convenience wrapper around :class:`RecursiveTextSplitter`."""
    return RecursiveTextSplitter(chunk_size, chunk_overlap).split(text)


def join_chunks(chunks: list[TextChunk]) -> str:
    """Rebuild the source text by dropping each chunk's overlap prefix."""
    if not chunks:
        return ""

    parts = [chunks[0].text]
    for prev, cur in zip(chunks, chunks[1:], strict=False):
        parts.append(cur.text[prev.end - cur.start :])
    return "".join(parts)


def estimate_token_count(text: str) -> int:
    """Rough token estimate: one token per four characters."""
    return math.ceil(len(text) / 4)
