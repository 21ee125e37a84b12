"""Fixed-window text chunker with character offsets."""

from __future__ import annotations

from sourcehive.db.models import Chunk, Source, new_id


class TextChunker:
    """Split extracted text into overlapping fixed-size windows.

    Token counting uses a 4-chars-per-token approximation; no external
    tokenizer dependency is required. Every chunk keeps the character span
    ``[start_offset, end_offset)`` of its (stripped) text in the source text,
    so ``text[start:end] == chunk.text`` holds for every chunk.

    Default: 512 tokens / 10 % overlap.
    """

    def __init__(self, chunk_size: int = 512, overlap: float = 0.10) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0.0 <= overlap < 1.0:
            raise ValueError("overlap must be in [0.0, 1.0)")
        self.chunk_size = chunk_size
        self.overlap = overlap

    @staticmethod
    def count_tokens(text: str) -> int:
        """Approximate token count: 4 characters ≈ 1 token."""
        return max(1, len(text) // 4)

    def split(self, text: str) -> list[tuple[int, int]]:
        """Return ``(start, end)`` spans of the non-blank windows of *text*.

        Window size = ``chunk_size * 4`` characters; consecutive windows share
        ``overlap`` of that. Leading/trailing whitespace is trimmed from each
        span and blank windows are omitted.
        """
        if not text.strip():
            return []

        char_size = self.chunk_size * 4
        step = max(1, char_size - int(char_size * self.overlap))

        spans: list[tuple[int, int]] = []
        pos = 0
        length = len(text)
        while pos < length:
            end = min(pos + char_size, length)
            window = text[pos:end]
            stripped = window.strip()
            if stripped:
                start = pos + (len(window) - len(window.lstrip()))
                spans.append((start, start + len(stripped)))
            if end >= length:
                break
            pos += step
        return spans

    def chunk(self, source: Source, text: str) -> list[Chunk]:
        """Chunks of *text* for *source*, indexed 0..n-1 in text order."""
        return [
            Chunk(
                id=new_id(),
                session_id=source.session_id,
                source_id=source.id,
                source_type=source.source_type,
                text=text[start:end],
                start_offset=start,
                end_offset=end,
                chunk_index=i,
            )
            for i, (start, end) in enumerate(self.split(text))
        ]
