import re
from typing import List, Optional

from sitebot.config import CHUNKING
from sitebot.crawling.base import TextChunk

_INLINE_WS = re.compile(r"[^\S\n]+")
_SPACE_AROUND_NEWLINE = re.compile(r" ?\n ?")
_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")
_SENTENCE_END = re.compile(r"[.!?]\s")


def normalize_text(text: str) -> str:
    """Collapse inline whitespace and blank-line runs, keeping paragraph breaks."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _INLINE_WS.sub(" ", text)
    text = _SPACE_AROUND_NEWLINE.sub("\n", text)
    text = _EXCESS_BLANK_LINES.sub("\n\n", text)
    return text.strip()


def _find_break(text: str, start: int, naive_end: int, lookback: int) -> int:
    window_start = max(start, naive_end - lookback)

    # last sentence end whose punctuation still fits in the window
    best: Optional[int] = None
    for match in _SENTENCE_END.finditer(text, window_start, min(len(text), naive_end + 1)):
        best = match.start() + 1
    if best is not None and best > start:
        return best

    word_break = max(
        text.rfind(" ", start + 1, naive_end + 1),
        text.rfind("\n", start + 1, naive_end + 1),
    )
    if word_break > start:
        return word_break

    return naive_end


def chunk_text(
    text: str,
    chunk_size_tokens: int = CHUNKING["size_tokens"],
    overlap_tokens: int = CHUNKING["overlap_tokens"],
) -> List[TextChunk]:
    """Split page text into overlapping, sentence-aligned chunks.

    Sizes are given in tokens and converted with a fixed chars-per-token
    ratio. A chunk never exceeds the window, so re-chunking any returned
    chunk yields that chunk unchanged.
    """
    ratio = CHUNKING["chars_per_token"]
    window = chunk_size_tokens * ratio
    overlap = overlap_tokens * ratio
    if window <= 0:
        raise ValueError("chunk_size_tokens must be positive")
    if overlap < 0 or overlap >= window:
        raise ValueError("overlap_tokens must be in [0, chunk_size_tokens)")

    cleaned = normalize_text(text or "")
    if not cleaned:
        return []

    if len(cleaned) <= window:
        return [TextChunk(content=cleaned, index=0, start=0, end=len(cleaned))]

    chunks: List[TextChunk] = []
    start = 0
    while start < len(cleaned):
        naive_end = start + window
        if naive_end >= len(cleaned):
            end = len(cleaned)
        else:
            end = _find_break(cleaned, start, naive_end, CHUNKING["sentence_lookback_chars"])

        content = cleaned[start:end].strip()
        if content:
            chunks.append(TextChunk(content=content, index=len(chunks), start=start, end=end))

        if end >= len(cleaned):
            break

        next_start = end - overlap
        start = next_start if next_start > start else end

    return chunks
