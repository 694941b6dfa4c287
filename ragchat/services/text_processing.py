"""
Text processing for the ingestion stage: cleaning and chunking.

Chunks are what the retrieval stage scores and what the response stage sees,
so cleaning removes noise that would otherwise show up in both.
"""

import re
import unicodedata


def clean_text(text: str) -> str:
    """
    Normalize raw document text: NFKC, strip each line, collapse consecutive
    duplicate lines, and keep at most one blank line between paragraphs.
    """
    if not text or not text.strip():
        return ""
    text = unicodedata.normalize("NFKC", text)
    lines = [line.strip() for line in text.splitlines()]
    result: list[str] = []
    for line in lines:
        if result and result[-1] == line:
            continue
        result.append(line)
    return "\n".join(result).strip()


def _tail(parts: list[str], overlap: int) -> list[str]:
    """Longest suffix of parts whose joined length (with separators) fits in overlap."""
    kept: list[str] = []
    size = 0
    for part in reversed(parts):
        if size + len(part) + 1 > overlap:
            break
        kept.append(part)
        size += len(part) + 1
    kept.reverse()
    return kept


def _joined_len(parts: list[str]) -> int:
    return sum(len(p) for p in parts) + max(0, len(parts) - 1)


def chunk_text(text: str, chunk_size: int = 500, overlap: int = 50) -> list[str]:
    """
    Split text into overlapping chunks on sentence boundaries.

    A sentence longer than chunk_size is split on words instead. Each new
    chunk starts with the trailing sentences (or words) of the previous one,
    up to overlap characters.
    """
    if not text or not text.strip():
        return []
    text = text.strip()
    if len(text) <= chunk_size:
        return [text]

    sentences = [s.strip() for s in re.split(r"(?<=[.!?])\s+", text) if s.strip()]
    units: list[str] = []
    for sent in sentences:
        units.extend(sent.split() if len(sent) > chunk_size else [sent])

    chunks: list[str] = []
    current: list[str] = []
    for unit in units:
        if current and _joined_len(current + [unit]) > chunk_size:
            chunks.append(" ".join(current))
            current = _tail(current, overlap)
            # overlap must not push the next unit over the limit on its own
            while current and _joined_len(current + [unit]) > chunk_size:
                current.pop(0)
        current.append(unit)
    if current:
        chunks.append(" ".join(current))
    return chunks
