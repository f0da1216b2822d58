"""Character-based text chunking for knowledge base ingestion."""

import re
from typing import List

from agent_platform.models.chunk import ChunkConfig, TextChunk
from agent_platform.utils.logging import get_logger

logger = get_logger("chunking_service")

# Checked right to left within the tail of each window
SENTENCE_ENDINGS = (". ", "。", "! ", "！", "? ", "？", "\n\n")

# Fraction of the window before which a sentence break is not taken
_BREAK_SEARCH_FRACTION = 0.8

_PARAGRAPH_SPLIT = re.compile(r"\n\n+")


def _find_sentence_break(window: str) -> int:
    """Return the cut position just after the right-most terminator in the window tail, or -1."""
    search_start = int(len(window) * _BREAK_SEARCH_FRACTION)
    best_pos = -1
    best_break = -1
    for ending in SENTENCE_ENDINGS:
        pos = window.rfind(ending)
        if pos > search_start and pos > best_pos:
            best_pos = pos
            best_break = pos + len(ending)
    return best_break


def chunk_text(text: str, chunk_size: int, overlap: int) -> List[TextChunk]:
    """
    Split text into overlapping windows of at most `chunk_size` characters.

    Windows that do not reach the end of the text are cut after the last
    sentence terminator found in their final 20%. Overlap is clamped to half
    the chunk size and every iteration advances the start by at least one
    character. Chunk text is trimmed; offsets refer to the untrimmed window.

    Args:
        text: Document text
        chunk_size: Maximum characters per chunk
        overlap: Characters shared between consecutive chunks

    Returns:
        Chunks in document order with contiguous indices starting at 0
    """
    if not text or not text.strip():
        return []
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")

    valid_overlap = min(max(overlap, 0), chunk_size // 2)
    text_length = len(text)

    chunks: List[TextChunk] = []
    start = 0
    index = 0

    while start < text_length:
        end = min(start + chunk_size, text_length)
        window = text[start:end]

        if end < text_length:
            cut = _find_sentence_break(window)
            if cut > 0:
                window = window[:cut]

        stripped = window.strip()
        if stripped:
            chunks.append(
                TextChunk(
                    text=stripped,
                    index=index,
                    start_char=start,
                    end_char=start + len(window),
                )
            )
            index += 1

        actual_end = start + len(window)
        if actual_end >= text_length:
            break

        next_start = actual_end - valid_overlap
        if next_start <= start:
            start += max(1, len(window))
        else:
            start = next_start

    return chunks


def chunk_text_by_paragraphs(text: str, chunk_size: int, overlap: int) -> List[TextChunk]:
    """
    Split on blank lines, keeping short paragraphs whole and windowing long ones.

    Offsets are translated to document-absolute positions by a running offset
    that advances by the paragraph length plus a two-character separator.
    Indices are renumbered across the whole document.
    """
    chunks: List[TextChunk] = []
    current_char = 0
    index = 0

    for paragraph in _PARAGRAPH_SPLIT.split(text or ""):
        if not paragraph.strip():
            current_char += len(paragraph) + 2
            continue

        if len(paragraph) <= chunk_size:
            chunks.append(
                TextChunk(
                    text=paragraph.strip(),
                    index=index,
                    start_char=current_char,
                    end_char=current_char + len(paragraph),
                )
            )
            index += 1
        else:
            for piece in chunk_text(paragraph, chunk_size, overlap):
                chunks.append(
                    TextChunk(
                        text=piece.text,
                        index=index,
                        start_char=current_char + piece.start_char,
                        end_char=current_char + piece.end_char,
                    )
                )
                index += 1

        current_char += len(paragraph) + 2

    logger.debug(
        "Chunked text by paragraphs",
        extra={"chunk_size": chunk_size, "overlap": overlap, "chunks": len(chunks)},
    )
    return chunks


def calculate_optimal_chunk_config(text_length: int) -> ChunkConfig:
    """Pick chunk size and overlap from the document length."""
    if text_length < 2000:
        return ChunkConfig(chunk_size=500, overlap=100)
    if text_length > 50000:
        return ChunkConfig(chunk_size=2000, overlap=400)
    return ChunkConfig(chunk_size=1000, overlap=200)
