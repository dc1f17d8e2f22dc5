"""
Recursive Text Chunker
══════════════════════

Splits extracted document text into retrieval-sized chunks.

Strategy (most meaningful boundary first):
  1. Split on the first separator in SEPARATORS that occurs in the text,
     keeping each separator attached to the segment before it.
  2. Greedily pack consecutive segments while they fit in max_chunk_size;
     a segment that alone exceeds the limit is split again with the
     remaining (finer) separators, falling back to a hard split.
  3. Fold tiny pieces (trimmed length < min_chunk_size) into the previous
     chunk when the result still fits.
  4. Prefix each chunk after the first with the last `overlap` characters
     of the previous chunk, for retrieval context.

Offset contract
───────────────
  Steps 1–3 never drop or reorder characters, so the core spans
  [start_offset, end_offset) of all chunks partition the text exactly:

      chunks[0].start_offset == 0
      chunks[i].end_offset   == chunks[i + 1].start_offset
      chunks[-1].end_offset  == len(text)

  `content` is the overlap prefix plus the core span, and
  `content[overlap:] == text[start_offset:end_offset]`.
  Whitespace-only pieces are absorbed by a neighbour rather than dropped.

Offsets are Python string (code point) indices.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration constants
# ---------------------------------------------------------------------------

MAX_CHUNK_SIZE = 512
CHUNK_OVERLAP  = 64
MIN_CHUNK_SIZE = 50

SEPARATORS: tuple[str, ...] = (
    "\n\n",   # paragraph
    "\n",     # line
    "。",     # CJK full stop
    "！",
    "？",
    ". ",     # English sentence
    "! ",
    "? ",
    "；",     # CJK semicolon
    "; ",
    "，",     # CJK comma
    ", ",
    " ",      # word
)


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextChunk:
    content:      str   # overlap prefix + core span
    chunk_index:  int   # 0-based, dense
    start_offset: int   # core span start (inclusive)
    end_offset:   int   # core span end (exclusive)
    overlap:      int   # length of the prefix borrowed from the previous chunk


# ---------------------------------------------------------------------------
# Splitting primitives
# ---------------------------------------------------------------------------

def _split_keep_separator(text: str, separator: str) -> list[str]:
    parts = text.split(separator)
    if len(parts) <= 1:
        return [text]
    pieces = [part + separator for part in parts[:-1]]
    pieces.append(parts[-1])
    return [piece for piece in pieces if piece]


def _hard_split(text: str, size: int) -> list[str]:
    return [text[i:i + size] for i in range(0, len(text), size)]


def _recursive_split(text: str, separators: tuple[str, ...], max_size: int) -> list[str]:
    if len(text) <= max_size:
        return [text]

    for i, separator in enumerate(separators):
        parts = _split_keep_separator(text, separator)
        if len(parts) <= 1:
            continue

        result: list[str] = []
        current = ""
        for part in parts:
            if len(current) + len(part) <= max_size:
                current += part
                continue

            if current:
                result.append(current)

            if len(part) <= max_size:
                current = part
            else:
                sub_chunks = _recursive_split(part, separators[i + 1:], max_size)
                result.extend(sub_chunks[:-1])
                current = sub_chunks[-1]

        if current:
            result.append(current)
        return result

    return _hard_split(text, max_size)


def _fold_small_pieces(pieces: list[str], max_size: int, min_size: int) -> list[str]:
    folded: list[str] = []
    carry = ""   # leading whitespace-only pieces waiting for a chunk to attach to

    for piece in pieces:
        stripped_len = len(piece.strip())

        if folded and stripped_len < min_size and len(folded[-1]) + len(piece) <= max_size:
            folded[-1] += piece
        elif stripped_len == 0:
            if folded:
                folded[-1] += piece
            else:
                carry += piece
        else:
            folded.append(carry + piece)
            carry = ""

    return folded


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------

def chunk_text(
    text: str,
    max_chunk_size: int = MAX_CHUNK_SIZE,
    chunk_overlap:  int = CHUNK_OVERLAP,
    min_chunk_size: int = MIN_CHUNK_SIZE,
) -> list[TextChunk]:
    """
    Split `text` into ordered, offset-bounded chunks.

    Returns an empty list only for empty or whitespace-only text.
    """
    if not text or not text.strip():
        return []

    pieces = _fold_small_pieces(
        _recursive_split(text, SEPARATORS, max_chunk_size),
        max_chunk_size,
        min_chunk_size,
    )

    chunks: list[TextChunk] = []
    offset = 0
    for index, piece in enumerate(pieces):
        prefix = pieces[index - 1][-chunk_overlap:] if index > 0 and chunk_overlap > 0 else ""
        chunks.append(TextChunk(
            content=prefix + piece,
            chunk_index=index,
            start_offset=offset,
            end_offset=offset + len(piece),
            overlap=len(prefix),
        ))
        offset += len(piece)

    logger.debug("Chunked | chars=%d chunks=%d", len(text), len(chunks))
    return chunks
