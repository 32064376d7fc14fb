"""
Splits long replies into WhatsApp-sized messages instead of truncating.

Greedy with lookback: each chunk ends at the first sentence boundary found
in the last LOOKBACK_WINDOW characters of the window, else at a late line
break, else exactly at max_length.
"""

import re

WHATSAPP_MESSAGE_MAX_LENGTH = 4096
LOOKBACK_WINDOW = 200
LINE_BREAK_MIN_RATIO = 0.8

# Room kept free for "[Part i/N]\n\n" when markers will be added
MARKER_RESERVE = 20

SENTENCE_END = re.compile(r"[.!?]\s+|\n\n+")
PAGE_MARKER = re.compile(r"^\[Part \d+/\d+\]\n\n")


def _find_split_index(window: str, max_length: int) -> int:
    lookback = min(LOOKBACK_WINDOW, len(window))
    offset = len(window) - lookback

    match = SENTENCE_END.search(window, offset)
    if match:
        return match.end()

    line_break = window.rfind("\n")
    if line_break >= 0 and line_break >= max_length * LINE_BREAK_MIN_RATIO:
        return line_break + 1

    return max_length


def split_message(
    text: str, max_length: int = WHATSAPP_MESSAGE_MAX_LENGTH
) -> list[str]:
    """Split text into ordered chunks of at most max_length characters.

    Whitespace at each split point is trimmed from both sides; a text that
    already fits is returned untouched as a single chunk.

    Examples:
        split_message("short") -> ["short"]
        split_message("A" * 4097) -> ["A" * 4096, "A"]
    """
    if max_length < 1:
        raise ValueError("max_length must be positive")
    if not text:
        return []
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    remaining = text

    while len(remaining) > max_length:
        window = remaining[:max_length]
        split_index = _find_split_index(window, max_length)

        piece = remaining[:split_index].strip()
        if piece:
            chunks.append(piece)
        remaining = remaining[split_index:].strip()

    if remaining:
        chunks.append(remaining)
    return chunks


def with_page_markers(chunks: list[str]) -> list[str]:
    """Prefix each chunk with [Part i/N]; a single chunk is left bare."""
    if len(chunks) <= 1:
        return list(chunks)

    total = len(chunks)
    return [f"[Part {i}/{total}]\n\n{chunk}" for i, chunk in enumerate(chunks, start=1)]


def strip_page_marker(chunk: str) -> str:
    return PAGE_MARKER.sub("", chunk, count=1)


def split_for_sending(
    text: str, max_length: int = WHATSAPP_MESSAGE_MAX_LENGTH
) -> list[str]:
    """Split and mark text so every marked chunk still fits in max_length."""
    if not text:
        return []
    if len(text) <= max_length:
        return [text]
    if max_length <= MARKER_RESERVE:
        raise ValueError(f"max_length must exceed {MARKER_RESERVE} to fit page markers")
    return with_page_markers(split_message(text, max_length - MARKER_RESERVE))
