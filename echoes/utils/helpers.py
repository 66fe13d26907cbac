"""
Utility helper functions for Echoes
Lyric text cleaning, clocks and small collection helpers shared by the engine
"""

import re
import time
from typing import Iterable, Iterator, List, Sequence, TypeVar


T = TypeVar("T")

# Section markers such as [Chorus] or [Verse 2: Artist]
_BRACKETED = re.compile(r'\[.*?\]')
# Parenthetical asides such as (x2) or (Yeah)
_PARENTHETICAL = re.compile(r'\(.*?\)')
# Embedded m:ss / mm:ss timestamps
_TIMESTAMP = re.compile(r'\d{1,2}:\d{2}')
# Three or more consecutive newlines
_BLANK_RUN = re.compile(r'\n{3,}')


def clean_lyrics_text(lyrics: str) -> str:
    """
    Clean lyrics text by removing metadata and formatting

    Strips bracketed section markers, parenthetical asides and timestamps,
    then collapses runs of blank lines so that stanzas are separated by
    exactly one blank line.

    Args:
        lyrics: Raw lyrics text

    Returns:
        Cleaned lyrics text
    """
    if not lyrics:
        return ""

    cleaned = _BRACKETED.sub('', lyrics)
    cleaned = _PARENTHETICAL.sub('', cleaned)
    cleaned = _TIMESTAMP.sub('', cleaned)
    cleaned = _BLANK_RUN.sub('\n\n', cleaned)

    return cleaned.strip()


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """
    Split a sequence into consecutive lists of at most ``size`` elements

    Args:
        items: Sequence to split
        size: Maximum chunk length (must be positive)
    """
    if size <= 0:
        raise ValueError(f"Chunk size must be positive, got {size}")

    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def unique(items: Iterable[T]) -> List[T]:
    """Drop repeated items, keeping the first occurrence and input order"""
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def truncate_string(text: str, max_length: int, suffix: str = "...") -> str:
    """
    Truncate string to maximum length with suffix

    Used to keep upstream error bodies readable in log lines.
    """
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix
