"""Noise filtering for captured fragments.

Terminal captures are full of control sequences, table dumps and truncated
lines. Anything that trips these checks is skipped by the router rather
than stored.
"""

import re

_ANSI_PATTERNS = [
    re.compile(r"\x1b\[[0-9;]*[A-Za-z]"),  # CSI sequences
    re.compile(r"\x1b\[\?[0-9;]*[a-zA-Z]"),  # private mode set/reset
    re.compile(r"\x1b\][^\x07]*\x07"),  # OSC ... BEL
    re.compile(r"\x1b"),  # stray ESC
]

# Fixed signatures of junk fragments
GARBAGE_PATTERNS = [
    re.compile(r"^\|"),  # table output
    re.compile(r"^\(\d+\)"),  # "(8) ..." list residue
    re.compile(r"^- MMO"),  # task tracker references
    re.compile(r"^be saved by"),  # sentence fragments
    re.compile(r"^GET\s+/api"),  # request logs
    re.compile(r"\[.*m$"),  # trailing color code
    re.compile(r"^'\w+_ai"),  # table name references
    re.compile(r"\\x1B"),  # escaped ANSI
    re.compile(r"\\u001b", re.IGNORECASE),  # unicode-escaped ANSI
]

DEFAULT_MIN_LENGTH = 10
DEFAULT_MAX_LENGTH = 5000


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from text."""
    if not isinstance(text, str):
        return text
    for pattern in _ANSI_PATTERNS:
        text = pattern.sub("", text)
    return text


def noise_reason(
    text: str | None,
    min_length: int = DEFAULT_MIN_LENGTH,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> str | None:
    """Return why text is noise, or None if it is worth keeping."""
    if not text or len(text) < min_length:
        return "too_short"
    if len(text) > max_length:
        return "too_long"
    for pattern in GARBAGE_PATTERNS:
        if pattern.search(text):
            return f"pattern:{pattern.pattern}"
    return None


def is_noise(
    text: str | None,
    min_length: int = DEFAULT_MIN_LENGTH,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> bool:
    return noise_reason(text, min_length, max_length) is not None


__all__ = ["GARBAGE_PATTERNS", "strip_ansi", "noise_reason", "is_noise"]
