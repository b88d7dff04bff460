# archive_streams/utils.py

import re
import unicodedata
from typing import Any

_NON_WORD = re.compile(r"[^\w\s]")
_UNDERSCORE_RUN = re.compile(r"_+")
_WHITESPACE = re.compile(r"\s+")
_YEAR_PATTERN = re.compile(r"\b(18|19|20|21)\d{2}\b")
_CLOCK_DURATION = re.compile(r"^\d{1,2}:\d{2}(:\d{2})?$")
_NUMERIC_DURATION = re.compile(r"^\d+(\.\d+)?$")
_NATURAL_CHUNKS = re.compile(r"(\d+)")


def normalize(text: str | None) -> str:
    """
    Canonical comparison form: NFKD-decomposed, lower-cased, punctuation
    replaced by spaces, whitespace collapsed and trimmed.

    Combining marks are dropped after decomposition, so "Amélie" and
    "Amelie" compare equal. Underscores count as separators.
    """
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", str(text).lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    cleaned = _NON_WORD.sub(" ", stripped)
    cleaned = _UNDERSCORE_RUN.sub(" ", cleaned)
    return _WHITESPACE.sub(" ", cleaned).strip()


def token_set_similarity(a: str | None, b: str | None) -> float:
    """Jaccard index of the normalized token sets of ``a`` and ``b``."""
    left = set(normalize(a).split())
    right = set(normalize(b).split())
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


def first_text(value: Any) -> str:
    """Archive fields arrive as strings or lists of strings."""
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        for item in value:
            if item:
                return str(item)
        return ""
    return str(value)


def extract_first_int(text: str) -> int | None:
    """Safely extracts the first integer from a string."""
    if not text:
        return None
    match = re.search(r"\d+", str(text).strip())
    return int(match.group(0)) if match else None


def parse_year(value: Any) -> int | None:
    """Pulls a plausible four-digit year out of ``1922``, ``"2008–2013"`` etc."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 1800 <= value <= 2199 else None
    match = _YEAR_PATTERN.search(first_text(value))
    return int(match.group(0)) if match else None


def parse_int(value: Any, default: int = 0) -> int:
    """Converts archive numeric fields (often strings) to ints."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    text = first_text(value).strip().replace(",", "")
    try:
        return int(float(text))
    except ValueError:
        return default


def parse_duration_to_seconds(length: Any) -> int | None:
    """
    Converts an archive ``length`` field to whole seconds.

    Accepts plain numbers (``5400`` or ``"5400.32"``) and clock notation
    (``"1:30:00"`` or ``"45:10"``). Anything else yields ``None``.
    """
    if length is None or length == "" or isinstance(length, bool):
        return None
    if isinstance(length, (int, float)):
        return round(length)
    text = first_text(length).strip()
    if _NUMERIC_DURATION.match(text):
        return round(float(text))
    if _CLOCK_DURATION.match(text):
        parts = [int(p) for p in text.split(":")]
        if len(parts) == 2:
            return parts[0] * 60 + parts[1]
        return parts[0] * 3600 + parts[1] * 60 + parts[2]
    return None


def natural_sort_key(name: str) -> list[Any]:
    """Sort key treating digit runs numerically ("ep2" before "ep10")."""
    return [
        (0, int(chunk), "") if chunk.isdigit() else (1, 0, chunk.lower())
        for chunk in _NATURAL_CHUNKS.split(name or "")
        if chunk
    ]


def format_megabytes(size_bytes: int) -> str:
    """Renders a byte count as whole decimal megabytes ("700MB")."""
    if size_bytes <= 0:
        return "0MB"
    return f"{round(size_bytes / 1_000_000)}MB"
