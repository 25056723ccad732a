"""Range pattern expansion for host and device specifications.

A range pattern is a literal prefix, one ``{A..B}`` range and a literal
suffix::

    vm-{1..5}        -> vm-1, vm-2, vm-3, vm-4, vm-5
    db{001..003}.lab -> db001.lab, db002.lab, db003.lab
    node-{a..c}      -> node-a, node-b, node-c

Bounds are either both integers or both single letters of the same case.
Integer bounds written with a leading zero are zero-padded to the width of
the wider bound, the same way bash brace expansion pads them. Expansion is
inclusive and ascending; descending ranges are rejected.
"""

from __future__ import annotations

import re
from functools import lru_cache

from ..errors import PatternError

_RANGE_RE = re.compile(r"\{[^{}]*\.\.[^{}]*\}")
_PATTERN_RE = re.compile(
    r"^(?P<prefix>[^{}]*)\{(?P<start>[^{}.]+)\.\.(?P<end>[^{}.]+)\}(?P<suffix>[^{}]*)$"
)


def is_range_pattern(text: str) -> bool:
    """Return True if ``text`` contains a ``{A..B}`` range group."""
    return bool(_RANGE_RE.search(text))


def expand_pattern(pattern: str) -> list[str]:
    """Expand ``pattern`` into the ordered list of names it describes.

    Text without a range group is returned as a single literal name.

    Raises:
        PatternError: If the range group is malformed.
    """
    if not is_range_pattern(pattern):
        return [pattern]
    return list(_expand_cached(pattern))


@lru_cache(maxsize=256)
def _expand_cached(pattern: str) -> tuple[str, ...]:
    match = _PATTERN_RE.match(pattern)
    if not match:
        raise PatternError(
            f"Malformed range pattern '{pattern}': expected prefix{{A..B}}suffix "
            "with exactly one range group"
        )

    prefix = match.group("prefix")
    suffix = match.group("suffix")
    start = match.group("start").strip()
    end = match.group("end").strip()

    if start.isdigit() and end.isdigit():
        values = _numeric_range(pattern, start, end)
    elif _is_letter(start) and _is_letter(end):
        values = _letter_range(pattern, start, end)
    else:
        raise PatternError(
            f"Malformed range pattern '{pattern}': bounds '{start}' and '{end}' "
            "must both be integers or both be single letters"
        )

    return tuple(f"{prefix}{value}{suffix}" for value in values)


def _numeric_range(pattern: str, start: str, end: str) -> list[str]:
    low, high = int(start), int(end)
    if low > high:
        raise PatternError(
            f"Malformed range pattern '{pattern}': start {low} is greater than end {high}"
        )

    padded = (len(start) > 1 and start.startswith("0")) or (
        len(end) > 1 and end.startswith("0")
    )
    width = max(len(start), len(end)) if padded else 0
    return [str(i).zfill(width) for i in range(low, high + 1)]


def _letter_range(pattern: str, start: str, end: str) -> list[str]:
    if start.isupper() != end.isupper():
        raise PatternError(
            f"Malformed range pattern '{pattern}': letter bounds must share the same case"
        )
    if start > end:
        raise PatternError(
            f"Malformed range pattern '{pattern}': start '{start}' is after end '{end}'"
        )
    return [chr(code) for code in range(ord(start), ord(end) + 1)]


def _is_letter(value: str) -> bool:
    return len(value) == 1 and value.isascii() and value.isalpha()


def expand_all(entries: list[str]) -> list[str]:
    """Expand every entry and concatenate, dropping repeats but keeping first-seen order."""
    return dedupe([name for entry in entries for name in expand_pattern(entry)])


def dedupe(names: list[str]) -> list[str]:
    """Remove duplicate names while preserving first-seen order."""
    return list(dict.fromkeys(names))
