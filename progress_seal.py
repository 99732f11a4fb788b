"""Progress seal kept at the very end of the summary entry.

The seal is the only persisted record of how far the transcript has been
summarised: ``floors 1 through N`` means floors 1..N are already folded into
the entry. It has to stay the final text of the entry for ``decode`` to find it.
"""

from __future__ import annotations

import re
from typing import Optional


__all__ = ["SEAL_TEMPLATE", "decode", "encode", "find_marker", "strip_marker"]


SEAL_TEMPLATE: str = (
    "Do not edit this line: floors 1 through {floors} are fully summarized, "
    "or later summarization cannot proceed."
)

_SEAL_RE = re.compile(
    r"Do not edit this line: floors 1 through (\d+) are fully summarized, "
    r"or later summarization cannot proceed\.\s*\Z"
)


def encode(covered_floors: int) -> str:
    if isinstance(covered_floors, bool) or not isinstance(covered_floors, int):
        raise ValueError(f"covered_floors must be an integer, got {covered_floors!r}")
    if covered_floors < 0:
        raise ValueError(f"covered_floors must be >= 0, got {covered_floors}")
    return SEAL_TEMPLATE.format(floors=covered_floors)


def decode(body: Optional[str]) -> Optional[int]:
    """Return the covered floor count, or ``None`` when the body has no seal."""
    if not body:
        return None
    match = _SEAL_RE.search(body)
    if match is None:
        return None
    return int(match.group(1))


def find_marker(body: Optional[str]) -> Optional[str]:
    if not body:
        return None
    match = _SEAL_RE.search(body)
    if match is None:
        return None
    return match.group(0).rstrip()


def strip_marker(body: Optional[str]) -> str:
    if not body:
        return ""
    return _SEAL_RE.sub("", body).strip()
