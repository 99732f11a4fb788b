"""Request builders and entry-body updates for small and large summaries."""

from __future__ import annotations

from typing import Any, Optional, Sequence

import progress_seal
from summary_errors import MalformedRecordError, NoContentError, ProgressRegressionError
from text_selector import CleanedMessage
from transcript import FloorRange


__all__ = [
    "apply_consolidation_result",
    "apply_incremental_result",
    "build_consolidation_request",
    "build_incremental_request",
    "format_transcript",
]


INCREMENTAL_INSTRUCTION: str = (
    "Summarize strictly from the content of the \"transcript\" below. "
    "Do not add any information that is not in it."
)
CONSOLIDATION_INSTRUCTION: str = (
    "Refine the following separate \"detailed summary records\" into one "
    "coherent chapter history. Source text:"
)
RECORD_PREAMBLE: str = "The following events have already happened, in order:"
CHAPTER_SEPARATOR: str = "---"
CHAPTER_HEADING: str = "[Detailed summary of floors {start} through {end}]"
RECAP_HEADER: str = "The following is a recap of the story so far, floors 1 through {floors}."
RECAP_FOOTER: str = "[Chapter compiled for floors 1 through {floors}]"


def format_transcript(cleaned: Sequence[CleanedMessage]) -> str:
    return "\n".join(
        f"[Floor {item.floor}] {item.speaker_label}: {item.content}" for item in cleaned
    )


def build_incremental_request(
    cleaned: Sequence[CleanedMessage],
    floor_range: FloorRange,
    prompt_template: str,
) -> list[dict[str, Any]]:
    if not cleaned:
        raise NoContentError(f"No usable messages in floors {floor_range}")
    history = format_transcript(cleaned)
    return [
        {"role": "system", "content": prompt_template},
        {
            "role": "user",
            "content": f"{INCREMENTAL_INSTRUCTION}\n\n<transcript>\n{history}\n</transcript>",
        },
    ]


def apply_incremental_result(
    body: Optional[str],
    summary_text: str,
    floor_range: FloorRange,
) -> str:
    """Append one chapter for ``floor_range`` and move the seal to its end.

    ``body`` is the current entry text, or ``None`` when no entry exists yet.
    A range that starts at or below the current seal is rejected, so no floor
    is summarised twice.
    """
    current = progress_seal.decode(body) or 0
    if floor_range.start <= current:
        raise ProgressRegressionError(current, floor_range.start)

    chapter = "{}\n\n{}\n{}".format(
        CHAPTER_SEPARATOR,
        CHAPTER_HEADING.format(start=floor_range.start, end=floor_range.end),
        (summary_text or "").strip(),
    )
    parts: list[str] = []
    if body is None:
        parts.append(RECORD_PREAMBLE)
    else:
        previous = progress_seal.strip_marker(body)
        if previous:
            parts.append(previous)
    parts.append(chapter)
    parts.append(progress_seal.encode(floor_range.end))
    return "\n\n".join(parts)


def build_consolidation_request(
    body: Optional[str],
    prompt_template: str,
) -> list[dict[str, Any]]:
    if progress_seal.decode(body) is None:
        raise MalformedRecordError("Summary entry has no progress seal")
    source = progress_seal.strip_marker(body)
    if not source:
        raise NoContentError("Summary entry has nothing to consolidate")
    return [
        {"role": "system", "content": prompt_template},
        {"role": "user", "content": f"{CONSOLIDATION_INSTRUCTION}\n\n{source}"},
    ]


def apply_consolidation_result(body: Optional[str], consolidated_text: str) -> str:
    """Replace every chapter with one consolidated block; the seal is kept as-is."""
    seal = progress_seal.find_marker(body)
    floors = progress_seal.decode(body)
    if seal is None or floors is None:
        raise MalformedRecordError("Summary entry has no progress seal")
    text = (consolidated_text or "").strip()
    if not text:
        raise NoContentError("Consolidated summary is empty")
    return "\n\n".join(
        [
            RECAP_HEADER.format(floors=floors),
            CHAPTER_SEPARATOR,
            text,
            RECAP_FOOTER.format(floors=floors),
            seal,
        ]
    )
