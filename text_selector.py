"""Pick the part of each transcript message that goes into a summary."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from transcript import TranscriptMessage


__all__ = [
    "CleanedMessage",
    "SelectionRules",
    "apply_exclusion_rules",
    "extract_tag_blocks",
    "parse_tag_list",
    "rules_from_settings",
    "select_messages",
]


DEFAULT_USER_NAME: str = "User"
DEFAULT_CHARACTER_NAME: str = "Character"


@dataclass(frozen=True)
class SelectionRules:
    tag_names: tuple[str, ...] = ()
    exclusion_spans: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class CleanedMessage:
    floor: int
    speaker_label: str
    is_user: bool
    content: str


def parse_tag_list(raw: Optional[str]) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def extract_tag_blocks(text: str, tags: Iterable[str]) -> list[str]:
    """Return every ``<tag ...>...</tag>`` block, grouped by tag order."""
    if not text:
        return []
    blocks: list[str] = []
    for tag in tags:
        name = (tag or "").strip()
        if not name:
            continue
        escaped = re.escape(name)
        pattern = re.compile(rf"<{escaped}(?:\s[^>]*)?>[\s\S]*?</{escaped}>")
        blocks.extend(match.group(0) for match in pattern.finditer(text))
    return blocks


def _strip_spans_once(text: str, start: str, end: str) -> tuple[str, bool]:
    parts: list[str] = []
    removed = False
    pos = 0
    while True:
        begin = text.find(start, pos)
        if begin < 0:
            break
        finish = text.find(end, begin + len(start))
        if finish < 0:
            break
        parts.append(text[pos:begin])
        pos = finish + len(end)
        removed = True
    parts.append(text[pos:])
    return "".join(parts), removed


def apply_exclusion_rules(text: str, rules: Iterable[tuple[str, str]]) -> str:
    """Remove literal ``start ... end`` spans, one rule after another.

    Each rule repeats until nothing matches, since removing a span can join
    text into a new match.
    """
    if not text:
        return text
    result = text
    for start, end in rules:
        if not start or not end:
            continue
        removed = True
        while removed:
            result, removed = _strip_spans_once(result, start, end)
    return result


def select_messages(
    messages: Sequence[TranscriptMessage],
    rules: SelectionRules,
    *,
    user_name: str = DEFAULT_USER_NAME,
    character_name: str = DEFAULT_CHARACTER_NAME,
) -> list[CleanedMessage]:
    user_label = (user_name or "").strip() or DEFAULT_USER_NAME
    character_label = (character_name or "").strip() or DEFAULT_CHARACTER_NAME

    cleaned: list[CleanedMessage] = []
    for message in messages:
        content = message.text or ""
        if rules.tag_names:
            blocks = extract_tag_blocks(content, rules.tag_names)
            if blocks:
                content = "\n\n".join(blocks)
        content = apply_exclusion_rules(content, rules.exclusion_spans).strip()
        if not content:
            continue
        cleaned.append(
            CleanedMessage(
                floor=message.floor,
                speaker_label=user_label if message.is_user else character_label,
                is_user=message.is_user,
                content=content,
            )
        )
    return cleaned


def rules_from_settings(settings) -> SelectionRules:
    """Build selection rules from a ``SummarySettings`` instance."""
    tags: tuple[str, ...] = ()
    if settings.tag_extraction.enabled:
        tags = tuple(settings.tag_extraction.tags)
    spans: tuple[tuple[str, str], ...] = ()
    if settings.exclusion.enabled:
        spans = tuple((rule.start, rule.end) for rule in settings.exclusion.rules)
    return SelectionRules(tag_names=tags, exclusion_spans=spans)
