"""Transcript model: floors, ranges, conversation context and target lookup."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from summary_errors import UnboundTargetError


__all__ = [
    "ConversationContext",
    "FloorRange",
    "TARGET_CHARACTER_MAIN",
    "TARGET_PER_CHAT",
    "TranscriptMessage",
    "load_transcript",
    "resolve_target_name",
]


TARGET_CHARACTER_MAIN: str = "character_main"
TARGET_PER_CHAT: str = "per_chat"
PER_CHAT_PREFIX: str = "AutoSummary-"


@dataclass(frozen=True)
class TranscriptMessage:
    floor: int
    is_user: bool
    text: str


@dataclass(frozen=True)
class FloorRange:
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 1 or self.end < self.start:
            raise ValueError(
                f"Invalid floor range {self.start}-{self.end}: need 1 <= start <= end"
            )

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


@dataclass(frozen=True)
class ConversationContext:
    """Everything the summariser needs to know about the open conversation."""

    messages: tuple[TranscriptMessage, ...] = ()
    chat_id: Optional[str] = None
    user_name: str = ""
    character_name: str = ""
    character_lorebook: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def length(self) -> int:
        return len(self.messages)

    def slice(self, floor_range: FloorRange) -> list[TranscriptMessage]:
        return list(self.messages[floor_range.start - 1 : floor_range.end])


def resolve_target_name(context: ConversationContext, target: str) -> str:
    if target == TARGET_CHARACTER_MAIN:
        name = (context.character_lorebook or "").strip()
        if not name:
            raise UnboundTargetError(
                "The current character has no primary lorebook bound"
            )
        return name
    if target == TARGET_PER_CHAT:
        chat_id = (context.chat_id or "").strip() or "unknown"
        return f"{PER_CHAT_PREFIX}{chat_id}"
    raise ValueError(
        f"Unknown summary target {target!r}. Use '{TARGET_CHARACTER_MAIN}' or '{TARGET_PER_CHAT}'."
    )


def load_transcript(
    path: Path,
    *,
    chat_id: Optional[str] = None,
    character_lorebook: Optional[str] = None,
) -> ConversationContext:
    """Read a chat log in JSONL form.

    The first line may be a header carrying ``user_name`` / ``character_name``.
    Every other line is one floor: ``{"is_user": bool, "mes": str, "name": str}``.
    Lines that are not JSON are read as ``Speaker: text``; a speaker equal to
    the user name counts as the user.
    """
    user_name = ""
    character_name = ""
    messages: list[TranscriptMessage] = []
    with path.open("r", encoding="utf-8") as fp:
        for line in fp:
            raw = line.strip()
            if not raw:
                continue
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                if ":" not in raw:
                    continue
                speaker_part, text_part = raw.split(":", 1)
                speaker = speaker_part.strip()
                is_user = bool(user_name) and speaker == user_name
                messages.append(
                    TranscriptMessage(
                        floor=len(messages) + 1,
                        is_user=is_user,
                        text=text_part.strip(),
                    )
                )
                continue
            if not isinstance(data, dict):
                continue
            if "mes" not in data and ("user_name" in data or "character_name" in data):
                user_name = str(data.get("user_name") or user_name)
                character_name = str(data.get("character_name") or character_name)
                continue
            text_value = data.get("mes")
            if not isinstance(text_value, str):
                text_value = ""
            messages.append(
                TranscriptMessage(
                    floor=len(messages) + 1,
                    is_user=bool(data.get("is_user")),
                    text=text_value,
                )
            )
    return ConversationContext(
        messages=tuple(messages),
        chat_id=chat_id or path.stem,
        user_name=user_name,
        character_name=character_name,
        character_lorebook=character_lorebook,
    )
