"""Keep exactly one canonical summary entry per lorebook and write into it."""

from __future__ import annotations

import copy
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import progress_seal
from lorebook_store import LorebookStore
from summary_errors import ProgressRegressionError, StoreNotFoundError


__all__ = ["LoreEntryTemplate", "RecordMerger", "SUMMARY_COMMENT", "find_summary_entry"]


log = logging.getLogger("AutoSummary.merge")

SUMMARY_COMMENT: str = "[Auto Summary] Conversation history summary"


@dataclass(frozen=True)
class LoreEntryTemplate:
    """Fields used only when the summary entry has to be created."""

    keywords: tuple[str, ...] = ()
    constant: bool = True
    position: int = 0
    depth: int = 4
    selective_logic: int = 0
    order: int = 100


def _is_summary_entry(entry: Any) -> bool:
    return (
        isinstance(entry, dict)
        and entry.get("comment") == SUMMARY_COMMENT
        and not entry.get("disable")
    )


def find_summary_entry(book: dict[str, Any]) -> Optional[tuple[str, dict[str, Any]]]:
    entries = book.get("entries") or {}
    for key, entry in entries.items():
        if _is_summary_entry(entry):
            return key, entry
    return None


def _fresh_uid(entries: dict[str, Any]) -> str:
    candidate = int(time.time() * 1000)
    taken = {str(key) for key in entries}
    taken.update(str(entry.get("uid")) for entry in entries.values() if isinstance(entry, dict))
    while str(candidate) in taken:
        candidate += 1
    return str(candidate)


class RecordMerger:
    def __init__(self, store: LorebookStore) -> None:
        self.store = store

    def read_summary_body(self, name: str) -> Optional[str]:
        try:
            book = self.store.load(name)
        except StoreNotFoundError:
            return None
        found = find_summary_entry(book)
        if found is None:
            return None
        content = found[1].get("content")
        return content if isinstance(content, str) else ""

    def read_progress(self, name: str) -> int:
        return progress_seal.decode(self.read_summary_body(name)) or 0

    def merge(
        self,
        name: str,
        new_body: str,
        template: LoreEntryTemplate,
    ) -> dict[str, Any]:
        """Write ``new_body`` into the lorebook's summary entry and save the book.

        Returns the stored entry. The book is modified on a copy and saved in
        one call, so a failed save leaves the stored state untouched.
        """
        try:
            book = copy.deepcopy(self.store.load(name))
        except StoreNotFoundError:
            log.info("[Merge] Lorebook %s does not exist, creating it", name)
            book = {"name": name, "entries": {}}
            self.store.save(name, book)
            book = copy.deepcopy(book)

        entries = book.get("entries")
        if not isinstance(entries, dict):
            entries = {}
            book["entries"] = entries

        canonical = [key for key, entry in entries.items() if _is_summary_entry(entry)]
        if canonical:
            key = canonical[0]
            entry = entries[key]
            current = progress_seal.decode(entry.get("content")) or 0
            proposed = progress_seal.decode(new_body) or 0
            if proposed < current:
                raise ProgressRegressionError(current, proposed)
            for extra in canonical[1:]:
                log.warning(
                    "[Merge] Disabling duplicate summary entry %s in %s", extra, name
                )
                entries[extra]["disable"] = True
            entry["content"] = new_body
            log.info("[Merge] Updated summary entry %s in %s", key, name)
        else:
            key = _fresh_uid(entries)
            entry = {
                "key": list(template.keywords),
                "comment": SUMMARY_COMMENT,
                "content": new_body,
                "constant": bool(template.constant),
                "disable": False,
                "position": int(template.position),
                "depth": int(template.depth),
                "selectiveLogic": int(template.selective_logic),
                "order": int(template.order),
                "uid": key,
            }
            entries[key] = entry
            log.info("[Merge] Created summary entry %s in %s", key, name)

        self.store.save(name, book)
        return entry
