"""Lorebook storage: the contract the merger relies on and a JSON-file backend."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Protocol

from summary_errors import StoreNotFoundError, StoreWriteError, TransportFailure


__all__ = ["JsonLorebookStore", "LorebookStore"]


log = logging.getLogger("AutoSummary.store")


class LorebookStore(Protocol):
    """Named lorebooks shaped as ``{"name": str, "entries": {uid: entry}}``."""

    def load(self, name: str) -> dict[str, Any]:
        ...

    def save(self, name: str, book: dict[str, Any]) -> None:
        ...


class JsonLorebookStore:
    """One ``<name>.json`` file per lorebook under ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root).expanduser()

    def path_for(self, name: str) -> Path:
        cleaned = (name or "").strip()
        if not cleaned or cleaned in {".", ".."}:
            raise ValueError(f"Invalid lorebook name: {name!r}")
        if "/" in cleaned or "\\" in cleaned or "\x00" in cleaned:
            raise ValueError(f"Lorebook name must not contain path separators: {name!r}")
        return self.root / f"{cleaned}.json"

    def load(self, name: str) -> dict[str, Any]:
        path = self.path_for(name)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise StoreNotFoundError(name) from None
        except OSError as exc:
            raise TransportFailure(f"Unable to read lorebook {path}: {exc}") from exc
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise TransportFailure(f"Lorebook {path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise TransportFailure(f"Lorebook {path} does not hold a JSON object")
        if not isinstance(data.get("entries"), dict):
            data["entries"] = {}
        return data

    def save(self, name: str, book: dict[str, Any]) -> None:
        path = self.path_for(name)
        payload = json.dumps(book, ensure_ascii=False, indent=2)
        tmp_path: Optional[Path] = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=path.parent, suffix=".tmp", delete=False
            ) as tmp:
                tmp_path = Path(tmp.name)
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            # atomic rename on the same filesystem
            os.replace(tmp_path, path)
        except OSError as exc:
            if tmp_path is not None:
                try:
                    tmp_path.unlink()
                except OSError:
                    pass
            raise StoreWriteError(f"Unable to save lorebook {path}: {exc}") from exc
        log.debug("[Store] Saved %s (%d entries)", path, len(book.get("entries") or {}))
