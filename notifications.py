"""Operator-facing notices (progress, success, failures)."""

from __future__ import annotations

import logging
from typing import Optional, Protocol


__all__ = ["LoggingNotifier", "Notifier"]


class Notifier(Protocol):
    def info(self, message: str) -> None:
        ...

    def success(self, message: str) -> None:
        ...

    def warning(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...


class LoggingNotifier:
    """Send notices to the ``AutoSummary.notify`` logger."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.log = logger or logging.getLogger("AutoSummary.notify")

    def info(self, message: str) -> None:
        self.log.info("[Auto Summary] %s", message)

    def success(self, message: str) -> None:
        self.log.info("[Auto Summary] OK: %s", message)

    def warning(self, message: str) -> None:
        self.log.warning("[Auto Summary] %s", message)

    def error(self, message: str) -> None:
        self.log.error("[Auto Summary] %s", message)
