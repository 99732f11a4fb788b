"""Error types raised by the lorebook summariser."""

from __future__ import annotations

from typing import Optional


__all__ = [
    "MalformedRecordError",
    "NoContentError",
    "ProgressRegressionError",
    "StoreNotFoundError",
    "StoreWriteError",
    "SummaryError",
    "TransportFailure",
    "UnboundTargetError",
]


class SummaryError(RuntimeError):
    """Base class for failures that abort one summarisation cycle."""


class UnboundTargetError(SummaryError):
    """The conversation has no lorebook to write the summary into."""


class StoreNotFoundError(SummaryError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Lorebook not found: {name}")
        self.name = name


class NoContentError(SummaryError):
    """Nothing left to summarise after selection, or nothing to consolidate."""


class MalformedRecordError(SummaryError):
    """The summary entry has no readable progress seal."""


class ProgressRegressionError(SummaryError):
    def __init__(self, current: int, proposed: int) -> None:
        super().__init__(
            f"Floors 1 through {current} are already summarized; "
            f"refusing a write that covers floor {proposed} again"
        )
        self.current = current
        self.proposed = proposed


class TransportFailure(SummaryError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StoreWriteError(TransportFailure):
    """Saving a lorebook failed; nothing was written."""
