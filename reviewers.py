"""Human (or scripted) review of a generated summary before it is written."""

from __future__ import annotations

import asyncio
import enum
import logging
import sys
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Protocol, TextIO


__all__ = [
    "ConsoleReviewer",
    "ReviewAction",
    "ReviewDecision",
    "Reviewer",
    "ScriptedReviewer",
]


log = logging.getLogger("AutoSummary.review")


class ReviewAction(enum.Enum):
    CONFIRM = "confirm"
    REGENERATE = "regenerate"
    CANCEL = "cancel"


@dataclass(frozen=True)
class ReviewDecision:
    action: ReviewAction
    text: Optional[str] = None

    @classmethod
    def confirm(cls, text: Optional[str] = None) -> "ReviewDecision":
        """Accept the summary; ``text`` replaces it when the reviewer edited it."""
        return cls(ReviewAction.CONFIRM, text)

    @classmethod
    def regenerate(cls) -> "ReviewDecision":
        return cls(ReviewAction.REGENERATE)

    @classmethod
    def cancel(cls) -> "ReviewDecision":
        return cls(ReviewAction.CANCEL)


class Reviewer(Protocol):
    async def review(self, text: str, *, title: str) -> ReviewDecision:
        ...


class ScriptedReviewer:
    """Replay a fixed list of decisions; records what it was shown."""

    def __init__(self, decisions: Iterable[ReviewDecision]) -> None:
        self._decisions: deque[ReviewDecision] = deque(decisions)
        self.seen: list[tuple[str, str]] = []

    async def review(self, text: str, *, title: str) -> ReviewDecision:
        self.seen.append((title, text))
        if not self._decisions:
            return ReviewDecision.cancel()
        return self._decisions.popleft()


class ConsoleReviewer:
    """Prompt on the terminal: [c]onfirm, [e]dit, [r]egenerate or e[x]it."""

    def __init__(
        self,
        *,
        input_func: Callable[[str], str] = input,
        output: TextIO = sys.stdout,
    ) -> None:
        self._input = input_func
        self._out = output

    async def review(self, text: str, *, title: str) -> ReviewDecision:
        # input() blocks until Enter; on a daemon thread a cancelled review
        # does not hold up interpreter exit
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def deliver(decision: Optional[ReviewDecision], exc: Optional[BaseException]) -> None:
            if future.done():
                return
            if exc is not None:
                future.set_exception(exc)
            else:
                future.set_result(decision)

        def worker() -> None:
            try:
                outcome = (self._review_blocking(text, title), None)
            except Exception as exc:
                outcome = (None, exc)
            try:
                loop.call_soon_threadsafe(deliver, *outcome)
            except RuntimeError:
                log.debug("[Review] Event loop closed before the answer arrived")

        threading.Thread(target=worker, name="console-review", daemon=True).start()
        return await future

    def _review_blocking(self, text: str, title: str) -> ReviewDecision:
        out = self._out
        out.write(f"\n===== {title} =====\n{text}\n{'=' * (len(title) + 12)}\n")
        out.flush()
        while True:
            try:
                answer = self._input("[c]onfirm / [e]dit / [r]egenerate / e[x]it: ")
            except EOFError:
                return ReviewDecision.cancel()
            choice = answer.strip().lower()[:1]
            if choice == "c":
                return ReviewDecision.confirm(text)
            if choice == "r":
                return ReviewDecision.regenerate()
            if choice == "x":
                return ReviewDecision.cancel()
            if choice == "e":
                out.write("Enter the new text; finish with a line containing a single '.'\n")
                out.flush()
                lines: list[str] = []
                while True:
                    try:
                        line = self._input("")
                    except EOFError:
                        break
                    if line.strip() == ".":
                        break
                    lines.append(line)
                return ReviewDecision.confirm("\n".join(lines))
