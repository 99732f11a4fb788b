"""Decide when to summarise, and run small/large summary cycles one at a time.

A cycle walks ``EVALUATING -> SELECTING -> COMPOSING -> AWAITING_REVIEW ->
MERGING`` and returns to ``IDLE``. Only one cycle may run per target lorebook;
the small and large paths share that slot, and growth signals that arrive
while it is taken are dropped (the next signal re-evaluates).
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import progress_seal
from llm_clients import ChatClient
from notifications import LoggingNotifier, Notifier
from record_merger import RecordMerger
from reviewers import ReviewAction, Reviewer
from summary_composer import (
    apply_consolidation_result,
    apply_incremental_result,
    build_consolidation_request,
    build_incremental_request,
)
from summary_errors import NoContentError, SummaryError, TransportFailure, UnboundTargetError
from summary_settings import SummarySettings
from text_selector import rules_from_settings, select_messages
from transcript import ConversationContext, FloorRange, resolve_target_name


__all__ = ["AutoTrigger", "CycleState", "ProgressStatus", "plan_range"]


log = logging.getLogger("AutoSummary")


class CycleState(enum.Enum):
    IDLE = "idle"
    EVALUATING = "evaluating"
    SELECTING = "selecting"
    COMPOSING = "composing"
    AWAITING_REVIEW = "awaiting_review"
    MERGING = "merging"


def plan_range(
    covered: int,
    transcript_length: int,
    retention_count: int,
    threshold: int,
    *,
    auto: bool,
) -> Optional[FloorRange]:
    """Next floor range to summarise, or ``None`` when there is nothing to do.

    Automatic runs wait for a full ``threshold`` of unsummarised floors; manual
    runs take whatever is available, up to ``threshold`` floors.
    """
    summarizable = transcript_length - retention_count
    unsummarized = summarizable - covered
    if auto:
        if unsummarized < threshold:
            return None
    elif unsummarized <= 0:
        return None
    return FloorRange(covered + 1, min(covered + threshold, summarizable))


@dataclass(frozen=True)
class ProgressStatus:
    enabled: bool
    auto_enabled: bool
    target: Optional[str]
    transcript_length: int
    covered_floors: Optional[int]
    retention_count: int
    unsummarized: Optional[int]
    threshold: int
    next_range: Optional[FloorRange]
    state: CycleState = CycleState.IDLE
    error: Optional[str] = None

    def describe(self) -> str:
        lines = [
            f"Summaries enabled: {'yes' if self.enabled else 'no'}",
            f"Automatic small summaries: {'yes' if self.auto_enabled else 'no'}",
            f"Target lorebook: {self.target or '-'}",
            f"Transcript length: {self.transcript_length} messages",
        ]
        if self.covered_floors:
            lines.append(f"Summarized: floors 1 through {self.covered_floors}")
        elif self.covered_floors is not None:
            lines.append("Summarized: nothing yet")
        lines.append(f"Kept unsummarized (retention): {self.retention_count}")
        if self.unsummarized is not None:
            lines.append(f"Unsummarized: {self.unsummarized} messages")
        lines.append(f"Auto trigger threshold: {self.threshold} messages")
        lines.append(f"Cycle state: {self.state.value}")
        if self.error:
            lines.append(f"Error: {self.error}")
        elif self.next_range is not None:
            lines.append(
                f"Next manual small summary covers floors {self.next_range.start}-{self.next_range.end}"
            )
        elif self.covered_floors is not None:
            lines.append("All summarizable messages are summarized")
        return "\n".join(lines)


class AutoTrigger:
    def __init__(
        self,
        settings: SummarySettings,
        merger: RecordMerger,
        summarizer: ChatClient,
        *,
        reviewer: Optional[Reviewer] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.settings = settings
        self.merger = merger
        self.summarizer = summarizer
        self.reviewer = reviewer
        self.notifier: Notifier = notifier or LoggingNotifier()
        self._states: dict[str, CycleState] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    # ---------------- in-flight bookkeeping ----------------

    def state(self, target: str) -> CycleState:
        return self._states.get(target, CycleState.IDLE)

    def is_busy(self, target: str) -> bool:
        return target in self._states

    def _claim(self, target: str) -> bool:
        if target in self._states:
            return False
        self._states[target] = CycleState.EVALUATING
        return True

    def _release(self, target: str) -> None:
        self._states.pop(target, None)
        self._tasks.pop(target, None)

    def _release_task(self, target: str, task: asyncio.Task) -> None:
        if self._tasks.get(target) is not task:
            return
        if task.cancelled():
            # cancelled before its first step, so _guarded never ran
            log.warning("[Trigger] Cycle for %s cancelled before it started", target)
            self.notifier.warning(f"Summary for {target} was cancelled")
        self._release(target)

    def _enter(self, target: str, state: CycleState) -> None:
        self._states[target] = state

    def cancel(self, target: str) -> bool:
        """Cancel the cycle running for ``target``.

        Returns False if no cycle runs, or if it is already writing the entry:
        a save in progress cannot be stopped, so the cycle is left to finish.
        """
        task = self._tasks.get(target)
        if task is None or task.done():
            return False
        if self.state(target) is CycleState.MERGING:
            self.notifier.warning(f"The summary for {target} is already being saved")
            return False
        task.cancel()
        return True

    async def _in_executor(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def _merge(self, target: str, new_body: str) -> None:
        self._enter(target, CycleState.MERGING)
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(
            None, self.merger.merge, target, new_body, self.settings.lore.entry_template()
        )
        try:
            await asyncio.shield(future)
        except asyncio.CancelledError:
            # the executor thread keeps writing; hold the target until it lands
            await asyncio.wait({future})
            raise

    def _resolve(self, context: ConversationContext) -> Optional[str]:
        try:
            return resolve_target_name(context, self.settings.target)
        except UnboundTargetError as exc:
            log.error("[Trigger] %s", exc)
            self.notifier.error(str(exc))
            return None

    # ---------------- entry points ----------------

    def on_transcript_grown(self, context: ConversationContext) -> Optional[asyncio.Task]:
        """Schedule an automatic evaluation for the conversation's target.

        Must be called from a running event loop. Returns the scheduled task, or
        ``None`` when auto summaries are off, the target is unbound, or a cycle
        is already running for the target.
        """
        if not (self.settings.enabled and self.settings.small.auto_enabled):
            return None
        target = self._resolve(context)
        if target is None:
            return None
        if not self._claim(target):
            log.debug("[Trigger] Cycle already running for %s, signal ignored", target)
            return None
        task = asyncio.get_running_loop().create_task(
            self._guarded(target, lambda: self._small_cycle(target, context, auto=True))
        )
        self._tasks[target] = task
        # a task cancelled before its first step never reaches _guarded
        task.add_done_callback(lambda done: self._release_task(target, done))
        return task

    async def run_small_summary(self, context: ConversationContext, *, auto: bool = False) -> bool:
        target = self._resolve(context)
        if target is None:
            return False
        if not self._claim(target):
            self.notifier.warning(f"A summary is already running for {target}")
            return False
        current = asyncio.current_task()
        if current is not None:
            self._tasks[target] = current
        return await self._guarded(target, lambda: self._small_cycle(target, context, auto=auto))

    async def run_large_summary(self, context: ConversationContext) -> bool:
        target = self._resolve(context)
        if target is None:
            return False
        if not self._claim(target):
            self.notifier.warning(f"A summary is already running for {target}")
            return False
        current = asyncio.current_task()
        if current is not None:
            self._tasks[target] = current
        return await self._guarded(target, lambda: self._large_cycle(target))

    async def read_status(self, context: ConversationContext) -> ProgressStatus:
        settings = self.settings
        target: Optional[str] = None
        covered: Optional[int] = None
        error: Optional[str] = None
        try:
            target = resolve_target_name(context, settings.target)
            covered = await self._in_executor(self.merger.read_progress, target)
        except SummaryError as exc:
            error = str(exc)
        unsummarized: Optional[int] = None
        next_range: Optional[FloorRange] = None
        if covered is not None:
            summarizable = context.length - settings.retention_count
            unsummarized = max(0, summarizable - covered)
            next_range = plan_range(
                covered,
                context.length,
                settings.retention_count,
                settings.small.threshold,
                auto=False,
            )
        return ProgressStatus(
            enabled=settings.enabled,
            auto_enabled=settings.small.auto_enabled,
            target=target,
            transcript_length=context.length,
            covered_floors=covered,
            retention_count=settings.retention_count,
            unsummarized=unsummarized,
            threshold=settings.small.threshold,
            next_range=next_range,
            state=self.state(target) if target else CycleState.IDLE,
            error=error,
        )

    # ---------------- cycles ----------------

    async def _guarded(self, target: str, cycle: Callable[[], Awaitable[bool]]) -> bool:
        try:
            return await cycle()
        except asyncio.CancelledError:
            log.warning("[Trigger] Cycle for %s cancelled", target)
            self.notifier.warning(f"Summary for {target} was cancelled")
            raise
        except NoContentError as exc:
            log.warning("[Trigger] %s: %s", target, exc)
            self.notifier.warning(str(exc))
            return False
        except SummaryError as exc:
            log.error("[Trigger] Summary for %s failed: %s", target, exc)
            self.notifier.error(f"Summary failed: {exc}")
            return False
        except Exception as exc:
            log.exception("[Trigger] Unexpected error while summarising %s", target)
            self.notifier.error(f"Summary failed: {exc}")
            return False
        finally:
            self._release(target)

    async def _summarize(self, request: list[dict[str, Any]]) -> str:
        return await self._in_executor(self.summarizer.chat, request)

    async def _review(
        self,
        target: str,
        text: str,
        request: list[dict[str, Any]],
        title: str,
    ) -> Optional[str]:
        """Run the review loop; returns the text to write, or ``None`` on cancel."""
        assert self.reviewer is not None
        pending = text
        while True:
            self._enter(target, CycleState.AWAITING_REVIEW)
            decision = await self.reviewer.review(pending, title=title)
            if decision.action is ReviewAction.CANCEL:
                return None
            if decision.action is ReviewAction.CONFIRM:
                confirmed = pending if decision.text is None else decision.text
                if not confirmed.strip():
                    raise NoContentError("The confirmed summary is empty; nothing was written")
                return confirmed
            self._enter(target, CycleState.COMPOSING)
            self.notifier.info("Regenerating summary...")
            try:
                pending = await self._summarize(request)
            except TransportFailure as exc:
                log.error("[Trigger] Regeneration for %s failed: %s", target, exc)
                self.notifier.error(f"Regeneration failed: {exc}")

    async def _small_cycle(self, target: str, context: ConversationContext, *, auto: bool) -> bool:
        settings = self.settings
        self._enter(target, CycleState.EVALUATING)
        body = await self._in_executor(self.merger.read_summary_body, target)
        covered = progress_seal.decode(body) or 0
        floor_range = plan_range(
            covered,
            context.length,
            settings.retention_count,
            settings.small.threshold,
            auto=auto,
        )
        if floor_range is None:
            if auto:
                log.debug(
                    "[Trigger] %s: %d floors covered, below threshold", target, covered
                )
            else:
                self.notifier.info("There are no new messages to summarize")
            return False

        log.info("[Trigger] Summarising floors %s into %s", floor_range, target)
        self._enter(target, CycleState.SELECTING)
        cleaned = select_messages(
            context.slice(floor_range),
            rules_from_settings(settings),
            user_name=context.user_name,
            character_name=context.character_name,
        )
        if not cleaned:
            raise NoContentError(f"No usable messages in floors {floor_range}")
        request = build_incremental_request(cleaned, floor_range, settings.small.prompt)

        self._enter(target, CycleState.COMPOSING)
        self.notifier.info(f"Generating summary for floors {floor_range}...")
        try:
            summary = await self._summarize(request)
        except TransportFailure as exc:
            raise TransportFailure(
                f"Summary generation for floors {floor_range} failed: {exc}"
            ) from exc

        if self.reviewer is not None and (not auto or settings.small.interactive):
            reviewed = await self._review(
                target, summary, request, title=f"Summary preview: floors {floor_range}"
            )
            if reviewed is None:
                self.notifier.info("Summary cancelled")
                return False
            summary = reviewed

        new_body = apply_incremental_result(body, summary, floor_range)
        await self._merge(target, new_body)
        log.info("[Trigger] %s now covers floors 1 through %d", target, floor_range.end)
        self.notifier.success(f"Summary written to lorebook {target}")
        return True

    async def _large_cycle(self, target: str) -> bool:
        settings = self.settings
        self._enter(target, CycleState.EVALUATING)
        body = await self._in_executor(self.merger.read_summary_body, target)
        if body is None:
            raise NoContentError(f"No summary entry found in {target}")

        self._enter(target, CycleState.SELECTING)
        request = build_consolidation_request(body, settings.large.prompt)
        floors = progress_seal.decode(body)

        self._enter(target, CycleState.COMPOSING)
        self.notifier.info("Generating consolidated summary...")
        try:
            consolidated = await self._summarize(request)
        except TransportFailure as exc:
            raise TransportFailure(
                f"Consolidation of floors 1-{floors} failed: {exc}"
            ) from exc

        if self.reviewer is not None:
            reviewed = await self._review(
                target, consolidated, request, title=f"Consolidation preview: floors 1-{floors}"
            )
            if reviewed is None:
                self.notifier.info("Consolidation cancelled")
                return False
            consolidated = reviewed

        new_body = apply_consolidation_result(body, consolidated)
        await self._merge(target, new_body)
        log.info("[Trigger] Consolidated %s (floors 1 through %s)", target, floors)
        self.notifier.success(f"Consolidated summary written to lorebook {target}")
        return True
