#!/usr/bin/env python
"""Summarise a chat transcript into a lorebook entry from the command line.

Commands:
  status   show how far the transcript has been summarised
  small    summarise the next unsummarised floor range (manual small summary)
  auto     act like a new message arrived: summarise only if the threshold is met
  large    consolidate every chapter of the summary entry into one
  models   list models offered by the configured API (connection test)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from auto_trigger import AutoTrigger
from llm_clients import build_summarizer, list_models
from lorebook_store import JsonLorebookStore
from record_merger import RecordMerger
from reviewers import ConsoleReviewer, Reviewer
from summary_errors import SummaryError
from summary_settings import SummarySettings, load_settings
from transcript import ConversationContext, load_transcript


CONFIG_FILE: str = "summarize_config.ini"      # Settings file (relative to this script)
LOREBOOK_DIR: str = "lorebooks"                # Where <name>.json lorebooks live
REQUEST_TIMEOUT: int = 210                     # HTTP timeout for the summariser, sec

log = logging.getLogger("AutoSummary.cli")


def _resolve_config_path(raw: Optional[str]) -> Path:
    config_path = Path(raw or CONFIG_FILE).expanduser()
    if not config_path.is_absolute() and raw is None:
        config_path = Path(__file__).resolve().parent / config_path
    return config_path


def build_trigger(
    settings: SummarySettings,
    lorebook_dir: Path,
    *,
    reviewer: Optional[Reviewer],
    dry_run: bool = False,
) -> AutoTrigger:
    summarizer = build_summarizer(settings.api, timeout=REQUEST_TIMEOUT, dry_run=dry_run)
    merger = RecordMerger(JsonLorebookStore(lorebook_dir))
    return AutoTrigger(settings, merger, summarizer, reviewer=reviewer)


def _load_context(args: argparse.Namespace) -> ConversationContext:
    transcript_path = Path(args.transcript).expanduser().resolve()
    if not transcript_path.exists():
        raise SystemExit(f"Transcript not found: {transcript_path}")
    return load_transcript(
        transcript_path,
        chat_id=args.chat_id,
        character_lorebook=args.character_lorebook,
    )


async def _run(args: argparse.Namespace, settings: SummarySettings) -> int:
    reviewer: Optional[Reviewer] = None if args.yes else ConsoleReviewer()
    # status never calls the summariser
    trigger = build_trigger(
        settings,
        Path(args.lorebook_dir).expanduser(),
        reviewer=reviewer,
        dry_run=args.dry_run or args.command == "status",
    )
    context = _load_context(args)

    if args.command == "status":
        status = await trigger.read_status(context)
        print(status.describe())
        return 0
    if args.command == "small":
        ok = await trigger.run_small_summary(context)
    elif args.command == "large":
        ok = await trigger.run_large_summary(context)
    else:
        task = trigger.on_transcript_grown(context)
        if task is None:
            print("No automatic summary was started.")
            return 0
        ok = await task
    return 0 if ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("command", choices=["status", "small", "auto", "large", "models"])
    parser.add_argument("--config", default=None, help=f"settings INI (default: {CONFIG_FILE})")
    parser.add_argument("--transcript", help="chat log in JSONL form")
    parser.add_argument("--lorebook-dir", default=LOREBOOK_DIR)
    parser.add_argument("--chat-id", default=None, help="chat id for per_chat targets")
    parser.add_argument("--character-lorebook", default=None, help="lorebook bound to the character")
    parser.add_argument("--yes", action="store_true", help="write without asking for review")
    parser.add_argument("--dry-run", action="store_true", help="do not call the summariser")
    parser.add_argument("--debug", action="store_true")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        settings = load_settings(_resolve_config_path(args.config))
    except (RuntimeError, ValueError) as exc:
        raise SystemExit(f"Invalid settings: {exc}")

    if args.command == "models":
        try:
            names = list_models(settings.api.url, settings.api.key)
        except (SummaryError, ValueError) as exc:
            print(f"Connection failed: {exc}")
            return 1
        if not names:
            print("No models available.")
            return 1
        print(f"Found {len(names)} models:")
        for name in names:
            print(f"  {name}")
        return 0

    if not args.transcript:
        raise SystemExit("--transcript is required for this command")
    try:
        return asyncio.run(_run(args, settings))
    except SummaryError as exc:
        log.error("[CLI] %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
