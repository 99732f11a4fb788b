"""Settings for the lorebook summariser, read from an INI file.

Example::

    [general]
    enabled = true
    target = per_chat
    retention_count = 5

    [small_summary]
    auto_enabled = true
    threshold = 20
    interactive = false

    [tag_extraction]
    enabled = true
    tags = scene, summary

    [exclusion]
    enabled = true

    [exclusion_rule 1]
    start = <!--
    end = -->

    [api]
    url = http://localhost:5001
    key = sk-...
    model = gpt-4o-mini
"""

from __future__ import annotations

from configparser import ConfigParser, Error as ConfigParserError
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from record_merger import LoreEntryTemplate
from text_selector import parse_tag_list
from transcript import TARGET_CHARACTER_MAIN, TARGET_PER_CHAT


__all__ = [
    "ApiSettings",
    "ExclusionRule",
    "ExclusionSettings",
    "LargeSummarySettings",
    "LoreSettings",
    "SmallSummarySettings",
    "SummarySettings",
    "TagExtractionSettings",
    "load_settings",
]


DEFAULT_SMALL_PROMPT: str = (
    "You are a professional conversation summarization assistant. Read the "
    "following conversation record carefully, extract the key information and "
    "produce a concise, accurate summary.\n\n"
    "Requirements:\n"
    "1. Keep important plot developments and character interactions\n"
    "2. Record key emotional changes and decisions\n"
    "3. Be brief and avoid redundancy\n"
    "4. Narrate in the third person\n"
    "5. Keep an objective, neutral tone\n\n"
    "Write the summary based on the conversation content."
)

DEFAULT_LARGE_PROMPT: str = (
    "You are a professional content refinement assistant. You will receive "
    "several separate detailed summary records. Refine and merge them into one "
    "coherent, compact chapter history.\n\n"
    "Requirements:\n"
    "1. Keep every key plot point and important event\n"
    "2. Merge repeated or similar information\n"
    "3. Use a fluent narrative structure\n"
    "4. Highlight important turning points and climaxes\n"
    "5. Compress details but keep the core content\n"
    "6. Keep the timeline clear and continuous\n\n"
    "Refine the following summary records into one complete chapter."
)

ACTIVATION_CONSTANT: str = "constant"
ACTIVATION_SELECTIVE: str = "selective"

_RULE_SECTION_PREFIX = "exclusion_rule"


@dataclass(frozen=True)
class SmallSummarySettings:
    auto_enabled: bool = False
    threshold: int = 20
    interactive: bool = True
    prompt: str = DEFAULT_SMALL_PROMPT


@dataclass(frozen=True)
class LargeSummarySettings:
    prompt: str = DEFAULT_LARGE_PROMPT


@dataclass(frozen=True)
class TagExtractionSettings:
    enabled: bool = False
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class ExclusionRule:
    start: str
    end: str


@dataclass(frozen=True)
class ExclusionSettings:
    enabled: bool = False
    rules: tuple[ExclusionRule, ...] = (ExclusionRule("<!--", "-->"),)


@dataclass(frozen=True)
class LoreSettings:
    activation_mode: str = ACTIVATION_CONSTANT
    keywords: tuple[str, ...] = ("plot", "summary", "history")
    insertion_position: int = 2
    depth: int = 4

    def entry_template(self) -> LoreEntryTemplate:
        return LoreEntryTemplate(
            keywords=self.keywords,
            constant=self.activation_mode == ACTIVATION_CONSTANT,
            position=self.insertion_position,
            depth=self.depth,
        )


@dataclass(frozen=True)
class ApiSettings:
    url: str = ""
    key: str = ""
    model: str = ""


@dataclass(frozen=True)
class SummarySettings:
    enabled: bool = False
    target: str = TARGET_CHARACTER_MAIN
    retention_count: int = 5
    small: SmallSummarySettings = field(default_factory=SmallSummarySettings)
    large: LargeSummarySettings = field(default_factory=LargeSummarySettings)
    tag_extraction: TagExtractionSettings = field(default_factory=TagExtractionSettings)
    exclusion: ExclusionSettings = field(default_factory=ExclusionSettings)
    lore: LoreSettings = field(default_factory=LoreSettings)
    api: ApiSettings = field(default_factory=ApiSettings)

    def __post_init__(self) -> None:
        if self.target not in {TARGET_CHARACTER_MAIN, TARGET_PER_CHAT}:
            raise ValueError(
                f"target must be '{TARGET_CHARACTER_MAIN}' or '{TARGET_PER_CHAT}', got {self.target!r}"
            )
        if self.retention_count < 0:
            raise ValueError("retention_count must be >= 0")
        if self.small.threshold <= 0:
            raise ValueError("small_summary threshold must be > 0")
        if self.lore.activation_mode not in {ACTIVATION_CONSTANT, ACTIVATION_SELECTIVE}:
            raise ValueError(
                f"lore activation_mode must be '{ACTIVATION_CONSTANT}' or "
                f"'{ACTIVATION_SELECTIVE}', got {self.lore.activation_mode!r}"
            )


def _get_bool(parser: ConfigParser, section: str, key: str, fallback: bool) -> bool:
    try:
        return parser.getboolean(section, key, fallback=fallback)
    except ValueError as exc:
        raise ValueError(f"[{section}] {key}: {exc}") from exc


def _get_int(parser: ConfigParser, section: str, key: str, fallback: int) -> int:
    try:
        return parser.getint(section, key, fallback=fallback)
    except ValueError as exc:
        raise ValueError(f"[{section}] {key} must be an integer") from exc


def _get_str(parser: ConfigParser, section: str, key: str, fallback: str) -> str:
    value = parser.get(section, key, fallback=None)
    if value is None:
        return fallback
    return value.strip()


def _read_exclusion_rules(parser: ConfigParser) -> Optional[tuple[ExclusionRule, ...]]:
    sections = [
        name for name in parser.sections() if name.split()[0] == _RULE_SECTION_PREFIX
    ]
    if not sections:
        return None
    rules: list[ExclusionRule] = []
    for name in sections:
        start = parser.get(name, "start", fallback="").strip()
        end = parser.get(name, "end", fallback="").strip()
        if start and end:
            rules.append(ExclusionRule(start=start, end=end))
    return tuple(rules)


def load_settings(config_path: Optional[Path]) -> SummarySettings:
    """Read settings from ``config_path``; a missing file yields the defaults."""
    if config_path is None:
        return SummarySettings()
    config_path = Path(config_path).expanduser()
    if not config_path.exists():
        return SummarySettings()

    parser = ConfigParser(interpolation=None)
    try:
        with config_path.open("r", encoding="utf-8") as fp:
            parser.read_file(fp)
    except (OSError, ConfigParserError) as exc:
        raise RuntimeError(
            f"Unable to read configuration file {config_path}: {exc}"
        ) from exc

    defaults = SummarySettings()
    small_defaults = defaults.small
    lore_defaults = defaults.lore

    small = SmallSummarySettings(
        auto_enabled=_get_bool(parser, "small_summary", "auto_enabled", small_defaults.auto_enabled),
        threshold=_get_int(parser, "small_summary", "threshold", small_defaults.threshold),
        interactive=_get_bool(parser, "small_summary", "interactive", small_defaults.interactive),
        prompt=_get_str(parser, "small_summary", "prompt", small_defaults.prompt),
    )
    large = LargeSummarySettings(
        prompt=_get_str(parser, "large_summary", "prompt", defaults.large.prompt),
    )
    tag_extraction = TagExtractionSettings(
        enabled=_get_bool(parser, "tag_extraction", "enabled", False),
        tags=parse_tag_list(parser.get("tag_extraction", "tags", fallback="")),
    )
    rules = _read_exclusion_rules(parser)
    exclusion = ExclusionSettings(
        enabled=_get_bool(parser, "exclusion", "enabled", False),
        rules=defaults.exclusion.rules if rules is None else rules,
    )
    raw_keywords = parser.get("lore", "keywords", fallback=None)
    lore = LoreSettings(
        activation_mode=_get_str(parser, "lore", "activation_mode", lore_defaults.activation_mode),
        keywords=lore_defaults.keywords if raw_keywords is None else parse_tag_list(raw_keywords),
        insertion_position=_get_int(parser, "lore", "insertion_position", lore_defaults.insertion_position),
        depth=_get_int(parser, "lore", "depth", lore_defaults.depth),
    )
    api = ApiSettings(
        url=_get_str(parser, "api", "url", ""),
        key=_get_str(parser, "api", "key", ""),
        model=_get_str(parser, "api", "model", ""),
    )
    return SummarySettings(
        enabled=_get_bool(parser, "general", "enabled", defaults.enabled),
        target=_get_str(parser, "general", "target", defaults.target),
        retention_count=_get_int(parser, "general", "retention_count", defaults.retention_count),
        small=small,
        large=large,
        tag_extraction=tag_extraction,
        exclusion=exclusion,
        lore=lore,
        api=api,
    )
