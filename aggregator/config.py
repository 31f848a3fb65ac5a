import os
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Pattern, Tuple

import yaml

from aggregator.categories import build_category_rules, build_ignore_patterns
from aggregator.models import CategoryRule
from aggregator.urls import JunkRules, parse_junk_rules

logger = logging.getLogger(__name__)

DEFAULT_PLATFORM_DOMAINS = ("twitter.com", "x.com", "t.co", "getpocket.com", "pocket.co")


@dataclass(frozen=True)
class Settings:
    ignore_words: Tuple[str, ...] = ()
    ignore_patterns: Tuple[Pattern, ...] = ()
    categories: Tuple[CategoryRule, ...] = ()
    junk_rules: JunkRules = field(default_factory=JunkRules)
    platform_domains: Tuple[str, ...] = DEFAULT_PLATFORM_DOMAINS
    max_age_days: float = 30
    rank_bonus_days: float = 3
    fetch_concurrency: int = 5
    source_concurrency: int = 2
    page_timeout: float = 15.0
    list_timeout: float = 8.0
    db_path: Optional[str] = "links.db"
    key_prefix: str = "la-"
    sources: Tuple[Dict[str, Any], ...] = ()


def build_settings(data: Optional[Dict[str, Any]] = None, **overrides) -> Settings:
    """
    Builds Settings from a plain mapping (the parsed YAML file).
    Keyword overrides win over the mapping; unknown keys are ignored with a warning.
    """
    data = dict(data or {})
    data.update(overrides)

    ignore_words = tuple(data.pop("ignore_words", None) or ())
    categories = data.pop("categories", None)
    junk_params = data.pop("junk_params", None)
    platform_domains = data.pop("platform_domains", None)
    sources = data.pop("sources", None) or ()

    derived = ("ignore_patterns", "junk_rules")
    kwargs: Dict[str, Any] = {}
    for name in Settings.__dataclass_fields__:
        if name in data and name not in derived:
            kwargs[name] = data.pop(name)
    for unknown in data:
        logger.warning(f"Unknown config key ignored: {unknown}")

    return Settings(
        ignore_words=ignore_words,
        ignore_patterns=tuple(build_ignore_patterns(ignore_words)),
        categories=tuple(build_category_rules(categories)),
        junk_rules=parse_junk_rules(junk_params),
        platform_domains=tuple(platform_domains) if platform_domains else DEFAULT_PLATFORM_DOMAINS,
        sources=tuple(sources),
        **kwargs,
    )


def load_settings(path: Optional[str] = None) -> Settings:
    """
    Loads the YAML config file (LA_CONFIG, default config.yaml) and
    applies environment overrides for the store location.
    A missing file yields default settings.
    """
    path = path or os.getenv("LA_CONFIG", "config.yaml")
    data: Dict[str, Any] = {}
    if path and os.path.exists(path):
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        logger.info(f"Loaded config from {path}")
    else:
        logger.warning(f"Config file {path} not found, using defaults")

    if os.getenv("LA_DB_PATH"):
        data["db_path"] = os.getenv("LA_DB_PATH")
    if os.getenv("LA_KEY_PREFIX"):
        data["key_prefix"] = os.getenv("LA_KEY_PREFIX")
    return build_settings(data)
