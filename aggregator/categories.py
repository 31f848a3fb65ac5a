import re
import logging
from typing import Iterable, List, Mapping, Optional, Pattern, Sequence, Union

from aggregator.models import CategoryRule

logger = logging.getLogger(__name__)

Keywords = Union[str, Sequence[str]]


def compile_keywords(keywords: Keywords) -> Pattern:
    """
    Compiles keyword regex(es) into one case-insensitive pattern that only matches whole words.
    Lookarounds are used instead of \\b so keywords like '#ux' or '@bdconf' still work.
    Raises ValueError for a keyword that is not a valid regular expression.
    """
    if isinstance(keywords, str):
        keywords = [keywords]
    sources = [k.strip() for k in keywords if k and k.strip()]
    if not sources:
        # Matches nothing
        return re.compile(r"(?!x)x")
    for source in sources:
        try:
            re.compile(source)
        except re.error as e:
            raise ValueError(f"Invalid keyword pattern {source!r}: {e}") from e
    alternatives = "|".join(f"(?:{source})" for source in sources)
    return re.compile(rf"(?<!\w)(?:{alternatives})(?!\w)", re.IGNORECASE)


def build_category_rules(categories: Optional[Mapping[str, Keywords]]) -> List[CategoryRule]:
    """Category rules in declaration order."""
    rules = []
    for name, keywords in (categories or {}).items():
        kw = (keywords,) if isinstance(keywords, str) else tuple(keywords or ())
        rules.append(CategoryRule(name=name, keywords=kw, pattern=compile_keywords(kw)))
    logger.debug(f"Built {len(rules)} category rule(s)")
    return rules


def get_categories_from_text(text: str, rules: Iterable[CategoryRule]) -> List[str]:
    """Names of every category whose keywords appear in text."""
    if not text:
        return []
    return [rule.name for rule in rules if rule.pattern.search(text)]


def build_ignore_patterns(words: Optional[Iterable[str]]) -> List[Pattern]:
    return [compile_keywords(w) for w in (words or []) if w]


def matches_ignore_word(text: str, patterns: Iterable[Pattern]) -> Optional[str]:
    """Returns the first ignore pattern found in text, or None."""
    if not text:
        return None
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(0)
    return None
