"""URL canonicalization: strips tracking/campaign parameters so repeated mentions share one cache key."""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple, FrozenSet
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

logger = logging.getLogger(__name__)

DEFAULT_JUNK_PARAMS = (
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "utm_id",
    "utm_name",
    "utm_reader",
    "utm_referrer",
    "utm_pubreferrer",
    "utm_swu",
    "gclid",
    "fbclid",
    "mc_cid",
    "mc_eid",
    "ref_src",
    "ref_url",
    "_ga",
    "_gl",
    "ncid",
    "ocid",
)


@dataclass(frozen=True)
class DomainRule:
    domains: Tuple[str, ...]
    params: FrozenSet[str] = frozenset()
    remove_hash: bool = False

    def matches(self, host: str) -> bool:
        return any(_host_on_domain(host, domain) for domain in self.domains)


@dataclass(frozen=True)
class JunkRules:
    params: FrozenSet[str] = frozenset(DEFAULT_JUNK_PARAMS)
    domain_rules: Tuple[DomainRule, ...] = field(default_factory=tuple)


def parse_junk_rules(raw: Optional[Iterable]) -> JunkRules:
    """
    Builds junk-parameter rules from configuration.
    Each item is either a bare parameter name (removed everywhere) or a mapping:
        {domain: "medium.com" | ["a.com", "b.com"], params: [...], remove_hash: bool}
    """
    if raw is None:
        return JunkRules()

    params = set()
    domain_rules: List[DomainRule] = []
    for item in raw:
        if isinstance(item, str):
            params.add(item.lower())
            continue
        if not isinstance(item, dict):
            logger.warning(f"Ignoring malformed junk parameter rule: {item!r}")
            continue
        domains = item.get("domain") or []
        if isinstance(domains, str):
            domains = [domains]
        domain_rules.append(DomainRule(
            domains=tuple(d.lower() for d in domains),
            params=frozenset(p.lower() for p in item.get("params") or []),
            remove_hash=bool(item.get("remove_hash", item.get("removeHash", False))),
        ))
    return JunkRules(params=frozenset(params), domain_rules=tuple(domain_rules))


def _host_on_domain(host: str, domain: str) -> bool:
    return host == domain or host.endswith("." + domain)


def host_of(url: str) -> str:
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def is_on_domain(url: str, domains: Iterable[str]) -> bool:
    host = host_of(url)
    return bool(host) and any(_host_on_domain(host, d.lower()) for d in domains)


def canonicalize(url: str, rules: Optional[JunkRules] = None) -> str:
    """
    Returns the canonical form of url:
    - lowercase scheme + host
    - global junk params and params of matching domain rules removed
    - fragment removed only when a matching domain rule asks for it
    Remaining query params keep their order. Never raises.
    """
    if not url:
        return ""
    url = url.strip()
    rules = rules or JunkRules()

    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    if not parts.scheme or not parts.netloc:
        return url

    host = (parts.hostname or "").lower()
    strip = set(rules.params)
    remove_hash = False
    for rule in rules.domain_rules:
        if rule.matches(host):
            strip |= rule.params
            remove_hash = remove_hash or rule.remove_hash

    query = parts.query
    if query:
        pairs = parse_qsl(query, keep_blank_values=True)
        kept = [(k, v) for k, v in pairs if k.lower() not in strip]
        if len(kept) != len(pairs):
            query = urlencode(kept)

    fragment = "" if remove_hash else parts.fragment
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), parts.path, query, fragment))
