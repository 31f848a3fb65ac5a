"""
Page metadata extraction.

Each field (title, excerpt, published time, author) is produced by an ordered
chain of strategies; the first strategy returning a non-empty value wins.
Every field is extracted inside its own guard so a broken document degrades to
partial metadata instead of failing the whole page.
"""

import re
import html
import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple
from urllib.parse import parse_qs, urlsplit

import dateparser
from bs4 import BeautifulSoup, Tag
from dateutil import parser as date_parser

from aggregator.models import PageMetadata
from aggregator.urls import is_on_domain

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 150
EXCERPT_MAX_LENGTH = 200
MIN_PARAGRAPH_WORDS = 10
SOCIAL_DOMAINS = ("twitter.com", "x.com")

# (selector, attribute holding the value)
PUBLISHED_PROBES: Sequence[Tuple[str, str]] = (
    ('meta[property="article:published_time"]', "content"),
    ('meta[itemprop="datePublished"]', "content"),
    ('[itemprop="datePublished"]', "datetime"),
    ('meta[name="DC.date.issued"]', "content"),
    ('meta[name="pubdate"]', "content"),
    ('meta[name="publish_date"]', "content"),
    ('meta[property="og:published_time"]', "content"),
    ('meta[name="date"]', "content"),
    ('meta[name="sailthru.date"]', "content"),
    ('meta[name="parsely-pub-date"]', "content"),
    ('meta[name="dcterms.created"]', "content"),
    ("time[pubdate]", "datetime"),
)

MODIFIED_PROBES: Sequence[Tuple[str, str]] = (
    ('meta[property="article:modified_time"]', "content"),
    ('meta[itemprop="dateModified"]', "content"),
    ('[itemprop="dateModified"]', "datetime"),
    ('meta[property="og:updated_time"]', "content"),
)

HEURISTIC_DATE_SELECTOR = ", ".join((
    "time",
    "[datetime]",
    "h1", "h2", "h3", "h4", "h5", "h6",
    "[class*=date]", "[id*=date]",
    "[class*=published]", "[id*=published]",
    "[class*=meta]", "[id*=meta]",
))
MAX_DATE_CANDIDATES = 50
MAX_DATE_DEPTH = 6

MONTHS = (
    r"jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sept?(?:ember)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?"
)
DATE_TOKEN_RE = re.compile(
    rf"(?<![A-Za-z])(?i:{MONTHS}|am|pm)(?![A-Za-z])"
    r"|\d+(?:st|nd|rd|th)?"
    r"|(?<=\d)[TZ]"
    r"|[-:/.+,]"
    r"|\s+"
)
MONTH_RE = re.compile(rf"(?<![A-Za-z])(?:{MONTHS})(?![A-Za-z])", re.IGNORECASE)
YEAR_RE = re.compile(r"\b(?:19|20)\d{2}\b")
NUMERIC_DATE_RE = re.compile(r"\d{1,4}[-/.]\d{1,2}")

INLINE_TAG_RE = re.compile(r"</?(?:a|strong|b|i|br)\b[^>]*>", re.IGNORECASE)
ESCAPED_LT_RE = re.compile(r"&(?:lt|#0*60|#x0*3c);", re.IGNORECASE)
ESCAPED_GT_RE = re.compile(r"&(?:gt|#0*62|#x0*3e);", re.IGNORECASE)
PARTIAL_ENTITY_RE = re.compile(r"&[#\w]*$")
LT_PLACEHOLDER = "\x00lt\x00"
GT_PLACEHOLDER = "\x00gt\x00"

COMMENT_HINT = "comment"
ATTRIBUTION_HINTS = ("author", "byline", "footer", "attribution", "bio", "contributor")
INTENT_PATHS = ("share", "intent")
RESERVED_PATHS = {"home", "search", "hashtag", "i", "explore", "settings", "login", "signup", "tos", "privacy"}
HANDLE_JUNK_RE = re.compile(r"[^A-Za-z0-9:_]")


def _meta(soup: BeautifulSoup, *names: str) -> str:
    """Content of the first meta tag whose property/name/itemprop equals one of names."""
    for name in names:
        for attr in ("property", "name", "itemprop"):
            tag = soup.find("meta", attrs={attr: name})
            if tag and tag.get("content", "").strip():
                return tag["content"].strip()
    return ""


def _collapse(text: str) -> str:
    return " ".join(text.split())


# ---------------------------------------------------------------- title

def get_title(soup: BeautifulSoup) -> str:
    title = _meta(soup, "og:title") or _meta(soup, "twitter:title")
    if not title and soup.title:
        title = soup.title.get_text()
    return _collapse(title or "")[:TITLE_MAX_LENGTH]


# ---------------------------------------------------------------- excerpt

def _first_paragraph(soup: BeautifulSoup) -> str:
    for p in soup.find_all("p"):
        if p.find_parent("aside"):
            continue
        if len(p.get_text(" ", strip=True).split()) > MIN_PARAGRAPH_WORDS:
            return p.decode_contents()
    return ""


def clean_excerpt(raw: str) -> str:
    """
    Decodes entities, strips allow-listed inline tags, then re-encodes any
    remaining angle brackets. Brackets that were still escaped in the raw text
    (&lt;div&gt;) are meant to be shown, so they come back out escaped instead
    of being stripped.
    """
    if not raw:
        return ""
    text = ESCAPED_LT_RE.sub(LT_PLACEHOLDER, raw)
    text = ESCAPED_GT_RE.sub(GT_PLACEHOLDER, text)
    text = html.unescape(text)
    text = INLINE_TAG_RE.sub("", text)
    text = text.replace("<", "&lt;").replace(">", "&gt;")
    text = text.replace(LT_PLACEHOLDER, "&lt;").replace(GT_PLACEHOLDER, "&gt;")
    return _collapse(text)


def truncate_words(text: str, limit: int = EXCERPT_MAX_LENGTH) -> str:
    if len(text) <= limit:
        return text
    cut = text[:limit]
    if not text[limit].isspace() and " " in cut:
        cut = cut[:cut.rfind(" ")]
    cut = PARTIAL_ENTITY_RE.sub("", cut)
    return cut.rstrip(" ,;:-") + "..."


def get_excerpt(soup: BeautifulSoup) -> str:
    raw = (
        _meta(soup, "og:description")
        or _meta(soup, "twitter:description")
        or _meta(soup, "description")
        or _first_paragraph(soup)
    )
    return truncate_words(clean_excerpt(raw))


# ---------------------------------------------------------------- published time

def clean_date_text(text: str) -> str:
    """Keeps only tokens that can be part of a date/time: digits, separators, month names, ordinals."""
    if not text:
        return ""
    tokens = DATE_TOKEN_RE.findall(text)
    return _collapse("".join(tokens)).strip(" -:/.,")


def parse_date(text: str) -> int:
    """
    Parses text into epoch milliseconds.
    Strict parse first, then a lenient human-language parse. 0 means unknown.
    """
    cleaned = clean_date_text(text)
    if not cleaned:
        return 0

    parsed: Optional[datetime] = None
    try:
        parsed = date_parser.parse(cleaned)
    except (ValueError, OverflowError, TypeError):
        try:
            parsed = dateparser.parse(cleaned)
        except Exception as e:
            logger.debug(f"Could not parse date {cleaned!r}: {e}")

    if parsed is None:
        return 0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        return int(parsed.timestamp() * 1000)
    except (OverflowError, ValueError, OSError):
        return 0


def _probe(soup: BeautifulSoup, probes: Sequence[Tuple[str, str]]) -> int:
    for selector, attr in probes:
        el = soup.select_one(selector)
        if el is None:
            continue
        value = el.get(attr) or ("" if el.name == "meta" else el.get_text(" ", strip=True))
        timestamp = parse_date(value)
        if timestamp:
            return timestamp
    return 0


def _looks_like_date(text: str) -> bool:
    if not any(c.isdigit() for c in text):
        return False
    return bool(YEAR_RE.search(text) or MONTH_RE.search(text) or NUMERIC_DATE_RE.search(text))


def _collect_leaf_text(el: Tag, out: List[str], depth: int = 0):
    if len(out) >= MAX_DATE_CANDIDATES:
        return
    children = [c for c in el.children if isinstance(c, Tag)]
    if len(children) > 1 and depth < MAX_DATE_DEPTH:
        for child in children:
            _collect_leaf_text(child, out, depth + 1)
        return
    value = el.get("datetime") or el.get_text(" ", strip=True)
    if value:
        out.append(value)


def date_candidates(soup: BeautifulSoup, now: Optional[datetime] = None) -> List[str]:
    """
    Date-looking texts from elements that commonly hold publish dates,
    those mentioning the current or previous year first.
    """
    raw: List[str] = []
    for el in soup.select(HEURISTIC_DATE_SELECTOR):
        _collect_leaf_text(el, raw)
        if len(raw) >= MAX_DATE_CANDIDATES:
            break

    seen = set()
    candidates = []
    for text in raw:
        text = _collapse(text)
        if text in seen or not _looks_like_date(text):
            continue
        seen.add(text)
        candidates.append(text)

    now = now or datetime.now(timezone.utc)
    recent_years = (str(now.year), str(now.year - 1))
    recent = [c for c in candidates if any(y in c for y in recent_years)]
    return recent + [c for c in candidates if c not in recent]


def get_published_time(soup: BeautifulSoup, now: Optional[datetime] = None) -> int:
    timestamp = _probe(soup, PUBLISHED_PROBES)
    if timestamp:
        return timestamp

    for candidate in date_candidates(soup, now):
        timestamp = parse_date(candidate)
        if timestamp:
            return timestamp

    return _probe(soup, MODIFIED_PROBES)


# ---------------------------------------------------------------- author

def normalize_social_href(href: str) -> str:
    href = (href or "").strip()
    if href.startswith("//"):
        href = "https:" + href
    return href.replace("/#!/", "/").replace("#!/", "")


def handle_from_social_link(href: str) -> str:
    """
    Profile links give their first path segment; share/intent links give their
    via/screen_name query param; status links give nothing.
    """
    parts = urlsplit(href)
    segments = [s for s in parts.path.split("/") if s]
    if not segments:
        return ""
    if "status" in segments or "statuses" in segments:
        return ""
    if segments[0].lower() in INTENT_PATHS:
        query = parse_qs(parts.query)
        return (query.get("via") or query.get("screen_name") or [""])[0]
    if segments[0].lower() in RESERVED_PATHS:
        return ""
    return segments[0]


def _region_names(el: Tag) -> List[str]:
    names = []
    for node in [el] + list(el.parents):
        if not isinstance(node, Tag) or node.name == "[document]":
            continue
        names.append(node.name)
        classes = node.get("class") or []
        if isinstance(classes, str):
            classes = [classes]
        names.extend(c.lower() for c in classes)
        if node.get("id"):
            names.append(str(node["id"]).lower())
    return names


def _author_from_links(soup: BeautifulSoup, domains: Sequence[str]) -> str:
    preferred, others = [], []
    for a in soup.find_all("a", href=True):
        href = normalize_social_href(a["href"])
        if not is_on_domain(href, domains):
            continue
        regions = _region_names(a)
        if any(COMMENT_HINT in r for r in regions):
            continue
        if any(hint in r for r in regions for hint in ATTRIBUTION_HINTS):
            preferred.append(href)
        else:
            others.append(href)

    for href in preferred + others:
        handle = handle_from_social_link(href)
        if handle:
            return handle
    return ""


def clean_handle(handle: str) -> str:
    return HANDLE_JUNK_RE.sub("", handle or "")


def get_author(soup: BeautifulSoup, domains: Sequence[str] = SOCIAL_DOMAINS) -> str:
    handle = (
        _meta(soup, "twitter:creator")
        or _author_from_links(soup, domains)
        or _meta(soup, "twitter:site")
    )
    return clean_handle(handle)


# ---------------------------------------------------------------- entry point

def extract_metadata(html_text: str, url: str = "", now: Optional[datetime] = None) -> PageMetadata:
    metadata = PageMetadata()
    try:
        soup = BeautifulSoup(html_text or "", "lxml")
    except Exception as e:
        logger.warning(f"Failed to parse {url}: {e}")
        return metadata

    extractors = (
        ("title", get_title),
        ("excerpt", get_excerpt),
        ("published_time", lambda s: get_published_time(s, now)),
        ("author", get_author),
    )
    for field_name, extract in extractors:
        try:
            setattr(metadata, field_name, extract(soup))
        except Exception as e:
            logger.warning(f"Failed to extract {field_name} from {url}: {e}")
    return metadata
