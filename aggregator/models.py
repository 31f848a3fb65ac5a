from dataclasses import dataclass, field, asdict
from typing import Optional, List, Dict, Any, Tuple, Union, Pattern

# All times are epoch milliseconds. 0 / None means unknown.

SOCIAL = "social"
BOOKMARK = "bookmark"


@dataclass(frozen=True)
class SocialMention:
    source_owner: str
    source_list_name: str
    mention_id: str
    author_handle: str
    text: str
    created_at: int
    favorite_count: int = 0
    retweet_count: int = 0
    urls: Tuple[str, ...] = ()
    hashtags: Tuple[str, ...] = ()
    media: Tuple[str, ...] = ()  # Photo/video URLs attached to the post


@dataclass(frozen=True)
class BookmarkMention:
    collector_username: str
    tag: str
    saved_at: int
    bookmark_id: str
    url: str = ""
    title: str = ""  # As reported by the bookmarking service
    excerpt: str = ""


Mention = Union[SocialMention, BookmarkMention]


@dataclass(frozen=True)
class CategoryRule:
    name: str
    keywords: Tuple[str, ...]
    pattern: Pattern


@dataclass
class PageMetadata:
    title: str = ""
    excerpt: str = ""
    published_time: int = 0
    author: str = ""


@dataclass
class PageResponse:
    status: int
    headers: Dict[str, str]
    final_url: str
    body: str

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")


@dataclass
class ArticleRecord:
    url: str
    title: str = ""
    excerpt: str = ""
    published_time: Optional[int] = None
    author: Optional[str] = None
    sources: List[str] = field(default_factory=list)
    source_details: List[str] = field(default_factory=list)
    mention_ids: List[str] = field(default_factory=list)
    bookmark_ids: List[str] = field(default_factory=list)
    texts: List[str] = field(default_factory=list)
    hashtags: List[str] = field(default_factory=list)
    media: List[str] = field(default_factory=list)
    mention_count: int = 0
    retweet_count: int = 0
    favorite_count: int = 0
    bookmarks: List[Dict[str, Any]] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    first_mention_time: Optional[int] = None
    last_mention_time: Optional[int] = None
    best_time: Optional[int] = None
    rank_raw: int = 0
    rank: int = 0

    @property
    def bookmark_count(self) -> int:
        return len(self.bookmarks)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArticleRecord":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class CacheEntry:
    """
    One cached outcome per canonical URL.
    kind is one of: resolved, redirect, error, removed.
    """
    kind: str
    record: Optional[ArticleRecord] = None
    target: Optional[str] = None
    reason: Optional[str] = None

    RESOLVED = "resolved"
    REDIRECT = "redirect"
    ERROR = "error"
    REMOVED = "removed"

    @property
    def is_terminal(self) -> bool:
        return self.kind in (self.ERROR, self.REMOVED)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind}
        if self.record is not None:
            data["record"] = self.record.to_dict()
        if self.target is not None:
            data["target"] = self.target
        if self.reason is not None:
            data["reason"] = self.reason
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        record = data.get("record")
        return cls(
            kind=data["kind"],
            record=ArticleRecord.from_dict(record) if record else None,
            target=data.get("target"),
            reason=data.get("reason"),
        )
