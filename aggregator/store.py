import json
import sqlite3
import logging
from typing import Any, List, Optional

import sqlite_utils

logger = logging.getLogger(__name__)


class Store:
    def __init__(self, db_path: Optional[str] = None, prefix: str = "la-"):
        """
        Durable key-value store backed by SQLite.

        Args:
            db_path: Path to SQLite database file. None keeps everything in memory,
                     which gives every instance its own isolated store.
            prefix: Namespace prepended to every key and list name.
        """
        self.db_path = db_path
        self.prefix = prefix

        if db_path:
            self.db = sqlite_utils.Database(db_path)
            logger.info(f"Store opened: {db_path}")
        else:
            self.db = sqlite_utils.Database(memory=True)
            logger.info("Store is in-memory - nothing survives this process")
        self.init_db()

    def init_db(self):
        """Initialize schema"""
        self.db["entries"].create({
            "key": str,
            "value": str,  # JSON
        }, pk="key", if_not_exists=True)

        self.db["lists"].create({
            "id": int,
            "name": str,
            "value": str,
        }, pk="id", if_not_exists=True)
        self.db["lists"].create_index(["name", "value"], unique=True, if_not_exists=True)

    def key(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def get(self, key: str) -> Optional[Any]:
        try:
            row = self.db["entries"].get(key)
        except sqlite_utils.db.NotFoundError:
            return None
        return json.loads(row["value"])

    def set(self, key: str, value: Any):
        self.db["entries"].upsert({"key": key, "value": json.dumps(value)}, pk="key")

    def claim(self, key: str, value: Any) -> bool:
        """
        Sets key only if it does not exist yet, in a single insert.
        Returns False when another holder already owns the key.
        """
        try:
            self.db["entries"].insert({"key": key, "value": json.dumps(value)}, pk="key")
        except sqlite3.IntegrityError:
            return False
        return True

    def delete(self, key: str):
        self.db["entries"].delete_where("key = ?", [key])

    def keys(self, prefix: Optional[str] = None) -> List[str]:
        prefix = self.prefix if prefix is None else prefix
        rows = self.db["entries"].rows_where("key LIKE ? ESCAPE '\\'", [_like_prefix(prefix)], select="key")
        return [row["key"] for row in rows]

    def unique_lpush(self, name: str, value: str) -> bool:
        """
        Pushes value onto the head of list name unless it is already present.
        Returns True when the value was added.
        """
        if self.db["lists"].count_where("name = ? AND value = ?", [name, value]):
            return False
        self.db["lists"].insert({"name": name, "value": value})
        return True

    def lrange(self, name: str) -> List[str]:
        """List values, most recently pushed first."""
        rows = self.db["lists"].rows_where("name = ?", [name], order_by="id desc", select="value")
        return [row["value"] for row in rows]

    def delete_list(self, name: str):
        self.db["lists"].delete_where("name = ?", [name])

    def flush(self, url_list: str) -> int:
        """
        Deletes every entry named on url_list, then every remaining entry under
        this store's prefix, then the list itself. Returns the number of entries deleted.
        """
        urls = self.lrange(url_list)
        listed = [key for key in (self.key(url) for url in urls) if self.get(key) is not None]
        for key in listed:
            self.delete(key)
        logger.info(f"Deleted {len(listed)} urls from list.")

        orphaned = self.keys()
        for key in orphaned:
            self.delete(key)
        logger.info(f"Deleted {len(orphaned)} orphaned entries.")

        self.delete_list(url_list)
        return len(listed) + len(orphaned)


def _like_prefix(prefix: str) -> str:
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "%"
