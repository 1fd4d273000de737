from __future__ import annotations

"""
Local key-value persistence for the session history.

LocalStore keeps a flat mapping of key -> string in one JSON file, with a byte
capacity like a browser's localStorage. The session helpers on top of it never
raise: a missing key means an empty history, an unreadable one is logged and
treated as empty, and a failed save is logged and skipped.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple, Union

from .errors import StorageQuotaExceeded
from .history_codec import dump_sessions, load_sessions
from .models import Session

SESSIONS_KEY = "viral_ad_sessions_v2"
NAVIGATION_KEY = "viral_ad_navigation"

DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024


class LocalStore:
    """A bounded string key-value store backed by a single JSON file."""

    def __init__(
            self,
            path: Union[str, Path],
            quota_bytes: int = DEFAULT_QUOTA_BYTES,
    ) -> None:
        self.path = Path(path)
        self.quota_bytes = quota_bytes
        self._items: Optional[Dict[str, str]] = None

    def _load(self) -> Dict[str, str]:
        if self._items is not None:
            return self._items

        items: Dict[str, str] = {}
        if self.path.exists():
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logging.error("Could not read store file %s: %s", self.path, exc)
                raw = {}
            if isinstance(raw, dict):
                items = {str(k): v for k, v in raw.items() if isinstance(v, str)}
            else:
                logging.error("Store file %s is not a JSON object; ignoring it.", self.path)
        self._items = items
        return items

    def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        """
        Store value under key and write the file.

        Raises StorageQuotaExceeded when the resulting file would be larger
        than quota_bytes; the previous value is kept in that case.
        """
        items = dict(self._load())
        items[key] = value
        encoded = json.dumps(items, ensure_ascii=False).encode("utf-8")
        if len(encoded) > self.quota_bytes:
            raise StorageQuotaExceeded(
                f"Writing '{key}' needs {len(encoded)} bytes; quota is {self.quota_bytes}."
            )
        self._write(encoded)
        self._items = items

    def remove_item(self, key: str) -> None:
        items = dict(self._load())
        if items.pop(key, None) is None:
            return
        self._write(json.dumps(items, ensure_ascii=False).encode("utf-8"))
        self._items = items

    def _write(self, encoded: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".store-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(encoded)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


def read_sessions(store: LocalStore) -> Tuple[Session, ...]:
    """Load the persisted history, falling back to an empty one."""
    text = store.get_item(SESSIONS_KEY)
    if text is None:
        return ()
    try:
        sessions = load_sessions(text)
    except (ValueError, TypeError, KeyError, AttributeError) as exc:
        logging.error("Failed to load history, starting empty: %s", exc)
        return ()
    logging.info("Loaded %d session(s) from %s", len(sessions), store.path)
    return sessions


def write_sessions(store: LocalStore, sessions: Sequence[Session]) -> bool:
    """
    Persist the whole history. Returns False when the write was skipped.

    Capacity and filesystem errors are logged, never raised; whatever is in
    memory stays authoritative for the rest of the process.
    """
    try:
        store.set_item(SESSIONS_KEY, dump_sessions(sessions))
    except StorageQuotaExceeded as exc:
        logging.warning("Storage quota exceeded - history may not be saved. %s", exc)
        return False
    except OSError as exc:
        logging.warning("Could not save history to %s: %s", store.path, exc)
        return False
    return True
