"""In-process index of uploaded entries.

The index is a cache of the blob store listing. Buckets are keyed by
(userId, kind) and kept newest-first. Callers must hold
``bucket_lock(user_id, kind)`` while mutating a bucket; the internal guard
only keeps the dictionaries themselves consistent.
"""

import dataclasses
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from clipvault.models import UserRecord
from clipvault.models.entries import Entry, iso
from clipvault.utils.ids import Kind

BucketKey = Tuple[str, Kind]

ENTRY_KINDS = (Kind.SCREENSHOTS, Kind.OCR)


def sort_newest_first(entries: Iterable[Entry]) -> List[Entry]:
    return sorted(entries, key=lambda e: (e.uploaded_at, e.id), reverse=True)


class ClipboardIndex:

    def __init__(self) -> None:
        self._guard = threading.RLock()
        self._users: Dict[str, UserRecord] = {}
        self._buckets: Dict[BucketKey, List[Entry]] = {}
        self._bucket_locks: Dict[BucketKey, threading.Lock] = {}
        self._revision = 0
        self._written: Dict[str, int] = {}
        self._deleted: Dict[str, int] = {}
        self._user_revision: Dict[str, int] = {}
        self.last_updated: Optional[datetime] = None

    # ==================== LOCKING & REVISIONS ====================

    def bucket_lock(self, user_id: str, kind: Kind) -> threading.Lock:
        key = (user_id, Kind(kind))
        with self._guard:
            lock = self._bucket_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._bucket_locks[key] = lock
            return lock

    @property
    def revision(self) -> int:
        with self._guard:
            return self._revision

    def _bump(self) -> int:
        self._revision += 1
        return self._revision

    def written_after(self, path: str, revision: int) -> bool:
        with self._guard:
            return self._written.get(path, 0) > revision

    def is_tombstoned(self, path: str) -> bool:
        with self._guard:
            return path in self._deleted

    def tombstone(self, entries: Iterable[Entry]) -> None:
        with self._guard:
            self._mark_deleted(entries)

    def prune_marks(self, revision: int, present_paths: Set[str]) -> None:
        """Forget marks that a finished reconciliation has absorbed.

        A tombstone survives while its blob is still listed, so an eviction
        whose blob delete is still pending (or failed) is not resurrected.
        """
        with self._guard:
            self._written = {p: r for p, r in self._written.items() if r > revision}
            self._deleted = {
                p: r for p, r in self._deleted.items() if r > revision or p in present_paths
            }
            self._user_revision = {u: r for u, r in self._user_revision.items() if r > revision}

    # ==================== USERS ====================

    def touch_user(self, user_id: str, username: Optional[str] = None,
                   device_info: Optional[Dict[str, Any]] = None,
                   seen_at: Optional[datetime] = None) -> UserRecord:
        seen_at = seen_at or datetime.now(timezone.utc)
        with self._guard:
            user = self._users.get(user_id)
            if user is None:
                user = UserRecord(user_id=user_id, username=username or user_id,
                                  device_info=dict(device_info or {}),
                                  first_seen=seen_at, last_active=seen_at)
                self._users[user_id] = user
            else:
                if username:
                    user.username = username
                if device_info:
                    user.device_info = dict(device_info)
                if user.last_active is None or seen_at > user.last_active:
                    user.last_active = seen_at
            self._user_revision[user_id] = self._bump()
            return dataclasses.replace(user)

    def adopt_user(self, user: UserRecord) -> None:
        """Add a user recovered from the blob listing unless already known."""
        with self._guard:
            self._users.setdefault(user.user_id, user)

    def drop_user_if_idle(self, user_id: str, revision: int) -> bool:
        """Remove a user with no entries that nobody has touched since ``revision``."""
        with self._guard:
            if self._user_revision.get(user_id, 0) > revision:
                return False
            if any(self._buckets.get((user_id, kind)) for kind in ENTRY_KINDS):
                return False
            self._users.pop(user_id, None)
            return True

    def user(self, user_id: str) -> Optional[UserRecord]:
        with self._guard:
            user = self._users.get(user_id)
            return dataclasses.replace(user) if user else None

    def users(self) -> List[UserRecord]:
        with self._guard:
            return [dataclasses.replace(u) for u in self._users.values()]

    def user_ids(self) -> List[str]:
        with self._guard:
            return list(self._users)

    def has_user(self, user_id: str) -> bool:
        with self._guard:
            return user_id in self._users

    # ==================== ENTRIES ====================

    def entries(self, user_id: str, kind: Kind) -> List[Entry]:
        with self._guard:
            return list(self._buckets.get((user_id, Kind(kind)), []))

    def find(self, user_id: str, kind: Kind, entry_id: str) -> Optional[Entry]:
        with self._guard:
            for entry in self._buckets.get((user_id, Kind(kind)), []):
                if entry.id == entry_id:
                    return entry
        return None

    def upsert(self, user_id: str, kind: Kind, entry: Entry) -> None:
        key = (user_id, Kind(kind))
        with self._guard:
            bucket = [e for e in self._buckets.get(key, []) if e.id != entry.id]
            bucket.append(entry)
            self._buckets[key] = sort_newest_first(bucket)
            rev = self._bump()
            self._written[entry.blob_path] = rev
            self._deleted.pop(entry.blob_path, None)
            self.last_updated = entry.uploaded_at

    def remove(self, user_id: str, kind: Kind, entry_ids: Iterable[str]) -> List[Entry]:
        key = (user_id, Kind(kind))
        doomed = set(entry_ids)
        with self._guard:
            bucket = self._buckets.get(key, [])
            removed = [e for e in bucket if e.id in doomed]
            if not removed:
                return []
            self._buckets[key] = [e for e in bucket if e.id not in doomed]
            self._mark_deleted(removed)
            return removed

    def evict_oldest(self, user_id: str, kind: Kind, limit: int) -> List[Entry]:
        key = (user_id, Kind(kind))
        with self._guard:
            bucket = self._buckets.get(key, [])
            if len(bucket) <= limit:
                return []
            kept, evicted = bucket[:limit], bucket[limit:]
            self._buckets[key] = kept
            self._mark_deleted(evicted)
            # oldest first
            return list(reversed(evicted))

    def clear_user(self, user_id: str) -> Dict[Kind, List[Entry]]:
        with self._guard:
            removed = {kind: self._buckets.pop((user_id, kind), []) for kind in ENTRY_KINDS}
            for entries in removed.values():
                self._mark_deleted(entries)
            self._users.pop(user_id, None)
            self._user_revision.pop(user_id, None)
            return removed

    def replace_bucket(self, user_id: str, kind: Kind, entries: List[Entry]) -> None:
        key = (user_id, Kind(kind))
        with self._guard:
            if entries:
                self._buckets[key] = sort_newest_first(entries)
            else:
                self._buckets.pop(key, None)

    def _mark_deleted(self, entries: Iterable[Entry]) -> None:
        entries = list(entries)
        if not entries:
            return
        rev = self._bump()
        for entry in entries:
            self._deleted[entry.blob_path] = rev
            self._written.pop(entry.blob_path, None)
        self.last_updated = datetime.now(timezone.utc)

    # ==================== COUNTERS ====================

    def count(self, kind: Kind, user_id: Optional[str] = None) -> int:
        kind = Kind(kind)
        with self._guard:
            if user_id is not None:
                return len(self._buckets.get((user_id, kind), []))
            return sum(len(b) for (_, k), b in self._buckets.items() if k == kind)

    def text_count(self, user_id: Optional[str] = None) -> int:
        with self._guard:
            return sum(
                1
                for (uid, kind), bucket in self._buckets.items()
                if kind == Kind.SCREENSHOTS and (user_id is None or uid == user_id)
                for e in bucket
                if e.has_text
            )

    @property
    def total_screenshots(self) -> int:
        return self.count(Kind.SCREENSHOTS)

    @property
    def total_ocr_entries(self) -> int:
        return self.count(Kind.OCR)

    @property
    def total_text_extracted(self) -> int:
        return self.text_count()

    def snapshot(self) -> Dict[str, Any]:
        with self._guard:
            users = {}
            for user_id, user in self._users.items():
                data = user.to_dict()
                data["screenshots"] = [e.to_dict() for e in self._buckets.get((user_id, Kind.SCREENSHOTS), [])]
                data["ocr"] = [e.to_dict() for e in self._buckets.get((user_id, Kind.OCR), [])]
                users[user_id] = data
            return {
                "users": users,
                "totalScreenshots": self.total_screenshots,
                "totalOcrEntries": self.total_ocr_entries,
                "totalTextExtracted": self.total_text_extracted,
                "lastUpdated": iso(self.last_updated),
            }
