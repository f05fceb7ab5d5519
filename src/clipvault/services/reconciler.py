"""Rebuilds the index from the blob store listing.

The listing is the source of truth. A reconciliation projects it into
per-user buckets, merges in writes that landed in the index after the
listing started, and leaves out anything the index has already deleted.
Running it twice with no writes in between yields the same index.
"""

import dataclasses
import logging
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from clipvault.database import BlobGateway
from clipvault.errors import ClipvaultError
from clipvault.models import BlobInfo, OcrEntry, ScreenshotEntry, UserRecord
from clipvault.models.entries import Entry
from clipvault.services.index import ENTRY_KINDS, ClipboardIndex, sort_newest_first
from clipvault.services.ocr_payload import decode_payload, entry_from_payload
from clipvault.services.retention import RetentionManager
from clipvault.services.upstream import UpstreamGuard
from clipvault.utils.ids import Kind, parse_blob_path, text_path

logger = logging.getLogger(__name__)

Grouped = Dict[str, List[Tuple[str, BlobInfo]]]


@dataclass(frozen=True)
class ReconcileReport:
    users: int
    screenshots: int
    ocr_entries: int
    dropped: int
    evicted: int


def _group_by_user(blobs: Iterable[BlobInfo], kind: Kind) -> Grouped:
    grouped: Grouped = defaultdict(list)
    for blob in blobs:
        parsed = parse_blob_path(blob.path)
        if parsed is None or parsed[0] != kind:
            logger.debug(f"Ignoring foreign blob path {blob.path}")
            continue
        _, user_id, entry_id = parsed
        grouped[user_id].append((entry_id, blob))
    return grouped


def _millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


class Reconciler:

    def __init__(self, index: ClipboardIndex, gateway: BlobGateway, guard: UpstreamGuard,
                 retention: RetentionManager, limits: Dict[Kind, int],
                 hydration_workers: int = 8) -> None:
        self.index = index
        self.gateway = gateway
        self.guard = guard
        self.retention = retention
        self.limits = limits
        self.hydration_workers = hydration_workers
        self._lock = threading.Lock()

    def reconcile(self, kinds: Optional[Iterable[Kind]] = None) -> ReconcileReport:
        kinds = tuple(Kind(k) for k in (kinds or ENTRY_KINDS) if Kind(k) != Kind.TEXT)
        with self._lock:
            return self._reconcile(kinds)

    def _list(self, kind: Kind) -> List[BlobInfo]:
        return self.guard.call(self.gateway.list, f"{kind.value}/", operation=f"list {kind.value}")

    def _reconcile(self, kinds: Tuple[Kind, ...]) -> ReconcileReport:
        start_revision = self.index.revision

        listings = {kind: self._list(kind) for kind in kinds}
        text_paths: Set[str] = set()
        if Kind.SCREENSHOTS in kinds:
            text_paths = {b.path for b in self._list(Kind.TEXT)}

        projected: Dict[Tuple[str, Kind], List[Entry]] = {}
        usernames: Dict[str, Tuple[datetime, str]] = {}
        dropped = 0

        if Kind.SCREENSHOTS in kinds:
            shots = [
                (user_id, self._screenshot_entry(user_id, entry_id, blob, text_paths))
                for user_id, items in _group_by_user(listings[Kind.SCREENSHOTS], Kind.SCREENSHOTS).items()
                for entry_id, blob in items
            ]
            shots = self._fan_out(self._hydrate_text, shots)
            for user_id, entry in shots:
                projected.setdefault((user_id, Kind.SCREENSHOTS), []).append(entry)

        if Kind.OCR in kinds:
            grouped = _group_by_user(listings[Kind.OCR], Kind.OCR)
            jobs = [(user_id, entry_id, blob) for user_id, items in grouped.items()
                    for entry_id, blob in items]
            results = self._fan_out(self._hydrate, jobs)

            for (user_id, _, blob), result in zip(jobs, results):
                if result is None:
                    dropped += 1
                    continue
                entry, username = result
                projected.setdefault((user_id, Kind.OCR), []).append(entry)
                if username and (user_id not in usernames or blob.uploaded_at > usernames[user_id][0]):
                    usernames[user_id] = (blob.uploaded_at, username)

        live: Dict[str, List[datetime]] = defaultdict(list)
        for (user_id, _), entries in projected.items():
            live[user_id].extend(e.uploaded_at for e in entries
                                 if not self.index.is_tombstoned(e.blob_path))

        listed_users = sorted(user_id for user_id, stamps in live.items() if stamps)
        for user_id in listed_users:
            if self.index.has_user(user_id):
                continue
            stamps = live[user_id]
            self.index.adopt_user(UserRecord(
                user_id=user_id,
                username=usernames.get(user_id, (None, user_id))[1],
                device_info={},
                first_seen=min(stamps),
                last_active=max(stamps),
            ))

        overflow: List[Entry] = []
        for user_id in sorted(set(listed_users) | set(self.index.user_ids())):
            for kind in kinds:
                overflow.extend(self._swap_bucket(user_id, kind, projected.get((user_id, kind), []),
                                                  start_revision))

        if set(kinds) == set(ENTRY_KINDS):
            for user_id in self.index.user_ids():
                self.index.drop_user_if_idle(user_id, start_revision)

        listed = [b for blobs in listings.values() for b in blobs]
        if listed:
            self.index.last_updated = max(b.uploaded_at for b in listed)
        self.index.prune_marks(start_revision, {b.path for b in listed} | text_paths)

        if overflow:
            self.retention.release(overflow)

        report = ReconcileReport(
            users=len(self.index.user_ids()),
            screenshots=self.index.total_screenshots,
            ocr_entries=self.index.total_ocr_entries,
            dropped=dropped,
            evicted=len(overflow),
        )
        logger.info(
            f"Reconciled {report.users} users: {report.screenshots} screenshots, "
            f"{report.ocr_entries} OCR entries, {report.dropped} dropped, {report.evicted} evicted"
        )
        return report

    def _fan_out(self, fn, jobs: List[tuple]) -> list:
        if not jobs:
            return []
        with ThreadPoolExecutor(max_workers=self.hydration_workers,
                                thread_name_prefix="clipvault-hydrate") as pool:
            return list(pool.map(lambda job: fn(*job), jobs))

    def _swap_bucket(self, user_id: str, kind: Kind, listed: List[Entry],
                     start_revision: int) -> List[Entry]:
        limit = self.limits.get(kind)
        with self.index.bucket_lock(user_id, kind):
            current = {e.blob_path: e for e in self.index.entries(user_id, kind)}
            kept = []
            for entry in listed:
                if self.index.is_tombstoned(entry.blob_path):
                    continue
                # an upsert after the listing carries the upload's own metadata
                if entry.blob_path in current and self.index.written_after(entry.blob_path, start_revision):
                    entry = current[entry.blob_path]
                kept.append(entry)
            listed_paths = {e.blob_path for e in kept}
            racing = [
                e for path, e in current.items()
                if path not in listed_paths and self.index.written_after(path, start_revision)
            ]
            merged = sort_newest_first(kept + racing)
            evicted: List[Entry] = []
            if limit is not None and len(merged) > limit:
                merged, evicted = merged[:limit], merged[limit:]
            self.index.replace_bucket(user_id, kind, merged)
            if evicted:
                self.index.tombstone(evicted)
        return evicted

    def _screenshot_entry(self, user_id: str, entry_id: str, blob: BlobInfo,
                          text_paths: Set[str]) -> ScreenshotEntry:
        existing = self.index.find(user_id, Kind.SCREENSHOTS, entry_id)
        has_text = text_path(user_id, entry_id) in text_paths
        if isinstance(existing, ScreenshotEntry) and existing.blob_path == blob.path:
            return dataclasses.replace(
                existing,
                url=blob.url,
                uploaded_at=blob.uploaded_at,
                byte_size=blob.size,
                has_text=has_text,
                extracted_text=existing.extracted_text if has_text else "",
            )
        return ScreenshotEntry(
            id=entry_id,
            blob_path=blob.path,
            url=blob.url,
            uploaded_at=blob.uploaded_at,
            timestamp=_millis(blob.uploaded_at),
            byte_size=blob.size,
            has_text=has_text,
        )

    def _hydrate_text(self, user_id: str, entry: ScreenshotEntry) -> Tuple[str, ScreenshotEntry]:
        """Load the text companion of a screenshot the index has no text for."""
        if not entry.has_text or entry.extracted_text:
            return user_id, entry
        path = text_path(user_id, entry.id)
        try:
            raw = self.guard.call(self.gateway.get, path, operation=f"get {path}")
        except ClipvaultError as e:
            logger.warning(f"Could not load text for screenshot {entry.blob_path}: {e}")
            return user_id, entry
        return user_id, dataclasses.replace(entry, extracted_text=raw.decode("utf-8", errors="replace"))

    def _hydrate(self, user_id: str, entry_id: str,
                 blob: BlobInfo) -> Optional[Tuple[OcrEntry, Optional[str]]]:
        existing = self.index.find(user_id, Kind.OCR, entry_id)
        if (isinstance(existing, OcrEntry) and existing.blob_path == blob.path
                and existing.uploaded_at == blob.uploaded_at):
            return existing, None

        try:
            raw = self.guard.call(self.gateway.get, blob.path, operation=f"get {blob.path}")
            payload = decode_payload(raw)
            entry = entry_from_payload(entry_id, blob.path, blob.url, blob.uploaded_at, payload)
        except (ClipvaultError, ValueError, UnicodeDecodeError) as e:
            logger.warning(f"Skipping OCR entry {blob.path}: {e}")
            return None

        username = payload.get("username")
        return entry, username if isinstance(username, str) and username else None
