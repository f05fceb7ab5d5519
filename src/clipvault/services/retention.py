import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from clipvault.database import BlobGateway
from clipvault.models import ScreenshotEntry
from clipvault.models.entries import Entry
from clipvault.services.index import ClipboardIndex
from clipvault.services.upstream import UpstreamGuard
from clipvault.utils.ids import Kind, parse_blob_path, text_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeleteOutcome:
    path: str
    ok: bool
    error: Optional[str] = None


class RetentionManager:
    """Keeps each (userId, kind) bucket within its configured bound.

    Eviction from the index is final; deleting the evicted blobs is best
    effort and a failure only leaks the blob.
    """

    def __init__(self, index: ClipboardIndex, gateway: BlobGateway, guard: UpstreamGuard) -> None:
        self.index = index
        self.gateway = gateway
        self.guard = guard

    def evict(self, user_id: str, kind: Kind, limit: int) -> List[Entry]:
        """Drop the oldest entries over ``limit``. Caller holds the bucket lock."""
        evicted = self.index.evict_oldest(user_id, kind, limit)
        if evicted:
            logger.info(f"Evicted {len(evicted)} {Kind(kind).value} entries for user {user_id}")
        return evicted

    def release(self, entries: Iterable[Entry]) -> List[DeleteOutcome]:
        outcomes = []
        for entry in entries:
            for path in blob_paths_for(entry):
                outcomes.append(self.delete_blob(path))
        return outcomes

    def delete_blob(self, path: str) -> DeleteOutcome:
        try:
            self.guard.call(self.gateway.delete, path, operation=f"delete {path}")
        except Exception as e:
            logger.warning(f"Could not delete blob {path}, leaving it behind: {e}")
            return DeleteOutcome(path=path, ok=False, error=str(e))
        return DeleteOutcome(path=path, ok=True)


def blob_paths_for(entry: Entry) -> List[str]:
    paths = [entry.blob_path]
    if isinstance(entry, ScreenshotEntry) and entry.has_text:
        parsed = parse_blob_path(entry.blob_path)
        if parsed:
            _, user_id, entry_id = parsed
            paths.append(text_path(user_id, entry_id))
    return paths
