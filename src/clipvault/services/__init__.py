"""Service layer for clipvault."""

from .clipboard_service import ClipboardService, build_service
from .index import ClipboardIndex
from .reconciler import Reconciler
from .retention import RetentionManager

__all__ = ["ClipboardIndex", "ClipboardService", "Reconciler", "RetentionManager", "build_service"]
