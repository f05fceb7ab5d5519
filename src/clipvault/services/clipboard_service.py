import base64
import binascii
import logging
import time
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

import pydantic

from clipvault.config import Settings
from clipvault.database import BlobGateway, InMemoryBlobGateway, RedisBlobGateway
from clipvault.errors import ClipvaultError, NotFoundError, ValidationError
from clipvault.models import OcrEntry, OcrResult, ScreenshotEntry
from clipvault.models.entries import count_words, iso, text_preview
from clipvault.schema import OcrUpload, ScreenshotUpload
from clipvault.services.export import EXPORT_FORMATS, export_questions
from clipvault.services.index import ENTRY_KINDS, ClipboardIndex
from clipvault.services.ocr_client import OcrClient, build_ocr_client
from clipvault.services.ocr_payload import build_ocr_payload, encode_payload, entry_from_payload
from clipvault.services.reconciler import Reconciler
from clipvault.services.retention import RetentionManager
from clipvault.services.search import SearchEngine
from clipvault.services.upstream import UpstreamGuard
from clipvault.utils.ids import Kind, blob_path, generate_id, text_path, validate_user_id
from clipvault.utils.images import image_dimensions

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=pydantic.BaseModel)


def _rate(part: int, whole: int) -> str:
    if whole <= 0:
        return "0%"
    return f"{part / whole * 100:.1f}%"


def _validate(model: Type[M], payload: Union[M, Dict[str, Any]]) -> M:
    if isinstance(payload, model):
        return payload
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object")
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ValidationError(f"Missing or invalid fields: {fields}")


def _decode_image(data: str) -> bytes:
    data = "".join(data.split())
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("imageData is not valid base64")


class ClipboardService:
    """Operations exposed to the transport layer.

    Reads, search and export reconcile the index with the blob store
    first. Writes go to the blob store before the index.
    """

    def __init__(self, gateway: BlobGateway, ocr: OcrClient,
                 settings: Optional[Settings] = None,
                 index: Optional[ClipboardIndex] = None) -> None:
        self.settings = settings or Settings()
        self.gateway = gateway
        self.ocr = ocr
        self.index = index or ClipboardIndex()
        self.guard = UpstreamGuard(timeout=self.settings.upstream_timeout)
        self.limits = {kind: self.settings.limit_for(kind) for kind in ENTRY_KINDS}
        self.retention = RetentionManager(self.index, gateway, self.guard)
        self.reconciler = Reconciler(self.index, gateway, self.guard, self.retention,
                                     self.limits, hydration_workers=self.settings.hydration_workers)
        self.search_engine = SearchEngine(context_radius=self.settings.search_context)

    # ==================== UPLOADS ====================

    def upload_screenshot(self, payload: Union[ScreenshotUpload, Dict[str, Any]]) -> Dict[str, Any]:
        upload = _validate(ScreenshotUpload, payload)
        user_id = validate_user_id(upload.userId)
        image = _decode_image(upload.imageData)
        if not image:
            raise ValidationError("imageData is empty")
        if len(image) > self.settings.max_image_bytes:
            raise ValidationError(f"image too large ({len(image)} bytes)")

        entry_id = generate_id()
        logger.info(f"Processing screenshot {entry_id} for user {user_id}")

        extract = upload.extractText if upload.extractText is not None else self.settings.extract_text_default
        ocr = self._run_ocr(image) if extract else OcrResult()
        width, height = image_dimensions(image)

        path = blob_path(Kind.SCREENSHOTS, user_id, entry_id)
        stored = self.guard.call(self.gateway.put, path, image, Kind.SCREENSHOTS.content_type,
                                 operation=f"put {path}")

        has_text = False
        if ocr.text:
            companion = text_path(user_id, entry_id)
            try:
                self.guard.call(self.gateway.put, companion, ocr.text.encode("utf-8"),
                                Kind.TEXT.content_type, operation=f"put {companion}")
                has_text = True
            except ClipvaultError as e:
                logger.warning(f"Could not store extracted text for {entry_id}: {e}")

        entry = ScreenshotEntry(
            id=entry_id,
            blob_path=path,
            url=stored.url,
            uploaded_at=stored.uploaded_at,
            timestamp=upload.timestamp if upload.timestamp is not None else int(time.time() * 1000),
            access_type=upload.accessType or "Unknown",
            session_info=upload.sessionInfo,
            byte_size=len(image),
            has_text=has_text,
            width=width,
            height=height,
            extracted_text=ocr.text if has_text else "",
        )
        evicted = self._store_entry(user_id, upload.username, upload.device_info(), Kind.SCREENSHOTS, entry)
        logger.info(f"Screenshot processed: {entry_id} ({len(image)} bytes, text={has_text})")

        return {
            "screenshotId": entry_id,
            "userId": user_id,
            "blobUrl": stored.url,
            "uploadedAt": iso(stored.uploaded_at),
            "size": len(image),
            "extractedText": ocr.text,
            "textConfidence": ocr.confidence,
            "wordCount": count_words(ocr.text),
            "hasText": has_text,
            "textPreview": text_preview(ocr.text),
            "ocrError": ocr.error,
            "evicted": evicted,
        }

    def upload_ocr(self, payload: Union[OcrUpload, Dict[str, Any]]) -> Dict[str, Any]:
        upload = _validate(OcrUpload, payload)
        user_id = validate_user_id(upload.userId)

        entry_id = generate_id()
        document = build_ocr_payload(
            entry_id=entry_id,
            user_id=user_id,
            username=upload.username,
            text=upload.extractedText,
            confidence=upload.confidence,
            method=upload.method,
            timestamp=upload.timestamp if upload.timestamp is not None else int(time.time() * 1000),
            device_info=upload.device_info(),
            access_type=upload.accessType,
            session_info=upload.sessionInfo,
        )

        path = blob_path(Kind.OCR, user_id, entry_id)
        stored = self.guard.call(self.gateway.put, path, encode_payload(document), Kind.OCR.content_type,
                                 operation=f"put {path}")
        entry = entry_from_payload(entry_id, path, stored.url, stored.uploaded_at, document)
        evicted = self._store_entry(user_id, upload.username, upload.device_info(), Kind.OCR, entry)
        logger.info(f"OCR entry stored: {entry_id} for user {user_id} "
                    f"(question={entry.question.is_question}, confidence={entry.question.parse_confidence})")

        data = entry.to_dict()
        data.update({"userId": user_id, "evicted": evicted})
        return data

    def _store_entry(self, user_id: str, username: str, device_info: Dict[str, Any],
                     kind: Kind, entry: Union[ScreenshotEntry, OcrEntry]) -> int:
        with self.index.bucket_lock(user_id, kind):
            self.index.touch_user(user_id, username, device_info, seen_at=entry.uploaded_at)
            self.index.upsert(user_id, kind, entry)
            evicted = self.retention.evict(user_id, kind, self.limits[kind])
        self.retention.release(evicted)
        return len(evicted)

    def _run_ocr(self, image: bytes) -> OcrResult:
        try:
            result = self.guard.call(self.ocr.extract_text, image, operation="ocr")
        except Exception as e:
            logger.warning(f"OCR extraction failed, continuing without text: {e}")
            return OcrResult(error=str(e))
        logger.info(f"OCR completed. Text length: {len(result.text)}, Confidence: {result.confidence}")
        return result

    # ==================== READS ====================

    def reconcile(self, kinds=None):
        return self.reconciler.reconcile(kinds)

    def _require_user(self, user_id: str):
        user = self.index.user(user_id) if user_id else None
        if user is None:
            raise NotFoundError("User not found")
        return user

    def _user_summary(self, user_id: str) -> Dict[str, Any]:
        user = self._require_user(user_id)
        screenshots = self.index.entries(user_id, Kind.SCREENSHOTS)
        shot_count = len(screenshots)
        text_count = self.index.text_count(user_id)
        data = user.to_dict()
        data.update({
            "totalScreenshots": shot_count,
            "totalOcrEntries": self.index.count(Kind.OCR, user_id),
            "totalTextExtracted": text_count,
            "textExtractionRate": _rate(text_count, shot_count),
            "latestScreenshot": iso(screenshots[0].uploaded_at) if screenshots else None,
        })
        return data

    def list_users(self) -> Dict[str, Any]:
        self.reconcile()
        users = []
        for user_id in self.index.user_ids():
            try:
                users.append(self._user_summary(user_id))
            except NotFoundError:
                continue  # removed concurrently
        total_shots = self.index.total_screenshots
        total_text = self.index.total_text_extracted
        return {
            "users": users,
            "totalUsers": len(users),
            "totalScreenshots": total_shots,
            "totalOcrEntries": self.index.total_ocr_entries,
            "totalTextExtracted": total_text,
            "overallTextExtractionRate": _rate(total_text, total_shots),
        }

    def get_user_screenshots(self, user_id: str) -> Dict[str, Any]:
        self.reconcile([Kind.SCREENSHOTS])
        data = self._user_summary(user_id)
        data["screenshots"] = [e.to_dict() for e in self.index.entries(user_id, Kind.SCREENSHOTS)]
        return data

    def get_user_ocr(self, user_id: str) -> Dict[str, Any]:
        self.reconcile([Kind.OCR])
        data = self._user_summary(user_id)
        data["ocrEntries"] = [e.to_dict() for e in self.index.entries(user_id, Kind.OCR)]
        return data

    def _find(self, user_id: str, kind: Kind, entry_id: str):
        self._require_user(user_id)
        entry = self.index.find(user_id, kind, entry_id)
        if entry is None:
            label = "Screenshot" if kind == Kind.SCREENSHOTS else "OCR entry"
            raise NotFoundError(f"{label} not found")
        return entry

    def get_screenshot(self, user_id: str, entry_id: str) -> Dict[str, Any]:
        self.reconcile([Kind.SCREENSHOTS])
        entry = self._find(user_id, Kind.SCREENSHOTS, entry_id)
        data = entry.to_dict()
        data.update({"userId": user_id, "username": self.index.user(user_id).username})
        return data

    def get_screenshot_text(self, user_id: str, entry_id: str) -> Dict[str, Any]:
        self.reconcile([Kind.SCREENSHOTS])
        entry = self._find(user_id, Kind.SCREENSHOTS, entry_id)
        text = entry.extracted_text
        if entry.has_text and not text:
            path = text_path(user_id, entry_id)
            try:
                raw = self.guard.call(self.gateway.get, path, operation=f"get {path}")
                text = raw.decode("utf-8", errors="replace")
            except NotFoundError:
                logger.warning(f"Text blob {path} disappeared")
        return {
            "screenshotId": entry_id,
            "userId": user_id,
            "extractedText": text,
            "wordCount": count_words(text),
            "hasText": bool(text),
            "uploadedAt": iso(entry.uploaded_at),
            "size": entry.byte_size,
        }

    def search_text(self, term: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        if term is None or not term.strip():
            raise ValidationError("query parameter required")
        self.reconcile()
        scope = [user_id] if user_id else None
        hits = self.search_engine.search(self.index, term, scope)
        return {
            "searchQuery": term,
            "results": [h.to_dict() for h in hits],
            "totalResults": len(hits),
            "searchedUsers": len(scope) if scope is not None else len(self.index.user_ids()),
        }

    def get_stats(self) -> Dict[str, Any]:
        self.reconcile()
        total_shots = self.index.total_screenshots
        total_text = self.index.total_text_extracted
        user_stats = []
        for user in self.index.users():
            shots = self.index.count(Kind.SCREENSHOTS, user.user_id)
            texts = self.index.text_count(user.user_id)
            user_stats.append({
                "userId": user.user_id,
                "username": user.username,
                "screenshotCount": shots,
                "ocrCount": self.index.count(Kind.OCR, user.user_id),
                "textExtractedCount": texts,
                "textExtractionRate": _rate(texts, shots),
                "lastActive": iso(user.last_active),
                "deviceInfo": dict(user.device_info),
            })
        return {
            "totalUsers": len(user_stats),
            "totalScreenshots": total_shots,
            "totalOcrEntries": self.index.total_ocr_entries,
            "totalTextExtracted": total_text,
            "textExtractionRate": _rate(total_text, total_shots),
            "lastUpdated": iso(self.index.last_updated),
            "retention": {kind.value: limit for kind, limit in self.limits.items()},
            "userStats": user_stats,
        }

    def export_questions(self, user_id: Optional[str] = None, fmt: str = "json",
                         min_confidence: Optional[float] = None):
        fmt = (fmt or "json").lower()
        if fmt not in EXPORT_FORMATS:
            raise ValidationError(f"unsupported export format {fmt!r}")
        self.reconcile([Kind.OCR])
        if user_id:
            self._require_user(user_id)
        threshold = self.settings.export_min_confidence if min_confidence is None else min_confidence
        return export_questions(self.index, [user_id] if user_id else None, threshold, fmt)

    # ==================== DELETES ====================

    def _delete_entry(self, user_id: str, kind: Kind, entry_id: str) -> Union[ScreenshotEntry, OcrEntry]:
        self.reconcile([kind])
        self._require_user(user_id)
        with self.index.bucket_lock(user_id, kind):
            entry = self._find(user_id, kind, entry_id)
            # blob first: a failed delete must leave the index pointing at a live blob
            self.guard.call(self.gateway.delete, entry.blob_path, operation=f"delete {entry.blob_path}")
            self.index.remove(user_id, kind, [entry_id])
        return entry

    def delete_screenshot(self, user_id: str, entry_id: str) -> Dict[str, Any]:
        entry = self._delete_entry(user_id, Kind.SCREENSHOTS, entry_id)
        if entry.has_text:
            self.retention.delete_blob(text_path(user_id, entry_id))
        logger.info(f"Deleted screenshot {entry_id} for user {user_id}")
        return {"screenshotId": entry_id, "userId": user_id, "textDeleted": entry.has_text}

    def delete_ocr(self, user_id: str, entry_id: str) -> Dict[str, Any]:
        self._delete_entry(user_id, Kind.OCR, entry_id)
        logger.info(f"Deleted OCR entry {entry_id} for user {user_id}")
        return {"ocrId": entry_id, "userId": user_id}

    def clear_user(self, user_id: str) -> Dict[str, Any]:
        self.reconcile()
        self._require_user(user_id)
        with self.index.bucket_lock(user_id, Kind.SCREENSHOTS), self.index.bucket_lock(user_id, Kind.OCR):
            removed = self.index.clear_user(user_id)
        entries: List[Union[ScreenshotEntry, OcrEntry]] = [e for kind in ENTRY_KINDS for e in removed[kind]]
        outcomes = self.retention.release(entries)
        failed = [o.path for o in outcomes if not o.ok]
        text_count = sum(1 for e in removed[Kind.SCREENSHOTS] if e.has_text)
        logger.info(f"Cleared user {user_id}: {len(removed[Kind.SCREENSHOTS])} screenshots, "
                    f"{len(removed[Kind.OCR])} OCR entries, {len(failed)} blobs left behind")
        return {
            "userId": user_id,
            "screenshotsCleared": len(removed[Kind.SCREENSHOTS]),
            "ocrEntriesCleared": len(removed[Kind.OCR]),
            "textCleared": text_count,
            "failedDeletes": failed,
        }

    # ==================== UTILITY ====================

    def health(self) -> Dict[str, Any]:
        try:
            store = self.guard.call(self.gateway.health_check, operation="health check")
        except ClipvaultError as e:
            logger.warning(f"Blob store health check failed: {e}")
            store = {"status": "unhealthy", "error": str(e)}
        return {
            "status": "healthy" if store.get("status") == "healthy" else "degraded",
            "blobBackend": type(self.gateway).__name__,
            "blobStore": store,
            "ocrEnabled": self.ocr.enabled,
            "totalUsers": len(self.index.user_ids()),
            "totalScreenshots": self.index.total_screenshots,
            "totalOcrEntries": self.index.total_ocr_entries,
            "totalTextExtracted": self.index.total_text_extracted,
        }

    def close(self) -> None:
        self.gateway.close()
        self.guard.shutdown()


def build_gateway(settings: Settings) -> BlobGateway:
    if settings.blob_backend == "redis":
        return RedisBlobGateway(settings.redis, base_url=settings.public_url)
    return InMemoryBlobGateway(base_url=settings.public_url)


def build_service(settings: Optional[Settings] = None) -> ClipboardService:
    settings = settings or Settings.from_env()
    gateway = build_gateway(settings)
    ocr = build_ocr_client(settings.vision_api_key, settings.upstream_timeout)
    return ClipboardService(gateway, ocr, settings=settings)
