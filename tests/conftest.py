import base64
import dataclasses
import io
from datetime import datetime, timedelta, timezone

import pytest
from PIL import Image

from clipvault.config import Settings
from clipvault.database import InMemoryBlobGateway
from clipvault.models import OcrEntry, OcrResult, ScreenshotEntry
from clipvault.services.clipboard_service import ClipboardService
from clipvault.services.ocr_client import OcrClient
from clipvault.services.text_normalizer import normalize_text
from clipvault.utils.ids import Kind, blob_path

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class StubOcrClient(OcrClient):
    """OCR client returning a canned result, or raising ``error`` when set."""

    def __init__(self, text: str = "", confidence: float = 0.0):
        self.text = text
        self.confidence = confidence
        self.error = None
        self.calls = 0

    def extract_text(self, image_bytes: bytes) -> OcrResult:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return OcrResult(text=self.text, confidence=self.confidence)


def png_bytes(width: int = 4, height: int = 3) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), "white").save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def settings():
    return Settings(admin_key="secret", screenshot_limit=3, ocr_limit=3,
                    upstream_timeout=5.0, hydration_workers=4)


@pytest.fixture
def gateway():
    return InMemoryBlobGateway()


@pytest.fixture
def ocr():
    return StubOcrClient()


@pytest.fixture
def service(gateway, ocr, settings):
    svc = ClipboardService(gateway, ocr, settings=settings)
    yield svc
    svc.close()


@pytest.fixture
def make_service(gateway, settings):
    """Factory for extra services sharing the blob store, each with a fresh index."""
    created = []

    def _make_service(store=None, ocr_client=None, **overrides):
        config = dataclasses.replace(settings, **overrides)
        svc = ClipboardService(gateway if store is None else store,
                               ocr_client or StubOcrClient(), settings=config)
        created.append(svc)
        return svc

    yield _make_service
    for svc in created:
        svc.close()


@pytest.fixture
def screenshot_payload():
    def _screenshot_payload(user_id: str = "u1", username: str = "alice", **extra):
        payload = {
            "userId": user_id,
            "username": username,
            "hostname": "lab-pc",
            "platform": "linux",
            "imageData": base64.b64encode(png_bytes()).decode("ascii"),
            "timestamp": 1767225600000,
        }
        payload.update(extra)
        return payload

    return _screenshot_payload


@pytest.fixture
def ocr_payload():
    def _ocr_payload(text: str = "hello world", user_id: str = "u1", username: str = "alice", **extra):
        payload = {
            "userId": user_id,
            "username": username,
            "extractedText": text,
            "confidence": 0.9,
            "method": "tesseract",
            "timestamp": 1767225600000,
        }
        payload.update(extra)
        return payload

    return _ocr_payload


@pytest.fixture
def make_screenshot():
    """Factory building ScreenshotEntry values without touching a blob store."""

    def _make_screenshot(entry_id: str, user_id: str = "u1", minutes: int = 0,
                         has_text: bool = False) -> ScreenshotEntry:
        uploaded_at = BASE_TIME + timedelta(minutes=minutes)
        return ScreenshotEntry(
            id=entry_id,
            blob_path=blob_path(Kind.SCREENSHOTS, user_id, entry_id),
            url=f"memory://clipvault/screenshots/{user_id}/{entry_id}.png",
            uploaded_at=uploaded_at,
            timestamp=int(uploaded_at.timestamp() * 1000),
            byte_size=100,
            has_text=has_text,
        )

    return _make_screenshot


@pytest.fixture
def make_ocr_entry():
    def _make_ocr_entry(entry_id: str, text: str, user_id: str = "u1", minutes: int = 0) -> OcrEntry:
        uploaded_at = BASE_TIME + timedelta(minutes=minutes)
        return OcrEntry(
            id=entry_id,
            blob_path=blob_path(Kind.OCR, user_id, entry_id),
            url=f"memory://clipvault/ocr/{user_id}/{entry_id}.json",
            uploaded_at=uploaded_at,
            timestamp=int(uploaded_at.timestamp() * 1000),
            extracted_text=text,
            word_count=len(text.split()),
            character_count=len(text),
            question=normalize_text(text),
        )

    return _make_ocr_entry
