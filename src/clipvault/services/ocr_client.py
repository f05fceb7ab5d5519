import base64
import logging
from abc import ABC, abstractmethod
from typing import Optional

import requests

from clipvault.errors import UpstreamError
from clipvault.models import OcrResult

logger = logging.getLogger(__name__)

VISION_ENDPOINT = "https://vision.googleapis.com/v1/images:annotate"


class OcrClient(ABC):

    @abstractmethod
    def extract_text(self, image_bytes: bytes) -> OcrResult:
        pass

    @property
    def enabled(self) -> bool:
        return True


class NullOcrClient(OcrClient):
    """Used when no OCR backend is configured."""

    def __init__(self) -> None:
        self._warned = False

    def extract_text(self, image_bytes: bytes) -> OcrResult:
        if not self._warned:
            logger.warning("OCR backend not configured, skipping text extraction")
            self._warned = True
        return OcrResult()

    @property
    def enabled(self) -> bool:
        return False


class VisionOcrClient(OcrClient):
    """Google Cloud Vision TEXT_DETECTION client."""

    def __init__(self, api_key: str, timeout: float = 10.0,
                 session: Optional[requests.Session] = None,
                 endpoint: str = VISION_ENDPOINT) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self.endpoint = endpoint
        self._session = session or requests.Session()

    def extract_text(self, image_bytes: bytes) -> OcrResult:
        body = {
            "requests": [{
                "image": {"content": base64.b64encode(image_bytes).decode("ascii")},
                "features": [{"type": "TEXT_DETECTION", "maxResults": 1}],
            }]
        }
        try:
            response = self._session.post(
                self.endpoint,
                params={"key": self.api_key},
                json=body,
                timeout=self.timeout,
            )
            response.raise_for_status()
            result = response.json()
        except requests.Timeout as e:
            raise UpstreamError(f"Vision API timed out: {e}")
        except (requests.RequestException, ValueError) as e:
            raise UpstreamError(f"Vision API error: {e}")

        responses = result.get("responses") or []
        if not responses:
            return OcrResult()
        first = responses[0]
        if first.get("error"):
            raise UpstreamError(f"Vision API error: {first['error'].get('message', 'unknown')}")

        annotations = first.get("textAnnotations") or []
        if not annotations:
            return OcrResult()
        annotation = annotations[0]
        return OcrResult(
            text=annotation.get("description", "") or "",
            confidence=float(annotation.get("confidence", 0) or 0),
        )


def build_ocr_client(api_key: Optional[str], timeout: float) -> OcrClient:
    if api_key:
        return VisionOcrClient(api_key, timeout=timeout)
    return NullOcrClient()
