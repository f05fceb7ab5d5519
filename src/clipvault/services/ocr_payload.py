import json
from datetime import datetime
from typing import Any, Dict, Optional

from clipvault.models import OcrEntry
from clipvault.models.entries import count_words
from clipvault.services.text_normalizer import normalize_text


def build_ocr_payload(entry_id: str, user_id: str, username: str, text: str,
                      confidence: float, method: str, timestamp: Any,
                      device_info: Optional[Dict[str, Any]] = None,
                      access_type: Optional[str] = None,
                      session_info: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    question = normalize_text(text)
    return {
        "id": entry_id,
        "userId": user_id,
        "username": username,
        "deviceInfo": device_info or {},
        "timestamp": timestamp,
        "accessType": access_type,
        "sessionInfo": session_info or {},
        "extractedText": text,
        "confidence": confidence,
        "method": method,
        "wordCount": count_words(text),
        "characterCount": len(text),
        "question": question.to_dict(),
    }


def encode_payload(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True).encode("utf-8")


def decode_payload(raw: bytes) -> Dict[str, Any]:
    payload = json.loads(raw.decode("utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("OCR payload must be a JSON object")
    return payload


def entry_from_payload(entry_id: str, blob_path: str, url: str, uploaded_at: datetime,
                       payload: Dict[str, Any]) -> OcrEntry:
    """Rebuild an OcrEntry from its stored payload.

    The question record is derived again from the text so entries parsed by
    older rule sets come back consistent with the current one.
    """
    text = payload.get("extractedText", payload.get("text", "")) or ""
    if not isinstance(text, str):
        raise ValueError("extractedText must be a string")
    try:
        confidence = float(payload.get("confidence", 0) or 0)
    except (TypeError, ValueError):
        raise ValueError("confidence must be numeric")

    return OcrEntry(
        id=entry_id,
        blob_path=blob_path,
        url=url,
        uploaded_at=uploaded_at,
        timestamp=payload.get("timestamp"),
        extracted_text=text,
        engine_confidence=confidence,
        word_count=count_words(text),
        character_count=len(text),
        method=str(payload.get("method") or "unknown"),
        question=normalize_text(text),
    )
