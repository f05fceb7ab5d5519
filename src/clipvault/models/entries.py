from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

PREVIEW_LENGTH = 100


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def text_preview(text: str, length: int = PREVIEW_LENGTH) -> Optional[str]:
    if not text:
        return None
    return text[:length] + ("..." if len(text) > length else "")


@dataclass(frozen=True)
class BlobInfo:
    """One item of a blob store listing."""
    path: str
    url: str
    size: int
    uploaded_at: datetime


@dataclass(frozen=True)
class PutResult:
    url: str
    uploaded_at: datetime


@dataclass(frozen=True)
class OcrResult:
    text: str = ""
    confidence: float = 0.0
    error: Optional[str] = None

    @property
    def has_text(self) -> bool:
        return bool(self.text)


@dataclass(frozen=True)
class AnswerChoice:
    letter: str
    text: str

    def to_dict(self) -> Dict[str, str]:
        return {"letter": self.letter, "text": self.text}


@dataclass(frozen=True)
class QuestionRecord:
    is_question: bool = False
    question_number: Optional[int] = None
    question_text: str = ""
    answer_choices: List[AnswerChoice] = field(default_factory=list)
    parse_confidence: float = 0.0
    cleaned_text: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isQuestion": self.is_question,
            "questionNumber": self.question_number,
            "questionText": self.question_text,
            "answerChoices": [c.to_dict() for c in self.answer_choices],
            "parseConfidence": self.parse_confidence,
            "cleanedText": self.cleaned_text,
        }


@dataclass
class UserRecord:
    user_id: str
    username: str
    device_info: Dict[str, Any] = field(default_factory=dict)
    first_seen: Optional[datetime] = None
    last_active: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "username": self.username,
            "deviceInfo": dict(self.device_info),
            "firstSeen": iso(self.first_seen),
            "lastActive": iso(self.last_active),
        }


@dataclass(frozen=True)
class ScreenshotEntry:
    id: str
    blob_path: str
    url: str
    uploaded_at: datetime
    timestamp: Union[int, float, str, None]
    access_type: str = "Unknown"
    session_info: Dict[str, Any] = field(default_factory=dict)
    byte_size: int = 0
    has_text: bool = False
    width: Optional[int] = None
    height: Optional[int] = None
    extracted_text: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "blobPath": self.blob_path,
            "blobUrl": self.url,
            "uploadedAt": iso(self.uploaded_at),
            "timestamp": self.timestamp,
            "accessType": self.access_type,
            "sessionInfo": dict(self.session_info),
            "size": self.byte_size,
            "hasText": self.has_text,
            "width": self.width,
            "height": self.height,
            "textPreview": text_preview(self.extracted_text),
        }


@dataclass(frozen=True)
class OcrEntry:
    id: str
    blob_path: str
    url: str
    uploaded_at: datetime
    timestamp: Union[int, float, str, None]
    extracted_text: str = ""
    engine_confidence: float = 0.0
    word_count: int = 0
    character_count: int = 0
    method: str = "unknown"
    question: QuestionRecord = field(default_factory=QuestionRecord)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "blobPath": self.blob_path,
            "blobUrl": self.url,
            "uploadedAt": iso(self.uploaded_at),
            "timestamp": self.timestamp,
            "engineConfidence": self.engine_confidence,
            "wordCount": self.word_count,
            "characterCount": self.character_count,
            "method": self.method,
            "textPreview": text_preview(self.extracted_text),
            "extractedText": self.extracted_text,
            "question": self.question.to_dict(),
        }


Entry = Union[ScreenshotEntry, OcrEntry]


def count_words(text: str) -> int:
    return len(text.split()) if text else 0
