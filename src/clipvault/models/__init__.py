from clipvault.models.entries import (
    AnswerChoice,
    BlobInfo,
    OcrEntry,
    OcrResult,
    PutResult,
    QuestionRecord,
    ScreenshotEntry,
    UserRecord,
)

__all__ = [
    "AnswerChoice",
    "BlobInfo",
    "OcrEntry",
    "OcrResult",
    "PutResult",
    "QuestionRecord",
    "ScreenshotEntry",
    "UserRecord",
]
