import html
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from clipvault.errors import ValidationError
from clipvault.models import OcrEntry
from clipvault.models.entries import iso
from clipvault.services.index import ClipboardIndex
from clipvault.utils.ids import Kind

EXPORT_FORMATS = ("json", "html")


@dataclass(frozen=True)
class ExportedQuestion:
    user_id: str
    username: str
    entry: OcrEntry

    def to_dict(self) -> Dict[str, Any]:
        question = self.entry.question
        return {
            "userId": self.user_id,
            "username": self.username,
            "entryId": self.entry.id,
            "questionNumber": question.question_number,
            "questionText": question.question_text,
            "answerChoices": [c.to_dict() for c in question.answer_choices],
            "parseConfidence": question.parse_confidence,
            "capturedAt": self.entry.timestamp,
            "uploadedAt": iso(self.entry.uploaded_at),
            "blobUrl": self.entry.url,
        }


def select_questions(index: ClipboardIndex, user_ids: Optional[Iterable[str]] = None,
                     min_confidence: float = 0.5) -> List[ExportedQuestion]:
    scope = list(user_ids) if user_ids is not None else index.user_ids()
    selected = []
    for user_id in scope:
        user = index.user(user_id)
        if user is None:
            continue
        for entry in index.entries(user_id, Kind.OCR):
            question = entry.question
            if question.is_question and question.parse_confidence > min_confidence:
                selected.append(ExportedQuestion(user_id, user.username, entry))

    # newest first, then a stable sort by number puts numbered questions first
    selected.sort(key=lambda q: (q.entry.uploaded_at, q.entry.id), reverse=True)
    selected.sort(key=lambda q: (q.entry.question.question_number is None,
                                 q.entry.question.question_number or 0))
    return selected


def render_html(questions: List[ExportedQuestion], title: str = "Question export") -> str:
    parts = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        '<meta charset="utf-8">',
        f"<title>{html.escape(title)}</title>",
        "<style>",
        "body { font-family: serif; margin: 2em; }",
        ".question { page-break-inside: avoid; margin-bottom: 1.5em; }",
        ".choices { list-style: none; padding-left: 1em; }",
        ".meta { color: #555; font-size: 0.85em; }",
        "</style>",
        "</head>",
        "<body>",
        f"<h1>{html.escape(title)}</h1>",
    ]
    if not questions:
        parts.append("<p>No questions matched.</p>")

    for position, item in enumerate(questions, start=1):
        question = item.entry.question
        label = (f"Question {question.question_number}" if question.question_number is not None
                 else f"Item {position}")
        parts.append('<div class="question">')
        parts.append(f"<h2>{html.escape(label)}</h2>")
        parts.append(f"<p>{html.escape(question.question_text)}</p>")
        if question.answer_choices:
            parts.append('<ul class="choices">')
            for choice in question.answer_choices:
                parts.append(f"<li>({html.escape(choice.letter)}) {html.escape(choice.text)}</li>")
            parts.append("</ul>")
        parts.append(
            '<p class="meta">'
            f"Uploaded by {html.escape(item.username)} ({html.escape(item.user_id)})"
            f" &middot; captured {html.escape(str(item.entry.timestamp))}"
            f" &middot; confidence {question.parse_confidence:.2f}"
            "</p>"
        )
        parts.append("</div>")

    parts.extend(["</body>", "</html>"])
    return "\n".join(parts)


def export_questions(index: ClipboardIndex, user_ids: Optional[Iterable[str]] = None,
                     min_confidence: float = 0.5, fmt: str = "json"):
    """Export parsed questions as a list of dicts ("json") or a printable HTML page ("html")."""
    fmt = (fmt or "json").lower()
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(f"unsupported export format {fmt!r}, expected one of {', '.join(EXPORT_FORMATS)}")
    questions = select_questions(index, user_ids, min_confidence)
    if fmt == "html":
        return render_html(questions)
    return [q.to_dict() for q in questions]
