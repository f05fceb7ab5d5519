from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

from clipvault.errors import ValidationError
from clipvault.models import OcrEntry, ScreenshotEntry
from clipvault.services.index import ClipboardIndex
from clipvault.utils.ids import Kind


@dataclass(frozen=True)
class SearchHit:
    user_id: str
    username: str
    kind: Kind
    entry: Union[ScreenshotEntry, OcrEntry]
    match_count: int
    highlight: str

    def to_dict(self) -> Dict[str, Any]:
        data = self.entry.to_dict()
        data.update({
            "kind": self.kind.value,
            "extractedText": self.entry.extracted_text,
            "userId": self.user_id,
            "username": self.username,
            "matchCount": self.match_count,
            "matchHighlight": self.highlight,
        })
        return data


def count_matches(text: str, term: str) -> int:
    return text.lower().count(term.lower())


def highlight(text: str, term: str, radius: int = 50) -> str:
    position = text.lower().find(term.lower())
    if position == -1:
        return text[: radius * 2]
    start = max(0, position - radius)
    end = min(len(text), position + len(term) + radius)
    return text[start:end]


class SearchEngine:
    """Substring search over OCR entries and screenshot text, ranked by raw match count."""

    def __init__(self, context_radius: int = 50) -> None:
        self.context_radius = context_radius

    def search(self, index: ClipboardIndex, term: str,
               user_ids: Optional[Iterable[str]] = None) -> List[SearchHit]:
        if term is None or not term.strip():
            raise ValidationError("search term must not be empty")

        scope = list(user_ids) if user_ids is not None else index.user_ids()
        hits = []
        for user_id in scope:
            user = index.user(user_id)
            if user is None:
                continue
            for kind in (Kind.SCREENSHOTS, Kind.OCR):
                for entry in index.entries(user_id, kind):
                    matches = count_matches(entry.extracted_text, term)
                    if not matches:
                        continue
                    hits.append(SearchHit(
                        user_id=user_id,
                        username=user.username,
                        kind=kind,
                        entry=entry,
                        match_count=matches,
                        highlight=highlight(entry.extracted_text, term, self.context_radius),
                    ))

        hits.sort(key=lambda h: h.match_count, reverse=True)
        return hits
