"""Heuristic normalization of raw OCR text into quiz question records.

This is a best-effort pipeline, not a parser: it removes the usual classes
of screen-capture noise (URLs, codes, browser chrome), then looks for a
question number, lettered answer choices and the question body. The
scoring weights and thresholds are part of the observable output and must
stay stable; the noise rules are data and can be tuned freely.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Tuple

from clipvault.models import AnswerChoice, QuestionRecord


def _literal_patterns(fragments: Tuple[str, ...]) -> Tuple[Pattern, ...]:
    return tuple(re.compile(re.escape(f), re.IGNORECASE) for f in fragments)


INDICATOR_TOKENS = (
    "question", "answer", "choice", "select", "which", "what", "how", "why", "when", "where",
)

NOISE_PATTERNS: Tuple[Pattern, ...] = (
    re.compile(r"https?://\S+", re.IGNORECASE),  # urls
    re.compile(r"\bwww\.\S+", re.IGNORECASE),
    re.compile(r"\b[\w-]+(?:\.[\w-]+)*\.(?:com|org|net|edu|gov|io|co)(?:/\S*)?\b", re.IGNORECASE),
    re.compile(r"\b\d+\s*[x×]\s*\d+\b", re.IGNORECASE),  # dimensions
    re.compile(r"[©®™]"),
    re.compile(r"\b(?=[A-Za-z]*\d)[A-Za-z0-9]{8,}\b"),  # codes, ids, long numbers
)

CHROME_FRAGMENTS = (
    "Google Chrome",
    "Microsoft Edge",
    "Mozilla Firefox",
    "Search Google or type a URL",
    "New Tab",
    "New Incognito Window",
    "Bookmarks bar",
    "All Bookmarks",
    "File Edit View History Bookmarks Profiles Tab Window Help",
    "File Edit View History Bookmarks Window Help",
    "Relaunch to update",
    "Sign in",
    "Share this page",
)

SENTENCE_START_CUES = (
    "Which", "What", "How", "Why", "When", "Where", "Who", "Select", "Choose", "Identify",
)

TRAILING_NOISE = (
    "Check Answer",
    "Submit Answer",
    "Submit",
    "Next Question",
    "Next",
    "Previous",
    "Skip",
    "Save and Exit",
)


@dataclass(frozen=True)
class NormalizerRules:
    indicator_tokens: Tuple[str, ...] = INDICATOR_TOKENS
    noise_patterns: Tuple[Pattern, ...] = NOISE_PATTERNS
    chrome_fragments: Tuple[Pattern, ...] = _literal_patterns(CHROME_FRAGMENTS)
    sentence_start_cues: Tuple[str, ...] = SENTENCE_START_CUES
    trailing_noise: Tuple[str, ...] = TRAILING_NOISE
    question_number_pattern: Pattern = re.compile(r"\bquestion\s*#?\s*(\d+)\b", re.IGNORECASE)
    choice_pattern: Pattern = re.compile(
        r"\(([A-Ea-e])\)\s*(.*?)(?=\s*\([A-Ea-e]\)|$)", re.DOTALL)
    min_question_length: int = 10
    number_weight: float = 0.3
    text_weight: float = 0.4
    choices_weight: float = 0.3
    min_choices: int = 2
    question_threshold: float = 0.5

    def indicator_pattern(self) -> Pattern:
        alternation = "|".join(re.escape(t) for t in self.indicator_tokens)
        return re.compile(rf"\b(?:{alternation})", re.IGNORECASE)


DEFAULT_RULES = NormalizerRules()

_WHITESPACE = re.compile(r"\s+")
_LEADING_PUNCT = re.compile(r"^[\s:.)\-–—]+")


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def strip_noise(text: str, rules: NormalizerRules = DEFAULT_RULES) -> str:
    for pattern in rules.chrome_fragments:
        text = pattern.sub(" ", text)
    for pattern in rules.noise_patterns:
        text = pattern.sub(" ", text)
    return collapse_whitespace(text)


def extract_question_number(text: str, rules: NormalizerRules = DEFAULT_RULES) -> Tuple[Optional[int], str]:
    match = rules.question_number_pattern.search(text)
    if not match:
        return None, text
    body = _LEADING_PUNCT.sub("", text[match.end():])
    return int(match.group(1)), body


def extract_choices(text: str, rules: NormalizerRules = DEFAULT_RULES) -> Tuple[List[AnswerChoice], str]:
    choices = []
    spans = []
    for match in rules.choice_pattern.finditer(text):
        choice_text = strip_trailing_noise(collapse_whitespace(match.group(2)), rules)
        choices.append(AnswerChoice(letter=match.group(1).upper(), text=choice_text))
        spans.append(match.span())

    if not spans:
        return choices, text

    parts = []
    last = 0
    for start, end in spans:
        parts.append(text[last:start])
        last = end
    parts.append(text[last:])
    return choices, collapse_whitespace(" ".join(parts))


def drop_leading_fragment(text: str, rules: NormalizerRules = DEFAULT_RULES) -> str:
    cue_positions = [
        m.start()
        for cue in rules.sentence_start_cues
        for m in [re.search(rf"\b{re.escape(cue)}\b", text)]
        if m
    ]
    if cue_positions and min(cue_positions) > 0:
        text = text[min(cue_positions):]
    return text


def strip_trailing_noise(text: str, rules: NormalizerRules = DEFAULT_RULES) -> str:
    changed = True
    while changed and text:
        changed = False
        for suffix in rules.trailing_noise:
            match = re.search(rf"(?:^|\W){re.escape(suffix)}\W*$", text, re.IGNORECASE)
            if match:
                text = text[: match.start()].rstrip()
                changed = True
    return text.strip()


def trim_fragments(text: str, rules: NormalizerRules = DEFAULT_RULES) -> str:
    return strip_trailing_noise(drop_leading_fragment(text, rules), rules)


def score(question_number: Optional[int], question_text: str, choices: List[AnswerChoice],
          rules: NormalizerRules = DEFAULT_RULES) -> float:
    total = 0.0
    if question_number is not None:
        total += rules.number_weight
    if len(question_text) > rules.min_question_length:
        total += rules.text_weight
    if len(choices) >= rules.min_choices:
        total += rules.choices_weight
    return round(total, 2)


def normalize_text(raw_text: str, rules: NormalizerRules = DEFAULT_RULES) -> QuestionRecord:
    """Turn raw OCR output into a QuestionRecord.

    Text without any quiz indicator is returned untouched with zero
    confidence. Otherwise the noise is stripped, then number, choices and
    body are extracted and scored additively.
    """
    raw_text = raw_text or ""
    if not rules.indicator_pattern().search(raw_text):
        return QuestionRecord(is_question=False, cleaned_text=raw_text)

    cleaned = strip_noise(raw_text, rules)
    number, body = extract_question_number(cleaned, rules)
    choices, body = extract_choices(body, rules)
    body = trim_fragments(body, rules)

    confidence = score(number, body, choices, rules)
    return QuestionRecord(
        is_question=confidence > rules.question_threshold,
        question_number=number,
        question_text=body,
        answer_choices=choices,
        parse_confidence=confidence,
        cleaned_text=cleaned,
    )
