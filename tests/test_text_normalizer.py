import pytest

from clipvault.models import AnswerChoice
from clipvault.services.text_normalizer import (
    NormalizerRules,
    extract_choices,
    extract_question_number,
    normalize_text,
    score,
    strip_noise,
    trim_fragments,
)


class TestNormalizeText:
    def test_numbered_question_with_choices(self):
        record = normalize_text("Question 3: Pick one. (A) Cat (B) Dog")
        assert record.is_question is True
        assert record.question_number == 3
        assert record.question_text == "Pick one."
        assert record.answer_choices == [AnswerChoice("A", "Cat"), AnswerChoice("B", "Dog")]
        # short body does not earn the text weight
        assert record.parse_confidence == 0.6

    def test_indicator_glued_to_number(self):
        record = normalize_text("Question12: Pick one. (A) Cat (B) Dog")
        assert record.is_question is True
        assert record.question_number == 12
        assert record.question_text == "Pick one."

    def test_text_without_indicators_is_untouched(self):
        record = normalize_text("hello world")
        assert record.is_question is False
        assert record.cleaned_text == "hello world"
        assert record.parse_confidence == 0.0
        assert record.question_number is None
        assert record.answer_choices == []

    def test_empty_text(self):
        record = normalize_text("")
        assert record.is_question is False
        assert record.cleaned_text == ""

    def test_urls_are_stripped(self):
        record = normalize_text(
            "Question 7 What is osmosis in biology https://example.com/x "
            "(A) Diffusion of water (B) Active transport"
        )
        assert record.question_number == 7
        assert record.question_text == "What is osmosis in biology"
        assert "example.com" not in record.cleaned_text
        assert [c.letter for c in record.answer_choices] == ["A", "B"]
        assert record.parse_confidence == 1.0

    def test_browser_chrome_and_codes_removed(self):
        record = normalize_text("Google Chrome New Tab Which planet is largest? ABC12345XYZ 1920x1080 ©")
        assert record.cleaned_text == "Which planet is largest?"
        assert record.question_text == "Which planet is largest?"
        assert record.parse_confidence == 0.4
        assert record.is_question is False

    def test_leading_fragment_dropped_before_cue(self):
        record = normalize_text("Score: 4/10 Which gas do plants absorb? (A) Oxygen (B) Carbon dioxide")
        assert record.question_number is None
        assert record.question_text == "Which gas do plants absorb?"
        assert record.answer_choices[1] == AnswerChoice("B", "Carbon dioxide")
        assert record.parse_confidence == 0.7
        assert record.is_question is True

    def test_trailing_buttons_dropped(self):
        record = normalize_text("Question 2: Which organ pumps blood? (A) Heart (B) Lung Submit")
        assert record.question_text == "Which organ pumps blood?"
        assert record.answer_choices == [AnswerChoice("A", "Heart"), AnswerChoice("B", "Lung")]

    def test_trailing_noise_without_choices(self):
        record = normalize_text("What is the capital of France? Next")
        assert record.question_text == "What is the capital of France?"

    def test_lowercase_choice_letters_upper_cased(self):
        record = normalize_text("Question 5 Which is a mammal? (a) Whale (b) Shark")
        assert [c.letter for c in record.answer_choices] == ["A", "B"]

    @pytest.mark.parametrize("text", [
        "Question 1",
        "which",
        "Question 9: Select the best answer for this item (A) x (B) y (C) z",
        "What now (A) only one choice",
        "select all that apply to the following statement about cells",
    ])
    def test_confidence_is_a_sum_of_weights(self, text):
        record = normalize_text(text)
        assert record.parse_confidence in {0.0, 0.3, 0.4, 0.6, 0.7, 1.0}
        assert record.is_question == (record.parse_confidence > 0.5)

    def test_rules_are_configurable(self):
        strict = NormalizerRules(question_threshold=0.7)
        record = normalize_text("Score: 4/10 Which gas do plants absorb? (A) Oxygen (B) Carbon dioxide", strict)
        assert record.parse_confidence == 0.7
        assert record.is_question is False

    def test_custom_trailing_noise(self):
        rules = NormalizerRules(trailing_noise=("Continue",))
        record = normalize_text("Which river is longest? Continue", rules)
        assert record.question_text == "Which river is longest?"


class TestHelpers:
    def test_strip_noise_domains(self):
        assert strip_noise("see www.example.org/path and quiz.school.edu now") == "see and now"

    def test_extract_question_number_strips_punctuation(self):
        assert extract_question_number("Question #12 - Name the bone") == (12, "Name the bone")

    def test_extract_question_number_absent(self):
        assert extract_question_number("Which bone") == (None, "Which bone")

    def test_extract_choices_returns_remaining_body(self):
        choices, body = extract_choices("Pick (A) one (B) two")
        assert body == "Pick"
        assert [c.text for c in choices] == ["one", "two"]

    def test_trim_fragments_keeps_text_without_cue(self):
        assert trim_fragments("Pick one.") == "Pick one."

    def test_score_weights(self):
        choices = [AnswerChoice("A", "x"), AnswerChoice("B", "y")]
        assert score(1, "a long enough body", choices) == 1.0
        assert score(None, "short", choices) == 0.3
        assert score(1, "short", []) == 0.3
        assert score(None, "a long enough body", []) == 0.4
