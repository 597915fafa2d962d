"""Unit tests for the response validator."""

import pytest

from helpdesk_ai.intake.domain.entities import TicketDraft
from helpdesk_ai.intake.domain.validation import ResponseValidator, TITLE_MAX_CHARS


@pytest.mark.unit
class TestQuickSolutionValidation:

    @pytest.fixture
    def validator(self):
        return ResponseValidator()

    def test_numbered_steps_with_question_accepted(self, validator):
        text = "Try this:\n1. Restart the printer.\n2. Clear the print queue in Settings.\nDid it help?"

        result = validator.validate_quick_solution(text)

        assert result.valid
        assert result.value == text

    def test_too_short_rejected(self, validator):
        assert validator.validate_quick_solution("Restart it.").reason == "too_short"

    def test_too_long_rejected(self, validator):
        text = "1. " + "Check the cable and the socket. " * 30 + "?"
        assert validator.validate_quick_solution(text).reason == "too_long"

    def test_plain_sentence_without_steps_or_question_rejected(self, validator):
        text = "Restart the printer and then clear the print queue from the settings page."
        assert validator.validate_quick_solution(text).reason == "no_steps_or_question"

    def test_repeated_word_rejected(self, validator):
        text = "printer printer printer printer printer printer printer, does it help now?"
        assert validator.validate_quick_solution(text).reason == "repetition:printer"

    def test_hallucination_phrase_rejected(self, validator):
        text = "As an AI I cannot see your screen.\n1. Restart the printer.\n2. Check the cable."
        assert validator.validate_quick_solution(text).reason.startswith("hallucination")

    def test_template_placeholder_rejected(self, validator):
        text = "1. Call [phone number] and ask for the admin.\n2. Wait for the callback please."
        assert validator.validate_quick_solution(text).reason == "hallucination:placeholder"

    def test_non_string_rejected(self, validator):
        assert not validator.validate_quick_solution(None).valid


@pytest.mark.unit
class TestQuestionValidation:

    def test_valid_question_is_unquoted(self):
        result = ResponseValidator().validate_question('"Which printer model do you use?"')

        assert result.valid
        assert result.value == "Which printer model do you use?"

    @pytest.mark.parametrize("text,reason", [
        ("Why?", "too_short"),
        ("x" * 301, "too_long"),
        ("", "empty"),
        ("As a language model, what is your OS?", "hallucination:as a language model"),
    ])
    def test_rejected_questions(self, text, reason):
        assert ResponseValidator().validate_question(text).reason == reason


@pytest.mark.unit
class TestTicketDraftValidation:

    def test_mapping_is_coerced(self):
        result = ResponseValidator().validate_ticket_draft({
            "title": "  Printer   in room 12 jams ",
            "description": "Paper jams on every page.",
            "priority": "URGENT ",
            "environmentClues": {"device": "HP 1020", "empty": "", 5: "x", "ram_gb": 8},
        })

        assert result.valid
        draft = result.value
        assert draft.title == "Printer in room 12 jams"
        assert draft.category == "general"
        assert draft.priority == "urgent"
        assert draft.environment_clues == {"device": "HP 1020", "ram_gb": "8"}

    def test_unknown_priority_falls_back_to_medium(self):
        result = ResponseValidator().validate_ticket_draft(
            {"title": "VPN", "description": "VPN drops", "priority": "critical"}
        )
        assert result.value.priority == "medium"

    def test_ticket_draft_instance_accepted(self):
        draft = TicketDraft(title="Outlook", description="Outlook does not start", attachments=["p-1"])

        result = ResponseValidator().validate_ticket_draft(draft)

        assert result.valid
        assert result.value.attachments == ["p-1"]

    @pytest.mark.parametrize("data,reason", [
        ({"description": "no title"}, "missing_title"),
        ({"title": "No description", "description": "   "}, "missing_description"),
        ({"title": "t" * (TITLE_MAX_CHARS + 1), "description": "d"}, "title_too_long"),
        ("not a mapping", "not_an_object"),
    ])
    def test_invalid_drafts(self, data, reason):
        assert ResponseValidator().validate_ticket_draft(data).reason == reason
