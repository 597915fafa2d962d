"""Unit tests for the question generator and the ticket drafter."""

import json

import pytest

from helpdesk_ai.intake.application.services import QuestionGenerator, TicketDrafter
from helpdesk_ai.intake.domain.entities import ConversationSession, TicketDraft, UserContext
from helpdesk_ai.intake.domain.prompts import OP_NEXT_QUESTION, OP_TICKET_DRAFT
from helpdesk_ai.intake.domain.validation import FALLBACK_QUESTION
from tests.doubles import ScriptedLanguageModel, make_rule


def conversation(*messages: str, context: UserContext = UserContext()) -> ConversationSession:
    session = ConversationSession(session_id="chat-1", user_context=context)
    for message in messages:
        session.add_user_message(message, 4000)
    return session


@pytest.mark.unit
@pytest.mark.asyncio
class TestQuestionGenerator:

    async def test_model_question_is_used(self, language_model, validator):
        generator = QuestionGenerator(language_model, validator)

        question = await generator.next_question(conversation("Monitor is broken"), {"device"})

        assert question == ScriptedLanguageModel.DEFAULTS[OP_NEXT_QUESTION]
        assert len(language_model.calls_for(OP_NEXT_QUESTION)) == 1

    async def test_unavailable_model_uses_missing_info(self, validator):
        model = ScriptedLanguageModel(available=False)
        generator = QuestionGenerator(model, validator)

        question = await generator.next_question(conversation("Broken"), {"location", "device"})

        assert question == "Could you tell me more about: device, location?"
        assert model.calls == []

    async def test_rejected_question_falls_back(self, language_model, validator):
        language_model.script(OP_NEXT_QUESTION, "As an AI I cannot see your screen, sorry.")
        generator = QuestionGenerator(language_model, validator)

        assert await generator.next_question(conversation("Broken")) == FALLBACK_QUESTION

    async def test_model_error_falls_back(self, language_model, validator):
        language_model.script(OP_NEXT_QUESTION, TimeoutError("slow"))
        generator = QuestionGenerator(language_model, validator)

        assert await generator.next_question(conversation("Broken"), ["error"]) == (
            "Could you tell me more about: error?"
        )


@pytest.mark.unit
@pytest.mark.asyncio
class TestTicketDrafter:

    async def test_valid_model_draft(self, language_model, validator, requester):
        drafter = TicketDrafter(language_model, validator)

        draft = await drafter.draft(conversation("The monitor flickers", context=requester))

        assert draft.title == "Monitor flickers in room 12"
        assert draft.priority == "high"
        assert draft.environment_clues == {"location": "Lviv / School 12", "device": "Dell monitor"}

    async def test_model_clue_overrides_context_clue(self, language_model, validator, requester):
        language_model.script(OP_TICKET_DRAFT, json.dumps({
            "title": "No network",
            "description": "Cable unplugged",
            "environmentClues": {"location": "Room 5"},
        }))
        drafter = TicketDrafter(language_model, validator)

        draft = await drafter.draft(conversation("No network", context=requester))

        assert draft.environment_clues["location"] == "Room 5"
        assert draft.category == "general"
        assert draft.priority == "medium"

    async def test_invalid_draft_uses_last_message(self, language_model, validator):
        language_model.script(OP_TICKET_DRAFT, json.dumps({"title": "", "description": "x"}))
        drafter = TicketDrafter(language_model, validator)

        draft = await drafter.draft(conversation("Printer is jammed", "It shows error E3"))

        assert draft.title == "It shows error E3"
        assert draft.description == "It shows error E3"
        assert draft.category == "general"

    async def test_whole_dialogue_fallback(self, validator):
        drafter = TicketDrafter(ScriptedLanguageModel(available=False), validator)

        draft = await drafter.draft(
            conversation("Printer is jammed", "It shows error E3"), whole_dialogue_fallback=True
        )

        assert draft.title == "Printer is jammed"
        assert draft.description == "Printer is jammed\nIt shows error E3"

    async def test_long_title_is_truncated(self, validator):
        drafter = TicketDrafter(ScriptedLanguageModel(available=False), validator)

        draft = await drafter.draft(conversation("word " * 80))

        assert len(draft.title) == 200
        assert draft.title.endswith("...")

    async def test_failed_edit_records_the_correction(self, language_model, validator):
        language_model.script(OP_TICKET_DRAFT, "not json at all")
        drafter = TicketDrafter(language_model, validator)
        session = conversation("Monitor flickers")
        session.ticket_draft = TicketDraft(title="Monitor flickers", description="Since morning", priority="high")

        draft = await drafter.draft(session, edit_request="It is room 14, not 12")

        assert draft.title == "Monitor flickers"
        assert draft.priority == "high"
        assert draft.description == "Since morning\n\nUser correction: It is room 14, not 12"

    async def test_edit_passes_current_draft_to_model(self, language_model, validator):
        drafter = TicketDrafter(language_model, validator)
        session = conversation("Monitor flickers")
        session.ticket_draft = TicketDraft(title="Flicker in room 12", description="Since morning")

        await drafter.draft(session, edit_request="Set priority to urgent")

        prompt = language_model.calls_for(OP_TICKET_DRAFT)[0]["user"]
        assert "Flicker in room 12" in prompt
        assert "Set priority to urgent" in prompt

    async def test_session_attachments_are_kept(self, language_model, validator):
        drafter = TicketDrafter(language_model, validator)
        session = conversation("Monitor flickers")
        session.attachments = ["photo-1", "photo-1", "photo-2"]

        draft = await drafter.draft(session)

        assert draft.attachments == ["photo-1", "photo-2"]


@pytest.mark.unit
class TestDraftFromRule:

    def test_uses_rule_fields_and_context(self, validator):
        drafter = TicketDrafter(ScriptedLanguageModel(), validator)
        rule = make_rule(id="cartridge", kind="auto_ticket", priority="low", ticket_title="Cartridge replacement")
        context = UserContext(city="Lviv", equipment_summary="HP LaserJet 1020")

        draft = drafter.draft_from_rule(rule, conversation("Закінчився картридж", context=context))

        assert draft.title == "Cartridge replacement"
        assert draft.description == "Закінчився картридж"
        assert draft.category == "printing"
        assert draft.priority == "low"
        assert draft.environment_clues == {"location": "Lviv", "equipment": "HP LaserJet 1020"}


@pytest.mark.unit
@pytest.mark.asyncio
class TestDraftsPassValidation:

    @pytest.fixture
    def long_dialogue(self):
        return conversation("word " * 80, "Projector shows no signal " * 70, "Still broken " * 150)

    async def test_model_draft(self, language_model, validator, requester):
        drafter = TicketDrafter(language_model, validator)

        draft = await drafter.draft(conversation("Monitor flickers in room 12", context=requester))

        assert validator.validate_ticket_draft(draft).valid

    @pytest.mark.parametrize("whole_dialogue", [False, True])
    async def test_fallback_draft(self, validator, long_dialogue, whole_dialogue):
        drafter = TicketDrafter(ScriptedLanguageModel(available=False), validator)

        draft = drafter.fallback_draft(long_dialogue, whole_dialogue=whole_dialogue)

        assert validator.validate_ticket_draft(draft).valid

    async def test_draft_from_rule(self, validator, long_dialogue):
        drafter = TicketDrafter(ScriptedLanguageModel(), validator)
        rule = make_rule(id="cartridge", kind="auto_ticket", ticket_title="Cartridge " * 40)

        draft = drafter.draft_from_rule(rule, long_dialogue)

        assert validator.validate_ticket_draft(draft).valid
