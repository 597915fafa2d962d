"""Scenario tests for the conversation engine over in-memory doubles."""

import asyncio
import json

import pytest

from helpdesk_ai.intake.application.engine import (
    CANCELLED_TEXT, CLOSED_HELPED_TEXT, CREATE_FAILED_TEXT, EDIT_PROMPT_TEXT,
    MANUAL_FALLBACK_TEXT, NO_SESSION_TEXT, NOT_HELPED_NOTE,
)
from helpdesk_ai.intake.domain.entities import (
    ActionType, ConversationState, FeedbackSignal, KnowledgeArticle,
)
from helpdesk_ai.intake.domain.prompts import OP_INTENT_FULL, OP_NEXT_QUESTION, OP_RELEVANCE, OP_TICKET_DRAFT
from helpdesk_ai.intake.domain.validation import FALLBACK_QUESTION
from helpdesk_ai.intake.domain.value_objects import FastTrackCatalog
from tests.doubles import (
    InMemoryKnowledgeStore, InMemoryTicketStore, KeywordEmbedder, ScriptedLanguageModel,
    build_engine, make_open_ticket, make_rule,
)

CHAT = "chat-1"
MONITOR = "My monitor keeps flickering in classroom 12 since this morning"
READY_TO_DRAFT = json.dumps({
    "requestType": "appeal",
    "confidence": 0.9,
    "isTicketIntent": True,
    "needsMoreInfo": False,
    "category": "hardware",
    "priority": "high",
})
PROJECTOR_TIP = json.dumps({
    "requestType": "appeal",
    "confidence": 0.8,
    "isTicketIntent": True,
    "needsMoreInfo": True,
    "missingInfo": ["device"],
    "quickSolution": (
        "1. Check the HDMI cable.\n2. Switch the projector input to HDMI.\nWhich projector model is it?"
    ),
})


class BlockingLanguageModel(ScriptedLanguageModel):
    """Holds the first model call until released."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def complete(self, *args, **kwargs):
        if not self.entered.is_set():
            self.entered.set()
            await self.release.wait()
        return await super().complete(*args, **kwargs)


@pytest.mark.unit
@pytest.mark.asyncio
class TestFastTrack:

    async def test_quick_fix_needs_no_model(self, engine, language_model, requester):
        action = await engine.handle_message(CHAT, text="Принтер не друкує", requester=requester)

        assert action.action == ActionType.ANSWER
        assert action.state == ConversationState.AWAITING_TIP_FEEDBACK
        assert action.text == make_rule().solution
        assert language_model.calls == []

    async def test_repeated_quick_fix_goes_to_ticket(self, engine, language_model, requester):
        await engine.handle_message(CHAT, text="Принтер не друкує", requester=requester)

        action = await engine.handle_message(CHAT, text="принтер досі не друкує")

        assert action.action == ActionType.TICKET_CONFIRMATION
        assert action.state == ConversationState.CONFIRM_TICKET
        assert action.draft.title == "Printer not printing"
        assert action.draft.category == "printing"
        assert language_model.calls == []

    async def test_info_rule_answers_and_closes(self, engine, requester):
        action = await engine.handle_message(CHAT, text="What are your working hours?", requester=requester)

        assert action.state == ConversationState.CLOSED
        assert action.text.startswith("Support works Monday to Friday")
        assert engine.sessions.get(CHAT) is None

    async def test_auto_ticket_goes_to_confirmation(self, engine, ticket_store, requester):
        action = await engine.handle_message(CHAT, text="Закінчився картридж", requester=requester)

        assert action.action == ActionType.TICKET_CONFIRMATION
        assert action.draft.title == "Cartridge replacement request"
        assert action.draft.priority == "low"
        assert action.text.startswith("Заміну картриджа виконує сервісна служба.")

        created = await engine.handle_feedback(CHAT, FeedbackSignal.APPROVE)

        assert created.action == ActionType.TICKET_CREATED
        assert created.ticket_id == "T-101"
        assert ticket_store.created[0].environment_clues["location"] == "Lviv / School 12"


@pytest.mark.unit
@pytest.mark.asyncio
class TestTipFeedback:

    async def test_helped_closes(self, engine, requester):
        await engine.handle_message(CHAT, text="Принтер не друкує", requester=requester)

        action = await engine.handle_feedback(CHAT, FeedbackSignal.HELPED)

        assert action.text == CLOSED_HELPED_TEXT
        assert action.state == ConversationState.CLOSED
        assert engine.sessions.get(CHAT) is None

    async def test_not_helped_resumes_gathering_without_quick_fixes(self, engine, language_model, requester):
        await engine.handle_message(CHAT, text="Принтер не друкує", requester=requester)

        action = await engine.handle_feedback(CHAT, FeedbackSignal.NOT_HELPED)

        session = engine.sessions.get(CHAT)
        assert action.action == ActionType.QUESTION
        assert session.suppress_quick_solution
        assert NOT_HELPED_NOTE in session.user_messages
        assert len(language_model.calls_for(OP_INTENT_FULL)) == 1

    async def test_photo_counts_as_not_helped(self, engine, requester):
        await engine.handle_message(CHAT, text="Принтер не друкує", requester=requester)

        action = await engine.handle_message(CHAT, photo_ref="photo-9", caption="")

        session = engine.sessions.get(CHAT)
        assert action.state == ConversationState.GATHERING_INFORMATION
        assert session.suppress_quick_solution
        assert session.attachments == ["photo-9"]


@pytest.mark.unit
@pytest.mark.asyncio
class TestKnowledgeAnswers:

    async def test_article_answer(self, language_model, ticket_store, requester):
        embedder = KeywordEmbedder()
        store = InMemoryKnowledgeStore([
            KnowledgeArticle(
                id="kb-vpn",
                title="Connecting to the VPN",
                body="Open the VPN client and sign in with your school account.",
                embedding=tuple(embedder.vector("vpn")),
            )
        ])
        engine = build_engine(language_model, embedder, store, ticket_store)

        action = await engine.handle_message(CHAT, text="My vpn does not connect from home", requester=requester)

        assert action.knowledge_article.id == "kb-vpn"
        assert action.state == ConversationState.AWAITING_TIP_FEEDBACK
        assert action.text.endswith("Did this help?")
        assert len(language_model.calls_for(OP_RELEVANCE)) == 1
        assert language_model.calls_for(OP_INTENT_FULL) == []


@pytest.mark.unit
@pytest.mark.asyncio
class TestGathering:

    async def test_unclear_request_asks_question(self, engine, language_model, requester):
        action = await engine.handle_message(CHAT, text=MONITOR, requester=requester)

        session = engine.sessions.get(CHAT)
        assert action.action == ActionType.QUESTION
        assert action.text == ScriptedLanguageModel.DEFAULTS[OP_NEXT_QUESTION]
        assert session.questions_asked == 1
        assert session.low_confidence_attempts == 1
        assert session.dialog_history[-1].content == action.text

    async def test_escalation_guard_offers_manual_ticket(self, engine, policy, requester):
        await engine.handle_message(CHAT, text=MONITOR, requester=requester)
        engine.sessions.get(CHAT).questions_asked = policy.max_questions

        action = await engine.handle_message(CHAT, text="It just flickers, nothing else")

        assert action.action == ActionType.TICKET_CONFIRMATION
        assert action.manual_fallback
        assert action.text.startswith(MANUAL_FALLBACK_TEXT)
        assert action.state == ConversationState.CONFIRM_TICKET

    async def test_model_unavailable_asks_fallback_question(self, knowledge_store, ticket_store, requester):
        model = ScriptedLanguageModel(available=False)
        engine = build_engine(model, KeywordEmbedder(available=False), knowledge_store, ticket_store)

        action = await engine.handle_message(CHAT, text=MONITOR, requester=requester)

        assert action.action == ActionType.QUESTION
        assert action.text == FALLBACK_QUESTION
        assert model.calls == []

    async def test_model_unavailable_points_to_active_ticket(self, knowledge_store, requester):
        tickets = InMemoryTicketStore(open_tickets=[
            make_open_ticket("T-42", "Projector broken", minutes_ago=90, requester_id="u-1", status="in_progress"),
        ])
        engine = build_engine(ScriptedLanguageModel(available=False), KeywordEmbedder(), knowledge_store, tickets)

        action = await engine.handle_message(CHAT, text="any update on my request?", requester=requester)

        assert action.existing_ticket_id == "T-42"
        assert action.state == ConversationState.CLOSED
        assert "in_progress" in action.text

    async def test_duplicate_is_referred(self, language_model, knowledge_store, requester):
        tickets = InMemoryTicketStore(open_tickets=[make_open_ticket("T-7", "Outlook will not start")])
        engine = build_engine(language_model, KeywordEmbedder(), knowledge_store, tickets)
        language_model.script(OP_INTENT_FULL, json.dumps({"confidence": 0.9, "duplicateTicketId": "T-7"}))

        action = await engine.handle_message(
            CHAT, text="Outlook will not open on the staff room computer", requester=requester
        )

        assert action.existing_ticket_id == "T-7"
        assert "already registered as ticket T-7" in action.text
        assert action.state == ConversationState.CLOSED
        assert "T-7" in language_model.calls_for(OP_INTENT_FULL)[0]["user"]

    async def test_unknown_duplicate_id_is_ignored(self, engine, language_model, requester):
        language_model.script(OP_INTENT_FULL, json.dumps({"confidence": 0.9, "duplicateTicketId": "T-999"}))

        action = await engine.handle_message(CHAT, text=MONITOR, requester=requester)

        assert action.existing_ticket_id is None
        assert action.action == ActionType.QUESTION

    async def test_empty_message_asks_without_session(self, engine):
        action = await engine.handle_message(CHAT, text="   ")

        assert action.text == FALLBACK_QUESTION
        assert engine.sessions.get(CHAT) is None

    async def test_feedback_without_session(self, engine):
        action = await engine.handle_feedback(CHAT, FeedbackSignal.APPROVE)

        assert action.text == NO_SESSION_TEXT

    async def test_outage_fact_reaches_classifier(self, language_model, knowledge_store, requester):
        tickets = InMemoryTicketStore(open_tickets=[
            make_open_ticket("T-1", "No internet in room 5", minutes_ago=3),
            make_open_ticket("T-2", "Wifi is down in the library", minutes_ago=6),
        ])
        engine = build_engine(language_model, KeywordEmbedder(), knowledge_store, tickets)

        await engine.handle_message(
            CHAT, text="The internet is not working in the staff room since the morning", requester=requester
        )

        prompt = language_model.calls_for(OP_INTENT_FULL)[0]["user"]
        assert "Localized outage in progress at Lviv / School 12: 3 network reports" in prompt
        assert "(tickets: T-1, T-2)" in prompt

    async def test_query_is_embedded_once_per_turn(self, engine, embedder, requester):
        await engine.handle_message(CHAT, text=MONITOR, requester=requester)

        assert len(embedder.embedded) == 1


@pytest.mark.unit
@pytest.mark.asyncio
class TestEscalationGuard:

    async def test_repeated_tip_turns_into_questions_then_manual_ticket(
        self, engine, language_model, policy, requester
    ):
        language_model.script(OP_INTENT_FULL, *[PROJECTOR_TIP] * policy.max_questions)
        message = "The projector in the assembly hall shows no picture at all"

        actions = [
            await engine.handle_message(CHAT, text=message, requester=requester)
            for _ in range(policy.max_questions + 1)
        ]

        assert actions[0].action == ActionType.ANSWER
        assert actions[0].text == json.loads(PROJECTOR_TIP)["quickSolution"]
        assert [a.action for a in actions[1:-1]] == [ActionType.QUESTION] * (policy.max_questions - 1)
        assert actions[-1].manual_fallback
        assert actions[-1].state == ConversationState.CONFIRM_TICKET
        assert len(language_model.calls_for(OP_INTENT_FULL)) == policy.max_questions

    async def test_continuing_fast_track_counts_as_question(
        self, language_model, knowledge_store, ticket_store, policy, requester
    ):
        rule = make_rule(
            id="password",
            problem_type="Forgotten password",
            keywords=["forgot password"],
            needs_more_info=True,
            category="accounts",
            solution="1. Open the school account page.\n2. Choose Reset password.\nWhich account is it for?",
        )
        engine = build_engine(
            language_model, KeywordEmbedder(), knowledge_store, ticket_store,
            catalog=FastTrackCatalog(rules=[rule]), policy=policy,
        )

        for asked in range(1, policy.max_questions + 1):
            action = await engine.handle_message(CHAT, text="I forgot password for my mail", requester=requester)
            assert action.text == rule.solution
            assert engine.sessions.get(CHAT).questions_asked == asked
        assert language_model.calls == []

        action = await engine.handle_message(CHAT, text="I forgot password for my mail")

        assert action.action == ActionType.TICKET_CONFIRMATION
        assert action.manual_fallback


@pytest.mark.unit
@pytest.mark.asyncio
class TestConfirmation:

    async def test_draft_and_approve(self, engine, language_model, ticket_store, requester):
        language_model.script(OP_INTENT_FULL, READY_TO_DRAFT)

        draft_action = await engine.handle_message(CHAT, text=MONITOR, requester=requester)
        created = await engine.handle_feedback(CHAT, FeedbackSignal.APPROVE)

        assert draft_action.action == ActionType.TICKET_CONFIRMATION
        assert draft_action.draft.title == "Monitor flickers in room 12"
        assert created.action == ActionType.TICKET_CREATED
        assert created.ticket_id == "T-101"
        assert created.text == "Ticket T-101 has been created. We will keep you posted."
        assert ticket_store.created[0].priority == "high"
        assert engine.sessions.get(CHAT) is None

    async def test_edit_then_confirm_by_text(self, engine, language_model, ticket_store, requester):
        language_model.script(OP_INTENT_FULL, READY_TO_DRAFT)
        language_model.script(
            OP_TICKET_DRAFT,
            ScriptedLanguageModel.DEFAULTS[OP_TICKET_DRAFT],
            json.dumps({"title": "Monitor flickers in room 14", "description": "Flickers since morning.",
                        "priority": "urgent"}),
        )
        await engine.handle_message(CHAT, text=MONITOR, requester=requester)

        prompt = await engine.handle_feedback(CHAT, FeedbackSignal.EDIT)
        edited = await engine.handle_message(CHAT, text="It is room 14 and it is urgent")
        created = await engine.handle_message(CHAT, text="Так, все вірно")

        assert prompt.text == EDIT_PROMPT_TEXT
        assert prompt.state == ConversationState.EDITING_FROM_CONFIRM
        assert edited.draft.title == "Monitor flickers in room 14"
        assert edited.state == ConversationState.CONFIRM_TICKET
        assert created.ticket_id == "T-101"
        assert ticket_store.created[0].priority == "urgent"

    async def test_photo_is_attached_to_draft(self, engine, ticket_store, requester):
        await engine.handle_message(CHAT, text="Закінчився картридж", requester=requester)

        action = await engine.handle_message(CHAT, photo_ref="photo-1")
        await engine.handle_feedback(CHAT, FeedbackSignal.APPROVE)

        assert action.draft.attachments == ["photo-1"]
        assert action.state == ConversationState.CONFIRM_TICKET
        assert ticket_store.created[0].attachments == ["photo-1"]

    async def test_create_failure_keeps_confirmation(self, engine, ticket_store, requester):
        ticket_store.create_error = RuntimeError("unique constraint violated")
        await engine.handle_message(CHAT, text="Закінчився картридж", requester=requester)

        action = await engine.handle_feedback(CHAT, FeedbackSignal.APPROVE)

        assert action.text == CREATE_FAILED_TEXT
        assert action.state == ConversationState.CONFIRM_TICKET
        assert engine.sessions.get(CHAT).ticket_draft is not None

        ticket_store.create_error = None
        retried = await engine.handle_feedback(CHAT, FeedbackSignal.APPROVE)
        assert retried.ticket_id == "T-101"

    async def test_cancel_by_text(self, engine, requester):
        await engine.handle_message(CHAT, text="Закінчився картридж", requester=requester)

        action = await engine.handle_message(CHAT, text="cancel please")

        assert action.text == CANCELLED_TEXT
        assert engine.sessions.get(CHAT) is None


@pytest.mark.unit
@pytest.mark.asyncio
class TestCancellation:

    async def test_cancel_button(self, engine, requester):
        await engine.handle_message(CHAT, text="Закінчився картридж", requester=requester)

        action = await engine.handle_feedback(CHAT, FeedbackSignal.CANCEL)

        assert action.text == CANCELLED_TEXT
        assert engine.sessions.get(CHAT) is None

    async def test_cancel_during_turn_wins(self, embedder, knowledge_store, ticket_store, requester):
        model = BlockingLanguageModel()
        engine = build_engine(model, embedder, knowledge_store, ticket_store)

        turn = asyncio.create_task(engine.handle_message(CHAT, text=MONITOR, requester=requester))
        await asyncio.wait_for(model.entered.wait(), timeout=1)
        cancelled = engine.cancel(CHAT)
        model.release.set()
        result = await turn

        assert cancelled.text == CANCELLED_TEXT
        assert result.text == CANCELLED_TEXT
        assert result.state == ConversationState.CLOSED
        assert engine.sessions.get(CHAT) is None

        fresh = await engine.handle_message(CHAT, text="Принтер не друкує", requester=requester)
        assert fresh.state == ConversationState.AWAITING_TIP_FEEDBACK
