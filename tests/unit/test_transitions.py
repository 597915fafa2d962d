"""Unit tests for the pure state-transition functions."""

import pytest

from helpdesk_ai.intake.domain.entities import (
    ClassificationResult, ConversationSession, FeedbackSignal, KnowledgeArticleRef,
)
from helpdesk_ai.intake.domain.transitions import (
    ConfirmStep, EditingStep, FastTrackStep, GatheringStep, TipFeedbackStep,
    decide_confirm, decide_editing, decide_fast_track, decide_gathering,
    decide_tip_feedback, escalation_guard_reached, interpret_tip_feedback,
)
from tests.doubles import make_rule

QUICK_FIX = "1. Restart the router.\n2. Reconnect to the wifi network.\nDid that help?"


@pytest.fixture
def session():
    return ConversationSession(session_id="chat-1")


@pytest.mark.unit
class TestEscalationGuard:

    def test_question_budget(self, session, policy):
        session.questions_asked = policy.max_questions - 1
        assert not escalation_guard_reached(session, policy)

        session.questions_asked = policy.max_questions
        assert escalation_guard_reached(session, policy)

    def test_low_confidence_budget(self, session, policy):
        session.low_confidence_attempts = policy.max_low_confidence_attempts
        assert escalation_guard_reached(session, policy)


@pytest.mark.unit
class TestDecideGathering:

    def test_duplicate_wins(self, session, policy):
        result = ClassificationResult(confidence=0.9, quick_solution=QUICK_FIX, duplicate_ticket_id="T-1")
        assert decide_gathering(result, session, policy) == GatheringStep.REFER_DUPLICATE

    def test_article(self, session, policy):
        result = ClassificationResult(knowledge_article=KnowledgeArticleRef("kb-1", "Wifi", "Body"))
        assert decide_gathering(result, session, policy) == GatheringStep.ANSWER_ARTICLE

    def test_accepted_knowledge_article_is_answered(self, session, policy):
        result = ClassificationResult.from_knowledge_article(KnowledgeArticleRef("kb-1", "Wifi", "Body"), 0.91)

        assert result.source == "knowledge_base"
        assert result.confidence == 0.91
        assert decide_gathering(result, session, policy) == GatheringStep.ANSWER_ARTICLE

    def test_quick_solution(self, session, policy):
        result = ClassificationResult(confidence=0.8, quick_solution=QUICK_FIX)
        assert decide_gathering(result, session, policy) == GatheringStep.ANSWER_QUICK_SOLUTION

    def test_quick_solution_with_incomplete_ticket_intent_continues(self, session, policy):
        result = ClassificationResult(
            confidence=0.8, quick_solution=QUICK_FIX, is_ticket_intent=True, needs_more_info=True
        )
        assert decide_gathering(result, session, policy) == GatheringStep.QUICK_SOLUTION_AND_CONTINUE

    def test_suppressed_quick_solution_falls_through(self, session, policy):
        session.suppress_quick_solution = True
        result = ClassificationResult(confidence=0.8, quick_solution=QUICK_FIX, is_ticket_intent=True)
        assert decide_gathering(result, session, policy) == GatheringStep.DRAFT_TICKET

    def test_off_topic(self, session, policy):
        result = ClassificationResult(confidence=0.9, off_topic_response="We only handle IT requests.")
        assert decide_gathering(result, session, policy) == GatheringStep.ANSWER_OFF_TOPIC

    def test_confident_complete_intent_drafts(self, session, policy):
        result = ClassificationResult(confidence=0.6, is_ticket_intent=True)
        assert decide_gathering(result, session, policy) == GatheringStep.DRAFT_TICKET

    @pytest.mark.parametrize("result", [
        ClassificationResult(confidence=0.59, is_ticket_intent=True),
        ClassificationResult(confidence=0.9, is_ticket_intent=True, needs_more_info=True),
        ClassificationResult.safe_default(),
    ])
    def test_otherwise_ask(self, session, policy, result):
        assert decide_gathering(result, session, policy) == GatheringStep.ASK_QUESTION


@pytest.mark.unit
class TestDecideFastTrack:

    @pytest.mark.parametrize("overrides,step", [
        ({"kind": "info"}, FastTrackStep.ANSWER_AND_CLOSE),
        ({"kind": "auto_ticket"}, FastTrackStep.ANSWER_AND_CONFIRM),
        ({"kind": "quick_fix", "needs_more_info": True}, FastTrackStep.ANSWER_AND_CONTINUE),
        ({"kind": "quick_fix"}, FastTrackStep.ANSWER_AND_AWAIT_FEEDBACK),
    ])
    def test_steps(self, overrides, step):
        assert decide_fast_track(make_rule(**overrides)) == step


@pytest.mark.unit
class TestTipFeedback:

    @pytest.mark.parametrize("text,signal", [
        ("Дякую, допомогло!", FeedbackSignal.HELPED),
        ("yes, it works", FeedbackSignal.HELPED),
        ("Не допомогло", FeedbackSignal.NOT_HELPED),
        ("принтер досі не друкує", FeedbackSignal.NOT_HELPED),
        ("no", FeedbackSignal.NOT_HELPED),
        ("It still shows the error, thanks", FeedbackSignal.NOT_HELPED),
        ("what about the scanner", None),
    ])
    def test_interpret(self, text, signal):
        assert interpret_tip_feedback(text) == signal

    def test_only_helped_closes(self):
        assert decide_tip_feedback(FeedbackSignal.HELPED) == TipFeedbackStep.CLOSE
        assert decide_tip_feedback(FeedbackSignal.NOT_HELPED) == TipFeedbackStep.RESUME_GATHERING
        assert decide_tip_feedback(None) == TipFeedbackStep.RESUME_GATHERING


@pytest.mark.unit
class TestConfirmAndEdit:

    @pytest.mark.parametrize("signal,text,step", [
        (FeedbackSignal.APPROVE, None, ConfirmStep.CREATE_TICKET),
        (FeedbackSignal.EDIT, None, ConfirmStep.START_EDIT),
        (None, "Так, все вірно", ConfirmStep.CREATE_TICKET),
        (None, "cancel please", ConfirmStep.CANCEL),
        (None, "edit", ConfirmStep.START_EDIT),
        (None, "Change the priority to high", ConfirmStep.APPLY_EDIT),
    ])
    def test_confirm(self, signal, text, step):
        assert decide_confirm(signal, text) == step

    @pytest.mark.parametrize("signal,text,step", [
        (FeedbackSignal.APPROVE, None, EditingStep.CREATE_TICKET),
        (None, "скасувати", EditingStep.CANCEL),
        (None, "нічого, все добре", EditingStep.BACK_TO_CONFIRM),
        (None, "", EditingStep.BACK_TO_CONFIRM),
        (None, "Add that it happens only in room 12", EditingStep.REDRAFT),
    ])
    def test_editing(self, signal, text, step):
        assert decide_editing(signal, text) == step
