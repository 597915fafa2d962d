"""
Conversation Transitions
========================

Pure decision functions, one per conversation state.

Each function looks only at its inputs (session counters, a classification,
a rule, the user's text) and returns a typed step; the engine performs the
I/O the step calls for. Keeping them pure makes the state machine testable
without any model or storage.
"""

import re
from enum import Enum
from typing import Optional

from helpdesk_ai.intake.domain.entities import (
    ClassificationResult, ConversationSession, FeedbackSignal, TerminalAction,
)
from helpdesk_ai.intake.domain.value_objects import FastTrackKind, FastTrackRule, IntakePolicy

_FLAGS = re.IGNORECASE | re.UNICODE

NOT_HELPED_PATTERN = re.compile(
    r"(не\s+допомогл|не\s+вийшло|не\s+працю|досі|все\s+ще|didn'?t\s+help|did\s+not\s+help|"
    r"not\s+helped|doesn'?t\s+work|still|^\s*(ні|no|nope)\b)",
    _FLAGS,
)
HELPED_PATTERN = re.compile(
    r"(допомогл|дякую|спасибі|запрацюва|вирішен|^\s*(так|yes|yep|ok|ок|окей)\b|"
    r"\bhelped\b|\bit\s+works\b|\bworked\b|\bthanks?\b|\bthank\s+you\b|\bsolved\b)",
    _FLAGS,
)
APPROVE_PATTERN = re.compile(
    r"^\s*(так|yes|ok|ок|окей|підтверджую|підтвердити|confirm|approve|створи|створити|"
    r"create|все\s+вірно|вірно|correct|send|відправ)",
    _FLAGS,
)
CANCEL_PATTERN = re.compile(r"^\s*(скасу|відмін|cancel|stop|стоп|abort)", _FLAGS)
EDIT_ONLY_PATTERN = re.compile(r"^\s*(змінити|редагувати|виправити|edit|change)\W*$", _FLAGS)
NOTHING_TO_CHANGE_PATTERN = re.compile(
    r"^\s*(нічого|ні|no|nothing|все\s+добре|все\s+ок|все\s+вірно|без\s+змін|"
    r"залиш|leave\s+it|no\s+changes|looks\s+good|ок|ok)\b",
    _FLAGS,
)


class GatheringStep(str, Enum):
    """What a gathering_information turn resolves to after classification."""
    REFER_DUPLICATE = "refer_duplicate"
    ANSWER_ARTICLE = "answer_article"
    ANSWER_QUICK_SOLUTION = "answer_quick_solution"
    QUICK_SOLUTION_AND_CONTINUE = "quick_solution_and_continue"
    ANSWER_OFF_TOPIC = "answer_off_topic"
    DRAFT_TICKET = "draft_ticket"
    ASK_QUESTION = "ask_question"


class FastTrackStep(str, Enum):
    ANSWER_AND_CLOSE = "answer_and_close"
    ANSWER_AND_CONTINUE = "answer_and_continue"
    ANSWER_AND_AWAIT_FEEDBACK = "answer_and_await_feedback"
    ANSWER_AND_CONFIRM = "answer_and_confirm"


class TipFeedbackStep(str, Enum):
    CLOSE = "close"
    RESUME_GATHERING = "resume_gathering"


class ConfirmStep(str, Enum):
    CREATE_TICKET = "create_ticket"
    START_EDIT = "start_edit"
    APPLY_EDIT = "apply_edit"
    CANCEL = "cancel"


class EditingStep(str, Enum):
    BACK_TO_CONFIRM = "back_to_confirm"
    REDRAFT = "redraft"
    CREATE_TICKET = "create_ticket"
    CANCEL = "cancel"


def escalation_guard_reached(session: ConversationSession, policy: IntakePolicy) -> bool:
    """True once automated questioning must stop."""
    return (
        session.questions_asked >= policy.max_questions
        or session.low_confidence_attempts >= policy.max_low_confidence_attempts
    )


def decide_gathering(
    result: ClassificationResult,
    session: ConversationSession,
    policy: IntakePolicy,
) -> GatheringStep:
    """
    Map a classification to the single outcome of a gathering turn.

    Precedence: duplicate referral, knowledge article, quick solution
    (unless suppressed after "not helped"), off-topic answer, drafting on
    confident complete ticket intent, otherwise a clarifying question.
    """
    if result.duplicate_ticket_id:
        return GatheringStep.REFER_DUPLICATE

    terminal = result.terminal_action
    if terminal == TerminalAction.KNOWLEDGE_ARTICLE:
        return GatheringStep.ANSWER_ARTICLE
    if terminal == TerminalAction.QUICK_SOLUTION and not session.suppress_quick_solution:
        if result.is_ticket_intent and result.needs_more_info:
            return GatheringStep.QUICK_SOLUTION_AND_CONTINUE
        return GatheringStep.ANSWER_QUICK_SOLUTION
    if terminal == TerminalAction.OFF_TOPIC_RESPONSE and not result.is_ticket_intent:
        return GatheringStep.ANSWER_OFF_TOPIC

    if (
        result.is_ticket_intent
        and not result.needs_more_info
        and result.confidence >= policy.ticket_confidence_threshold
    ):
        return GatheringStep.DRAFT_TICKET
    return GatheringStep.ASK_QUESTION


def decide_fast_track(rule: FastTrackRule) -> FastTrackStep:
    if rule.kind == FastTrackKind.INFO:
        return FastTrackStep.ANSWER_AND_CLOSE
    if rule.kind == FastTrackKind.AUTO_TICKET:
        return FastTrackStep.ANSWER_AND_CONFIRM
    if rule.needs_more_info:
        return FastTrackStep.ANSWER_AND_CONTINUE
    return FastTrackStep.ANSWER_AND_AWAIT_FEEDBACK


def interpret_tip_feedback(text: str) -> Optional[FeedbackSignal]:
    """Helped / not helped from free text; None when the text is neither."""
    if NOT_HELPED_PATTERN.search(text):
        return FeedbackSignal.NOT_HELPED
    if HELPED_PATTERN.search(text):
        return FeedbackSignal.HELPED
    return None


def decide_tip_feedback(signal: Optional[FeedbackSignal]) -> TipFeedbackStep:
    """Anything other than an explicit "helped" goes back to gathering."""
    if signal == FeedbackSignal.HELPED:
        return TipFeedbackStep.CLOSE
    return TipFeedbackStep.RESUME_GATHERING


def decide_confirm(signal: Optional[FeedbackSignal], text: Optional[str] = None) -> ConfirmStep:
    """Button signal wins; free text is approval, cancel, bare "edit", or an edit instruction."""
    if signal == FeedbackSignal.APPROVE:
        return ConfirmStep.CREATE_TICKET
    if signal == FeedbackSignal.EDIT:
        return ConfirmStep.START_EDIT
    if signal == FeedbackSignal.CANCEL:
        return ConfirmStep.CANCEL
    text = text or ""
    if CANCEL_PATTERN.search(text):
        return ConfirmStep.CANCEL
    if EDIT_ONLY_PATTERN.search(text):
        return ConfirmStep.START_EDIT
    if APPROVE_PATTERN.search(text):
        return ConfirmStep.CREATE_TICKET
    return ConfirmStep.APPLY_EDIT


def decide_editing(signal: Optional[FeedbackSignal], text: Optional[str] = None) -> EditingStep:
    if signal == FeedbackSignal.APPROVE:
        return EditingStep.CREATE_TICKET
    if signal == FeedbackSignal.CANCEL:
        return EditingStep.CANCEL
    text = text or ""
    if CANCEL_PATTERN.search(text):
        return EditingStep.CANCEL
    if not text.strip() or NOTHING_TO_CHANGE_PATTERN.search(text):
        return EditingStep.BACK_TO_CONFIRM
    return EditingStep.REDRAFT
