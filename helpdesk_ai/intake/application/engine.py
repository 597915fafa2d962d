"""
Conversation Engine
===================

Turns one incoming chat message (or button signal) into one typed action.

Each state has a pure decision function in ``intake.domain.transitions``;
this module performs the I/O those decisions call for (retrieval,
detectors, classification, drafting, ticket creation) and keeps the
session consistent. A turn never raises to the caller: any unexpected
failure becomes a clarifying question.
"""

from datetime import datetime
from typing import Callable, List, Optional

from helpdesk_ai.intake.application.classifier import ClassificationService
from helpdesk_ai.intake.application.context_builders import ContextAssembler
from helpdesk_ai.intake.application.fast_track import FastTrackMatch, FastTrackMatcher
from helpdesk_ai.intake.application.interfaces import ILanguageModel, ITicketCreator
from helpdesk_ai.intake.application.retrieval import (
    KnowledgeRetrievalService, TicketRetrievalService,
)
from helpdesk_ai.intake.application.services import QuestionGenerator, TicketDrafter
from helpdesk_ai.intake.application.sessions import SessionStore
from helpdesk_ai.intake.domain.entities import (
    ActionType, ArticleCandidate, ClassificationResult, ConversationSession, ConversationState,
    EngineAction, FeedbackSignal, KnowledgeArticleRef, TicketDraft, UserContext, utc_now,
)
from helpdesk_ai.intake.domain.prompts import ClassificationInput
from helpdesk_ai.intake.domain.transitions import (
    ConfirmStep, EditingStep, FastTrackStep, GatheringStep, TipFeedbackStep,
    decide_confirm, decide_editing, decide_fast_track, decide_gathering,
    decide_tip_feedback, escalation_guard_reached, interpret_tip_feedback,
)
from helpdesk_ai.intake.domain.validation import FALLBACK_QUESTION
from helpdesk_ai.intake.domain.value_objects import FastTrackKind, IntakePolicy
from helpdesk_ai.shared.infrastructure.logging import get_context_logger, get_logger
from helpdesk_ai.shared.infrastructure.retry import STORAGE_CALL_POLICY, call_with_retry

logger = get_logger(__name__)

PHOTO_MARKER = "[photo attached]"
NOT_HELPED_NOTE = "The suggested solution did not help."

CLOSED_HELPED_TEXT = "Glad it helped! If anything else comes up, just write here."
CANCELLED_TEXT = "Request cancelled. Write again whenever you need help."
NO_SESSION_TEXT = "This conversation has ended. Please describe your problem to start a new request."
EDIT_PROMPT_TEXT = "What would you like to change in the ticket?"
MANUAL_FALLBACK_TEXT = (
    "I could not pin the problem down automatically, so I prepared a ticket from what "
    "you told me. Please check it and confirm, edit or cancel."
)
CREATE_FAILED_TEXT = "The ticket could not be created right now. Please try confirming again in a moment."
ARTICLE_FOOTER = "Did this help?"


def render_draft(draft: TicketDraft) -> str:
    """Confirmation text for a draft."""
    lines = [
        "Please check the ticket:",
        "",
        f"Title: {draft.title}",
        f"Category: {draft.category}",
        f"Priority: {draft.priority}",
        "",
        draft.description,
    ]
    if draft.attachments:
        lines.append("")
        lines.append(f"Attachments: {len(draft.attachments)}")
    lines.append("")
    lines.append("Is everything correct?")
    return "\n".join(lines)


def render_article(article: KnowledgeArticleRef, max_body_chars: int = 1500) -> str:
    body = article.body.strip()
    if len(body) > max_body_chars:
        body = body[:max_body_chars].rstrip() + "..."
    return f"{article.title}\n\n{body}\n\n{ARTICLE_FOOTER}"


class ConversationEngine:
    """
    Conversational intake engine.

    Usage:
        action = await engine.handle_message("chat-42", text="printer is not printing")
        action = await engine.handle_feedback("chat-42", FeedbackSignal.APPROVE)

    Turns for one session run strictly in order (per-session lock);
    cancellation does not wait for the lock and is honoured by an
    in-flight turn before it saves.
    """

    def __init__(
        self,
        sessions: SessionStore,
        language_model: ILanguageModel,
        classification: ClassificationService,
        knowledge: KnowledgeRetrievalService,
        tickets: TicketRetrievalService,
        context: ContextAssembler,
        fast_track: FastTrackMatcher,
        questions: QuestionGenerator,
        drafter: TicketDrafter,
        ticket_creator: ITicketCreator,
        policy: IntakePolicy,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._sessions = sessions
        self._llm = language_model
        self._classification = classification
        self._knowledge = knowledge
        self._tickets = tickets
        self._context = context
        self._fast_track = fast_track
        self._questions = questions
        self._drafter = drafter
        self._ticket_creator = ticket_creator
        self._policy = policy
        self._clock = clock

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    # ========== Caller surface ==========

    async def handle_message(
        self,
        session_id: str,
        text: Optional[str] = None,
        photo_ref: Optional[str] = None,
        caption: Optional[str] = None,
        requester: Optional[UserContext] = None,
    ) -> EngineAction:
        """
        Process one user message.

        Args:
            session_id: Conversation id (chat id)
            text: Message text
            photo_ref: Transport reference of an attached photo
            caption: Photo caption
            requester: Requester attributes; used only when the message
                starts a new session
        """
        text = (text or "").strip()
        if not text and not photo_ref:
            return EngineAction(
                action=ActionType.QUESTION,
                session_id=session_id,
                state=self._current_state(session_id),
                text=FALLBACK_QUESTION,
            )

        async with self._sessions.lock_for(session_id):
            now = self._clock()
            session = self._sessions.get(session_id)
            if session is None:
                session = self._sessions.create(session_id, requester, now)
            log = get_context_logger(__name__, session_id=session_id)

            if photo_ref:
                session.attachments.append(photo_ref)
                content = f"{PHOTO_MARKER} {caption or text}".strip()
            else:
                content = text
            session.add_user_message(content, self._policy.max_message_chars)
            session.touch(now)
            state_before = session.state

            try:
                action = await self._dispatch_message(session, content, photo_ref is not None, now)
            except Exception as e:
                log.error("Turn failed, asking to clarify", extra={"error": str(e)}, exc_info=True)
                action = self._question(session, FALLBACK_QUESTION)

            return self._finish_turn(session, action, state_before)

    async def handle_feedback(self, session_id: str, signal: FeedbackSignal) -> EngineAction:
        """Process a button signal (helped, notHelped, approve, edit, cancel)."""
        signal = FeedbackSignal(signal)
        if signal == FeedbackSignal.CANCEL:
            return self.cancel(session_id)

        async with self._sessions.lock_for(session_id):
            session = self._sessions.get(session_id)
            if session is None or session.is_closed:
                return EngineAction(
                    action=ActionType.ANSWER,
                    session_id=session_id,
                    state=ConversationState.CLOSED,
                    text=NO_SESSION_TEXT,
                )
            now = self._clock()
            session.touch(now)
            state_before = session.state
            log = get_context_logger(__name__, session_id=session_id)

            try:
                action = await self._dispatch_signal(session, signal, now)
            except Exception as e:
                log.error("Feedback turn failed", extra={"error": str(e)}, exc_info=True)
                action = self._repeat_state_prompt(session)

            return self._finish_turn(session, action, state_before)

    def cancel(self, session_id: str) -> EngineAction:
        """
        Cancel a conversation immediately.

        Does not wait for an in-flight turn; that turn sees the flag and
        does not save the session back.
        """
        session = self._sessions.get(session_id)
        if session is not None:
            session.cancelled = True
            session.state = ConversationState.CLOSED
            self._sessions.discard(session_id, session)
            logger.info("Session cancelled", extra={"session_id": session_id})
        return EngineAction(
            action=ActionType.ANSWER,
            session_id=session_id,
            state=ConversationState.CLOSED,
            text=CANCELLED_TEXT,
        )

    # ========== Dispatch ==========

    async def _dispatch_message(
        self,
        session: ConversationSession,
        text: str,
        is_photo: bool,
        now: datetime
    ) -> EngineAction:
        if session.cancelled:
            return self._cancelled(session)

        if session.state == ConversationState.GATHERING_INFORMATION:
            return await self._gathering_turn(session, now)

        if session.state == ConversationState.AWAITING_TIP_FEEDBACK:
            signal = FeedbackSignal.NOT_HELPED if is_photo else interpret_tip_feedback(text)
            return await self._tip_feedback_turn(session, signal, now)

        if session.state in (ConversationState.CONFIRM_TICKET, ConversationState.EDITING_FROM_CONFIRM):
            if is_photo:
                return self._attach_to_draft(session)
            if session.state == ConversationState.CONFIRM_TICKET:
                return await self._confirm_turn(session, decide_confirm(None, text), text)
            return await self._editing_turn(session, decide_editing(None, text), text)

        return self._cancelled(session)

    async def _dispatch_signal(
        self,
        session: ConversationSession,
        signal: FeedbackSignal,
        now: datetime
    ) -> EngineAction:
        state = session.state
        if state == ConversationState.AWAITING_TIP_FEEDBACK and signal in (
            FeedbackSignal.HELPED, FeedbackSignal.NOT_HELPED
        ):
            if signal == FeedbackSignal.NOT_HELPED:
                session.add_user_message(NOT_HELPED_NOTE, self._policy.max_message_chars)
            return await self._tip_feedback_turn(session, signal, now)

        if state == ConversationState.CONFIRM_TICKET and signal in (
            FeedbackSignal.APPROVE, FeedbackSignal.EDIT
        ):
            return await self._confirm_turn(session, decide_confirm(signal), None)

        if state == ConversationState.EDITING_FROM_CONFIRM and signal == FeedbackSignal.APPROVE:
            return await self._editing_turn(session, decide_editing(signal), None)

        logger.info(
            "Signal does not apply to state",
            extra={"session_id": session.session_id, "signal": signal.value, "state": state.value}
        )
        return self._repeat_state_prompt(session)

    # ========== gathering_information ==========

    async def _gathering_turn(self, session: ConversationSession, now: datetime) -> EngineAction:
        policy = self._policy
        if escalation_guard_reached(session, policy):
            return await self._manual_fallback(session)

        latest = session.latest_user_message
        query = self._retrieval_query(session)
        match = self._fast_track.match(latest)

        query_vector = await self._knowledge.embed_query(query)
        kb = await self._knowledge.lookup(query, use_model_check=match is None, query_vector=query_vector)
        if kb.article is not None and not session.suppress_quick_solution:
            result = ClassificationResult.from_knowledge_article(kb.article, kb.score, kb.candidates)
            return await self._apply_gathering_step(session, result, (), kb.candidates)

        if match is not None:
            return self._fast_track_turn(session, match, kb.candidates)

        model_available = await self._llm.is_available()
        situational = await self._context.build(session, latest, now)

        if not model_available:
            if situational.active_ticket is not None:
                fact = situational.active_ticket
                session.state = ConversationState.CLOSED
                return self._answer(
                    session,
                    f"Your ticket {fact.ticket_id} \"{fact.title}\" is already being handled "
                    f"(status: {fact.status}). We will get back to you there.",
                    existing_ticket_id=fact.ticket_id,
                )
            return await self._ask_question(session, (), kb.candidates)

        similar = await self._tickets.similar(query, query_vector=query_vector)
        data = ClassificationInput(
            dialog=list(session.dialog_history),
            user_context=session.user_context,
            business_hours=situational.business_hours.render() if situational.business_hours else "",
            health_summary=situational.health_summary,
            fast_track_catalog=self._fast_track.catalog_summary(),
            facts=situational.facts(),
            similar_tickets=similar,
            kb_candidates=list(kb.candidates),
            cached_category=session.cached_category,
            cached_priority=session.cached_priority,
            suppress_quick_solution=session.suppress_quick_solution,
            allowed_ticket_ids=situational.ticket_ids(),
        )
        result = await self._classification.classify_turn(data)
        result.knowledge_article_candidates = tuple(kb.candidates)

        session.remember_classification(result)
        if result.confidence < policy.ticket_confidence_threshold:
            session.low_confidence_attempts += 1
        return await self._apply_gathering_step(session, result, similar, kb.candidates)

    async def _apply_gathering_step(
        self,
        session: ConversationSession,
        result: ClassificationResult,
        similar,
        candidates: List[ArticleCandidate],
    ) -> EngineAction:
        step = decide_gathering(result, session, self._policy)
        logger.info(
            "Gathering step decided",
            extra={
                "session_id": session.session_id,
                "step": step.value,
                "confidence": result.confidence,
                "source": result.source,
                "passes": result.passes,
            }
        )

        if step == GatheringStep.REFER_DUPLICATE:
            session.state = ConversationState.CLOSED
            return self._answer(
                session,
                f"This problem is already registered as ticket {result.duplicate_ticket_id}. "
                "Our team is working on it; no new ticket is needed.",
                existing_ticket_id=result.duplicate_ticket_id,
            )
        if step == GatheringStep.ANSWER_ARTICLE:
            return self._answer_article(session, result.knowledge_article)
        if step == GatheringStep.ANSWER_QUICK_SOLUTION:
            session.last_quick_solution = result.quick_solution
            session.state = ConversationState.AWAITING_TIP_FEEDBACK
            return self._answer(session, result.quick_solution, suggestions=candidates)
        if step == GatheringStep.QUICK_SOLUTION_AND_CONTINUE:
            if session.last_quick_solution == result.quick_solution:
                # Same tip again: ask for the missing details instead.
                return await self._ask_question(session, result.missing_info, candidates)
            session.last_quick_solution = result.quick_solution
            session.questions_asked += 1
            return self._answer(session, result.quick_solution, suggestions=candidates)
        if step == GatheringStep.ANSWER_OFF_TOPIC:
            return self._answer(session, result.off_topic_response, suggestions=candidates)
        if step == GatheringStep.DRAFT_TICKET:
            draft = await self._drafter.draft(session, similar_tickets=similar)
            return self._present_draft(session, draft, suggestions=candidates)
        return await self._ask_question(session, result.missing_info, candidates)

    def _fast_track_turn(
        self,
        session: ConversationSession,
        match: FastTrackMatch,
        candidates: List[ArticleCandidate],
    ) -> EngineAction:
        rule = match.rule
        if (
            rule.kind == FastTrackKind.QUICK_FIX
            and session.suppress_quick_solution
            and session.last_quick_solution == rule.solution
        ):
            # Same canned fix already failed: go straight to a ticket.
            draft = self._drafter.draft_from_rule(rule, session)
            return self._present_draft(session, draft, suggestions=candidates)

        step = decide_fast_track(rule)
        if step == FastTrackStep.ANSWER_AND_CLOSE:
            session.state = ConversationState.CLOSED
            return self._answer(session, rule.solution, suggestions=candidates)
        if step == FastTrackStep.ANSWER_AND_CONFIRM:
            draft = self._drafter.draft_from_rule(rule, session)
            session.ticket_draft = draft
            session.state = ConversationState.CONFIRM_TICKET
            return self._action(
                session,
                ActionType.TICKET_CONFIRMATION,
                f"{rule.solution}\n\n{render_draft(draft)}",
                draft=draft,
                suggestions=candidates,
            )

        session.last_quick_solution = rule.solution
        if step == FastTrackStep.ANSWER_AND_AWAIT_FEEDBACK:
            session.state = ConversationState.AWAITING_TIP_FEEDBACK
        else:
            # Answer carries a follow-up question.
            session.questions_asked += 1
        return self._answer(session, rule.solution, suggestions=candidates)

    async def _manual_fallback(self, session: ConversationSession) -> EngineAction:
        logger.info(
            "Escalation guard reached, offering manual ticket",
            extra={
                "session_id": session.session_id,
                "questions_asked": session.questions_asked,
                "low_confidence_attempts": session.low_confidence_attempts,
            }
        )
        draft = await self._drafter.draft(session, whole_dialogue_fallback=True)
        session.ticket_draft = draft
        session.state = ConversationState.CONFIRM_TICKET
        return self._action(
            session,
            ActionType.TICKET_CONFIRMATION,
            f"{MANUAL_FALLBACK_TEXT}\n\n{render_draft(draft)}",
            draft=draft,
            manual_fallback=True,
        )

    async def _ask_question(
        self,
        session: ConversationSession,
        missing_info,
        candidates: List[ArticleCandidate],
    ) -> EngineAction:
        question = await self._questions.next_question(session, sorted(missing_info))
        session.questions_asked += 1
        return self._question(session, question, suggestions=candidates)

    # ========== awaiting_tip_feedback ==========

    async def _tip_feedback_turn(
        self,
        session: ConversationSession,
        signal: Optional[FeedbackSignal],
        now: datetime
    ) -> EngineAction:
        step = decide_tip_feedback(signal)
        if step == TipFeedbackStep.CLOSE:
            session.state = ConversationState.CLOSED
            return self._answer(session, CLOSED_HELPED_TEXT)

        session.suppress_quick_solution = True
        session.state = ConversationState.GATHERING_INFORMATION
        return await self._gathering_turn(session, now)

    # ========== confirm_ticket / editing_from_confirm ==========

    async def _confirm_turn(
        self,
        session: ConversationSession,
        step: ConfirmStep,
        text: Optional[str]
    ) -> EngineAction:
        if step == ConfirmStep.CANCEL:
            return self._cancelled(session)
        if step == ConfirmStep.CREATE_TICKET:
            return await self._create_ticket(session)
        if step == ConfirmStep.START_EDIT:
            session.state = ConversationState.EDITING_FROM_CONFIRM
            return self._question(session, EDIT_PROMPT_TEXT)
        draft = await self._drafter.draft(session, edit_request=text)
        return self._present_draft(session, draft)

    async def _editing_turn(
        self,
        session: ConversationSession,
        step: EditingStep,
        text: Optional[str]
    ) -> EngineAction:
        if step == EditingStep.CANCEL:
            return self._cancelled(session)
        if step == EditingStep.CREATE_TICKET:
            return await self._create_ticket(session)
        if step == EditingStep.BACK_TO_CONFIRM and session.ticket_draft is not None:
            return self._present_draft(session, session.ticket_draft)
        draft = await self._drafter.draft(session, edit_request=text)
        return self._present_draft(session, draft)

    def _attach_to_draft(self, session: ConversationSession) -> EngineAction:
        draft = session.ticket_draft
        if draft is None:
            draft = self._drafter.fallback_draft(session, whole_dialogue=True)
        for ref in session.attachments:
            if ref not in draft.attachments:
                draft.attachments.append(ref)
        return self._present_draft(session, draft)

    async def _create_ticket(self, session: ConversationSession) -> EngineAction:
        draft = session.ticket_draft or self._drafter.fallback_draft(session, whole_dialogue=True)
        for ref in session.attachments:
            if ref not in draft.attachments:
                draft.attachments.append(ref)
        if session.cancelled:
            return self._cancelled(session)
        try:
            ticket_id = await call_with_retry(
                lambda: self._ticket_creator.create_ticket(draft, session.user_context),
                STORAGE_CALL_POLICY,
                "create_ticket",
                timeout=self._policy.storage_timeout,
            )
        except Exception as e:
            logger.error(
                "Ticket creation failed",
                extra={"session_id": session.session_id, "error": str(e)}
            )
            session.ticket_draft = draft
            session.state = ConversationState.CONFIRM_TICKET
            return self._action(session, ActionType.TICKET_CONFIRMATION, CREATE_FAILED_TEXT, draft=draft)

        session.state = ConversationState.CLOSED
        logger.info("Ticket created", extra={"session_id": session.session_id, "ticket_id": ticket_id})
        return self._action(
            session,
            ActionType.TICKET_CREATED,
            f"Ticket {ticket_id} has been created. We will keep you posted.",
            draft=draft,
            ticket_id=ticket_id,
        )

    # ========== Helpers ==========

    def _retrieval_query(self, session: ConversationSession) -> str:
        """Recent user messages without the photo marker, newest last."""
        messages = [
            m.replace(PHOTO_MARKER, "").strip() for m in session.user_messages[-3:]
            if m != NOT_HELPED_NOTE
        ]
        return "\n".join(m for m in messages if m)[:self._policy.max_index_text_chars]

    def _current_state(self, session_id: str) -> ConversationState:
        session = self._sessions.get(session_id)
        return session.state if session is not None else ConversationState.GATHERING_INFORMATION

    def _present_draft(
        self,
        session: ConversationSession,
        draft: TicketDraft,
        suggestions: Optional[List[ArticleCandidate]] = None,
    ) -> EngineAction:
        session.ticket_draft = draft
        session.state = ConversationState.CONFIRM_TICKET
        return self._action(
            session,
            ActionType.TICKET_CONFIRMATION,
            render_draft(draft),
            draft=draft,
            suggestions=suggestions,
        )

    def _answer_article(self, session: ConversationSession, article: KnowledgeArticleRef) -> EngineAction:
        session.state = ConversationState.AWAITING_TIP_FEEDBACK
        return self._action(
            session,
            ActionType.ANSWER,
            render_article(article),
            knowledge_article=article,
        )

    def _repeat_state_prompt(self, session: ConversationSession) -> EngineAction:
        if session.state in (ConversationState.CONFIRM_TICKET, ConversationState.EDITING_FROM_CONFIRM) \
                and session.ticket_draft is not None:
            return self._present_draft(session, session.ticket_draft)
        if session.state == ConversationState.AWAITING_TIP_FEEDBACK:
            return self._answer(session, ARTICLE_FOOTER)
        return self._question(session, FALLBACK_QUESTION)

    def _cancelled(self, session: ConversationSession) -> EngineAction:
        session.cancelled = True
        session.state = ConversationState.CLOSED
        return self._answer(session, CANCELLED_TEXT)

    def _answer(
        self,
        session: ConversationSession,
        text: str,
        suggestions: Optional[List[ArticleCandidate]] = None,
        existing_ticket_id: Optional[str] = None,
    ) -> EngineAction:
        return self._action(
            session, ActionType.ANSWER, text,
            suggestions=suggestions, existing_ticket_id=existing_ticket_id,
        )

    def _question(
        self,
        session: ConversationSession,
        text: str,
        suggestions: Optional[List[ArticleCandidate]] = None,
    ) -> EngineAction:
        return self._action(session, ActionType.QUESTION, text, suggestions=suggestions)

    @staticmethod
    def _action(
        session: ConversationSession,
        action: ActionType,
        text: str,
        draft: Optional[TicketDraft] = None,
        knowledge_article: Optional[KnowledgeArticleRef] = None,
        suggestions: Optional[List[ArticleCandidate]] = None,
        ticket_id: Optional[str] = None,
        existing_ticket_id: Optional[str] = None,
        manual_fallback: bool = False,
    ) -> EngineAction:
        return EngineAction(
            action=action,
            session_id=session.session_id,
            state=session.state,
            text=text,
            knowledge_article=knowledge_article,
            suggestions=list(suggestions or []),
            draft=draft,
            ticket_id=ticket_id,
            existing_ticket_id=existing_ticket_id,
            manual_fallback=manual_fallback,
        )

    def _finish_turn(
        self,
        session: ConversationSession,
        action: EngineAction,
        state_before: ConversationState,
    ) -> EngineAction:
        """Record the reply, honour a concurrent cancel, and save."""
        if session.cancelled:
            self._sessions.discard(session.session_id, session)
            if action.text != CANCELLED_TEXT:
                return EngineAction(
                    action=ActionType.ANSWER,
                    session_id=session.session_id,
                    state=ConversationState.CLOSED,
                    text=CANCELLED_TEXT,
                )
            return action

        if action.text:
            session.add_assistant_message(action.text, self._policy.max_message_chars)
        action.state = session.state
        self._sessions.save(session)

        logger.info(
            "Turn completed",
            extra={
                "session_id": session.session_id,
                "state_before": state_before.value,
                "state": session.state.value,
                "action": action.action.value,
                "questions_asked": session.questions_asked,
                "low_confidence_attempts": session.low_confidence_attempts,
            }
        )
        return action
