"""
Intake Application Services
============================

Model-backed helpers used by the conversation engine:

- RelevanceChecker: yes/no self-correction pass over retrieved candidates
- QuestionGenerator: one clarifying question from the missing information
- TicketDrafter: dialogue -> structured ticket, with a deterministic fallback

Each degrades to a fixed, validated fallback when the model is disabled,
times out or returns something unusable.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from helpdesk_ai.config import Priority, DEFAULT_CATEGORY
from helpdesk_ai.intake.application.interfaces import ILanguageModel
from helpdesk_ai.intake.domain.entities import (
    ConversationSession, RetrievalRecord, TicketDraft, UserContext,
)
from helpdesk_ai.intake.domain.model_output import parse_model_json
from helpdesk_ai.intake.domain.prompts import (
    RelevancePromptBuilder, QuestionPromptBuilder, TicketDraftPromptBuilder,
    RELEVANCE_BUDGET, QUESTION_BUDGET, DRAFT_BUDGET,
    OP_RELEVANCE, OP_NEXT_QUESTION, OP_TICKET_DRAFT,
)
from helpdesk_ai.intake.domain.topics import topic_guard
from helpdesk_ai.intake.domain.validation import (
    ResponseValidator, FALLBACK_QUESTION, TITLE_MAX_CHARS, DESCRIPTION_MAX_CHARS,
)
from helpdesk_ai.intake.domain.value_objects import FastTrackRule
from helpdesk_ai.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

_NO_ANSWERS = frozenset({"NO", "НІ", "НЕТ"})
_YES_ANSWERS = frozenset({"YES", "ТАК", "ДА"})


@dataclass(frozen=True)
class RelevanceVerdict:
    """Decision of the relevance re-check."""
    relevant: bool
    reason: str
    method: str  # model | topic_guard | fail_open


class RelevanceChecker:
    """
    Second-opinion check that a retrieved candidate is on topic.

    Uses the language model when it is available and allowed; otherwise
    the rule-based topic guard. A failing model call accepts the candidate.
    """

    def __init__(self, llm: ILanguageModel):
        self._llm = llm

    async def check(
        self,
        query: str,
        title: str,
        body: str,
        use_model: bool = True
    ) -> RelevanceVerdict:
        if not use_model or not await self._llm.is_available():
            verdict = topic_guard(query, f"{title}\n{body}")
            return RelevanceVerdict(verdict.relevant, verdict.reason, "topic_guard")

        try:
            answer = await self._llm.complete(
                system_prompt=RelevancePromptBuilder.SYSTEM_PROMPT,
                user_prompt=RelevancePromptBuilder.build_prompt(query, title, body),
                max_tokens=RELEVANCE_BUDGET.max_tokens,
                temperature=RELEVANCE_BUDGET.temperature,
                operation=OP_RELEVANCE,
            )
        except Exception as e:
            logger.warning(
                "Relevance check failed, accepting candidate",
                extra={"candidate": title, "error": str(e)}
            )
            return RelevanceVerdict(True, "check_failed", "fail_open")

        return self._parse_answer(answer)

    @staticmethod
    def _parse_answer(answer: str) -> RelevanceVerdict:
        lines = [line.strip() for line in (answer or "").strip().splitlines() if line.strip()]
        if not lines:
            return RelevanceVerdict(True, "empty_answer", "fail_open")
        head = lines[0].upper().split()[0].strip("*\"'.,!:;")
        reason = lines[1] if len(lines) > 1 else ""
        if head in _NO_ANSWERS:
            return RelevanceVerdict(False, reason or "model_rejected", "model")
        if head in _YES_ANSWERS:
            return RelevanceVerdict(True, reason or "model_accepted", "model")
        return RelevanceVerdict(True, "unclear_answer", "fail_open")


class QuestionGenerator:
    """Produces the next clarifying question."""

    def __init__(self, llm: ILanguageModel, validator: ResponseValidator):
        self._llm = llm
        self._validator = validator

    async def next_question(
        self,
        session: ConversationSession,
        missing_info: Sequence[str] = ()
    ) -> str:
        if await self._llm.is_available():
            try:
                text = await self._llm.complete(
                    system_prompt=QuestionPromptBuilder.SYSTEM_PROMPT,
                    user_prompt=QuestionPromptBuilder.build_prompt(
                        session.dialog_history, session.user_context, sorted(missing_info)
                    ),
                    max_tokens=QUESTION_BUDGET.max_tokens,
                    temperature=QUESTION_BUDGET.temperature,
                    operation=OP_NEXT_QUESTION,
                )
                result = self._validator.validate_question(text)
                if result.valid:
                    return result.value
                logger.warning(
                    "Generated question rejected",
                    extra={"session_id": session.session_id, "reason": result.reason}
                )
            except Exception as e:
                logger.warning(
                    "Question generation failed",
                    extra={"session_id": session.session_id, "error": str(e)}
                )
        return self.fallback_question(missing_info)

    def fallback_question(self, missing_info: Sequence[str] = ()) -> str:
        if missing_info:
            candidate = "Could you tell me more about: " + ", ".join(sorted(missing_info)[:3]) + "?"
            if self._validator.validate_question(candidate).valid:
                return candidate
        return FALLBACK_QUESTION


class TicketDrafter:
    """
    Converts the dialogue into a structured ticket draft.

    Output always passes ResponseValidator.validate_ticket_draft; anything
    the model returns that does not is replaced by the deterministic
    fallback draft built from the user's own words.
    """

    def __init__(self, llm: ILanguageModel, validator: ResponseValidator):
        self._llm = llm
        self._validator = validator

    async def draft(
        self,
        session: ConversationSession,
        similar_tickets: Sequence[RetrievalRecord] = (),
        edit_request: Optional[str] = None,
        whole_dialogue_fallback: bool = False,
    ) -> TicketDraft:
        """
        Draft (or redraft after an edit request) a ticket.

        Args:
            session: Conversation with dialogue, user context and cached hints
            similar_tickets: Relevance-checked historical tickets
            edit_request: The user's requested change to the current draft
            whole_dialogue_fallback: Build the fallback from every user
                message rather than only the last one
        """
        if await self._llm.is_available():
            try:
                raw = await self._llm.complete(
                    system_prompt=TicketDraftPromptBuilder.SYSTEM_PROMPT,
                    user_prompt=TicketDraftPromptBuilder.build_prompt(
                        session.dialog_history,
                        session.user_context,
                        category_hint=session.cached_category,
                        priority_hint=session.cached_priority,
                        similar_tickets=similar_tickets,
                        current_draft=session.ticket_draft if edit_request else None,
                        edit_request=edit_request,
                    ),
                    max_tokens=DRAFT_BUDGET.max_tokens,
                    temperature=DRAFT_BUDGET.temperature,
                    json_mode=True,
                    operation=OP_TICKET_DRAFT,
                )
                parsed = parse_model_json(raw)
                if parsed.recovered:
                    result = self._validator.validate_ticket_draft(parsed.data)
                    if result.valid:
                        return self._finalize(result.value, session)
                    logger.warning(
                        "Drafted ticket rejected",
                        extra={"session_id": session.session_id, "reason": result.reason}
                    )
                else:
                    logger.warning(
                        "Drafted ticket unparseable",
                        extra={"session_id": session.session_id}
                    )
            except Exception as e:
                logger.warning(
                    "Ticket drafting failed, using fallback draft",
                    extra={"session_id": session.session_id, "error": str(e)}
                )

        if edit_request and session.ticket_draft is not None:
            return self._append_correction(session.ticket_draft, edit_request, session)
        return self.fallback_draft(session, whole_dialogue=whole_dialogue_fallback)

    def fallback_draft(self, session: ConversationSession, whole_dialogue: bool = False) -> TicketDraft:
        """
        Deterministic draft from the user's words.

        Title is the (first or last) user message cut to the title limit,
        description the full text, category "general", priority "medium".
        """
        messages = session.user_messages or ["Support request"]
        if whole_dialogue:
            title_source = messages[0]
            description = "\n".join(messages)
        else:
            title_source = messages[-1]
            description = messages[-1]

        draft = TicketDraft(
            title=_truncate_title(title_source),
            description=description.strip()[:DESCRIPTION_MAX_CHARS] or "Support request",
            category=DEFAULT_CATEGORY,
            priority=Priority.MEDIUM,
        )
        return self._finalize(draft, session)

    def _append_correction(
        self,
        current: TicketDraft,
        edit_request: str,
        session: ConversationSession
    ) -> TicketDraft:
        """Keep the current draft and record the requested change verbatim."""
        description = f"{current.description}\n\nUser correction: {edit_request.strip()}"
        draft = TicketDraft(
            title=current.title,
            description=description[:DESCRIPTION_MAX_CHARS],
            category=current.category,
            priority=current.priority,
            environment_clues=dict(current.environment_clues),
            attachments=list(current.attachments),
        )
        return self._finalize(draft, session)

    def draft_from_rule(self, rule: FastTrackRule, session: ConversationSession) -> TicketDraft:
        """Model-free draft for an auto-ticket fast-track rule."""
        description = "\n".join(session.user_messages).strip() or rule.problem_type
        draft = TicketDraft(
            title=_truncate_title(rule.ticket_title or rule.problem_type),
            description=description[:DESCRIPTION_MAX_CHARS],
            category=rule.category,
            priority=rule.priority,
        )
        return self._finalize(draft, session)

    def _finalize(self, draft: TicketDraft, session: ConversationSession) -> TicketDraft:
        """Add context clues and attachments, then re-validate the result."""
        clues = _context_clues(session.user_context)
        clues.update(draft.environment_clues)
        draft.environment_clues = clues
        draft.attachments = list(dict.fromkeys(list(draft.attachments) + session.attachments))

        result = self._validator.validate_ticket_draft(draft)
        if result.valid:
            return result.value

        logger.error(
            "Draft failed re-validation",
            extra={"session_id": session.session_id, "reason": result.reason}
        )
        return TicketDraft(
            title=_truncate_title(session.latest_user_message or "Support request"),
            description=(session.latest_user_message or "Support request")[:DESCRIPTION_MAX_CHARS],
            attachments=list(session.attachments),
        )


def _truncate_title(text: str) -> str:
    title = " ".join((text or "").split()) or "Support request"
    if len(title) > TITLE_MAX_CHARS:
        title = title[:TITLE_MAX_CHARS - 3].rstrip() + "..."
    return title


def _context_clues(context: UserContext) -> dict:
    clues = {}
    if context.location:
        clues["location"] = context.location
    if context.equipment_summary:
        clues["equipment"] = context.equipment_summary
    return clues
