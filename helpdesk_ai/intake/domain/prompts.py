"""
Intake Prompt Builders
======================

Builds prompts for every language-model call the intake engine makes.

One builder per call type, and one fixed ``CallBudget`` (temperature and
max tokens) per call type.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from helpdesk_ai.intake.domain.entities import (
    ArticleCandidate, DialogMessage, HistoricalTicket, RetrievalRecord,
    TicketDraft, UserContext, ROLE_USER,
)

OP_INTENT_LIGHT = "intent_light"
OP_INTENT_FULL = "intent_full"
OP_RELEVANCE = "relevance_check"
OP_NEXT_QUESTION = "next_question"
OP_TICKET_DRAFT = "ticket_draft"


@dataclass(frozen=True)
class CallBudget:
    """Fixed sampling parameters for one call type."""
    temperature: float
    max_tokens: int


LIGHT_BUDGET = CallBudget(temperature=0.2, max_tokens=250)
FULL_BUDGET = CallBudget(temperature=0.3, max_tokens=700)
RELEVANCE_BUDGET = CallBudget(temperature=0.0, max_tokens=60)
QUESTION_BUDGET = CallBudget(temperature=0.5, max_tokens=100)
DRAFT_BUDGET = CallBudget(temperature=0.3, max_tokens=600)


def format_dialog_history(history: Sequence[DialogMessage]) -> str:
    """Render the dialogue as ``User:`` / ``Assistant:`` lines."""
    if not history:
        return "(empty dialogue)"
    return "\n".join(
        f"{'User' if m.role == ROLE_USER else 'Assistant'}: {m.content}" for m in history
    )


def format_user_context(context: Optional[UserContext]) -> str:
    """Requester attributes, one per line; ``(unknown)`` when none are set."""
    if context is None:
        return "(unknown)"
    lines = []
    if context.name:
        lines.append(f"Name: {context.name}")
    if context.city:
        lines.append(f"City: {context.city}")
    if context.institution:
        lines.append(f"Institution: {context.institution}")
    if context.position:
        lines.append(f"Position: {context.position}")
    if context.equipment_summary:
        lines.append(f"Equipment: {context.equipment_summary}")
    return "\n".join(lines) if lines else "(unknown)"


def format_similar_tickets(records: Sequence[RetrievalRecord[HistoricalTicket]]) -> str:
    lines = []
    for i, record in enumerate(records, start=1):
        ticket = record.item
        line = f"{i}. [{record.score:.2f}] {ticket.title}"
        if ticket.category:
            line += f" (category: {ticket.category})"
        if ticket.resolution_summary:
            line += f"\n   Resolution: {ticket.resolution_summary[:300]}"
        lines.append(line)
    return "\n".join(lines)


@dataclass
class ClassificationInput:
    """Everything the full classifier sees for one pass."""
    dialog: List[DialogMessage]
    user_context: Optional[UserContext] = None
    business_hours: str = ""
    health_summary: str = ""
    fast_track_catalog: str = ""
    facts: List[str] = field(default_factory=list)
    similar_tickets: List[RetrievalRecord] = field(default_factory=list)
    kb_candidates: List[ArticleCandidate] = field(default_factory=list)
    extra_context: str = ""
    cached_category: Optional[str] = None
    cached_priority: Optional[str] = None
    suppress_quick_solution: bool = False
    allowed_ticket_ids: List[str] = field(default_factory=list)


class IntentPromptBuilder:
    """
    Builds prompts for the two classification tiers.
    """

    LIGHT_SYSTEM_PROMPT = """You are the first-line triage assistant of an IT helpdesk.

Classify the user's FIRST short message. Reply in the user's language inside text fields.

Return STRICTLY one JSON object, no markdown:
{
  "requestType": "question" | "appeal",
  "confidence": number 0.0-1.0,
  "isTicketIntent": boolean,
  "category": string or null,
  "quickSolution": string or null,
  "offTopicResponse": string or null,
  "needsFullAnalysis": boolean
}

Rules:
- "appeal" means the user wants something fixed or done; "question" means they want information.
- Give quickSolution only for a well-known problem with safe numbered steps the user can try alone.
- Give offTopicResponse only when the message is not an IT support request at all.
- Set needsFullAnalysis=true whenever you are unsure or the message is too vague."""

    FULL_SYSTEM_PROMPT = """You are the first-line support engineer of an IT helpdesk.

Your task is to decide how to handle the conversation:
1. Answer directly (quickSolution for fixable problems, offTopicResponse for non-IT questions)
2. Ask for missing details (needsMoreInfo with missingInfo)
3. Proceed to a support ticket (isTicketIntent with no missing info)

Reply in the user's language inside text fields.

Return STRICTLY one JSON object, no markdown:
{
  "requestType": "question" | "appeal",
  "confidence": number 0.0-1.0,
  "isTicketIntent": boolean,
  "needsMoreInfo": boolean,
  "missingInfo": [short strings, at most 4],
  "category": string or null,
  "priority": "low" | "medium" | "high" | "urgent",
  "emotionalTone": "calm" | "frustrated" | "angry" | "anxious" | null,
  "quickSolution": string or null,
  "offTopicResponse": string or null,
  "needMoreContext": boolean,
  "moreContextSource": "kb" | "tickets" | "none",
  "duplicateTicketId": string or null
}

Rules:
- Fill at most ONE of quickSolution / offTopicResponse.
- quickSolution must be 2-6 numbered steps and end with a question asking whether it helped.
- Situational facts are computed by the system and are reliable. If a fact names an open
  ticket for the same problem, set duplicateTicketId to it. During a localized outage, explain
  the shared cause instead of steering towards a new ticket.
- Raise priority when work is blocked and support closes soon.
- Set needMoreContext=true only if knowledge-base articles or past tickets would change your decision.
- Never invent ticket numbers, phone numbers or links."""

    @classmethod
    def build_light(cls, message: str, user_context: Optional[UserContext]) -> str:
        return (
            f"User context:\n{format_user_context(user_context)}\n\n"
            f"First message:\n{message}\n\nReturn the JSON object."
        )

    @classmethod
    def build_full(cls, data: ClassificationInput) -> str:
        sections = [
            f"User context:\n{format_user_context(data.user_context)}",
            f"Dialogue:\n{format_dialog_history(data.dialog)}",
        ]
        if data.business_hours:
            sections.append(f"Business hours:\n{data.business_hours}")
        if data.health_summary:
            sections.append(f"System health:\n{data.health_summary}")
        if data.facts:
            sections.append("Situational facts:\n" + "\n".join(f"- {f}" for f in data.facts))
        if data.fast_track_catalog:
            sections.append(f"Known quick fixes:\n{data.fast_track_catalog}")
        if data.similar_tickets:
            sections.append(f"Similar resolved tickets:\n{format_similar_tickets(data.similar_tickets)}")
        if data.kb_candidates:
            sections.append(
                "Possibly related knowledge-base articles:\n"
                + "\n".join(f"- {c.title}" for c in data.kb_candidates)
            )
        if data.extra_context:
            sections.append(f"Additional context you requested:\n{data.extra_context}")
        if data.cached_category or data.cached_priority:
            sections.append(
                f"Earlier estimate: category={data.cached_category or 'unknown'}, "
                f"priority={data.cached_priority or 'unknown'}"
            )
        if data.suppress_quick_solution:
            sections.append("The previous quick solution did NOT help. Do not offer a quick solution again.")
        sections.append("Return the JSON object.")
        return "\n\n".join(sections)


class RelevancePromptBuilder:
    """Yes/no topical relevance check for a retrieved candidate."""

    SYSTEM_PROMPT = """You check whether a retrieved help article or past ticket is about the same
problem as the user's request. Answer with YES or NO on the first line, optionally
followed by a one-sentence reason on the second line."""

    @classmethod
    def build_prompt(cls, query: str, title: str, body: str) -> str:
        return (
            f"User request:\n{query}\n\n"
            f"Candidate title: {title}\n"
            f"Candidate text:\n{body[:1200]}\n\n"
            "Is the candidate relevant? YES or NO."
        )


class QuestionPromptBuilder:
    """Single clarifying question derived from the missing information."""

    SYSTEM_PROMPT = """You are an IT helpdesk assistant gathering details for a support request.
Ask exactly ONE short, polite question in the user's language about the most important
missing detail. Do not repeat questions already asked. Return only the question text."""

    @classmethod
    def build_prompt(
        cls,
        dialog: Sequence[DialogMessage],
        user_context: Optional[UserContext],
        missing_info: Sequence[str],
    ) -> str:
        missing = ", ".join(missing_info) if missing_info else "what exactly happens"
        return (
            f"User context:\n{format_user_context(user_context)}\n\n"
            f"Dialogue:\n{format_dialog_history(dialog)}\n\n"
            f"Missing information: {missing}"
        )


class TicketDraftPromptBuilder:
    """Turns a resolved dialogue into a structured ticket."""

    SYSTEM_PROMPT = """You write support tickets for an IT helpdesk from a chat with a user.
Write in the user's language.

Return STRICTLY one JSON object, no markdown:
{
  "title": "short summary, at most 120 characters",
  "description": "what happens, since when, what was tried, impact (several lines allowed)",
  "category": "short category name",
  "priority": "low" | "medium" | "high" | "urgent",
  "environmentClues": {"device": "...", "os": "...", "location": "..."}
}

Only include environmentClues the user actually mentioned or the context states."""

    @classmethod
    def build_prompt(
        cls,
        dialog: Sequence[DialogMessage],
        user_context: Optional[UserContext],
        category_hint: Optional[str] = None,
        priority_hint: Optional[str] = None,
        similar_tickets: Sequence[RetrievalRecord] = (),
        current_draft: Optional[TicketDraft] = None,
        edit_request: Optional[str] = None,
    ) -> str:
        sections = [
            f"User context:\n{format_user_context(user_context)}",
            f"Dialogue:\n{format_dialog_history(dialog)}",
        ]
        if category_hint or priority_hint:
            sections.append(
                f"Hints: category={category_hint or 'unknown'}, priority={priority_hint or 'unknown'}"
            )
        if similar_tickets:
            sections.append(f"Similar resolved tickets:\n{format_similar_tickets(similar_tickets)}")
        if current_draft is not None:
            sections.append(
                "Current draft:\n"
                f"Title: {current_draft.title}\n"
                f"Category: {current_draft.category}\n"
                f"Priority: {current_draft.priority}\n"
                f"Description:\n{current_draft.description}"
            )
        if edit_request:
            sections.append(f"The user asked to change the draft:\n{edit_request}")
        sections.append("Return the JSON object.")
        return "\n\n".join(sections)
