"""
Intent Classification
=====================

Two-tier intent classifier plus the bounded agentic context loop.

- Light tier: cheap pass on a short first message; conclusive only when
  it yields a direct answer and does not ask for full analysis.
- Full tier: dialogue, requester context, situational facts, precedent
  tickets, knowledge candidates and any extra context the model asked
  for in the previous pass.

Model output goes through parse -> repair -> safe default, then through
normalization so the engine only ever sees a consistent result.
"""

from dataclasses import replace
from typing import Any, Dict, Iterable, Optional

from helpdesk_ai.config import (
    ContextSource, Priority, RequestType,
    VALID_CONTEXT_SOURCES, VALID_PRIORITIES, VALID_REQUEST_TYPES,
)
from helpdesk_ai.intake.application.interfaces import ILanguageModel
from helpdesk_ai.intake.application.retrieval import (
    KnowledgeRetrievalService, TicketRetrievalService,
)
from helpdesk_ai.intake.domain.entities import ClassificationResult, UserContext, ROLE_USER
from helpdesk_ai.intake.domain.model_output import parse_model_json
from helpdesk_ai.intake.domain.prompts import (
    ClassificationInput, IntentPromptBuilder,
    FULL_BUDGET, LIGHT_BUDGET, OP_INTENT_FULL, OP_INTENT_LIGHT,
)
from helpdesk_ai.intake.domain.validation import CATEGORY_MAX_CHARS, ResponseValidator
from helpdesk_ai.intake.domain.value_objects import IntakePolicy
from helpdesk_ai.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

MAX_MISSING_INFO = 4
VALID_TONES = ("calm", "frustrated", "angry", "anxious")

SOURCE_LIGHT = "light"
SOURCE_FULL = "full"
SOURCE_DEFAULT = "default"


def _field(payload: Dict[str, Any], camel: str, snake: str, default: Any = None) -> Any:
    if camel in payload:
        return payload[camel]
    return payload.get(snake, default)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def _as_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence != confidence:  # NaN
        return 0.0
    return min(1.0, max(0.0, confidence))


def _as_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value or value.lower() in ("null", "none"):
        return None
    return value


def _as_choice(value: Any, allowed: Iterable[str], default: Any) -> Any:
    if isinstance(value, str) and value.strip().lower() in allowed:
        return value.strip().lower()
    return default


class IntentClassifier:
    """Model calls and output normalization for both tiers."""

    def __init__(self, llm: ILanguageModel, validator: ResponseValidator):
        self._llm = llm
        self._validator = validator

    async def is_available(self) -> bool:
        return await self._llm.is_available()

    async def classify_light(
        self,
        message: str,
        user_context: Optional[UserContext],
        suppress_quick_solution: bool = False,
    ) -> Optional[ClassificationResult]:
        """Light-tier pass; None when the call fails or is unparseable."""
        try:
            with log_latency(logger, OP_INTENT_LIGHT):
                raw = await self._llm.complete(
                    system_prompt=IntentPromptBuilder.LIGHT_SYSTEM_PROMPT,
                    user_prompt=IntentPromptBuilder.build_light(message, user_context),
                    max_tokens=LIGHT_BUDGET.max_tokens,
                    temperature=LIGHT_BUDGET.temperature,
                    json_mode=True,
                    operation=OP_INTENT_LIGHT,
                )
        except Exception as e:
            logger.warning("Light classification failed", extra={"error": str(e)})
            return None

        parsed = parse_model_json(raw)
        if not parsed.recovered:
            logger.warning("Light classification unparseable")
            return None
        return self.result_from_payload(
            parsed.data, SOURCE_LIGHT, suppress_quick_solution=suppress_quick_solution
        )

    async def classify_full(self, data: ClassificationInput) -> ClassificationResult:
        """Full-tier pass; the safe default when the call or parsing fails."""
        try:
            with log_latency(logger, OP_INTENT_FULL):
                raw = await self._llm.complete(
                    system_prompt=IntentPromptBuilder.FULL_SYSTEM_PROMPT,
                    user_prompt=IntentPromptBuilder.build_full(data),
                    max_tokens=FULL_BUDGET.max_tokens,
                    temperature=FULL_BUDGET.temperature,
                    json_mode=True,
                    operation=OP_INTENT_FULL,
                )
        except Exception as e:
            logger.warning("Full classification failed, using safe default", extra={"error": str(e)})
            return ClassificationResult.safe_default(SOURCE_DEFAULT)

        parsed = parse_model_json(raw)
        if not parsed.recovered:
            logger.warning("Full classification unparseable, using safe default")
            return ClassificationResult.safe_default(SOURCE_DEFAULT)
        return self.result_from_payload(
            parsed.data,
            SOURCE_FULL,
            allowed_ticket_ids=data.allowed_ticket_ids,
            suppress_quick_solution=data.suppress_quick_solution,
        )

    def result_from_payload(
        self,
        payload: Dict[str, Any],
        source: str,
        allowed_ticket_ids: Iterable[str] = (),
        suppress_quick_solution: bool = False,
    ) -> ClassificationResult:
        """
        Normalize a parsed model object into a ClassificationResult.

        Unknown enum values fall back to defaults, a quick solution must
        pass the validator, and a duplicate ticket id is kept only when a
        detector surfaced that id this turn.
        """
        quick_solution = _as_text(_field(payload, "quickSolution", "quick_solution"))
        if quick_solution is not None:
            if suppress_quick_solution:
                quick_solution = None
            else:
                check = self._validator.validate_quick_solution(quick_solution)
                if not check.valid:
                    logger.warning("Quick solution rejected", extra={"reason": check.reason})
                    quick_solution = None
                else:
                    quick_solution = check.value

        duplicate_id = _as_text(_field(payload, "duplicateTicketId", "duplicate_ticket_id"))
        if duplicate_id is not None and duplicate_id not in set(allowed_ticket_ids):
            logger.warning("Ignoring unknown duplicate ticket id", extra={"ticket_id": duplicate_id})
            duplicate_id = None

        raw_missing = _field(payload, "missingInfo", "missing_info") or []
        if isinstance(raw_missing, str):
            raw_missing = [raw_missing]
        missing = frozenset(
            item.strip()[:100] for item in list(raw_missing)[:MAX_MISSING_INFO]
            if isinstance(item, str) and item.strip()
        )

        category = _as_text(_field(payload, "category", "category"))
        need_more_context = _as_bool(_field(payload, "needMoreContext", "need_more_context", False))

        return ClassificationResult(
            request_type=_as_choice(
                _field(payload, "requestType", "request_type"), VALID_REQUEST_TYPES, RequestType.QUESTION
            ),
            confidence=_as_confidence(payload.get("confidence")),
            is_ticket_intent=_as_bool(_field(payload, "isTicketIntent", "is_ticket_intent", False)),
            needs_more_info=_as_bool(_field(payload, "needsMoreInfo", "needs_more_info", False)),
            missing_info=missing,
            category=category[:CATEGORY_MAX_CHARS] if category else None,
            priority=_as_choice(payload.get("priority"), VALID_PRIORITIES, Priority.MEDIUM),
            emotional_tone=_as_choice(_field(payload, "emotionalTone", "emotional_tone"), VALID_TONES, None),
            quick_solution=quick_solution,
            off_topic_response=_as_text(_field(payload, "offTopicResponse", "off_topic_response")),
            need_more_context=need_more_context,
            more_context_source=_as_choice(
                _field(payload, "moreContextSource", "more_context_source"),
                VALID_CONTEXT_SOURCES,
                ContextSource.NONE,
            ),
            duplicate_ticket_id=duplicate_id,
            needs_full_analysis=_as_bool(_field(payload, "needsFullAnalysis", "needs_full_analysis", False)),
            source=source,
        )


class ClassificationService:
    """
    Runs the classifier for one gathering turn.

    The light tier is tried only on a short first message. The full tier
    runs at most ``max_agentic_passes`` times; a second pass happens only
    when the model asked for more context and the fetched context is
    substantial.
    """

    def __init__(
        self,
        classifier: IntentClassifier,
        knowledge: KnowledgeRetrievalService,
        tickets: TicketRetrievalService,
        policy: IntakePolicy,
    ):
        self._classifier = classifier
        self._knowledge = knowledge
        self._tickets = tickets
        self._policy = policy

    def use_light_tier(self, data: ClassificationInput) -> bool:
        user_messages = [m for m in data.dialog if m.role == ROLE_USER]
        return len(user_messages) == 1 and len(user_messages[0].content) <= self._policy.light_tier_max_chars

    async def classify_turn(self, data: ClassificationInput) -> ClassificationResult:
        if self.use_light_tier(data):
            light = await self._classifier.classify_light(
                data.dialog[-1].content if data.dialog else "",
                data.user_context,
                suppress_quick_solution=data.suppress_quick_solution,
            )
            if light is not None and self._is_conclusive(light):
                logger.info("Light tier conclusive", extra={"request_type": light.request_type})
                return light

        result = await self._classifier.classify_full(data)
        passes = 1
        while (
            passes < self._policy.max_agentic_passes
            and result.need_more_context
            and result.more_context_source != ContextSource.NONE
        ):
            extra = await self._fetch_extra_context(result.more_context_source, data)
            if len(extra.strip()) < self._policy.min_extra_context_chars:
                logger.info(
                    "Extra context too short, stopping agentic loop",
                    extra={"source": result.more_context_source, "chars": len(extra.strip())}
                )
                break
            data = replace(data, extra_context=extra)
            result = await self._classifier.classify_full(data)
            passes += 1

        result.passes = passes
        return result

    @staticmethod
    def _is_conclusive(result: ClassificationResult) -> bool:
        return not result.needs_full_analysis and bool(result.quick_solution or result.off_topic_response)

    async def _fetch_extra_context(self, source: str, data: ClassificationInput) -> str:
        query = "\n".join(m.content for m in data.dialog if m.role == ROLE_USER)
        try:
            if source == ContextSource.KB:
                return await self._knowledge.fetch_context_text(query)
            if source == ContextSource.TICKETS:
                return await self._tickets.fetch_context_text(query)
        except Exception as e:
            logger.warning("Extra context fetch failed", extra={"source": source, "error": str(e)})
        return ""
