"""
Intake Context Builders
=======================

Deterministic detectors that add facts to the classifier's input.

None of them decides what the user sees; they only produce facts
(duplicate ticket, localized outage, active ticket, health, business
hours) that the classifier and the engine read.
"""

import asyncio
import re
from datetime import datetime
from typing import Optional, Sequence, Tuple

from helpdesk_ai.intake.application.interfaces import IHealthCheck, IOpenTicketStore
from helpdesk_ai.intake.domain.entities import ConversationSession, OpenTicketSnapshot
from helpdesk_ai.intake.domain.topics import detect_topics, mentions_network
from helpdesk_ai.intake.domain.value_objects import (
    ActiveTicketFact, BusinessHoursCalculator, BusinessHoursSummary, BusinessSchedule,
    DuplicateFact, HealthReport, IntakePolicy, OutageFact, SituationalContext,
)
from helpdesk_ai.shared.infrastructure.logging import get_logger
from helpdesk_ai.shared.infrastructure.retry import STORAGE_CALL_POLICY, call_with_retry

logger = get_logger(__name__)

ANXIOUS_PATTERN = re.compile(
    r"(ви\s+тут|є\s+хтось|хтось\s+є|алло|ау\b|коли\s+(вже\s+)?(буде|прийдете|зробите|відповісте)|"
    r"скільки\s+чекати|довго\s+ще|ну\s+що\s+там|що\s+з\s+(моєю\s+)?заявкою|"
    r"are\s+you\s+there|anyone\s+there|any\s+update|any\s+news|how\s+long|"
    r"when\s+will|still\s+waiting|hello\?+|\?{2,})",
    re.IGNORECASE | re.UNICODE,
)


# ========== Pure helpers ==========

def is_anxious_repeat(text: str, max_chars: int) -> bool:
    """Short "are you there?"-style nudge."""
    text = (text or "").strip()
    return 0 < len(text) <= max_chars and bool(ANXIOUS_PATTERN.search(text))


def matches_same_problem(
    ticket: OpenTicketSnapshot,
    text: str,
    category: Optional[str]
) -> bool:
    """Same inferred category, or at least one shared topic family."""
    if category and ticket.category and ticket.category.lower() == category.lower():
        return True
    return bool(detect_topics(text) & detect_topics(ticket.text))


def find_duplicate(
    tickets: Sequence[OpenTicketSnapshot],
    text: str,
    category: Optional[str],
) -> Optional[DuplicateFact]:
    """Newest open ticket that looks like the same problem."""
    for ticket in sorted(tickets, key=lambda t: t.created_at, reverse=True):
        if matches_same_problem(ticket, text, category):
            return DuplicateFact(ticket.id, ticket.title, ticket.created_at)
    return None


def count_outage_reports(
    tickets: Sequence[OpenTicketSnapshot],
    text: str
) -> Tuple[int, Tuple[str, ...]]:
    """Network-related open tickets, plus the current message if it is one."""
    network_tickets = [t for t in tickets if mentions_network(t.text)]
    count = len(network_tickets) + (1 if mentions_network(text) else 0)
    return count, tuple(t.id for t in network_tickets)


def summarize_health(report: HealthReport) -> str:
    """Empty when everything is healthy, else one line per degraded component."""
    if report.is_healthy:
        return ""
    lines = [
        f"{name}: {component.status}" + (f" ({component.detail})" if component.detail else "")
        for name, component in report.components.items()
        if component.status != "healthy"
    ]
    if not lines:
        lines.append(f"platform: {report.status}")
    return "\n".join(lines)


# ========== Detectors ==========

class DuplicateDetector:
    def __init__(self, store: IOpenTicketStore, policy: IntakePolicy):
        self._store = store
        self._policy = policy

    async def detect(
        self,
        session: ConversationSession,
        text: str,
        now: datetime
    ) -> Optional[DuplicateFact]:
        location = session.user_context.location
        if not location:
            return None
        tickets = await call_with_retry(
            lambda: self._store.find_open_since(now - self._policy.duplicate_window, location),
            STORAGE_CALL_POLICY,
            "duplicate_lookup",
            timeout=self._policy.storage_timeout,
        )
        return find_duplicate(tickets, text, session.cached_category)


class OutageDetector:
    """
    Localized network outage: enough recent network complaints from one place.

    Reports are the open network tickets from the location within the
    window plus the current message when it is about the network.
    """

    def __init__(self, store: IOpenTicketStore, policy: IntakePolicy):
        self._store = store
        self._policy = policy

    async def detect(
        self,
        session: ConversationSession,
        text: str,
        now: datetime
    ) -> Optional[OutageFact]:
        location = session.user_context.location
        if not location:
            return None
        tickets = await call_with_retry(
            lambda: self._store.find_open_since(now - self._policy.outage_window, location),
            STORAGE_CALL_POLICY,
            "outage_lookup",
            timeout=self._policy.storage_timeout,
        )
        count, ticket_ids = count_outage_reports(tickets, text)
        if count < self._policy.outage_min_reports:
            return None
        logger.info("Localized outage detected", extra={"location": location, "reports": count})
        return OutageFact(location=location, report_count=count, ticket_ids=ticket_ids)


class ActiveTicketDetector:
    def __init__(self, store: IOpenTicketStore, policy: IntakePolicy):
        self._store = store
        self._policy = policy

    async def detect(self, session: ConversationSession, text: str) -> Optional[ActiveTicketFact]:
        requester_id = session.user_context.requester_id
        if not requester_id or not is_anxious_repeat(text, self._policy.anxious_message_max_chars):
            return None
        tickets = await call_with_retry(
            lambda: self._store.find_open_for_requester(requester_id),
            STORAGE_CALL_POLICY,
            "active_ticket_lookup",
            timeout=self._policy.storage_timeout,
        )
        if not tickets:
            return None
        newest = tickets[0]
        return ActiveTicketFact(newest.id, newest.title, newest.status)


class HealthSummarizer:
    def __init__(self, health_check: Optional[IHealthCheck], timeout: float):
        self._health_check = health_check
        self._timeout = timeout

    async def summarize(self) -> str:
        if self._health_check is None:
            return ""
        report = await asyncio.wait_for(self._health_check.run_all_checks(), timeout=self._timeout)
        return summarize_health(report)


class BusinessHoursSummarizer:
    def __init__(self, schedule: BusinessSchedule, policy: IntakePolicy):
        self._schedule = schedule
        self._policy = policy

    def summarize(self, now: datetime) -> BusinessHoursSummary:
        return BusinessHoursCalculator.summarize(
            self._schedule, now, self._policy.closing_soon_minutes
        )


class ContextAssembler:
    """
    Runs every detector for one turn.

    Detectors run concurrently; a failing detector is logged and
    contributes nothing.
    """

    def __init__(
        self,
        open_tickets: IOpenTicketStore,
        health_check: Optional[IHealthCheck],
        schedule: BusinessSchedule,
        policy: IntakePolicy,
    ):
        self.duplicates = DuplicateDetector(open_tickets, policy)
        self.outages = OutageDetector(open_tickets, policy)
        self.active_tickets = ActiveTicketDetector(open_tickets, policy)
        self.health = HealthSummarizer(health_check, policy.storage_timeout)
        self.business_hours = BusinessHoursSummarizer(schedule, policy)

    async def build(
        self,
        session: ConversationSession,
        text: str,
        now: datetime
    ) -> SituationalContext:
        duplicate, outage, active, health = await asyncio.gather(
            self.duplicates.detect(session, text, now),
            self.outages.detect(session, text, now),
            self.active_tickets.detect(session, text),
            self.health.summarize(),
            return_exceptions=True,
        )
        names = ("duplicate", "outage", "active_ticket", "health")
        results = []
        for name, value in zip(names, (duplicate, outage, active, health)):
            if isinstance(value, Exception):
                logger.warning(
                    "Context builder failed",
                    extra={"builder": name, "session_id": session.session_id, "error": str(value)}
                )
                value = None
            results.append(value)
        duplicate, outage, active, health = results

        return SituationalContext(
            duplicate=duplicate,
            outage=outage,
            active_ticket=active,
            health_summary=health or "",
            business_hours=self.business_hours.summarize(now),
        )
