"""
Intake Value Objects
====================

Immutable value objects for the intake domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared between sessions:

- IntakePolicy: every threshold, window and bound the engine applies
- FastTrackRule / FastTrackCatalog: the keyword -> canned answer table (YAML)
- BusinessSchedule / BusinessHoursCalculator: weekly schedule arithmetic
- Situational facts emitted by the context builders
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from helpdesk_ai.config import Settings, Priority, VALID_PRIORITIES, DEFAULT_CATEGORY


class IntakePolicy(BaseModel):
    """
    Tunable policy constants for retrieval, detectors and the dialogue.

    Defaults are the calibrated production values; every field can be
    overridden through Settings.
    """
    model_config = ConfigDict(frozen=True)

    # Retrieval
    kb_high_threshold: float = Field(default=0.78, ge=0.0, le=1.0)
    kb_medium_threshold: float = Field(default=0.50, ge=0.0, le=1.0)
    kb_max_candidates: int = Field(default=3, ge=1)
    similar_tickets_limit: int = Field(default=3, ge=1)
    ticket_rating_boost: float = Field(default=1.2, ge=1.0)
    excluded_ticket_ratings: Tuple[int, ...] = (1, 2)
    max_index_text_chars: int = Field(default=8000, ge=100)

    # Detectors
    duplicate_window: timedelta = timedelta(minutes=10)
    outage_window: timedelta = timedelta(minutes=10)
    outage_min_reports: int = Field(default=3, ge=2)
    anxious_message_max_chars: int = Field(default=80, ge=1)

    # Dialogue
    ticket_confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    max_questions: int = Field(default=4, ge=1)
    max_low_confidence_attempts: int = Field(default=2, ge=1)
    light_tier_max_chars: int = Field(default=40, ge=1)
    min_extra_context_chars: int = Field(default=40, ge=1)
    max_agentic_passes: int = Field(default=2, ge=1, le=2)
    max_message_chars: int = Field(default=2000, ge=100)
    closing_soon_minutes: int = Field(default=120, ge=1)

    # Storage call timeout (seconds); provider calls carry their own
    storage_timeout: float = Field(default=5.0, gt=0)

    @model_validator(mode="after")
    def validate_thresholds(self) -> "IntakePolicy":
        """High threshold must not sit below the medium one."""
        if self.kb_high_threshold < self.kb_medium_threshold:
            raise ValueError("kb_high_threshold must be >= kb_medium_threshold")
        return self

    @classmethod
    def from_settings(cls, settings: Settings) -> "IntakePolicy":
        return cls(
            kb_high_threshold=settings.kb_high_threshold,
            kb_medium_threshold=settings.kb_medium_threshold,
            kb_max_candidates=settings.kb_max_candidates,
            similar_tickets_limit=settings.similar_tickets_limit,
            ticket_rating_boost=settings.ticket_rating_boost,
            duplicate_window=timedelta(minutes=settings.duplicate_window_minutes),
            outage_window=timedelta(minutes=settings.outage_window_minutes),
            outage_min_reports=settings.outage_min_reports,
            ticket_confidence_threshold=settings.ticket_confidence_threshold,
            max_questions=settings.max_questions,
            max_low_confidence_attempts=settings.max_low_confidence_attempts,
            light_tier_max_chars=settings.light_tier_max_chars,
            min_extra_context_chars=settings.min_extra_context_chars,
            max_message_chars=settings.max_message_chars,
            storage_timeout=settings.storage_timeout_seconds,
        )


# ========== Fast-track table ==========

class FastTrackKind:
    """Outcome kinds of a fast-track rule."""
    INFO = "info"
    QUICK_FIX = "quick_fix"
    AUTO_TICKET = "auto_ticket"


VALID_FAST_TRACK_KINDS = [FastTrackKind.INFO, FastTrackKind.QUICK_FIX, FastTrackKind.AUTO_TICKET]


class FastTrackRule(BaseModel):
    """One problem type with its keywords and canned outcome."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    problem_type: str = Field(..., min_length=1)
    keywords: List[str] = Field(..., min_length=1)
    kind: str = FastTrackKind.QUICK_FIX
    solution: str = Field(..., min_length=1)
    needs_more_info: bool = False
    category: str = DEFAULT_CATEGORY
    priority: str = Priority.MEDIUM
    ticket_title: Optional[str] = None

    @field_validator("keywords")
    @classmethod
    def normalize_keywords(cls, v: List[str]) -> List[str]:
        """Lower-case, strip, and drop keywords too short to be meaningful."""
        keywords = [k.strip().lower() for k in v if k and len(k.strip()) > 2]
        if not keywords:
            raise ValueError("rule needs at least one keyword longer than 2 characters")
        return keywords

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v: str) -> str:
        if v not in VALID_FAST_TRACK_KINDS:
            raise ValueError(f"kind must be one of {VALID_FAST_TRACK_KINDS}")
        return v

    @field_validator("priority")
    @classmethod
    def validate_priority(cls, v: str) -> str:
        v = v.lower()
        return v if v in VALID_PRIORITIES else Priority.MEDIUM


class FastTrackCatalog(BaseModel):
    """
    Fast-track rules loaded from YAML.

    This is a value object - immutable and defined by its attributes.
    """
    model_config = ConfigDict(frozen=True)

    rules: List[FastTrackRule] = Field(default_factory=list)

    @field_validator("rules")
    @classmethod
    def validate_unique_ids(cls, v: List[FastTrackRule]) -> List[FastTrackRule]:
        seen = set()
        for rule in v:
            if rule.id in seen:
                raise ValueError(f"duplicate fast-track rule id: {rule.id}")
            seen.add(rule.id)
        return v

    def summary(self) -> str:
        """Compact catalogue listing for the classifier prompt."""
        return "\n".join(
            f"- {rule.problem_type} ({', '.join(rule.keywords[:4])}): {rule.kind}"
            for rule in self.rules
        )


# ========== Business hours ==========

class BusinessSchedule(BaseModel):
    """Fixed weekly schedule with public holidays."""
    model_config = ConfigDict(frozen=True)

    timezone: str = "Europe/Kyiv"
    open_hour: int = Field(default=9, ge=0, le=23)
    close_hour: int = Field(default=18, ge=1, le=24)
    working_days: Tuple[int, ...] = (0, 1, 2, 3, 4)
    holidays: Tuple[str, ...] = ()

    @model_validator(mode="after")
    def validate_hours(self) -> "BusinessSchedule":
        if self.close_hour <= self.open_hour:
            raise ValueError("close_hour must be after open_hour")
        ZoneInfo(self.timezone)
        return self

    @classmethod
    def from_settings(cls, settings: Settings) -> "BusinessSchedule":
        return cls(
            timezone=settings.business_timezone,
            open_hour=settings.business_open_hour,
            close_hour=settings.business_close_hour,
            working_days=tuple(settings.business_working_days),
            holidays=tuple(settings.business_holidays),
        )


@dataclass(frozen=True)
class BusinessHoursSummary:
    """Where ``now`` falls relative to the support schedule."""
    is_open: bool
    is_holiday: bool
    minutes_until_close: Optional[int]
    closing_soon: bool
    local_time: datetime

    def render(self) -> str:
        stamp = self.local_time.strftime("%A %H:%M")
        if self.is_holiday:
            return f"Local time {stamp}. Public holiday: support is closed."
        if not self.is_open:
            return f"Local time {stamp}. Outside business hours: support is closed."
        line = f"Local time {stamp}. Support is open, {self.minutes_until_close} minutes until close."
        if self.closing_soon:
            line += " Less than 2 hours to close: consider raising priority for blocking issues."
        return line


class BusinessHoursCalculator:
    """
    Pure functions for business-hours calculations.

    Stateless utility class; all schedule arithmetic in one place.
    """

    @staticmethod
    def is_holiday(schedule: BusinessSchedule, local: datetime) -> bool:
        return local.strftime("%m-%d") in schedule.holidays

    @staticmethod
    def summarize(
        schedule: BusinessSchedule,
        now: datetime,
        closing_soon_minutes: int = 120
    ) -> BusinessHoursSummary:
        """
        Compute open/closed status and minutes until close.

        Args:
            schedule: Weekly schedule
            now: Timezone-aware current time
            closing_soon_minutes: Window that flags "closing soon"
        """
        local = now.astimezone(ZoneInfo(schedule.timezone))
        holiday = BusinessHoursCalculator.is_holiday(schedule, local)
        working_day = local.weekday() in schedule.working_days and not holiday

        open_at = local.replace(hour=schedule.open_hour, minute=0, second=0, microsecond=0)
        if schedule.close_hour == 24:
            close_at = open_at.replace(hour=0) + timedelta(days=1)
        else:
            close_at = local.replace(hour=schedule.close_hour, minute=0, second=0, microsecond=0)

        if not working_day or not (open_at <= local < close_at):
            return BusinessHoursSummary(
                is_open=False,
                is_holiday=holiday,
                minutes_until_close=None,
                closing_soon=False,
                local_time=local,
            )

        minutes = int((close_at - local).total_seconds() // 60)
        return BusinessHoursSummary(
            is_open=True,
            is_holiday=False,
            minutes_until_close=minutes,
            closing_soon=minutes < closing_soon_minutes,
            local_time=local,
        )


# ========== Situational facts ==========

@dataclass(frozen=True)
class DuplicateFact:
    """A still-open ticket that looks like the same problem."""
    ticket_id: str
    title: str
    created_at: datetime

    def render(self) -> str:
        return (
            f"Possible duplicate: open ticket {self.ticket_id} \"{self.title}\" was created "
            f"from the same location at {self.created_at.isoformat(timespec='minutes')}. "
            "If this is the same problem, set duplicateTicketId instead of creating a new ticket."
        )


@dataclass(frozen=True)
class OutageFact:
    """Several recent network complaints from one location."""
    location: str
    report_count: int
    ticket_ids: Tuple[str, ...]

    def render(self) -> str:
        return (
            f"Localized outage in progress at {self.location}: {self.report_count} network "
            f"reports within the last minutes (tickets: {', '.join(self.ticket_ids) or 'none yet'}). "
            "Reference the shared cause and avoid creating a redundant ticket."
        )


@dataclass(frozen=True)
class ActiveTicketFact:
    """The requester already has an open ticket and is asking about it."""
    ticket_id: str
    title: str
    status: str

    def render(self) -> str:
        return (
            f"The user already has open ticket {self.ticket_id} \"{self.title}\" "
            f"(status: {self.status}) and seems to be asking about its progress. "
            "Point them to that ticket instead of starting a new request."
        )


@dataclass
class SituationalContext:
    """Facts gathered by the context builders for one turn."""
    duplicate: Optional[DuplicateFact] = None
    outage: Optional[OutageFact] = None
    active_ticket: Optional[ActiveTicketFact] = None
    health_summary: str = ""
    business_hours: Optional[BusinessHoursSummary] = None

    def facts(self) -> List[str]:
        """Rendered detector facts, in a stable order."""
        rendered = []
        for fact in (self.duplicate, self.outage, self.active_ticket):
            if fact is not None:
                rendered.append(fact.render())
        return rendered

    def ticket_ids(self) -> List[str]:
        """Ticket ids the facts refer to; the only ids a classifier may cite."""
        ids: List[str] = []
        if self.duplicate is not None:
            ids.append(self.duplicate.ticket_id)
        if self.outage is not None:
            ids.extend(self.outage.ticket_ids)
        if self.active_ticket is not None:
            ids.append(self.active_ticket.ticket_id)
        return list(dict.fromkeys(ids))


@dataclass(frozen=True)
class ComponentHealth:
    status: str
    detail: str = ""


@dataclass
class HealthReport:
    """Result of the health-check collaborator."""
    status: str
    components: Dict[str, ComponentHealth] = field(default_factory=dict)

    @property
    def is_healthy(self) -> bool:
        return self.status == "healthy" and all(
            c.status == "healthy" for c in self.components.values()
        )
