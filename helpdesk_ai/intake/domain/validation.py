"""
Response Validator
==================

Structural and heuristic acceptance checks for model output.

Three shapes are validated:
- quick solutions (free text shown as self-service instructions)
- clarifying questions (free text)
- ticket drafts (structured, with enum coercion)

Nothing here raises: every check returns a ValidationResult and the caller
substitutes a fixed fallback when ``valid`` is False.
"""

import re
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from helpdesk_ai.config import Priority, VALID_PRIORITIES, DEFAULT_CATEGORY
from helpdesk_ai.intake.domain.entities import TicketDraft

QUICK_SOLUTION_MIN_CHARS = 50
QUICK_SOLUTION_MAX_CHARS = 800
QUESTION_MIN_CHARS = 10
QUESTION_MAX_CHARS = 300
MAX_WORD_REPEATS = 5

TITLE_MAX_CHARS = 200
DESCRIPTION_MAX_CHARS = 4000
CATEGORY_MAX_CHARS = 100
CLUE_KEY_MAX_CHARS = 50
CLUE_VALUE_MAX_CHARS = 200
MAX_CLUES = 10

FALLBACK_QUESTION = "Could you describe the problem in more detail: what exactly happens, and since when?"

HALLUCINATION_PHRASES = (
    "as an ai",
    "as a language model",
    "i cannot",
    "i can't help",
    "i don't have access",
    "i do not have access",
    "я не можу",
    "я штучний інтелект",
    "я не маю доступу",
    "як штучний інтелект",
)

_PLACEHOLDER_PATTERN = re.compile(r"\[[^\]\n]{1,60}\]|\{[^}\n]{1,60}\}")
_STEPS_PATTERN = re.compile(r"(^|\n)\s*(\d+[.)]|[-•*])\s+\S|[1-9]️⃣")
_WORD_PATTERN = re.compile(r"\w+", re.UNICODE)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a validation; ``value`` holds the coerced object when valid."""
    valid: bool
    reason: Optional[str] = None
    value: Any = None

    @classmethod
    def ok(cls, value: Any = None) -> "ValidationResult":
        return cls(valid=True, value=value)

    @classmethod
    def fail(cls, reason: str) -> "ValidationResult":
        return cls(valid=False, reason=reason)


class ResponseValidator:
    """Acceptance checks shared by the classifier, question generator and drafter."""

    def validate_quick_solution(self, text: Optional[str]) -> ValidationResult:
        """
        Check a free-text quick solution.

        Rules: length bounds, contains a question or enumerated steps,
        no content word repeated more than five times, no hallucination
        phrase or template placeholder.
        """
        if not isinstance(text, str) or not text.strip():
            return ValidationResult.fail("empty")
        text = text.strip()

        if len(text) < QUICK_SOLUTION_MIN_CHARS:
            return ValidationResult.fail("too_short")
        if len(text) > QUICK_SOLUTION_MAX_CHARS:
            return ValidationResult.fail("too_long")
        if "?" not in text and not _STEPS_PATTERN.search(text):
            return ValidationResult.fail("no_steps_or_question")

        repeated = self._most_repeated_word(text)
        if repeated is not None:
            return ValidationResult.fail(f"repetition:{repeated}")

        denied = self._denied_phrase(text)
        if denied is not None:
            return ValidationResult.fail(f"hallucination:{denied}")

        return ValidationResult.ok(text)

    def validate_question(self, text: Optional[str]) -> ValidationResult:
        """Check a clarifying question (length bounds and denylist)."""
        if not isinstance(text, str) or not text.strip():
            return ValidationResult.fail("empty")
        text = text.strip().strip('"').strip()

        if len(text) < QUESTION_MIN_CHARS:
            return ValidationResult.fail("too_short")
        if len(text) > QUESTION_MAX_CHARS:
            return ValidationResult.fail("too_long")

        denied = self._denied_phrase(text)
        if denied is not None:
            return ValidationResult.fail(f"hallucination:{denied}")

        return ValidationResult.ok(text)

    def validate_ticket_draft(self, data: Any) -> ValidationResult:
        """
        Check and coerce a structured ticket draft.

        Accepts a TicketDraft or a mapping with ``title``, ``description``
        and optional ``category``, ``priority``, ``environmentClues``.
        Missing or over-long required fields fail; category and priority
        are coerced to defaults; malformed clues are dropped.
        """
        if isinstance(data, TicketDraft):
            data = {
                "title": data.title,
                "description": data.description,
                "category": data.category,
                "priority": data.priority,
                "environmentClues": data.environment_clues,
                "attachments": data.attachments,
            }
        if not isinstance(data, Mapping):
            return ValidationResult.fail("not_an_object")

        title = data.get("title")
        description = data.get("description")
        if not isinstance(title, str) or not title.strip():
            return ValidationResult.fail("missing_title")
        if not isinstance(description, str) or not description.strip():
            return ValidationResult.fail("missing_description")

        title = " ".join(title.split())
        description = description.strip()
        if len(title) > TITLE_MAX_CHARS:
            return ValidationResult.fail("title_too_long")
        if len(description) > DESCRIPTION_MAX_CHARS:
            return ValidationResult.fail("description_too_long")

        category = data.get("category")
        if not isinstance(category, str) or not category.strip():
            category = DEFAULT_CATEGORY
        category = category.strip()[:CATEGORY_MAX_CHARS]

        priority = data.get("priority")
        priority = priority.strip().lower() if isinstance(priority, str) else ""
        if priority not in VALID_PRIORITIES:
            priority = Priority.MEDIUM

        clues = self._coerce_clues(data.get("environmentClues", data.get("environment_clues")))
        attachments = [a for a in data.get("attachments") or [] if isinstance(a, str) and a]

        return ValidationResult.ok(TicketDraft(
            title=title,
            description=description,
            category=category,
            priority=priority,
            environment_clues=clues,
            attachments=attachments,
        ))

    # ========== Helpers ==========

    @staticmethod
    def _most_repeated_word(text: str) -> Optional[str]:
        words = [w for w in _WORD_PATTERN.findall(text.lower()) if len(w) >= 4 and not w.isdigit()]
        if not words:
            return None
        word, count = Counter(words).most_common(1)[0]
        return word if count > MAX_WORD_REPEATS else None

    @staticmethod
    def _denied_phrase(text: str) -> Optional[str]:
        lowered = text.lower()
        for phrase in HALLUCINATION_PHRASES:
            if phrase in lowered:
                return phrase
        if _PLACEHOLDER_PATTERN.search(text):
            return "placeholder"
        return None

    @staticmethod
    def _coerce_clues(raw: Any) -> Dict[str, str]:
        if not isinstance(raw, Mapping):
            return {}
        clues: Dict[str, str] = {}
        for key, value in raw.items():
            if len(clues) >= MAX_CLUES:
                break
            if not isinstance(key, str) or not key.strip():
                continue
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                value = str(value)
            if not isinstance(value, str) or not value.strip():
                continue
            clues[key.strip()[:CLUE_KEY_MAX_CHARS]] = value.strip()[:CLUE_VALUE_MAX_CHARS]
        return clues
