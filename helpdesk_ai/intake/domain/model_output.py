"""
Model Output Parsing
====================

Parse-or-repair-or-default pipeline for JSON returned by the language model.

Strategies, tried in order:
1. ``direct``: strip markdown fences and parse the outermost ``{...}`` slice
2. ``repair``: close a truncated object (unterminated string, dangling key
   or comma, missing brackets) and parse again, backing off to the last
   complete member if needed
3. ``default``: hand back the caller's default

Each call reports which strategy produced the value so callers can log
degradations.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

STRATEGY_DIRECT = "direct"
STRATEGY_REPAIR = "repair"
STRATEGY_DEFAULT = "default"

_FENCE_PATTERN = re.compile(r"```(?:json|JSON)?\s*(.*?)(?:```|$)", re.DOTALL)
_MAX_BACKOFF_STEPS = 20


@dataclass(frozen=True)
class ParsedOutput:
    """A parsed object plus the strategy that produced it."""
    data: Dict[str, Any]
    strategy: str

    @property
    def recovered(self) -> bool:
        return self.strategy != STRATEGY_DEFAULT


def _strip_fences(text: str) -> str:
    match = _FENCE_PATTERN.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return text.strip()


def parse_direct(text: str) -> Optional[Dict[str, Any]]:
    """Strategy 1: fenced or bare object, sliced to its outermost braces."""
    body = _strip_fences(text)
    start = body.find("{")
    end = body.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        value = json.loads(body[start:end + 1])
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def _scan(text: str):
    """
    Walk ``text`` tracking string/escape state and the open-bracket stack.

    Returns (stack, in_string, cut_points) where cut_points are offsets of
    commas outside strings, i.e. places where a member boundary ends.
    """
    stack: List[str] = []
    in_string = False
    escaped = False
    cut_points: List[int] = []

    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]":
            if stack:
                stack.pop()
        elif ch == ",":
            cut_points.append(i)

    return stack, in_string, cut_points


def _close(fragment: str) -> str:
    """Terminate an open string, drop dangling separators, close brackets."""
    stack, in_string, _ = _scan(fragment)
    if in_string:
        if fragment.endswith("\\"):
            fragment = fragment[:-1]
        fragment += '"'

    fragment = fragment.rstrip()
    while fragment and fragment[-1] in ",:":
        if fragment[-1] == ":":
            fragment += " null"
            break
        fragment = fragment[:-1].rstrip()

    return fragment + "".join(reversed(stack))


def repair_truncated(text: str) -> Optional[Dict[str, Any]]:
    """
    Strategy 2: recover an object whose tail was cut off.

    Tries closing the fragment as-is first, then backs off to each earlier
    member boundary so a half-written value is dropped rather than guessed.
    """
    body = _strip_fences(text)
    start = body.find("{")
    if start == -1:
        return None
    fragment = body[start:].rstrip()

    _, _, cut_points = _scan(fragment)
    candidates = [fragment] + [fragment[:cut] for cut in reversed(cut_points)]

    for candidate in candidates[:_MAX_BACKOFF_STEPS]:
        try:
            value = json.loads(_close(candidate))
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None


def parse_model_json(text: Optional[str], default: Optional[Dict[str, Any]] = None) -> ParsedOutput:
    """
    Run the three strategies in order.

    Args:
        text: Raw model output (may be None or empty)
        default: Value returned by the last strategy

    Returns:
        ParsedOutput with the object and the winning strategy
    """
    if text:
        data = parse_direct(text)
        if data is not None:
            return ParsedOutput(data, STRATEGY_DIRECT)
        data = repair_truncated(text)
        if data is not None:
            return ParsedOutput(data, STRATEGY_REPAIR)
    return ParsedOutput(dict(default or {}), STRATEGY_DEFAULT)
