"""
Fast-Track Rule Matching
========================

Keyword lookup of the latest user message against the fast-track
catalogue. Runs before any model call; never calls a model itself.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from helpdesk_ai.intake.domain.topics import normalize
from helpdesk_ai.intake.domain.value_objects import FastTrackCatalog, FastTrackRule
from helpdesk_ai.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class FastTrackMatch:
    """A rule together with the keyword that selected it."""
    rule: FastTrackRule
    keyword: str


class FastTrackMatcher:
    """
    Matches text against the current catalogue.

    The catalogue is read through ``catalog_provider`` on every call so a
    hot-reloaded file takes effect on the next message. When several rules
    match, the one with the longest matching keyword wins; ties keep
    catalogue order.
    """

    def __init__(self, catalog_provider: Callable[[], FastTrackCatalog]):
        self._catalog_provider = catalog_provider

    @property
    def catalog(self) -> FastTrackCatalog:
        return self._catalog_provider()

    def match(self, text: Optional[str]) -> Optional[FastTrackMatch]:
        lowered = normalize(text)
        if not lowered:
            return None

        best: Optional[FastTrackMatch] = None
        for rule in self.catalog.rules:
            for keyword in rule.keywords:
                if keyword in lowered and (best is None or len(keyword) > len(best.keyword)):
                    best = FastTrackMatch(rule, keyword)

        if best is not None:
            logger.info(
                "Fast-track rule matched",
                extra={"rule_id": best.rule.id, "keyword": best.keyword, "kind": best.rule.kind}
            )
        return best

    def catalog_summary(self) -> str:
        return self.catalog.summary()
