"""Unit tests for fast-track matching."""

import pytest

from helpdesk_ai.intake.application.fast_track import FastTrackMatcher
from helpdesk_ai.intake.domain.value_objects import FastTrackCatalog
from tests.doubles import default_catalog, make_rule


@pytest.mark.unit
class TestFastTrackMatcher:

    def test_keyword_match_is_case_insensitive(self):
        match = FastTrackMatcher(default_catalog).match("Мій ПРИНТЕР зламався")

        assert match.rule.id == "printer"
        assert match.keyword == "принтер"

    def test_longest_keyword_wins(self):
        catalog = FastTrackCatalog(rules=[
            make_rule(id="printer", keywords=["принтер"]),
            make_rule(id="cartridge", keywords=["картридж принтера"], kind="auto_ticket"),
        ])

        match = FastTrackMatcher(lambda: catalog).match("треба замінити картридж принтера")

        assert match.rule.id == "cartridge"

    def test_equal_length_keeps_catalog_order(self):
        catalog = FastTrackCatalog(rules=[
            make_rule(id="first", keywords=["scanner"]),
            make_rule(id="second", keywords=["printer"]),
        ])

        assert FastTrackMatcher(lambda: catalog).match("printer and scanner").rule.id == "first"

    @pytest.mark.parametrize("text", [None, "", "   ", "Outlook does not open"])
    def test_no_match(self, text):
        assert FastTrackMatcher(default_catalog).match(text) is None

    def test_catalog_is_read_on_every_call(self):
        catalogs = [FastTrackCatalog(), default_catalog()]
        matcher = FastTrackMatcher(lambda: catalogs[0])

        assert matcher.match("printer") is None
        catalogs.pop(0)
        assert matcher.match("printer").rule.id == "printer"
