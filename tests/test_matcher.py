"""Tests for the entity matcher."""

import pytest

from kbcore.models import EntityType
from kbcore.resolution.matcher import EntityMatcher


@pytest.fixture
def matcher():
    return EntityMatcher()


class TestEntityMatcher:
    """Test exact and alias matching."""

    def test_exact_name_case_insensitive(self, matcher, make_entity):
        acme = make_entity("Acme Corp", type=EntityType.ORGANIZATION)
        assert matcher.find_match("acme corp", [acme]) is acme

    def test_alias_match(self, matcher, make_entity):
        robert = make_entity("Robert Smith", aliases=["Bobby"])
        assert matcher.find_match("BOBBY", [robert]) is robert

    def test_variation_match(self, matcher, make_entity):
        house = make_entity("White House", type=EntityType.PLACE)
        assert matcher.find_match("The White House", [house]) is house

    def test_original_beats_variation(self, matcher, make_entity):
        stripped = make_entity("Hague", type=EntityType.PLACE)
        exact = make_entity("The Hague", type=EntityType.PLACE)
        # "Hague" comes first in the pool but only matches a derived variation
        assert matcher.find_match("The Hague", [stripped, exact]) is exact

    def test_first_in_pool_wins(self, matcher, make_entity):
        first = make_entity("Jordan", type=EntityType.PERSON)
        second = make_entity("Jordan", type=EntityType.PLACE)
        assert matcher.find_match("Jordan", [first, second]) is first
        assert matcher.find_match("Jordan", [second, first]) is second

    def test_type_scoping(self, matcher, make_entity):
        person = make_entity("Jordan", type=EntityType.PERSON)
        place = make_entity("Jordan", type=EntityType.PLACE)
        assert matcher.find_match("Jordan", [person, place], EntityType.PLACE) is place

    def test_no_match_returns_none(self, matcher, make_entity):
        assert matcher.find_match("Nobody", [make_entity("Somebody")]) is None
        assert matcher.find_match("Nobody", []) is None

    def test_partial_names_do_not_match(self, matcher, make_entity):
        assert matcher.find_match("Cole", [make_entity("Nicole")]) is None
