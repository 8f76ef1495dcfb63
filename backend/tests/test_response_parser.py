"""
Unit tests for turning language model output into a SearchIntent.
"""
import pytest

from place_search.core.errors import ParseError
from place_search.models.intent import UNKNOWN_PLACE_TYPE, SearchIntent
from place_search.services.ai.parser import (
    MAX_OBJECT_CANDIDATES,
    MAX_SCAN_CHARS,
    ResponseParser,
    iter_object_candidates,
)


@pytest.fixture
def parser():
    return ResponseParser()


class TestStrictStage:
    def test_clean_json(self, parser):
        intent = parser.parse('{"type": "restaurant", "location": "Austin", "keywords": "tacos"}')

        assert intent == SearchIntent(place_type="restaurant", location="Austin", keywords=["tacos"])

    def test_keyword_list_and_aliases(self, parser):
        intent = parser.parse(
            '{"category": "Restaurant", "city": "Austin", "terms": ["tacos", " late night "]}'
        )

        assert intent.place_type == "restaurant"
        assert intent.location == "Austin"
        assert intent.keywords == ["tacos", "late night"]

    def test_unknown_place_type_passes_through(self, parser):
        intent = parser.parse('{"type": "trampoline park", "location": "Reno"}')

        assert intent.place_type == "trampoline park"
        assert intent.location == "Reno"


class TestPermissiveStage:
    def test_json_wrapped_in_prose_and_fences(self, parser):
        raw = (
            "Sure! Here is what I found:\n"
            "```json\n"
            '{"type": "park", "location": "Denver", "keywords": "dog friendly"}\n'
            "```\n"
            "Let me know if you need anything else."
        )

        intent = parser.parse(raw)

        assert intent.place_type == "park"
        assert intent.location == "Denver"
        assert intent.keywords == ["dog friendly"]

    def test_nested_object(self, parser):
        intent = parser.parse('{"result": {"type": "hotel", "location": "Paris"}}')

        assert intent.place_type == "hotel"
        assert intent.location == "Paris"

    def test_braces_inside_strings_do_not_break_matching(self, parser):
        raw = 'Note: {"type": "bar", "location": "Chicago", "keywords": "jazz {live}"}'

        intent = parser.parse(raw)

        assert intent.location == "Chicago"
        assert intent.keywords == ["jazz {live}"]

    def test_first_location_wins(self, parser):
        raw = (
            '{"type": "bar", "location": "Chicago"}\n'
            '{"type": "bar", "location": "Boston"}'
        )

        assert parser.parse(raw).location == "Chicago"


class TestHeuristicStage:
    def test_truncated_json(self, parser):
        intent = parser.parse('{"type": "cafe", "location": "Seattle", "keywords": "wifi')

        assert intent.place_type == "cafe"
        assert intent.location == "Seattle"

    def test_plain_prose(self, parser):
        intent = parser.parse("You are looking for museums in New York City.")

        assert intent.place_type == "museum"
        assert intent.location == "New York City"

    def test_multi_word_place_type(self, parser):
        intent = parser.parse("Here are some coffee shops near Portland")

        assert intent.place_type == "cafe"
        assert intent.location == "Portland"

    def test_first_location_in_prose_wins(self, parser):
        intent = parser.parse("Try bars in Chicago, or maybe bars near Boston.")

        assert intent.location == "Chicago"

    def test_location_only_object(self, parser):
        intent = parser.parse('{"location": "Miami"}')

        assert intent.place_type == UNKNOWN_PLACE_TYPE
        assert intent.location == "Miami"

    def test_partial_object_completed_from_prose(self, parser):
        intent = parser.parse('I think you want {"location": "Lisbon"} and a bakery.')

        assert intent.place_type == "bakery"
        assert intent.location == "Lisbon"


class TestFailure:
    @pytest.mark.parametrize("raw", ["", "   \n\t "])
    def test_empty_output(self, parser, raw):
        with pytest.raises(ParseError) as exc_info:
            parser.parse(raw)

        assert exc_info.value.reason == "empty_response"

    def test_no_locations_found(self, parser):
        with pytest.raises(ParseError) as exc_info:
            parser.parse("I'm sorry, I cannot help with that.")

        assert exc_info.value.reason == "no_locations_found"

    def test_unknown_type_without_location(self, parser):
        with pytest.raises(ParseError) as exc_info:
            parser.parse('{"type": "unknown", "location": ""}')

        assert exc_info.value.reason == "no_locations_found"

    def test_non_object_json(self, parser):
        with pytest.raises(ParseError):
            parser.parse('[1, 2, 3]')


class TestBoundedScanning:
    def test_content_past_scan_limit_is_ignored(self, parser):
        raw = "x" * (MAX_SCAN_CHARS + 10) + '{"type": "zoo", "location": "San Diego"}'

        with pytest.raises(ParseError) as exc_info:
            parser.parse(raw)

        assert exc_info.value.reason == "no_locations_found"

    def test_object_before_long_tail_is_found(self, parser):
        raw = '{"type": "zoo", "location": "San Diego"}' + " filler" * 50000

        intent = parser.parse(raw)

        assert intent.location == "San Diego"

    def test_candidate_openings_are_capped(self):
        text = "{}" * (MAX_OBJECT_CANDIDATES * 3)

        assert len(list(iter_object_candidates(text))) == MAX_OBJECT_CANDIDATES

    def test_unbalanced_braces_yield_nothing(self):
        assert list(iter_object_candidates('{"type": "park", {')) == []
