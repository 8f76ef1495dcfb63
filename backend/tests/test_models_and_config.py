"""
Unit tests for the intent/place models, model-output schema and settings.
"""
import pytest
from pydantic import ValidationError as PydanticValidationError

from place_search.core.config import Settings, get_settings, reset_settings
from place_search.models.intent import UNKNOWN_PLACE_TYPE, SearchIntent
from place_search.models.places import PlaceSummary
from place_search.models.responses import SearchResult
from place_search.services.ai.schema import split_keywords, validate_model_payload


class TestSearchIntent:
    def test_normalizes_whitespace_and_case(self):
        intent = SearchIntent(place_type="  Coffee   Shop ", location=" San  Jose ", keywords=[" wifi ", ""])

        assert intent.place_type == "coffee shop"
        assert intent.location == "San Jose"
        assert intent.keywords == ["wifi"]

    def test_empty_type_becomes_unknown(self):
        assert SearchIntent(place_type="", location="Austin").place_type == UNKNOWN_PLACE_TYPE

    def test_type_and_location_cannot_both_be_missing(self):
        with pytest.raises(PydanticValidationError):
            SearchIntent(place_type="", location="")

    def test_to_text_query(self):
        assert SearchIntent(place_type="restaurant", location="Austin", keywords=["tacos"]).to_text_query() == "tacos restaurant in Austin"
        assert SearchIntent(location="Austin").to_text_query() == "Austin"
        assert SearchIntent(place_type="museum").to_text_query() == "museum"


class TestPlaceModels:
    def test_place_id_required(self):
        with pytest.raises(PydanticValidationError):
            PlaceSummary(place_id="", name="Nameless")

    def test_rating_bounds(self):
        with pytest.raises(PydanticValidationError):
            PlaceSummary(place_id="p1", name="Too good", rating=5.5)

    def test_summary_is_frozen(self):
        place = PlaceSummary(place_id="p1", name="Cafe")
        with pytest.raises(PydanticValidationError):
            place.name = "Other"

    def test_search_result_keeps_summary_and_detail_kinds(self):
        result = SearchResult.model_validate(
            {
                "llm_response": "{}",
                "intent": {"place_type": "cafe", "location": "Austin"},
                "locations": [
                    {"kind": "summary", "place_id": "p1", "name": "A"},
                    {"kind": "detail", "place_id": "p2", "name": "B", "phone": "555"},
                ],
            }
        )

        assert [type(p).__name__ for p in result.locations] == ["PlaceSummary", "PlaceDetail"]


class TestModelPayloadSchema:
    def test_split_keywords(self):
        assert split_keywords("tacos, late night; cheap ,") == ["tacos", "late night", "cheap"]

    def test_list_values_take_first_entry(self):
        payload = validate_model_payload({"type": ["", "park"], "location": ["Denver", "Boulder"]})

        assert payload.place_type == "park"
        assert payload.location == "Denver"
        assert payload.is_complete()

    def test_non_string_type_is_rejected(self):
        assert validate_model_payload({"type": 42, "location": "Austin"}) is None

    def test_null_fields_are_empty(self):
        payload = validate_model_payload({"type": None, "location": "Austin", "keywords": None})

        assert payload.place_type == ""
        assert payload.keywords == []
        assert not payload.is_complete()


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("LLM_API_BASE", "LLM_MODEL", "RATE_LIMIT_MAX_REQUESTS", "GOOGLE_MAPS_API_KEY"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings.from_env()

        assert settings.llm_api_base == "http://localhost:11434/v1"
        assert settings.llm_model == "llama3"
        assert settings.rate_limit_max_requests == 30
        assert settings.maps_api_key is None

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("LLM_API_STYLE", "Ollama")
        monkeypatch.setenv("RATE_LIMIT_GLOBAL_MAX_REQUESTS", "100")
        monkeypatch.setenv("CORS_ALLOW_ORIGINS", "http://a.test, http://b.test")
        monkeypatch.setenv("LOG_JSON", "false")

        settings = Settings.from_env()

        assert settings.llm_api_style == "ollama"
        assert settings.rate_limit_global_max_requests == 100
        assert settings.cors_allow_origins == ["http://a.test", "http://b.test"]
        assert settings.log_json is False

    def test_invalid_api_style(self, monkeypatch):
        monkeypatch.setenv("LLM_API_STYLE", "grpc")

        with pytest.raises(PydanticValidationError):
            Settings.from_env()

    def test_get_settings_is_cached_until_reset(self, monkeypatch):
        reset_settings()
        monkeypatch.setenv("LLM_MODEL", "mistral")
        try:
            first = get_settings()
            assert first.llm_model == "mistral"
            assert get_settings() is first
        finally:
            reset_settings()
