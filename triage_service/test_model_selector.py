"""Tests for the remote fallback routing and response parsing."""

import asyncio
import json

import pytest

from triage_service import config
from triage_service.model_adapters.api_model_adapter import (
    APIAdapter,
    MalformedResponseError,
    NotConfiguredError,
    OpenAIAdapter,
    RateLimitedError,
    UnauthorizedError,
    UpstreamError,
)
from triage_service.model_adapters.model_selector import (
    ModelSelector,
    build_question,
    normalize_diagnosis,
    parse_json_object,
)

MODELS = ["model-a", "model-b", "model-c"]


class ScriptedAdapter(APIAdapter):
    """Returns (or raises) scripted responses in order and records the models asked."""

    def __init__(self, responses, configured=True):
        self.responses = list(responses)
        self.configured = configured
        self.calls = []

    def is_configured(self):
        return self.configured

    async def generate(self, messages, model, **kwargs):
        self.calls.append({"model": model, "messages": messages, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def diagnosis_json(**overrides):
    data = {
        "diagnosis": "Dengue",
        "confidence": 0.7,
        "top_predictions": [
            {"disease": "Dengue", "probability": 0.6},
            {"disease": "Malaria", "probability": 0.3},
            {"disease": "Typhoid", "probability": 0.1},
        ],
        "summary": "Fever with joint pain.",
        "precautions": ["hydrate", "see a doctor"],
    }
    data.update(overrides)
    return json.dumps(data)


def run_diagnosis(selector):
    return asyncio.run(selector.fallback_diagnosis(
        history=["I have joint pain"], message="and fever", symptoms=["joint pain", "high fever"],
        gender="male", age_group="adult",
    ))


def run_question(selector, asked=()):
    return asyncio.run(selector.live_followup_question(
        history=[], current_message="I have a cough", confirmed_symptoms=["cough"],
        denied_symptoms=[], top_candidates=["Common Cold"], asked_items=list(asked),
        turns=2, max_turns=10, gender="female", age_group="adult",
    ))


class TestParsing:

    def test_direct_json(self):
        assert parse_json_object('{"a": 1}') == {"a": 1}

    def test_fenced_block(self):
        assert parse_json_object('Here you go:\n```json\n{"a": 2}\n```') == {"a": 2}

    def test_brace_scan(self):
        assert parse_json_object('Sure! {"a": 3} Hope this helps.') == {"a": 3}

    def test_unparseable(self):
        assert parse_json_object("no json here") is None
        assert parse_json_object("") is None
        assert parse_json_object("[1, 2]") is None

    def test_non_string(self):
        assert parse_json_object(None) is None
        assert parse_json_object([{"type": "text", "text": "hi"}]) is None
        assert parse_json_object({"a": 1}) is None


class TestDiagnosisNormalization:

    def test_fractions_are_scaled_and_renormalized(self):
        result = normalize_diagnosis(json.loads(diagnosis_json()))
        assert result.confidence == 70.0
        assert [p["probability"] for p in result.top_predictions] == [60.0, 30.0, 10.0]

    def test_percentages_are_renormalized(self):
        parsed = {"diagnosis": "Flu", "confidence": 80, "top_predictions": [
            {"disease": "Flu", "probability": 50},
            {"disease": "Cold", "probability": 30},
        ]}
        result = normalize_diagnosis(parsed)
        assert [p["probability"] for p in result.top_predictions] == [62.5, 37.5]

    def test_confidence_defaults_and_clamps(self):
        assert normalize_diagnosis({"diagnosis": "Flu"}).confidence == 35.0
        assert normalize_diagnosis({"diagnosis": "Flu", "confidence": "high"}).confidence == 35.0
        assert normalize_diagnosis({"diagnosis": "Flu", "confidence": 150}).confidence == 100.0
        assert normalize_diagnosis({"diagnosis": "Flu", "confidence": -5}).confidence == 0.0

    def test_missing_predictions_use_diagnosis(self):
        result = normalize_diagnosis({"diagnosis": "Flu", "confidence": 55})
        assert result.top_predictions == [{"disease": "Flu", "probability": 55.0}]

    def test_top_predictions_capped_at_five(self):
        top = [{"disease": f"D{i}", "probability": 10} for i in range(8)]
        result = normalize_diagnosis({"diagnosis": "D0", "top_predictions": top})
        assert len(result.top_predictions) == 5
        assert sum(p["probability"] for p in result.top_predictions) == pytest.approx(100)

    def test_missing_diagnosis(self):
        assert normalize_diagnosis({"confidence": 50}) is None


class TestQuestionBuilding:

    def test_id_is_sanitized(self):
        question = build_question({"question_id": "Ask About Knee Pain!", "question_text": "Does your knee hurt?"})
        assert question.id == "ai:ask_about_knee_pain_"
        assert question.choices is None

    def test_choices_are_normalized_and_capped(self):
        choices = ["Yes", "NO", ""] + [f"option {i}" for i in range(10)]
        question = build_question({"question_text": "Pick one", "question_choices": choices})
        assert question.choices[:2] == ["yes", "no"]
        assert len(question.choices) == 8
        assert question.id.startswith("ai:ai_followup_")

    def test_missing_text(self):
        assert build_question({"question_id": "x"}) is None


class TestModelSelector:

    def test_default_models_are_deduplicated(self, monkeypatch):
        monkeypatch.setattr(config, "OPENAI_MODEL", "gpt-4o-mini")
        selector = ModelSelector(adapter=ScriptedAdapter([]))
        assert selector.models == ["gpt-4o-mini", "gpt-4.1-mini", "gpt-4o"]

    def test_not_configured(self):
        adapter = ScriptedAdapter([], configured=False)
        result = run_diagnosis(ModelSelector(adapter, MODELS))
        assert not result.ok
        assert isinstance(result.error, NotConfiguredError)
        assert adapter.calls == []

    def test_falls_through_to_next_model(self):
        adapter = ScriptedAdapter([RateLimitedError("429"), diagnosis_json()])
        result = run_diagnosis(ModelSelector(adapter, MODELS))

        assert result.ok
        assert result.value.diagnosis == "Dengue"
        assert [c["model"] for c in adapter.calls] == ["model-a", "model-b"]
        assert adapter.calls[0]["temperature"] == 0.2
        assert "Demographics: gender=male, age_group=adult" in adapter.calls[0]["messages"][1]["content"]

    def test_unauthorized_stops_walk(self):
        adapter = ScriptedAdapter([UnauthorizedError("401")])
        result = run_diagnosis(ModelSelector(adapter, MODELS))

        assert isinstance(result.error, UnauthorizedError)
        assert not result.should_retry
        assert len(adapter.calls) == 1

    def test_all_models_fail(self):
        adapter = ScriptedAdapter(["not json", '{"confidence": 3}', UpstreamError("502")])
        result = run_diagnosis(ModelSelector(adapter, MODELS))

        assert result.value is None
        assert isinstance(result.error, UpstreamError)
        assert result.should_retry

    def test_malformed_last(self):
        adapter = ScriptedAdapter([UpstreamError("502"), "nope", "still nope"])
        result = run_diagnosis(ModelSelector(adapter, MODELS))
        assert isinstance(result.error, MalformedResponseError)
        assert not result.should_retry

    def test_question_generated(self):
        adapter = ScriptedAdapter(['{"question_id": "cough_days", "question_text": "How long have you had the cough?", '
                                   '"question_choices": null}'])
        result = run_question(ModelSelector(adapter, MODELS))

        assert result.ok
        assert result.value.id == "ai:cough_days"
        assert result.value.text == "How long have you had the cough?"
        payload = json.loads(adapter.calls[0]["messages"][1]["content"])
        assert payload["max_turns"] == 10
        assert payload["demographics"] == {"gender": "female", "age_group": "adult"}
        assert "Do not ask age group or gender here." in payload["constraints"]

    def test_question_walks_past_malformed_output(self):
        fresh = '{"question_id": "q2", "question_text": "Do you have chills?"}'
        adapter = ScriptedAdapter(["Sorry, I cannot help.", fresh])

        result = run_question(ModelSelector(adapter, MODELS))
        assert result.value.text == "Do you have chills?"
        assert len(adapter.calls) == 2

    def test_non_string_content_is_malformed(self):
        adapter = ScriptedAdapter([[{"type": "text", "text": "{}"}], None, 42])
        result = run_diagnosis(ModelSelector(adapter, MODELS))

        assert isinstance(result.error, MalformedResponseError)
        assert len(adapter.calls) == 3


class TestOpenAIAdapter:

    def test_not_configured(self):
        adapter = OpenAIAdapter(api_key="")
        assert not adapter.is_configured()
        with pytest.raises(NotConfiguredError):
            asyncio.run(adapter.generate([{"role": "user", "content": "hi"}], model="gpt-4o-mini"))

    def test_error_for_status(self):
        assert isinstance(OpenAIAdapter._error_for_status(401, "m", ""), UnauthorizedError)
        assert isinstance(OpenAIAdapter._error_for_status(403, "m", ""), UnauthorizedError)
        assert isinstance(OpenAIAdapter._error_for_status(429, "m", ""), RateLimitedError)
        error = OpenAIAdapter._error_for_status(500, "gpt-4o", "boom")
        assert isinstance(error, UpstreamError)
        assert "model=gpt-4o status=500" in str(error)

    def test_base_url_trailing_slash(self):
        adapter = OpenAIAdapter(api_key="k", base_url="https://example.test/v1/")
        assert adapter.base_url == "https://example.test/v1"
