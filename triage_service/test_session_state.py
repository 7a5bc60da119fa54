"""Tests for the persisted session payload types."""

import json

from triage_service.engines.session_state import (
    FinalDiagnosisRecord,
    FollowupState,
    dump_payload,
    parse_payload,
    reconstruct_from_messages,
)

LEGACY_STATE = {
    "kind": "followup_state",
    "pending": True,
    "turns": 2,
    "maxTurns": 10,
    "confirmedSymptoms": ["cough", "high fever"],
    "deniedSymptoms": [],
    "askedSymptoms": ["gender"],
    "topCandidates": ["Common Cold"],
    "currentQuestionId": "ai:cough_duration",
    "currentQuestionText": "Has the cough lasted more than a week?",
    "currentQuestionChoices": ["yes", "no"],
    "slots": {"ageGroup": "adult", "gender": "female", "temperatureF": 101.2},
}

FINAL = {
    "diagnosis": "Common Cold",
    "confidence": 72.5,
    "top_predictions": [{"disease": "Common Cold", "probability": 72.5}],
    "source": "dataset_current_session",
}


def test_parse_legacy_camel_case_state():
    state = parse_payload(LEGACY_STATE)

    assert isinstance(state, FollowupState)
    assert state.awaiting_answer
    assert state.max_turns == 10
    assert state.confirmed_symptoms == ["cough", "high fever"]
    assert state.slots.age_group == "adult"
    assert state.slots.temperature_f == 101.2


def test_parse_json_string():
    state = parse_payload(json.dumps(LEGACY_STATE))
    assert isinstance(state, FollowupState)
    assert state.current_question_id == "ai:cough_duration"


def test_untagged_final_record():
    record = parse_payload(FINAL)
    assert isinstance(record, FinalDiagnosisRecord)
    assert record.diagnosis_type == "best_guess"
    assert record.considered_prior_history is False


def test_dump_uses_snake_case_and_tag():
    data = dump_payload(parse_payload(LEGACY_STATE))
    assert data["kind"] == "followup_state"
    assert data["current_question_text"] == "Has the cough lasted more than a week?"
    assert data["slots"]["age_group"] == "adult"
    assert isinstance(parse_payload(data), FollowupState)


def test_corrupt_payload_is_no_state():
    assert parse_payload("{not json") is None
    assert parse_payload({"kind": "something_else"}) is None
    assert parse_payload({"kind": "followup_state"}) is None
    assert parse_payload(None) is None


def test_reconstruct_prefers_newest_payload():
    older = dict(LEGACY_STATE, currentQuestionId="gender", currentQuestionText="Gender?")
    messages = [
        {"role": "assistant", "content": "q1", "jsonPayload": json.dumps(older)},
        {"role": "user", "content": "female"},
        {"role": "assistant", "content": "q2", "jsonPayload": json.dumps(LEGACY_STATE)},
        {"role": "user", "content": "yes"},
        {"role": "assistant", "content": "plain reply", "jsonPayload": None},
    ]
    state = reconstruct_from_messages(messages)
    assert state.current_question_id == "ai:cough_duration"


def test_reconstruct_skips_unusable_payloads():
    finished = dict(LEGACY_STATE, pending=False)
    messages = [
        {"role": "assistant", "content": "final", "payload": FINAL},
        {"role": "assistant", "content": "broken", "payload": "{oops"},
        {"role": "assistant", "content": "done", "payload": finished},
        {"role": "user", "content": "user text", "payload": LEGACY_STATE},
    ]
    record = reconstruct_from_messages(messages)
    assert isinstance(record, FinalDiagnosisRecord)
    assert reconstruct_from_messages(messages[1:]) is None
