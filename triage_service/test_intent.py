"""Tests for intent classification and the canned replies it routes to."""

import pytest

from triage_service import config, replies
from triage_service.engines import intent
from triage_service.engines.dataset import DatasetLoader


@pytest.fixture(scope="module")
def dataset():
    return DatasetLoader(candidates=[config.BUNDLED_KNOWLEDGE_DIR]).load()


def test_symptom_question_is_informational(dataset):
    result = intent.classify("what are the symptoms of diabetes", dataset)
    assert result.kind == intent.INFORMATIONAL
    assert not result.medical
    assert result.disease.name == "Diabetes"


def test_informational_reply_lists_symptoms(dataset):
    reply = intent.informational_disease_reply("What are the symptoms of Diabetes?", dataset)
    assert reply.startswith("Common symptoms of **Diabetes**:")
    assert "1. Fatigue" in reply
    assert "About Diabetes:" in reply
    assert "General precautions:" in reply
    assert reply.endswith(replies.EDUCATIONAL_DISCLAIMER)


def test_disease_match_scores(dataset):
    # exact name beats containment
    assert intent.pick_disease_from_symptom_query("signs of malaria", dataset).name == "Malaria"
    # query contained in a longer disease name
    assert intent.pick_disease_from_symptom_query("symptoms of asthma", dataset).name == "Bronchial Asthma"
    # generic nouns are dropped from the query
    assert intent.pick_disease_from_symptom_query("symptoms of fungal infection", dataset).name == "Fungal infection"
    assert intent.pick_disease_from_symptom_query("symptoms of dragon flu", dataset) is None
    assert intent.pick_disease_from_symptom_query("tell me about malaria", dataset) is None


def test_precautions_capped_at_four(dataset):
    reply = intent.informational_disease_reply("list the symptoms of dengue", dataset)
    assert "4. keep hydrated" in reply
    assert "5." not in reply.split("General precautions:")[1]


def test_first_person_symptoms_are_medical(dataset):
    result = intent.classify("I have a bad headache and fever", dataset)
    assert result.kind == intent.MEDICAL
    assert result.disease is None


def test_unresolved_symptom_question_is_not_medical(dataset):
    result = intent.classify("what are the signs of burnout", dataset)
    assert result.kind == intent.GENERAL


def test_keyword_with_first_person_is_medical(dataset):
    assert intent.classify("my stomach feels strange", dataset).medical
    assert intent.classify("I need a doctor", dataset).medical


def test_keyword_without_first_person_is_general(dataset):
    assert intent.classify("hospital opening hours", dataset).kind == intent.GENERAL


def test_small_talk_is_general(dataset):
    assert intent.classify("hello there", dataset).kind == intent.GENERAL
    assert not intent.has_medical_intent("", dataset)


@pytest.mark.parametrize("text,reply", [
    ("Hi!", replies.GREETING),
    ("how are you", replies.HOW_ARE_YOU),
    ("what's up", replies.HOW_ARE_YOU),
    ("thanks a lot", replies.THANKS),
    ("any diet tips?", replies.DIET_ADVICE),
    ("tell me a joke", replies.CATCH_ALL),
])
def test_general_chat_replies(text, reply):
    assert intent.friendly_reply_for_general_chat(text) == reply
