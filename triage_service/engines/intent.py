"""
Intent Classifier
=================

Routes a message to one of three flows:

- informational: "what are the symptoms of X" with X resolved to a dataset disease
- medical: the message describes the user's own symptoms; enters the triage dialogue
- general: everything else; answered with a canned reply

Informational detection runs before the medical check so that fact
lookups never start a triage dialogue.
"""

import re
from dataclasses import dataclass
from typing import Optional

from triage_service import replies
from triage_service.engines.dataset import Dataset, Disease
from triage_service.engines.feature_extraction import extract_symptoms, normalize

INFORMATIONAL = "informational"
MEDICAL = "medical"
GENERAL = "general"

MEDICAL_KEYWORDS = [
    "symptom", "symptoms", "disease", "diagnose", "diagnosis", "pain", "fever",
    "cough", "cold", "infection", "vomit", "nausea", "headache", "stomach",
    "medicine", "medication", "doctor", "clinic", "hospital", "rash", "allergy",
    "blood pressure", "sugar", "diabetes",
]

_FIRST_PERSON_RE = re.compile(
    r"\b(i|im|i am|my|me|mine|feeling|feel|having|suffering|experienced|experiencing)\b"
)
_INFO_QUESTION_RE = re.compile(r"\b(what|which|tell|explain|list)\b")
_SYMPTOM_WORD_RE = re.compile(r"\b(symptom|symptoms|sign|signs)\b")
_SYMPTOM_QUERY_RE = re.compile(
    r"\b(?:symptom|symptoms|sign|signs)\s+(?:of|for)\s+([a-z0-9\s-]{2,80})$"
    r"|\b(?:what|which|tell|explain|list)\s+.*\b(?:symptom|symptoms|sign|signs)\s+(?:of|for)\s+([a-z0-9\s-]{2,80})$"
)
_GENERIC_NOUNS_RE = re.compile(r"\b(disease|condition|infection|disorder)\b")


@dataclass
class IntentResult:
    kind: str
    disease: Optional[Disease] = None

    @property
    def medical(self) -> bool:
        return self.kind == MEDICAL


def pick_disease_from_symptom_query(text: str, dataset: Dataset) -> Optional[Disease]:
    """
    Resolve the disease named in a symptom question.

    Exact name match scores 100, name containing the query 80, query
    containing the name 70. The first disease with the best score wins.
    """
    normalized = normalize(text)
    if not _SYMPTOM_WORD_RE.search(normalized):
        return None

    match = _SYMPTOM_QUERY_RE.search(normalized)
    if not match:
        return None
    raw = _GENERIC_NOUNS_RE.sub("", (match.group(1) or match.group(2) or "").strip())
    query = normalize(raw)
    if not query:
        return None

    best, best_score = None, 0
    for disease in dataset.diseases:
        name = normalize(disease.name)
        if name == query:
            score = 100
        elif query in name:
            score = 80
        elif name in query:
            score = 70
        else:
            score = 0
        if score > best_score:
            best, best_score = disease, score
    return best


def has_medical_intent(text: str, dataset: Dataset) -> bool:
    normalized = normalize(text)
    if not normalized:
        return False
    if extract_symptoms(text, dataset):
        return True
    if _INFO_QUESTION_RE.search(normalized) and _SYMPTOM_WORD_RE.search(normalized):
        return False
    if not any(keyword in normalized for keyword in MEDICAL_KEYWORDS):
        return False
    return _FIRST_PERSON_RE.search(normalized) is not None


def classify(text: str, dataset: Dataset) -> IntentResult:
    disease = pick_disease_from_symptom_query(text, dataset)
    if disease is not None:
        return IntentResult(INFORMATIONAL, disease=disease)

    if extract_symptoms(text, dataset):
        return IntentResult(MEDICAL)

    if has_medical_intent(text, dataset):
        return IntentResult(MEDICAL)
    return IntentResult(GENERAL)


def informational_disease_reply(text: str, dataset: Dataset) -> Optional[str]:
    """Fact sheet for the disease named in a symptom question, or None if unresolved."""
    disease = pick_disease_from_symptom_query(text, dataset)
    if disease is None:
        return None
    return replies.disease_fact_sheet(
        disease.name,
        list(disease.symptoms),
        dataset.descriptions.get(disease.name, ""),
        dataset.precautions.get(disease.name, []),
    )


def friendly_reply_for_general_chat(text: str) -> str:
    t = normalize(text)
    if re.search(r"\b(hi|hello|hey)\b", t):
        return replies.GREETING
    if re.search(r"\b(how are you|how r u|what s up|whats up)\b", t):
        return replies.HOW_ARE_YOU
    if re.search(r"\b(thank you|thanks)\b", t):
        return replies.THANKS
    if re.search(r"\b(diet|dietary|nutrition|healthy eating|food habits|eating habits)\b", t):
        return replies.DIET_ADVICE
    return replies.CATCH_ALL
