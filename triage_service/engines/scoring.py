"""
Scoring Engine
==============

Symptom-overlap scoring of candidate diseases, followed by two fixed
reweighting passes (demographic, then clinical context) and a
reliability gate.

Score per disease:
    matched / total - 0.18 * denied_hits + (0.03 if matched > 0)

Positive scores are normalized to one-decimal percentages over the returned
set that add up to exactly 100.
All functions are pure.
"""

import math
import re
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Set

from triage_service.engines.dataset import Disease

DENIED_PENALTY = 0.18
MATCH_BONUS = 0.03

# ===== RELIABILITY THRESHOLDS =====
RELIABLE_TOP_PROBABILITY = 62
RELIABLE_MIN_GAP = 12
RELIABLE_MIN_CONFIRMED = 2
RELIABLE_MIN_TURNS = 2

# Reweighted probabilities never drop below this before renormalization
PROBABILITY_FLOOR = 0.1


@dataclass(frozen=True)
class Prediction:
    disease: str
    probability: float
    matched: int
    total: int

    def summary(self) -> Dict[str, float]:
        return {"disease": self.disease, "probability": round(self.probability, 1)}


@dataclass(frozen=True)
class Reliability:
    reliable: bool
    top_probability: float
    probability_gap: float


def normalize_percentages(weights: List[float]) -> List[float]:
    """
    Scale non-negative weights to one-decimal percentages summing to 100.

    Largest-remainder rounding in tenths of a percent; equal remainders
    favour the earlier item.
    """
    total = sum(weights)
    if total <= 0:
        return [0.0 for _ in weights]
    raw = [w / total * 1000 for w in weights]
    units = [math.floor(r) for r in raw]
    leftover = 1000 - sum(units)
    by_remainder = sorted(range(len(raw)), key=lambda i: raw[i] - units[i], reverse=True)
    for i in by_remainder[:leftover]:
        units[i] += 1
    return [u / 10 for u in units]


def _sorted_desc(predictions: Iterable[Prediction]) -> List[Prediction]:
    # sorted() is stable: ties keep dataset order
    return sorted(predictions, key=lambda p: p.probability, reverse=True)


def score_diseases(
    diseases: Iterable[Disease],
    confirmed: Set[str],
    denied: Set[str],
) -> List[Prediction]:
    """Score every disease; empty list means "no prediction"."""
    scored = []
    for disease in diseases:
        total = len(disease.symptoms) or 1
        matched = sum(1 for s in disease.symptoms if s in confirmed)
        denied_hits = sum(1 for s in disease.symptoms if s in denied)
        score = matched / total - denied_hits * DENIED_PENALTY + (MATCH_BONUS if matched > 0 else 0)
        if score > 0:
            scored.append((disease.name, score, matched, total))

    if not scored:
        return []

    percentages = normalize_percentages([s[1] for s in scored])
    return _sorted_desc(
        Prediction(name, probability, matched, total)
        for (name, _, matched, total), probability in zip(scored, percentages)
    )


def _reweight(predictions: List[Prediction], factors: List[float]) -> List[Prediction]:
    weighted = [max(PROBABILITY_FLOOR, p.probability * f) for p, f in zip(predictions, factors)]
    return _sorted_desc(
        replace(p, probability=probability)
        for p, probability in zip(predictions, normalize_percentages(weighted))
    )


def _matches(pattern: str, disease: str) -> bool:
    return re.search(pattern, disease) is not None


def demographic_factor(disease_name: str, gender: Optional[str], age_group: Optional[str]) -> float:
    disease = disease_name.lower()
    factor = 1.0

    if age_group in ("senior_citizen", "middle_aged"):
        if _matches(r"osteoarthritis|arthritis|varicose veins|hypertension|heart attack", disease):
            factor *= 1.12
        if _matches(r"chicken pox|acne|impetigo", disease):
            factor *= 0.88
    if age_group in ("infant", "toddler", "child"):
        if _matches(r"chicken pox|common cold|bronchial asthma|allergy|impetigo", disease):
            factor *= 1.1
        if _matches(r"osteoarthritis|varicose veins", disease):
            factor *= 0.8
    if age_group in ("adolescent", "youth"):
        if _matches(r"acne|allergy|migraine", disease):
            factor *= 1.08
        if _matches(r"osteoarthritis|varicose veins", disease):
            factor *= 0.85

    if gender == "female":
        if _matches(r"urinary tract infection|uti", disease):
            factor *= 1.08
        if _matches(r"prostate", disease):
            factor *= 0.7
    elif gender == "male":
        if _matches(r"prostate", disease):
            factor *= 1.15
        if _matches(r"urinary tract infection|uti", disease):
            factor *= 0.95

    return factor


def apply_demographic_adjustments(
    predictions: List[Prediction],
    gender: Optional[str] = None,
    age_group: Optional[str] = None,
) -> List[Prediction]:
    """Reweight by age group and gender, renormalized to 100. Empty input is returned as-is."""
    if not predictions:
        return predictions
    factors = [demographic_factor(p.disease, gender, age_group) for p in predictions]
    return _reweight(predictions, factors)


def clinical_factor(disease_name: str, slots) -> float:
    disease = disease_name.lower()
    factor = 1.0
    system = slots.body_system

    if system == "musculoskeletal":
        if _matches(r"osteoarthritis|arthritis|varicose veins", disease):
            factor *= 1.12
        if _matches(r"common cold|pneumonia|tuberculosis", disease):
            factor *= 0.82
    if system == "respiratory":
        if _matches(r"common cold|pneumonia|tuberculosis|bronchial asthma", disease):
            factor *= 1.12
        if _matches(r"osteoarthritis|arthritis|varicose veins", disease):
            factor *= 0.86
    if system == "gastrointestinal":
        if _matches(r"gastroenteritis|gerd|peptic ulcer|jaundice|typhoid|hepatitis", disease):
            factor *= 1.1
        if _matches(r"osteoarthritis|migraine", disease):
            factor *= 0.88
    if system == "neurologic":
        if _matches(r"migraine|cervical spondylosis|paralysis|vertigo", disease):
            factor *= 1.1
    if system == "dermatologic":
        if _matches(r"fungal infection|allergy|psoriasis|acne|impetigo|chicken pox", disease):
            factor *= 1.1

    if slots.pain_swelling is True and _matches(r"arthritis|osteoarthritis|varicose veins", disease):
        factor *= 1.12
    if slots.pain_fever is True and _matches(r"infection|flu|dengue|malaria", disease):
        factor *= 1.1
    if slots.pain_injury is True and _matches(r"arthritis|osteoarthritis", disease):
        factor *= 0.92
    if slots.symptom_severity is not None:
        if slots.symptom_severity >= 8 and _matches(r"common cold|acne", disease):
            factor *= 0.9
        if slots.symptom_severity <= 3 and _matches(r"heart attack|pneumonia|dengue", disease):
            factor *= 0.9
    if slots.progression == "worse":
        factor *= 1.05
    if slots.progression == "better":
        factor *= 0.96
    if slots.red_flags_present is True and _matches(r"heart attack|pneumonia|tuberculosis|dengue", disease):
        factor *= 1.08

    return factor


def apply_clinical_context_adjustments(predictions: List[Prediction], slots) -> List[Prediction]:
    """
    Reweight by body system, pain flags, severity, progression and red flags.

    Must run after apply_demographic_adjustments. Empty input is returned as-is.
    """
    if not predictions:
        return predictions
    factors = [clinical_factor(p.disease, slots) for p in predictions]
    return _reweight(predictions, factors)


def rank_predictions(diseases: Iterable[Disease], confirmed: Set[str], denied: Set[str], slots) -> List[Prediction]:
    """Score, then apply the demographic and clinical passes in their fixed order."""
    predictions = score_diseases(diseases, confirmed, denied)
    predictions = apply_demographic_adjustments(predictions, slots.gender, slots.age_group)
    return apply_clinical_context_adjustments(predictions, slots)


def evaluate_prediction_reliability(
    predictions: List[Prediction],
    confirmed_count: int,
    turns: int,
) -> Reliability:
    """
    Reliable iff top >= 62, top - second >= 12, and at least two confirmed
    symptoms or two answered follow-ups.
    """
    if not predictions:
        return Reliability(reliable=False, top_probability=0, probability_gap=0)

    top = predictions[0].probability
    gap = top - predictions[1].probability if len(predictions) > 1 else top
    enough_evidence = confirmed_count >= RELIABLE_MIN_CONFIRMED or turns >= RELIABLE_MIN_TURNS

    return Reliability(
        reliable=top >= RELIABLE_TOP_PROBABILITY and gap >= RELIABLE_MIN_GAP and enough_evidence,
        top_probability=top,
        probability_gap=gap,
    )
