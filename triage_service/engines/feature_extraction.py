"""
Text Feature Extractor
======================

Rule-based extraction of symptoms and context slots from free text.

Every extractor is deterministic and side-effect free. "No match" is a
normal outcome and is signalled by returning None, never by raising.
"""

import re
from typing import List, Optional, Set

from triage_service.engines.dataset import Dataset, normalize_token

AGE_GROUPS = [
    "infant", "toddler", "child", "adolescent",
    "youth", "adult", "middle_aged", "senior_citizen",
]
GENDERS = ["male", "female", "custom"]


def normalize(text: str) -> str:
    """Normalize free text the same way dataset tokens are normalized."""
    return normalize_token(text)


def _has(pattern: str, text: str) -> bool:
    return re.search(pattern, text) is not None


# ===== SYMPTOMS =====

def alias_symptoms(text: str, symptom_set: Set[str]) -> List[str]:
    """Map lay phrasing onto dataset tokens. Only tokens present in the dataset are returned."""
    t = normalize(text)
    out: List[str] = []

    def push_if(candidate: str):
        if candidate in symptom_set and candidate not in out:
            out.append(candidate)

    if _has(r"\bfever\b|\btemperature\b|\bhigh temp\b", t):
        push_if("high fever")
    if _has(r"\bcough\b", t):
        push_if("cough")
    if _has(r"\bchill|\bshiver", t):
        push_if("chills")
        push_if("shivering")
    if _has(r"\bbody ache|\bbody pain|\bmuscle ache|\bmuscle pain", t):
        push_if("muscle pain")
    if _has(r"\bheadache\b", t):
        push_if("headache")
    if _has(r"\bsore throat\b", t):
        push_if("throat irritation")
    if _has(r"\bnausea\b", t):
        push_if("nausea")
    if _has(r"\bvomit", t):
        push_if("vomiting")
    if _has(r"\bfatigue|\btired|\bweak", t):
        push_if("fatigue")
    if _has(r"\brunny nose|\bblocked nose|\bcongestion", t):
        push_if("runny nose")
    # A vague leg complaint only implies joint pain
    if _has(r"\bleg pain\b|\bpain in (my )?leg\b|\bleg ache\b|\blegs hurt\b", t):
        push_if("joint pain")
    if _has(r"\bknee pain\b|\bknee ache\b", t):
        push_if("knee pain")
        push_if("joint pain")
        push_if("painful walking")
    if _has(r"\bhip pain\b|\bhip joint pain\b", t):
        push_if("hip joint pain")
        push_if("joint pain")
        push_if("painful walking")
    if _has(r"\bjoint pain\b|\bjoint ache\b", t):
        push_if("joint pain")
        push_if("swelling joints")
    if _has(r"\bpainful walking\b|\bpain while walking\b|\bdifficulty walking\b", t):
        push_if("painful walking")
    if _has(r"\bleg swelling\b|\bswollen leg\b|\bswollen legs\b", t):
        push_if("swollen legs")
        push_if("swelling joints")

    return out


def extract_symptoms(text: str, dataset: Dataset) -> Set[str]:
    """
    Extract dataset symptom tokens mentioned in text.

    Union of: vocabulary tokens found on word boundaries, the alias map,
    and "high fever" when the stated temperature is at least 99.5 F.
    """
    padded = f" {normalize(text)} "
    symptom_set = dataset.symptom_set
    found = {symptom for symptom in dataset.symptoms if f" {symptom} " in padded}
    found.update(alias_symptoms(text, symptom_set))

    temperature = extract_temperature_f(text)
    if temperature is not None and temperature >= 99.5 and "high fever" in symptom_set:
        found.add("high fever")
    return found


# ===== NUMERIC SLOTS =====

_TEMPERATURE_RE = re.compile(r"\b(\d{2,3}(?:\.\d)?)\s*(fahrenheit|celsius|degrees?|f|c)?\b")


def extract_temperature_f(text: str) -> Optional[float]:
    """Temperature in Fahrenheit; Celsius readings are converted. Plausible range is 92-110 F."""
    t = normalize(text)
    for match in _TEMPERATURE_RE.finditer(t):
        value = float(match.group(1))
        unit = match.group(2) or ""
        if unit.startswith("c"):
            value = round(value * 9 / 5 + 32, 1)
        if 92 <= value <= 110:
            return value
    return None


def extract_duration_days(text: str) -> Optional[int]:
    """Duration in days from numeric or canned phrases."""
    t = normalize(text)
    match = re.search(r"(\d+)\s*days?\b", t)
    if match:
        return int(match.group(1))
    match = re.search(r"(\d+)\s*weeks?\b", t)
    if match:
        return int(match.group(1)) * 7
    match = re.search(r"(\d+)\s*months?\b", t)
    if match:
        return int(match.group(1)) * 30
    if _has(r"\b(a|one)\s+day\b", t):
        return 1
    if _has(r"\b(a|one)\s+week\b", t):
        return 7
    if _has(r"\b(a|one)\s+month\b", t):
        return 30
    if _has(r"\bcouple of days\b", t):
        return 2
    if _has(r"\bfew days\b", t):
        return 3
    if _has(r"\bseveral days\b", t):
        return 5
    if _has(r"\btoday\b", t):
        return 1
    if _has(r"\byesterday\b", t):
        return 2
    return None


_VERBAL_SEVERITY = {"mild": 3, "moderate": 5, "severe": 8}

# Numbers followed by a unit are durations or temperatures, not severities
_SEVERITY_RE = re.compile(
    r"\b(10|[0-9])\b(?!\s*(?:days?|weeks?|months?|years?|hours?|degrees?|f|c|fahrenheit|celsius)\b)"
)


def extract_pain_severity(text: str) -> Optional[int]:
    """Severity on a 0-10 scale from a digit ("7", "7/10") or a word (mild/moderate/severe)."""
    t = normalize(text)
    match = _SEVERITY_RE.search(t)
    if match:
        return int(match.group(1))
    for word, value in _VERBAL_SEVERITY.items():
        if _has(rf"\b{word}\b", t):
            return value
    return None


# ===== CATEGORICAL SLOTS =====

_PAIN_LOCATIONS = [
    ("head", r"\bhead\b"),
    ("face", r"\bface\b"),
    ("chest", r"\bchest\b"),
    ("abdomen", r"\bstomach\b|\babdomen\b|\babdominal\b"),
    ("shoulder", r"\bshoulder\b"),
    ("arm", r"\barm\b"),
    ("elbow", r"\belbow\b"),
    ("wrist", r"\bwrist\b"),
    ("hand", r"\bhand\b"),
    ("leg", r"\bleg\b"),
    ("knee", r"\bknee\b"),
    ("hip", r"\bhip\b"),
    ("lower back", r"\blower back\b"),
    ("back", r"\bback\b"),
    ("neck", r"\bneck\b"),
    ("ankle", r"\bankle\b"),
    ("foot", r"\bfoot\b"),
    ("joint", r"\bjoint\b"),
]


def extract_pain_location(text: str) -> Optional[str]:
    t = normalize(text)
    for location, pattern in _PAIN_LOCATIONS:
        if _has(pattern, t):
            return location
    return None


def extract_chief_complaint(text: str) -> str:
    """'pain' if any pain keyword appears, else 'general'."""
    t = normalize(text)
    if _has(r"pain|ache|hurt|soreness|cramp", t):
        return "pain"
    return "general"


# Checked in order; first system with a matching keyword wins
_BODY_SYSTEMS = [
    ("musculoskeletal", ["leg", "knee", "joint", "hip", "back pain", "neck pain",
                         "swelling joints", "painful walking", "muscle"]),
    ("respiratory", ["cough", "breath", "chest tight", "phlegm", "wheez",
                     "sore throat", "runny nose", "congestion"]),
    ("gastrointestinal", ["stomach", "abdominal", "nausea", "vomit", "diarrh",
                          "constipation", "acidity", "indigestion", "appetite"]),
    ("neurologic", ["headache", "migraine", "dizziness", "vertigo", "numbness",
                    "tingling", "seizure"]),
    ("cardiovascular", ["chest pain", "palpitation", "heart", "blood pressure",
                        "bp", "fainting"]),
    ("dermatologic", ["rash", "itch", "skin", "lesion", "patch", "blister"]),
]


def extract_body_system(text: str) -> str:
    t = normalize(text)
    for system, keywords in _BODY_SYSTEMS:
        for keyword in keywords:
            if _has(rf"\b{re.escape(keyword)}", t):
                return system
    return "general"


def extract_progression(text: str) -> Optional[str]:
    t = normalize(text)
    if _has(r"\b(worse|worsening|worsened|increasing|getting bad)\b", t):
        return "worse"
    if _has(r"\b(better|improving|improved|less)\b", t):
        return "better"
    if _has(r"\b(same|unchanged|no change)\b", t):
        return "same"
    return None


_RED_FLAG_POSITIVE = [
    "chest pain", "severe breathlessness", "confusion", "fainting",
    "blood in sputum", "blood in stool", "high fever", "unable to walk",
]
_RED_FLAG_NEGATIVE = ["no red flag", "none", "no severe symptom"]


def extract_red_flags(text: str) -> Optional[bool]:
    """True when a warning sign is mentioned, False on an explicit denial, else None."""
    t = normalize(text)
    if any(_has(rf"\b{re.escape(k)}\b", t) for k in _RED_FLAG_POSITIVE):
        return True
    if any(_has(rf"\b{re.escape(k)}", t) for k in _RED_FLAG_NEGATIVE):
        return False
    return None


def extract_gender(text: str) -> Optional[str]:
    t = normalize(text)
    if _has(r"\b(male|man|boy)\b", t):
        return "male"
    if _has(r"\b(female|woman|girl)\b", t):
        return "female"
    if _has(r"\b(custom|other|non binary|nonbinary|trans|prefer not to say)\b", t):
        return "custom"
    return None


def age_group_for(age: int) -> str:
    if age <= 1:
        return "infant"
    if age <= 4:
        return "toddler"
    if age <= 12:
        return "child"
    if age <= 15:
        return "adolescent"
    if age <= 24:
        return "youth"
    if age <= 59:
        return "adult"
    if age <= 69:
        return "middle_aged"
    return "senior_citizen"


def extract_age_group(text: str) -> Optional[str]:
    t = normalize(text)
    if _has(r"\b(infant|newborn|baby)\b", t):
        return "infant"
    if _has(r"\btoddler\b", t):
        return "toddler"
    if _has(r"\b(child|kid|kids|children|minor)\b", t):
        return "child"
    if _has(r"\badolescent\b", t):
        return "adolescent"
    if _has(r"\b(youth|teen|teenager)\b", t):
        return "youth"
    if _has(r"\b(middle aged|middle_aged|middle age)\b", t):
        return "middle_aged"
    if _has(r"\b(senior citizen|senior|elderly|old age)\b", t):
        return "senior_citizen"
    if _has(r"\b(adult|grown)\b", t):
        return "adult"

    match = re.search(r"\b(?:age|aged)?\s*(\d{1,3})\b", t)
    if match:
        return age_group_for(int(match.group(1)))
    return None


# ===== ANSWERS =====

def yes_no_from_text(text: str) -> Optional[str]:
    """
    Map a free-text answer to "yes" / "no".

    Explicit yes words win, then negations, then weaker affirmatives
    ("have", "present", "i do") so that "I don't have it" reads as no.
    """
    t = normalize(text)
    if _has(r"\b(yes|yeah|yep)\b", t):
        return "yes"
    # Negations before "have": a have-first order would read "i don t have it" as yes
    if _has(r"\b(no|not|none|nope|dont|don t|do not|never)\b", t):
        return "no"
    if _has(r"\b(present|have|i do)\b", t):
        return "yes"
    return None


def question_text_key(text: str) -> str:
    """Key used to detect repeated questions."""
    return f"qtext:{normalize(text)[:160]}"
