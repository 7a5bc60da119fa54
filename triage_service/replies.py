"""
Reply Texts
===========

User-facing reply strings for the triage chat.

Every final or informational reply ends with an educational disclaimer:
the service gives assistive triage information, never a medical diagnosis.
"""

import re
from typing import Iterable, List, Optional

# === 1. DISCLAIMERS ===
INFORMATIONAL_DISCLAIMER = "This is informational only and not a medical diagnosis."
EDUCATIONAL_DISCLAIMER = "This is educational information, not a diagnosis."

# === 2. FIXED MESSAGES ===
DATASET_UNAVAILABLE = (
    "Dataset is unavailable right now. Please share your symptoms, duration, and temperature "
    "so I can continue with API-assisted guidance."
)
FINAL_ALREADY_EXISTS = (
    "This chat session already has a final prediction. Please start a new chat for a new "
    "medical issue so results stay session-specific."
)
GENERATION_UNAVAILABLE = (
    "Live follow-up generation is currently unavailable. Please try again shortly. "
    "If this continues, verify OPENAI_API_KEY and OPENAI_MODEL."
)
CANNOT_PREDICT_SAFELY = (
    "I cannot make a safe prediction from the current details. Please share exact symptom "
    "location, severity (0-10), duration, and any triggering factors."
)
FALLBACK_UNAVAILABLE = (
    "Dataset confidence is low and API fallback is unavailable right now. Please share detailed "
    "symptoms and consult a clinician if symptoms are severe."
)

# === 3. GENERAL CHAT ===
GREETING = (
    "Hello. I can chat normally, and whenever you share a medical issue or symptoms, "
    "I will start the diagnosis flow."
)
HOW_ARE_YOU = (
    "I am here and ready to help. If you want health guidance, share your symptoms "
    "and I will begin assessment questions."
)
THANKS = "You're welcome. Share any symptoms anytime when you want a medical assessment."
DIET_ADVICE = "\n".join([
    "Healthy dietary habits:",
    "1. Build meals around vegetables, fruits, whole grains, and lean proteins.",
    "2. Prefer water over sugary drinks and limit alcohol.",
    "3. Keep processed foods, excess salt, and added sugar low.",
    "4. Use portion control and eat slowly to avoid overeating.",
    "5. Include healthy fats (nuts, seeds, olive oil) in moderate amounts.",
    "6. Maintain regular meal timing and avoid late heavy meals.",
])
CATCH_ALL = (
    "I can continue normal conversation. When you want a health prediction, "
    "describe your medical issue or symptoms."
)

# === 4. QUESTION PURPOSE ===
# (phrases in the question text, reason line); first match wins
QUESTION_PURPOSES = [
    (("where exactly",), "Reason: location helps separate joint, muscle, nerve, and vascular causes."),
    (("0 to 10", "severe"), "Reason: severity helps estimate urgency and probable condition range."),
    (("how long",), "Reason: symptom duration helps distinguish acute vs chronic causes."),
    (("getting better", "worse"), "Reason: trend over time improves diagnostic confidence."),
    (("warning signs",), "Reason: red-flag screening checks for conditions needing urgent care."),
    (("gender", "age group"), "Reason: demographics can shift disease likelihood in the dataset."),
]
DEFAULT_PURPOSE = "Reason: this answer helps narrow likely causes from your current symptom pattern."


def format_symptom(symptom: str) -> str:
    """'joint pain' -> 'Joint Pain'"""
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), symptom)


def numbered(items: Iterable[str]) -> str:
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, start=1))


def explain_question_purpose(question_text: str) -> str:
    q = question_text.lower()
    for phrases, reason in QUESTION_PURPOSES:
        if any(phrase in q for phrase in phrases):
            return reason
    return DEFAULT_PURPOSE


def reply_for_question(question_text: str, confirmed: List[str], turns: int) -> str:
    symptoms = ", ".join(format_symptom(s) for s in confirmed) or "None yet"
    reason = explain_question_purpose(question_text)
    return f"Symptoms identified so far: **{symptoms}**.\n\n**Question {turns + 1}:** {question_text}\n{reason}"


def precautions_block(precautions: List[str]) -> str:
    if not precautions:
        return ""
    return f"**Precautions:**\n{numbered(precautions)}"


def dataset_diagnosis_reply(
    diagnosis: str,
    confidence: float,
    confirmed: List[str],
    gender: Optional[str],
    age_group: Optional[str],
    description: str,
    precautions: List[str],
    comparison_diagnosis: Optional[str] = None,
    comparison_confidence: Optional[float] = None,
) -> str:
    """Final reply when the local dataset result passed the reliability gate."""
    parts = [
        f"**Likely condition: {diagnosis}**\nConfidence: {confidence}%",
        f"Symptoms considered: {', '.join(format_symptom(s) for s in confirmed)}\n"
        f"Demographics considered: {gender or 'unknown'}, {age_group or 'unknown'}",
        description or "No detailed description available in dataset.",
    ]
    if precautions:
        parts.append(precautions_block(precautions))
    if comparison_diagnosis:
        parts.append(f"**OpenAI comparison:** {comparison_diagnosis} ({comparison_confidence:.1f}%)")
    else:
        parts.append("**OpenAI comparison:** unavailable")
    parts.append(INFORMATIONAL_DISCLAIMER)
    return "\n\n".join(parts)


def api_diagnosis_reply(
    diagnosis: str,
    confidence: float,
    dataset_diagnosis: str,
    dataset_confidence: float,
    summary: str,
    precautions: List[str],
) -> str:
    """Final reply when the remote model produced the diagnosis."""
    parts = [
        "Dataset confidence remained low, so an API-assisted prediction is used.",
        f"**Likely condition (API-assisted): {diagnosis}**\nConfidence: {confidence:.1f}%",
        f"**Dataset comparison:** {dataset_diagnosis} ({dataset_confidence}%)",
        summary or "Dataset confidence was low, so this used API-assisted analysis.",
    ]
    if precautions:
        parts.append(precautions_block(precautions))
    parts.append(INFORMATIONAL_DISCLAIMER)
    return "\n\n".join(parts)


def disease_fact_sheet(name: str, symptoms: List[str], description: str, precautions: List[str]) -> str:
    """Educational reply for "what are the symptoms of X" questions."""
    listed = [format_symptom(s) for s in symptoms[:10]]
    symptom_block = numbered(listed) if listed else "Symptoms are not available in the local dataset for this condition."

    text = f"Common symptoms of **{name}**:\n{symptom_block}"
    if description:
        text += f"\n\nAbout {name}: {description}"
    if precautions:
        text += f"\n\nGeneral precautions:\n{numbered(precautions[:4])}"
    return f"{text}\n\n{EDUCATIONAL_DISCLAIMER}"
