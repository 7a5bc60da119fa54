"""
Model Selector - Remote Fallback Routing

Two best-effort call shapes against the remote language model:

- fallback_diagnosis: full structured diagnosis when local confidence is low
- live_followup_question: one new follow-up question for the dialogue

Each call walks the model list (configured model first, then defaults)
until one returns usable output. Nothing is raised past this boundary:
every call returns a FallbackResult carrying either a value or the
last FallbackError.
"""

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, TypeVar

from triage_service import config
from triage_service.engines.feature_extraction import normalize
from triage_service.engines.scoring import normalize_percentages
from triage_service.model_adapters.api_model_adapter import (
    APIAdapter,
    FallbackError,
    MalformedResponseError,
    NotConfiguredError,
    OpenAIAdapter,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DIAGNOSIS_SYSTEM_PROMPT = (
    "Return strict JSON only with keys diagnosis, confidence, top_predictions "
    "(array of up to 5 {disease, probability}), summary, precautions (string array)."
)

QUESTION_SYSTEM_PROMPT = (
    "Return strict JSON only with keys question_id, question_text, question_choices. "
    "Ask exactly one concise medically relevant follow-up question to improve diagnosis "
    "confidence. Do not repeat already asked questions. question_choices must be null or "
    "an array of 2-8 short lowercase options."
)

QUESTION_CONSTRAINTS = [
    "Do not ask age group or gender here.",
    "Ask only one question.",
    "No diagnosis/treatment advice in the question.",
    "Prefer yes/no style when clinically useful.",
]

MAX_CHOICES = 8
DEFAULT_CONFIDENCE = 35.0


@dataclass
class FallbackResult(Generic[T]):
    """Outcome of a remote call: exactly one of value / error is set."""
    value: Optional[T] = None
    error: Optional[FallbackError] = None

    @property
    def ok(self) -> bool:
        return self.value is not None

    @property
    def should_retry(self) -> bool:
        return self.error is not None and self.error.retryable


@dataclass
class FallbackDiagnosis:
    diagnosis: str
    confidence: float
    summary: str = ""
    precautions: List[str] = field(default_factory=list)
    top_predictions: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class FollowupQuestion:
    id: str
    text: str
    choices: Optional[List[str]] = None


def parse_json_object(raw: Any) -> Optional[Dict[str, Any]]:
    """
    Parse a JSON object out of model output.

    Tries the whole text, then a fenced code block, then the outermost
    brace span. Non-string content is unusable.
    """
    if not isinstance(raw, str):
        return None
    text = raw.strip()
    if not text:
        return None

    candidates = [text]
    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text, re.IGNORECASE)
    if fenced and fenced.group(1):
        candidates.append(fenced.group(1))
    start, end = text.find("{"), text.rfind("}")
    if start >= 0 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _to_number(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if number != number else number


def normalize_diagnosis(parsed: Dict[str, Any]) -> Optional[FallbackDiagnosis]:
    """
    Clean a parsed diagnosis object.

    Fractional probabilities (all <= 1) are scaled to percentages, the top
    list is renormalized to 100, confidence is clamped to [0, 100] and
    defaults to 35 when missing.
    """
    diagnosis = str(parsed.get("diagnosis") or "").strip()
    if not diagnosis:
        return None

    top = []
    raw_top = parsed.get("top_predictions")
    for item in (raw_top if isinstance(raw_top, list) else [])[:5]:
        if not isinstance(item, dict) or not item.get("disease"):
            continue
        top.append({"disease": str(item["disease"]), "probability": _to_number(item.get("probability")) or 0.0})

    max_probability = max((p["probability"] for p in top), default=0)
    if 0 < max_probability <= 1:
        for p in top:
            p["probability"] *= 100
    if sum(p["probability"] for p in top) > 0:
        percentages = normalize_percentages([max(0.0, p["probability"]) for p in top])
        for p, probability in zip(top, percentages):
            p["probability"] = probability

    confidence = _to_number(parsed.get("confidence"))
    if confidence is None:
        confidence = DEFAULT_CONFIDENCE
    if 0 < confidence <= 1:
        confidence *= 100
    confidence = round(max(0.0, min(100.0, confidence)), 1)

    precautions = parsed.get("precautions")
    return FallbackDiagnosis(
        diagnosis=diagnosis,
        confidence=confidence,
        summary=str(parsed.get("summary") or ""),
        precautions=[str(p) for p in precautions] if isinstance(precautions, list) else [],
        top_predictions=top or [{"disease": diagnosis, "probability": confidence}],
    )


def build_question(parsed: Dict[str, Any]) -> Optional[FollowupQuestion]:
    """Turn parsed model output into a question; None when question_text is missing."""
    text = str(parsed.get("question_text") or "").strip()
    if not text:
        return None

    raw_id = parsed.get("question_id")
    if raw_id is None:
        raw_id = f"ai_followup_{int(time.time() * 1000)}"
    question_id = "ai:" + re.sub(r"[^a-z0-9:_-]+", "_", str(raw_id).lower())[:64]

    choices = None
    raw_choices = parsed.get("question_choices")
    if isinstance(raw_choices, list):
        choices = [c for c in (normalize(str(v)) for v in raw_choices) if c][:MAX_CHOICES] or None

    return FollowupQuestion(id=question_id, text=text, choices=choices)


class ModelSelector:
    """
    Routes fallback requests across model identifiers.

    Decision rules:
    1. No API key: fail fast with NotConfiguredError
    2. Try each model in order; rate limits, timeouts, upstream and
       malformed output move on to the next model
    3. Unauthorized stops the walk (the key is wrong for every model)
    """

    def __init__(self, adapter: Optional[APIAdapter] = None, models: Optional[List[str]] = None):
        self.adapter = adapter or OpenAIAdapter()
        self.models = models or self._default_models()

    @staticmethod
    def _default_models() -> List[str]:
        models = [config.OPENAI_MODEL] + config.FALLBACK_MODELS
        return list(dict.fromkeys(m for m in models if m))

    def is_configured(self) -> bool:
        return self.adapter.is_configured()

    async def _ask(self, model: str, system_prompt: str, user_content: str) -> Optional[Dict[str, Any]]:
        raw = await self.adapter.generate(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            model=model,
            temperature=0.2,
        )
        return parse_json_object(raw)

    async def fallback_diagnosis(
        self,
        history: List[str],
        message: str,
        symptoms: List[str],
        gender: Optional[str] = None,
        age_group: Optional[str] = None,
    ) -> FallbackResult[FallbackDiagnosis]:
        """Request a full structured diagnosis."""
        if not self.is_configured():
            return FallbackResult(error=NotConfiguredError("OpenAI API key not configured"))

        recent = "\n".join(history[-15:])
        user_content = (
            f"History:\n{recent}\n\n"
            f"Current message: {message}\n"
            f"Symptoms: {', '.join(symptoms)}\n"
            f"Demographics: gender={gender or 'unknown'}, age_group={age_group or 'unknown'}"
        )

        last_error: Optional[FallbackError] = None
        for model in self.models:
            try:
                parsed = await self._ask(model, DIAGNOSIS_SYSTEM_PROMPT, user_content)
            except UnauthorizedError as e:
                last_error = e
                break
            except FallbackError as e:
                last_error = e
                logger.warning(f"Fallback diagnosis failed: {e}")
                continue

            result = normalize_diagnosis(parsed) if parsed else None
            if result is None:
                last_error = MalformedResponseError(f"model={model} invalid_json_output")
                logger.warning(f"Fallback diagnosis failed: {last_error}")
                continue
            return FallbackResult(value=result)

        logger.error(f"Fallback diagnosis unavailable: {last_error}")
        return FallbackResult(error=last_error)

    async def live_followup_question(
        self,
        history: List[str],
        current_message: str,
        confirmed_symptoms: List[str],
        denied_symptoms: List[str],
        top_candidates: List[str],
        asked_items: List[str],
        turns: int,
        max_turns: int,
        gender: Optional[str] = None,
        age_group: Optional[str] = None,
    ) -> FallbackResult[FollowupQuestion]:
        """
        Request one follow-up question.

        Already asked items go into the prompt; rejecting a repeat is left
        to the caller, which owns the regeneration attempts.
        """
        if not self.is_configured():
            return FallbackResult(error=NotConfiguredError("OpenAI API key not configured"))

        user_content = json.dumps({
            "turns": turns,
            "max_turns": max_turns,
            "current_message": current_message,
            "recent_history": history[-20:],
            "confirmed_symptoms": confirmed_symptoms,
            "denied_symptoms": denied_symptoms,
            "top_candidates": top_candidates,
            "demographics": {"gender": gender, "age_group": age_group},
            "prior_asked_items": asked_items,
            "constraints": QUESTION_CONSTRAINTS,
        })

        last_error: Optional[FallbackError] = None
        for model in self.models:
            try:
                parsed = await self._ask(model, QUESTION_SYSTEM_PROMPT, user_content)
            except UnauthorizedError as e:
                last_error = e
                break
            except FallbackError as e:
                last_error = e
                logger.warning(f"Live follow-up generation failed: {e}")
                continue

            question = build_question(parsed) if parsed else None
            if question is None:
                last_error = MalformedResponseError(f"model={model} invalid_json_output")
                logger.warning(f"Live follow-up generation failed: {last_error}")
                continue
            return FallbackResult(value=question)

        logger.error(f"Live follow-up generation unavailable: {last_error}")
        return FallbackResult(error=last_error)
