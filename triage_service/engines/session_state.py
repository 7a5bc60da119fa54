"""
Session State Types
===================

Persisted payloads for a triage session. A session holds at most one
payload, which is either:

- FollowupState: a pending question and the dialogue progress so far
- FinalDiagnosisRecord: the terminal result; the dialogue never resumes

The two are a tagged union on the "kind" field.
"""

import json
import logging
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

AgeGroup = Literal[
    "infant", "toddler", "child", "adolescent",
    "youth", "adult", "middle_aged", "senior_citizen",
]
Gender = Literal["male", "female", "custom"]
BodySystem = Literal[
    "musculoskeletal", "respiratory", "gastrointestinal", "neurologic",
    "cardiovascular", "dermatologic", "general",
]


class _PayloadModel(BaseModel):
    # camelCase aliases accept payloads written by the older chat frontend
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Slots(_PayloadModel):
    """Structured context extracted during the dialogue."""
    gender: Optional[Gender] = None
    age_group: Optional[AgeGroup] = None
    temperature_f: Optional[float] = None
    duration_days: Optional[int] = None
    chief_complaint: Optional[Literal["pain", "general"]] = None
    body_system: Optional[BodySystem] = None
    pain_location: Optional[str] = None
    pain_severity: Optional[int] = None
    pain_swelling: Optional[bool] = None
    pain_redness: Optional[bool] = None
    pain_injury: Optional[bool] = None
    pain_fever: Optional[bool] = None
    symptom_severity: Optional[int] = None
    progression: Optional[Literal["better", "same", "worse"]] = None
    red_flags_present: Optional[bool] = None


class FollowupState(_PayloadModel):
    kind: Literal["followup_state"] = "followup_state"
    pending: bool = True
    turns: int = 0
    max_turns: int = 10
    confirmed_symptoms: List[str] = Field(default_factory=list)
    denied_symptoms: List[str] = Field(default_factory=list)
    asked_symptoms: List[str] = Field(default_factory=list)
    top_candidates: List[str] = Field(default_factory=list)
    current_question_id: str
    current_question_text: str
    current_question_choices: Optional[List[str]] = None
    slots: Slots = Field(default_factory=Slots)

    @property
    def awaiting_answer(self) -> bool:
        return bool(self.pending and self.current_question_id and self.current_question_text)


class PredictionSummary(BaseModel):
    disease: str
    probability: float


class ComparisonEntry(BaseModel):
    diagnosis: str
    confidence: float
    top_predictions: List[PredictionSummary] = Field(default_factory=list)


class Comparison(BaseModel):
    dataset: ComparisonEntry
    openai: Optional[ComparisonEntry] = None


class Demographics(BaseModel):
    gender: Optional[str] = None
    age_group: Optional[str] = None


class DiseaseInfo(BaseModel):
    description: str = ""
    precautions: List[str] = Field(default_factory=list)


class FinalDiagnosisRecord(BaseModel):
    kind: Literal["final_diagnosis"] = "final_diagnosis"
    diagnosis: str
    confidence: float
    diagnosis_type: str = "best_guess"
    top_predictions: List[PredictionSummary]
    confirmed_symptoms: List[str] = Field(default_factory=list)
    followups_asked: int = 0
    demographics: Demographics = Field(default_factory=Demographics)
    disease_info: DiseaseInfo = Field(default_factory=DiseaseInfo)
    source: Literal["dataset_current_session", "api_fallback"]
    considered_prior_history: bool = False
    comparison: Optional[Comparison] = None


SessionPayload = Annotated[Union[FollowupState, FinalDiagnosisRecord], Field(discriminator="kind")]
_payload_adapter = TypeAdapter(SessionPayload)


def parse_payload(data: Any) -> Optional[Union[FollowupState, FinalDiagnosisRecord]]:
    """
    Deserialize a stored payload (dict or JSON string).

    Returns None for anything unparseable, so a corrupt record restarts
    the dialogue instead of failing the request.
    """
    if data is None:
        return None
    try:
        if isinstance(data, (str, bytes)):
            data = json.loads(data)
        if isinstance(data, dict) and "kind" not in data and "diagnosis" in data:
            # Final records were written without a tag
            data = {**data, "kind": "final_diagnosis"}
        return _payload_adapter.validate_python(data)
    except (ValueError, ValidationError) as e:
        logger.warning(f"Ignoring unparseable session payload: {e}")
        return None


def dump_payload(payload: Union[FollowupState, FinalDiagnosisRecord]) -> Dict[str, Any]:
    return payload.model_dump(mode="json")


def reconstruct_from_messages(messages: List[Dict[str, Any]]) -> Optional[Union[FollowupState, FinalDiagnosisRecord]]:
    """
    Recover the session payload from a legacy message history.

    Scans assistant messages newest-first. A pending follow-up state or a
    final diagnosis with top predictions is accepted; anything else is skipped.
    """
    for message in reversed(messages):
        if message.get("role") != "assistant":
            continue
        raw = message.get("payload", message.get("jsonPayload"))
        if not raw:
            continue
        payload = parse_payload(raw)
        if isinstance(payload, FollowupState) and payload.awaiting_answer:
            return payload
        if isinstance(payload, FinalDiagnosisRecord) and payload.top_predictions:
            return payload
    return None
