"""
Triage Dialogue Engine
======================

Drives one chat message through the triage dialogue:

1. Merge symptoms/slots extracted from the message into the session state
2. Apply the answer to the pending question (per question id)
3. Rank diseases and evaluate reliability
4. Ask the next question (age group -> gender -> generated), or
5. Finalize: dataset result when reliable, remote diagnosis otherwise

The engine holds no per-session state. The caller loads the persisted
payload, passes it in, and persists whatever TriageResult says to.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from triage_service import config, replies
from triage_service.engines import intent
from triage_service.engines.dataset import Dataset, DatasetLoader
from triage_service.engines.feature_extraction import (
    AGE_GROUPS,
    GENDERS,
    extract_age_group,
    extract_body_system,
    extract_chief_complaint,
    extract_duration_days,
    extract_gender,
    extract_pain_location,
    extract_pain_severity,
    extract_progression,
    extract_red_flags,
    extract_symptoms,
    extract_temperature_f,
    normalize,
    question_text_key,
    yes_no_from_text,
)
from triage_service.engines.scoring import (
    Prediction,
    evaluate_prediction_reliability,
    normalize_percentages,
    rank_predictions,
)
from triage_service.engines.session_state import (
    Comparison,
    ComparisonEntry,
    Demographics,
    DiseaseInfo,
    FinalDiagnosisRecord,
    FollowupState,
    PredictionSummary,
    Slots,
    dump_payload,
)
from triage_service.model_adapters.model_selector import FallbackDiagnosis, FollowupQuestion, ModelSelector

logger = logging.getLogger(__name__)

CONFIDENT_THRESHOLD = 67
TOP_CANDIDATES = 5

AGE_GROUP_QUESTION = FollowupQuestion("age_group", "Please select your age group.", list(AGE_GROUPS))
GENDER_QUESTION = FollowupQuestion("gender", "Please select your gender for better triage context.", list(GENDERS))

# Yes/no questions that only set a boolean slot
_FLAG_QUESTIONS = {
    "red_flags": "red_flags_present",
    "pain_redness": "pain_redness",
    "pain_injury": "pain_injury",
}

_LOCATION_SYMPTOMS = {
    "knee": "knee pain",
    "hip": "hip joint pain",
    "joint": "joint pain",
    "leg": "joint pain",
}

SessionPayload = Union[FollowupState, FinalDiagnosisRecord]


@dataclass
class TriageResult:
    """
    Reply for one message plus the persistence instruction.

    persist=False leaves the stored payload untouched. persist=True
    replaces it with `payload`; None clears the pending state.
    """
    response: Dict[str, Any]
    payload: Optional[SessionPayload] = None
    persist: bool = False


def _add(items: List[str], value: str):
    if value not in items:
        items.append(value)


@dataclass
class _Turn:
    """Working copy of the dialogue state for the current message."""
    confirmed: List[str]
    denied: List[str]
    asked: List[str]
    slots: Slots
    turns: int
    max_turns: int

    @classmethod
    def from_state(cls, state: Optional[FollowupState], max_turns: int) -> "_Turn":
        if state is None:
            return cls([], [], [], Slots(), 0, max_turns)
        return cls(
            list(state.confirmed_symptoms),
            list(state.denied_symptoms),
            list(state.asked_symptoms),
            state.slots.model_copy(),
            state.turns,
            state.max_turns or max_turns,
        )

    def confirm(self, symptom: str):
        _add(self.confirmed, symptom)

    def deny(self, symptom: str):
        _add(self.denied, symptom)

    def record(self, symptom: str, answer: Optional[str]):
        if answer == "yes":
            self.confirm(symptom)
        elif answer == "no":
            self.deny(symptom)

    @property
    def demographics(self) -> Demographics:
        return Demographics(gender=self.slots.gender, age_group=self.slots.age_group)


class TriageEngine:
    """Rule-based triage dialogue with remote fallback."""

    def __init__(
        self,
        dataset_loader: DatasetLoader,
        model_selector: ModelSelector,
        max_turns: int = config.MAX_TURNS,
    ):
        self.dataset_loader = dataset_loader
        self.model_selector = model_selector
        self.max_turns = max_turns

    async def handle_message(
        self,
        message: str,
        action: Optional[str] = None,
        payload: Optional[SessionPayload] = None,
        history: Optional[List[str]] = None,
    ) -> TriageResult:
        """
        Process one user message.

        Args:
            message: Raw user text
            action: "yes" / "no" / "custom" answer to the pending question
            payload: Persisted session payload, if any
            history: Earlier user messages, oldest first
        """
        dataset = self.dataset_loader.load()
        if not dataset.loaded:
            return TriageResult({
                "reply": replies.DATASET_UNAVAILABLE,
                "follow_up_suggested": False,
                "resource_note": "dataset_unavailable",
            })

        # One final prediction per session
        if isinstance(payload, FinalDiagnosisRecord):
            return TriageResult({
                "reply": replies.FINAL_ALREADY_EXISTS,
                "follow_up_suggested": False,
                "ml_diagnosis": dump_payload(payload),
            })

        state = payload if isinstance(payload, FollowupState) and payload.awaiting_answer else None
        if state is None:
            result = intent.classify(message, dataset)
            if result.kind == intent.INFORMATIONAL:
                return TriageResult({
                    "reply": intent.informational_disease_reply(message, dataset),
                    "follow_up_suggested": False,
                })
            if not result.medical:
                return TriageResult({
                    "reply": intent.friendly_reply_for_general_chat(message),
                    "follow_up_suggested": False,
                })

        return await self._advance(dataset, state, message, action, history or [])

    # ===== STATE UPDATES =====

    def _merge_message(self, dataset: Dataset, turn: _Turn, state: Optional[FollowupState], message: str):
        for symptom in sorted(extract_symptoms(message, dataset)):
            turn.confirm(symptom)

        slots = turn.slots
        if not slots.chief_complaint:
            slots.chief_complaint = extract_chief_complaint(message)
        if not slots.body_system or slots.body_system == "general":
            slots.body_system = extract_body_system(message)

        location = extract_pain_location(message)
        if location:
            slots.pain_location = location
        severity = extract_pain_severity(message)
        if severity is not None:
            slots.pain_severity = severity
            if slots.symptom_severity is None:
                slots.symptom_severity = severity
        progression = extract_progression(message)
        if progression:
            slots.progression = progression
        red_flags = extract_red_flags(message)
        if red_flags is not None:
            slots.red_flags_present = red_flags

        temperature = extract_temperature_f(message)
        if temperature:
            slots.temperature_f = temperature
        duration = extract_duration_days(message)
        if duration:
            slots.duration_days = duration

        # Demographics only count when they answer the matching question
        current_question = state.current_question_id if state else None
        gender = extract_gender(message)
        if gender and current_question == "gender":
            slots.gender = gender
        age_group = extract_age_group(message)
        if age_group and current_question == "age_group":
            slots.age_group = age_group

    def _apply_answer(self, dataset: Dataset, turn: _Turn, state: FollowupState, message: str, action: str):
        qid = state.current_question_id
        answer = yes_no_from_text(message) if action == "custom" else action
        slots = turn.slots
        _add(turn.asked, qid)
        _add(turn.asked, question_text_key(state.current_question_text))

        if qid == "temperature":
            temperature = extract_temperature_f(message)
            if temperature:
                slots.temperature_f = temperature
            turn.record("high fever", answer)
        elif qid == "duration":
            duration = extract_duration_days(message)
            if duration:
                slots.duration_days = duration
        elif qid == "severity":
            severity = extract_pain_severity(message)
            if severity is not None:
                slots.symptom_severity = severity
        elif qid == "progression":
            progression = extract_progression(message)
            if progression:
                slots.progression = progression
        elif qid in _FLAG_QUESTIONS:
            if answer in ("yes", "no"):
                setattr(slots, _FLAG_QUESTIONS[qid], answer == "yes")
        elif qid == "gender":
            gender = extract_gender(message)
            if gender:
                slots.gender = gender
        elif qid == "age_group":
            age_group = extract_age_group(message)
            if age_group:
                slots.age_group = age_group
        elif qid == "pain_location":
            location = extract_pain_location(message)
            if location:
                slots.pain_location = location
                if location in _LOCATION_SYMPTOMS:
                    turn.confirm(_LOCATION_SYMPTOMS[location])
            elif normalize(message):
                slots.pain_location = normalize(message)[:40]
        elif qid == "pain_severity":
            severity = extract_pain_severity(message)
            if severity is not None:
                slots.pain_severity = severity
        elif qid == "pain_swelling":
            if answer in ("yes", "no"):
                slots.pain_swelling = answer == "yes"
            turn.record("swelling joints", answer)
            turn.record("swollen legs", answer)
        elif qid == "pain_fever":
            if answer in ("yes", "no"):
                slots.pain_fever = answer == "yes"
            turn.record("high fever", answer)
        elif qid.startswith("symptom:"):
            symptom = qid[len("symptom:"):]
            _add(turn.asked, symptom)
            turn.record(symptom, answer)
        elif qid.startswith("ai:"):
            for symptom in sorted(extract_symptoms(state.current_question_text, dataset)):
                turn.record(symptom, answer)

        turn.turns += 1

    # ===== DIALOGUE =====

    async def _advance(
        self,
        dataset: Dataset,
        state: Optional[FollowupState],
        message: str,
        action: Optional[str],
        history: List[str],
    ) -> TriageResult:
        turn = _Turn.from_state(state, self.max_turns)
        self._merge_message(dataset, turn, state, message)

        if state is not None:
            # A typed reply to a pending question is a free-text answer
            self._apply_answer(dataset, turn, state, message, action or "custom")

        predictions = rank_predictions(dataset.diseases, set(turn.confirmed), set(turn.denied), turn.slots)
        top_candidates = [p.disease for p in predictions[:TOP_CANDIDATES]]
        reliability = evaluate_prediction_reliability(predictions, len(turn.confirmed), turn.turns)

        generation_failed = False
        if not reliability.reliable and turn.turns < turn.max_turns:
            question = self._slot_question(turn.slots)
            if question is None:
                question = await self._generate_question(turn, message, top_candidates, history)
                generation_failed = question is None
            if question is not None:
                return self._question_result(turn, question, top_candidates)

        if not predictions:
            logger.info("No disease scored above zero; clearing follow-up state")
            return TriageResult(
                {"reply": replies.CANNOT_PREDICT_SAFELY, "follow_up_suggested": False},
                payload=None,
                persist=True,
            )

        if reliability.reliable:
            return await self._finalize_from_dataset(dataset, turn, predictions, message, history)
        return await self._finalize_from_fallback(turn, predictions, message, history, generation_failed)

    @staticmethod
    def _slot_question(slots: Slots) -> Optional[FollowupQuestion]:
        if not slots.age_group:
            return AGE_GROUP_QUESTION
        if not slots.gender:
            return GENDER_QUESTION
        return None

    async def _generate_question(
        self,
        turn: _Turn,
        message: str,
        top_candidates: List[str],
        history: List[str],
    ) -> Optional[FollowupQuestion]:
        """
        Up to QUESTION_REGENERATION_ATTEMPTS requests. A repeated question or a
        retryable failure (rate limit, timeout, upstream) uses up one attempt;
        any other failure ends generation.
        """
        asked_tracker = list(turn.asked)
        for attempt in range(1, config.QUESTION_REGENERATION_ATTEMPTS + 1):
            result = await self.model_selector.live_followup_question(
                history=history,
                current_message=message,
                confirmed_symptoms=list(turn.confirmed),
                denied_symptoms=list(turn.denied),
                top_candidates=top_candidates,
                asked_items=asked_tracker,
                turns=turn.turns,
                max_turns=turn.max_turns,
                gender=turn.slots.gender,
                age_group=turn.slots.age_group,
            )
            if not result.ok:
                logger.warning(f"Follow-up generation failed (attempt {attempt}): {result.error}")
                if result.should_retry:
                    continue
                return None
            question = result.value
            if question.id in asked_tracker or question_text_key(question.text) in asked_tracker:
                logger.info(f"Discarding repeated follow-up question (attempt {attempt}): {question.text}")
                _add(asked_tracker, question.id)
                continue
            return question
        return None

    def _question_result(self, turn: _Turn, question: FollowupQuestion, top_candidates: List[str]) -> TriageResult:
        next_state = FollowupState(
            turns=turn.turns,
            max_turns=turn.max_turns,
            confirmed_symptoms=turn.confirmed,
            denied_symptoms=turn.denied,
            asked_symptoms=turn.asked,
            top_candidates=top_candidates,
            current_question_id=question.id,
            current_question_text=question.text,
            current_question_choices=question.choices,
            slots=turn.slots,
        )
        return TriageResult(
            {
                "reply": replies.reply_for_question(question.text, turn.confirmed, turn.turns),
                "follow_up_suggested": True,
                "follow_up_question": question.text,
                "follow_up_choices": question.choices or None,
                "follow_up_state": dump_payload(next_state),
            },
            payload=next_state,
            persist=True,
        )

    # ===== FINALIZATION =====

    @staticmethod
    def _dataset_entry(predictions: List[Prediction]) -> ComparisonEntry:
        top = predictions[0]
        return ComparisonEntry(
            diagnosis=top.disease,
            confidence=round(top.probability, 1),
            top_predictions=[PredictionSummary(**p.summary()) for p in predictions[:TOP_CANDIDATES]],
        )

    @staticmethod
    def _record_predictions(entry: ComparisonEntry) -> List[PredictionSummary]:
        """Top predictions of a final record, renormalized to 100 over the kept entries."""
        percentages = normalize_percentages([p.probability for p in entry.top_predictions])
        return [
            PredictionSummary(disease=p.disease, probability=probability)
            for p, probability in zip(entry.top_predictions, percentages)
        ]

    @staticmethod
    def _remote_entry(diagnosis: FallbackDiagnosis) -> ComparisonEntry:
        return ComparisonEntry(
            diagnosis=diagnosis.diagnosis,
            confidence=round(diagnosis.confidence, 1),
            top_predictions=[
                PredictionSummary(disease=p["disease"], probability=round(p["probability"], 1))
                for p in diagnosis.top_predictions
            ],
        )

    async def _remote_diagnosis(self, turn: _Turn, message: str, history: List[str]):
        return await self.model_selector.fallback_diagnosis(
            history=history,
            message=message,
            symptoms=list(turn.confirmed),
            gender=turn.slots.gender,
            age_group=turn.slots.age_group,
        )

    async def _finalize_from_dataset(
        self,
        dataset: Dataset,
        turn: _Turn,
        predictions: List[Prediction],
        message: str,
        history: List[str],
    ) -> TriageResult:
        dataset_entry = self._dataset_entry(predictions)
        comparison = await self._remote_diagnosis(turn, message, history)
        remote_entry = self._remote_entry(comparison.value) if comparison.ok else None

        disease_info = DiseaseInfo(
            description=dataset.descriptions.get(dataset_entry.diagnosis, ""),
            precautions=dataset.precautions.get(dataset_entry.diagnosis, []),
        )
        record = FinalDiagnosisRecord(
            diagnosis=dataset_entry.diagnosis,
            confidence=dataset_entry.confidence,
            diagnosis_type="confident" if predictions[0].probability >= CONFIDENT_THRESHOLD else "best_guess",
            top_predictions=self._record_predictions(dataset_entry),
            confirmed_symptoms=turn.confirmed,
            followups_asked=turn.turns,
            demographics=turn.demographics,
            disease_info=disease_info,
            source="dataset_current_session",
            considered_prior_history=False,
            comparison=Comparison(dataset=dataset_entry, openai=remote_entry),
        )
        logger.info(f"Finalized from dataset: {record.diagnosis} ({record.confidence}%)")

        reply = replies.dataset_diagnosis_reply(
            record.diagnosis,
            record.confidence,
            turn.confirmed,
            turn.slots.gender,
            turn.slots.age_group,
            disease_info.description,
            disease_info.precautions,
            comparison_diagnosis=remote_entry.diagnosis if remote_entry else None,
            comparison_confidence=remote_entry.confidence if remote_entry else None,
        )
        return self._final_result(reply, record)

    async def _finalize_from_fallback(
        self,
        turn: _Turn,
        predictions: List[Prediction],
        message: str,
        history: List[str],
        generation_failed: bool,
    ) -> TriageResult:
        result = await self._remote_diagnosis(turn, message, history)
        if not result.ok:
            logger.warning(f"Fallback diagnosis unavailable: {result.error}")
            reply = replies.GENERATION_UNAVAILABLE if generation_failed else replies.FALLBACK_UNAVAILABLE
            return TriageResult({"reply": reply, "follow_up_suggested": False})

        remote = result.value
        dataset_entry = self._dataset_entry(predictions)
        remote_entry = self._remote_entry(remote)
        record = FinalDiagnosisRecord(
            diagnosis=remote_entry.diagnosis,
            confidence=remote_entry.confidence,
            diagnosis_type="api_fallback",
            top_predictions=self._record_predictions(remote_entry),
            confirmed_symptoms=turn.confirmed,
            followups_asked=turn.turns,
            demographics=turn.demographics,
            disease_info=DiseaseInfo(description=remote.summary, precautions=remote.precautions),
            source="api_fallback",
            considered_prior_history=False,
            comparison=Comparison(dataset=dataset_entry, openai=remote_entry),
        )
        logger.info(f"Finalized from API fallback: {record.diagnosis} ({record.confidence}%)")

        reply = replies.api_diagnosis_reply(
            record.diagnosis,
            record.confidence,
            dataset_entry.diagnosis,
            dataset_entry.confidence,
            remote.summary,
            remote.precautions,
        )
        return self._final_result(reply, record)

    @staticmethod
    def _final_result(reply: str, record: FinalDiagnosisRecord) -> TriageResult:
        return TriageResult(
            {
                "reply": reply,
                "follow_up_suggested": False,
                "ml_diagnosis": dump_payload(record),
            },
            payload=record,
            persist=True,
        )
