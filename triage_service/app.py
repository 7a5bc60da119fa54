"""
Triage Service API - FastAPI Application

Symptom triage chat microservice.

Endpoints:
- POST /diagnose/chat - Send one chat message (session id in x-session-id header)
- GET /session/{session_id} - Get stored session payload and messages
- DELETE /session/{session_id} - Drop a session (start a new chat)
- POST /extract_symptoms - Extract symptoms and slots from text
- GET /health - Service status

This service is NOT a diagnostic system - it provides assistive insights only.
"""

import logging
from typing import Literal, Optional

from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from triage_service import __version__, config
from triage_service.engines import feature_extraction as fx
from triage_service.engines.dataset import DatasetLoader
from triage_service.engines.triage_engine import TriageEngine
from triage_service.model_adapters.model_selector import ModelSelector
from triage_service.storage.session_store import create_session_store

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Symptom Triage Service",
    description="Rule-based symptom triage chat with language-model fallback",
    version=__version__
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize engines
dataset_loader = DatasetLoader()
model_selector = ModelSelector()
session_store = create_session_store()
engine = TriageEngine(dataset_loader, model_selector, max_turns=config.MAX_TURNS)


# Request/Response models
class ChatRequest(BaseModel):
    message: Optional[str] = None
    session_action: Optional[Literal["yes", "no", "custom"]] = None

class ExtractRequest(BaseModel):
    text: str


@app.post("/diagnose/chat")
async def diagnose_chat(request: ChatRequest, x_session_id: Optional[str] = Header(default=None)):
    """
    Handle one chat message for a session.

    Returns the reply plus either the next follow-up question/state or the
    final ml_diagnosis.
    """
    if not x_session_id:
        raise HTTPException(status_code=400, detail="Missing x-session-id header")
    message = (request.message or "").strip()
    if not message:
        raise HTTPException(status_code=400, detail="message is required")

    try:
        record = session_store.get_or_create(x_session_id)
        result = await engine.handle_message(
            message,
            action=request.session_action,
            payload=record.state(),
            history=record.user_history(),
        )

        record.append("user", message)
        if result.persist:
            record.set_state(result.payload)
            record.append("assistant", result.response["reply"], record.payload)
        else:
            record.append("assistant", result.response["reply"])
        session_store.save(record)

        return result.response

    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Error in diagnose_chat: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/session/{session_id}")
async def get_session_state(session_id: str):
    """
    Get current session state.
    """
    record = session_store.get(session_id)
    if not record:
        raise HTTPException(status_code=404, detail="Session not found")

    return {
        "session_id": session_id,
        "payload": record.payload,
        "messages": [m.model_dump() for m in record.messages],
        "version": record.version
    }


@app.delete("/session/{session_id}")
async def delete_session(session_id: str):
    if not session_store.delete(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"session_id": session_id, "deleted": True}


@app.post("/extract_symptoms")
async def extract_symptoms(request: ExtractRequest):
    """
    Extract symptoms and slot values from free text input.
    """
    dataset = dataset_loader.load()
    text = request.text
    return {
        "symptoms": sorted(fx.extract_symptoms(text, dataset)) if dataset.loaded else [],
        "temperature_f": fx.extract_temperature_f(text),
        "duration_days": fx.extract_duration_days(text),
        "pain_severity": fx.extract_pain_severity(text),
        "pain_location": fx.extract_pain_location(text),
        "chief_complaint": fx.extract_chief_complaint(text),
        "body_system": fx.extract_body_system(text),
        "progression": fx.extract_progression(text),
        "red_flags_present": fx.extract_red_flags(text),
        "gender": fx.extract_gender(text),
        "age_group": fx.extract_age_group(text),
    }


@app.get("/health")
async def health():
    dataset = dataset_loader.load()
    return {
        "status": "ok",
        "dataset_loaded": dataset.loaded,
        "dataset_dir": dataset.source_dir,
        "diseases": len(dataset.diseases),
        "symptoms": len(dataset.symptoms),
        "session_backend": session_store.backend,
        "llm_configured": model_selector.is_configured(),
    }
