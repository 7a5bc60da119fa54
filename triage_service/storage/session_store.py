"""
Session Store
=============

One record per chat session, upserted by session id:

    SessionRecord{session_id, payload, messages, version}

`payload` is the latest tagged session payload (follow-up state or final
diagnosis). Records written before payloads were stored separately are
migrated on read by scanning their assistant messages newest-first.

Backends: Redis (JSON string with TTL) in production, a process-local
dict for development and tests. Concurrent writes to the same session
are last-write-wins; `version` only counts saves.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union

import redis
from pydantic import BaseModel, Field, ValidationError

from triage_service import config
from triage_service.engines.session_state import (
    FinalDiagnosisRecord,
    FollowupState,
    dump_payload,
    parse_payload,
    reconstruct_from_messages,
)

logger = logging.getLogger(__name__)


class ChatMessage(BaseModel):
    role: str
    content: str
    payload: Optional[Dict[str, Any]] = None


class SessionRecord(BaseModel):
    session_id: str
    payload: Optional[Dict[str, Any]] = None
    messages: List[ChatMessage] = Field(default_factory=list)
    version: int = 0

    def state(self) -> Optional[Union[FollowupState, FinalDiagnosisRecord]]:
        """Typed payload; None when missing or unparseable."""
        return parse_payload(self.payload)

    def set_state(self, payload: Optional[Union[FollowupState, FinalDiagnosisRecord]]):
        self.payload = dump_payload(payload) if payload is not None else None

    def user_history(self, limit: int = config.HISTORY_LIMIT) -> List[str]:
        """Most recent user messages, oldest first."""
        return [m.content for m in self.messages if m.role == "user"][-limit:]

    def append(self, role: str, content: str, payload: Optional[Dict[str, Any]] = None):
        self.messages.append(ChatMessage(role=role, content=content, payload=payload))


def migrate_legacy_record(record: SessionRecord) -> SessionRecord:
    """Fill a missing payload from tagged assistant messages."""
    if record.payload is None and record.messages:
        legacy = reconstruct_from_messages([m.model_dump() for m in record.messages])
        if legacy is not None:
            logger.info(f"Migrated legacy payload for session {record.session_id}")
            record.set_state(legacy)
    return record


class SessionStore(ABC):
    """Keyed session persistence."""

    backend = "base"

    @abstractmethod
    def _read(self, session_id: str) -> Optional[str]:
        pass

    @abstractmethod
    def _write(self, session_id: str, data: str):
        pass

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        pass

    def get(self, session_id: str) -> Optional[SessionRecord]:
        data = self._read(session_id)
        if not data:
            return None
        try:
            record = SessionRecord.model_validate_json(data)
        except ValidationError as e:
            logger.warning(f"Ignoring corrupt session record {session_id}: {e}")
            return None
        return migrate_legacy_record(record)

    def get_or_create(self, session_id: str) -> SessionRecord:
        return self.get(session_id) or SessionRecord(session_id=session_id)

    def save(self, record: SessionRecord) -> SessionRecord:
        record.version += 1
        self._write(record.session_id, record.model_dump_json())
        return record


class InMemorySessionStore(SessionStore):
    """Process-local store; records are kept serialized like in Redis."""

    backend = "memory"

    def __init__(self):
        self._sessions: Dict[str, str] = {}

    def _read(self, session_id: str) -> Optional[str]:
        return self._sessions.get(session_id)

    def _write(self, session_id: str, data: str):
        self._sessions[session_id] = data

    def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None


class RedisSessionStore(SessionStore):
    """Redis store: JSON string under triage:session:<id> with a TTL."""

    backend = "redis"

    def __init__(self, client: redis.Redis, ttl_seconds: int = config.SESSION_TTL_SECONDS):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(session_id: str) -> str:
        return f"{config.SESSION_KEY_PREFIX}{session_id}"

    def _read(self, session_id: str) -> Optional[str]:
        return self.client.get(self._key(session_id))

    def _write(self, session_id: str, data: str):
        self.client.set(self._key(session_id), data, ex=self.ttl_seconds)

    def delete(self, session_id: str) -> bool:
        return self.client.delete(self._key(session_id)) > 0


def create_session_store() -> SessionStore:
    """Redis when enabled and reachable, otherwise in-memory."""
    if config.USE_REDIS:
        try:
            client = redis.Redis(
                host=config.REDIS_HOST,
                port=config.REDIS_PORT,
                db=config.REDIS_DB,
                decode_responses=True,
                socket_connect_timeout=2,
            )
            client.ping()
            logger.info(f"Session store: Redis at {config.REDIS_HOST}:{config.REDIS_PORT}")
            return RedisSessionStore(client)
        except redis.exceptions.RedisError as e:
            logger.warning(f"Redis unavailable ({e}); using in-memory session store")
    else:
        logger.info("Session store: in-memory (USE_REDIS=false)")
    return InMemorySessionStore()
