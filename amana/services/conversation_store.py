"""Conversation Store: one ConversationState record per WhatsApp identity."""

import copy
import json
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Iterator, Optional

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from amana.logging_config import get_logger
from amana.models import ProcessedMessage, WhatsAppConversation
from amana.services.intent_service import Intent, parse_intent

logger = get_logger("conversation_store")

DEFAULT_HISTORY_LIMIT = 20
HISTORY_TEXT_MAX_CHARS = 500


class AwaitingInput(str, Enum):
    NONE = "none"
    PENDING_ARTIFACT_DETAILS = "pending-artifact-details"
    AWAITING_CONFIRMATION = "awaiting-confirmation"
    RETRY = "retry"
    MEDIA_UPLOAD = "media-upload"


class ConversationStoreError(Exception):
    """Store unavailable or rejected the operation. Treated as transient by callers."""


class ConversationNotFoundError(ConversationStoreError):
    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"No conversation for identity {identity}")


@dataclass
class HistoryEntry:
    role: str  # user, assistant
    text: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    intent: Optional[Intent] = None

    def __post_init__(self):
        if self.role not in ("user", "assistant"):
            raise ValueError(f"Invalid history role: {self.role}")
        self.text = (self.text or "")[:HISTORY_TEXT_MAX_CHARS]

    def to_dict(self) -> dict:
        data = {"role": self.role, "text": self.text, "timestamp": self.timestamp.isoformat()}
        if self.intent is not None:
            data["intent"] = self.intent.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryEntry":
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            role=data.get("role", "user"),
            text=data.get("text", ""),
            timestamp=timestamp or datetime.now(timezone.utc),
            intent=parse_intent(data.get("intent")),
        )


@dataclass
class ConversationState:
    identity: str
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    current_intent: Optional[Intent] = None
    last_intent: Optional[Intent] = None
    awaiting_confirmation: bool = False
    awaiting_input: Optional[AwaitingInput] = None
    pending_artifact_data: dict[str, Any] = field(default_factory=dict)
    last_error: Optional[str] = None
    retry_count: int = 0
    last_artifact_id: Optional[str] = None
    last_counterparty_name: Optional[str] = None
    history: list[HistoryEntry] = field(default_factory=list)
    language: str = "en"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


PATCHABLE_FIELDS = frozenset(
    f.name for f in fields(ConversationState) if f.name not in {"identity", "history", "created_at", "updated_at"}
)
SEED_FIELDS = frozenset({"tenant_id", "user_id", "language"})

# Cleared by reset; the record itself and its history are kept for audit.
TRANSIENT_DEFAULTS: dict[str, Any] = {
    "current_intent": None,
    "awaiting_confirmation": False,
    "awaiting_input": None,
    "pending_artifact_data": {},
    "last_error": None,
    "retry_count": 0,
}


def _validate_patch(fields_: dict[str, Any]) -> None:
    unknown = set(fields_) - PATCHABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown conversation fields: {sorted(unknown)}")
    if "retry_count" in fields_ and int(fields_["retry_count"]) < 0:
        raise ValueError("retry_count must be >= 0")


def _to_column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


class ConversationStore(ABC):
    """Keyed by identity; no operation spans two identities."""

    history_limit: int = DEFAULT_HISTORY_LIMIT

    @abstractmethod
    def get(self, identity: str) -> Optional[ConversationState]:
        pass

    @abstractmethod
    def create_if_absent(self, identity: str, seed: Optional[dict[str, Any]] = None) -> ConversationState:
        pass

    @abstractmethod
    def apply_patch(self, identity: str, fields_: dict[str, Any]) -> None:
        """Field-level last-write-wins update."""

    @abstractmethod
    def append_history(self, identity: str, entry: HistoryEntry) -> None:
        """Atomic append; trims from the front to history_limit."""

    @abstractmethod
    def claim_message(self, message_id: str, identity: str) -> bool:
        """Record an inbound message id. False if it was already seen."""

    @abstractmethod
    def release_message(self, message_id: str) -> None:
        """Forget a claimed message id so a redelivery is processed again."""

    def reset(self, identity: str) -> None:
        self.apply_patch(identity, dict(TRANSIENT_DEFAULTS))


class InMemoryConversationStore(ConversationStore):
    def __init__(self, history_limit: int = DEFAULT_HISTORY_LIMIT):
        self.history_limit = history_limit
        self._records: dict[str, ConversationState] = {}
        self._processed: set[str] = set()
        self._lock = threading.Lock()

    def _touch(self, state: ConversationState) -> None:
        now = datetime.now(timezone.utc)
        if state.updated_at and now <= state.updated_at:
            now = state.updated_at + timedelta(microseconds=1)
        state.updated_at = now

    def _require(self, identity: str) -> ConversationState:
        state = self._records.get(identity)
        if state is None:
            raise ConversationNotFoundError(identity)
        return state

    def get(self, identity: str) -> Optional[ConversationState]:
        with self._lock:
            state = self._records.get(identity)
            return copy.deepcopy(state) if state else None

    def create_if_absent(self, identity: str, seed: Optional[dict[str, Any]] = None) -> ConversationState:
        with self._lock:
            state = self._records.get(identity)
            if state is None:
                seed = {key: value for key, value in (seed or {}).items() if key in SEED_FIELDS and value}
                now = datetime.now(timezone.utc)
                state = ConversationState(identity=identity, created_at=now, updated_at=now, **seed)
                self._records[identity] = state
                logger.info("Conversation created", extra={"context": {"identity": identity}})
            return copy.deepcopy(state)

    def apply_patch(self, identity: str, fields_: dict[str, Any]) -> None:
        _validate_patch(fields_)
        with self._lock:
            state = self._require(identity)
            for name, value in fields_.items():
                setattr(state, name, copy.deepcopy(value))
            self._touch(state)

    def append_history(self, identity: str, entry: HistoryEntry) -> None:
        with self._lock:
            state = self._require(identity)
            state.history.append(copy.deepcopy(entry))
            if len(state.history) > self.history_limit:
                del state.history[: len(state.history) - self.history_limit]
            self._touch(state)

    def claim_message(self, message_id: str, identity: str) -> bool:
        with self._lock:
            if message_id in self._processed:
                return False
            self._processed.add(message_id)
            return True

    def release_message(self, message_id: str) -> None:
        with self._lock:
            self._processed.discard(message_id)


APPEND_HISTORY_SQL = text(
    """
    UPDATE whatsapp_conversations
    SET history = (
        SELECT COALESCE(jsonb_agg(item.value ORDER BY item.ordinality), '[]'::jsonb)
        FROM (
            SELECT value, ordinality
            FROM jsonb_array_elements(
                whatsapp_conversations.history || jsonb_build_array(CAST(:entry AS jsonb))
            ) WITH ORDINALITY
            ORDER BY ordinality DESC
            LIMIT :limit
        ) AS item
    ),
    updated_at = GREATEST(updated_at, :now)
    WHERE identity = :identity
    """
)


class SqlConversationStore(ConversationStore):
    """PostgreSQL store. Every mutation is a single statement so concurrent deliveries never lose appends."""

    def __init__(self, session_factory: Callable[[], Session], history_limit: int = DEFAULT_HISTORY_LIMIT):
        self.session_factory = session_factory
        self.history_limit = history_limit

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Conversation store failure", extra={"context": {"error": str(exc)}})
            raise ConversationStoreError(str(exc)) from exc
        finally:
            db.close()

    @staticmethod
    def _to_state(row: WhatsAppConversation) -> ConversationState:
        awaiting_input = None
        if row.awaiting_input and row.awaiting_input != AwaitingInput.NONE.value:
            awaiting_input = AwaitingInput(row.awaiting_input)
        return ConversationState(
            identity=row.identity,
            tenant_id=row.tenant_id,
            user_id=row.user_id,
            current_intent=parse_intent(row.current_intent),
            last_intent=parse_intent(row.last_intent),
            awaiting_confirmation=bool(row.awaiting_confirmation),
            awaiting_input=awaiting_input,
            pending_artifact_data=dict(row.pending_artifact_data or {}),
            last_error=row.last_error,
            retry_count=row.retry_count or 0,
            last_artifact_id=row.last_artifact_id,
            last_counterparty_name=row.last_counterparty_name,
            history=[HistoryEntry.from_dict(item) for item in (row.history or [])],
            language=row.language or "en",
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def get(self, identity: str) -> Optional[ConversationState]:
        with self._session() as db:
            row = db.get(WhatsAppConversation, identity)
            return self._to_state(row) if row else None

    def create_if_absent(self, identity: str, seed: Optional[dict[str, Any]] = None) -> ConversationState:
        seed = {key: value for key, value in (seed or {}).items() if key in SEED_FIELDS and value}
        now = datetime.now(timezone.utc)
        with self._session() as db:
            stmt = (
                insert(WhatsAppConversation)
                .values(
                    identity=identity,
                    awaiting_confirmation=False,
                    pending_artifact_data={},
                    retry_count=0,
                    history=[],
                    language=seed.pop("language", "en"),
                    created_at=now,
                    updated_at=now,
                    **seed,
                )
                .on_conflict_do_nothing(index_elements=["identity"])
            )
            result = db.execute(stmt)
            if result.rowcount:
                logger.info("Conversation created", extra={"context": {"identity": identity}})
            row = db.execute(select(WhatsAppConversation).where(WhatsAppConversation.identity == identity)).scalar_one()
            return self._to_state(row)

    def apply_patch(self, identity: str, fields_: dict[str, Any]) -> None:
        _validate_patch(fields_)
        values = {name: _to_column_value(value) for name, value in fields_.items()}
        now = datetime.now(timezone.utc)
        with self._session() as db:
            result = db.execute(
                update(WhatsAppConversation)
                .where(WhatsAppConversation.identity == identity)
                .values(**values, updated_at=func.greatest(WhatsAppConversation.updated_at, now))
            )
            if result.rowcount == 0:
                raise ConversationNotFoundError(identity)

    def append_history(self, identity: str, entry: HistoryEntry) -> None:
        with self._session() as db:
            result = db.execute(
                APPEND_HISTORY_SQL,
                {
                    "entry": json.dumps(entry.to_dict(), ensure_ascii=False),
                    "limit": self.history_limit,
                    "now": datetime.now(timezone.utc),
                    "identity": identity,
                },
            )
            if result.rowcount == 0:
                raise ConversationNotFoundError(identity)

    def claim_message(self, message_id: str, identity: str) -> bool:
        with self._session() as db:
            result = db.execute(
                insert(ProcessedMessage)
                .values(message_id=message_id, identity=identity, received_at=datetime.now(timezone.utc))
                .on_conflict_do_nothing(index_elements=["message_id"])
            )
            claimed = result.rowcount == 1
        if not claimed:
            logger.info("Duplicate inbound message", extra={"context": {"message_id": message_id, "identity": identity}})
        return claimed

    def release_message(self, message_id: str) -> None:
        with self._session() as db:
            db.execute(delete(ProcessedMessage).where(ProcessedMessage.message_id == message_id))
        logger.info("Released message claim", extra={"context": {"message_id": message_id}})
