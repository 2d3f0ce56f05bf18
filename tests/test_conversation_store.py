import threading
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from amana.services.conversation_store import (
    APPEND_HISTORY_SQL,
    AwaitingInput,
    ConversationNotFoundError,
    ConversationStoreError,
    HistoryEntry,
    InMemoryConversationStore,
    SqlConversationStore,
)
from amana.services.intent_service import Intent


class TestCreateIfAbsent:
    def test_creates_record_lazily(self, store):
        assert store.get("2348000000001") is None
        state = store.create_if_absent("2348000000001", {"tenant_id": "t1", "user_id": "u1"})
        assert state.identity == "2348000000001"
        assert state.tenant_id == "t1"
        assert state.history == []
        assert state.retry_count == 0
        assert state.awaiting_confirmation is False

    def test_second_call_keeps_existing_record(self, store):
        store.create_if_absent("2348000000001", {"tenant_id": "t1"})
        store.apply_patch("2348000000001", {"last_artifact_id": "INV-1"})
        state = store.create_if_absent("2348000000001", {"tenant_id": "other"})
        assert state.tenant_id == "t1"
        assert state.last_artifact_id == "INV-1"

    def test_unknown_seed_keys_are_ignored(self, store):
        state = store.create_if_absent("2348000000001", {"history": ["x"], "language": "ha"})
        assert state.history == []
        assert state.language == "ha"


class TestHistory:
    def test_history_never_exceeds_limit(self, store):
        store.create_if_absent("id-1")
        for i in range(45):
            store.append_history("id-1", HistoryEntry(role="user", text=f"message {i}"))
        history = store.get("id-1").history
        assert len(history) == 20
        assert history[0].text == "message 25"
        assert history[-1].text == "message 44"

    def test_custom_limit(self):
        small = InMemoryConversationStore(history_limit=3)
        small.create_if_absent("id-1")
        for i in range(5):
            small.append_history("id-1", HistoryEntry(role="assistant", text=str(i)))
        assert [entry.text for entry in small.get("id-1").history] == ["2", "3", "4"]

    def test_entry_text_truncated(self):
        entry = HistoryEntry(role="user", text="x" * 800)
        assert len(entry.text) == 500

    def test_invalid_role_rejected(self):
        with pytest.raises(ValueError):
            HistoryEntry(role="system", text="hi")

    def test_concurrent_appends_are_not_lost(self, store):
        store.create_if_absent("id-1")

        def append_many(prefix):
            for i in range(5):
                store.append_history("id-1", HistoryEntry(role="user", text=f"{prefix}-{i}"))

        threads = [threading.Thread(target=append_many, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(store.get("id-1").history) == 20

    def test_append_to_missing_identity_raises(self, store):
        with pytest.raises(ConversationNotFoundError):
            store.append_history("missing", HistoryEntry(role="user", text="hi"))

    def test_round_trip_dict(self):
        entry = HistoryEntry(role="assistant", text="Sent help menu", intent=Intent.HELP)
        restored = HistoryEntry.from_dict(entry.to_dict())
        assert restored.intent == Intent.HELP
        assert restored.text == "Sent help menu"


class TestApplyPatch:
    def test_patch_updates_fields_and_timestamp(self, store):
        created = store.create_if_absent("id-1")
        store.apply_patch("id-1", {"current_intent": Intent.CREATE_INVOICE, "retry_count": 2})
        state = store.get("id-1")
        assert state.current_intent == Intent.CREATE_INVOICE
        assert state.retry_count == 2
        assert state.updated_at > created.updated_at

    def test_unknown_field_rejected(self, store):
        store.create_if_absent("id-1")
        with pytest.raises(ValueError):
            store.apply_patch("id-1", {"history": []})

    def test_negative_retry_count_rejected(self, store):
        store.create_if_absent("id-1")
        with pytest.raises(ValueError):
            store.apply_patch("id-1", {"retry_count": -1})

    def test_get_returns_a_copy(self, store):
        store.create_if_absent("id-1")
        snapshot = store.get("id-1")
        snapshot.pending_artifact_data["artifact_id"] = "INV-9"
        assert store.get("id-1").pending_artifact_data == {}


class TestReset:
    def test_reset_clears_transient_fields_and_keeps_history(self, store):
        store.create_if_absent("id-1")
        store.append_history("id-1", HistoryEntry(role="user", text="hello"))
        store.apply_patch(
            "id-1",
            {
                "awaiting_confirmation": True,
                "awaiting_input": AwaitingInput.AWAITING_CONFIRMATION,
                "pending_artifact_data": {"artifact_id": "INV-1"},
                "last_error": "boom",
                "retry_count": 3,
                "last_artifact_id": "INV-1",
            },
        )
        store.reset("id-1")
        state = store.get("id-1")
        assert state.awaiting_confirmation is False
        assert state.awaiting_input is None
        assert state.pending_artifact_data == {}
        assert state.last_error is None
        assert state.retry_count == 0
        assert state.last_artifact_id == "INV-1"
        assert len(state.history) == 1


class TestClaimMessage:
    def test_duplicate_message_id_rejected(self, store):
        assert store.claim_message("wamid.1", "id-1") is True
        assert store.claim_message("wamid.1", "id-1") is False
        assert store.claim_message("wamid.2", "id-1") is True

    def test_released_message_can_be_claimed_again(self, store):
        store.claim_message("wamid.1", "id-1")
        store.release_message("wamid.1")
        assert store.claim_message("wamid.1", "id-1") is True


class TestSqlConversationStore:
    def _store(self, session):
        return SqlConversationStore(lambda: session)

    def test_append_history_uses_single_statement(self):
        session = MagicMock()
        session.execute.return_value.rowcount = 1
        self._store(session).append_history("id-1", HistoryEntry(role="user", text="hi"))

        statement, params = session.execute.call_args[0]
        assert statement is APPEND_HISTORY_SQL
        assert params["identity"] == "id-1"
        assert params["limit"] == 20
        assert '"text": "hi"' in params["entry"]
        session.commit.assert_called_once()
        session.close.assert_called_once()

    def test_missing_row_raises_not_found(self):
        session = MagicMock()
        session.execute.return_value.rowcount = 0
        with pytest.raises(ConversationNotFoundError):
            self._store(session).apply_patch("id-1", {"last_error": None})

    def test_database_error_becomes_store_error(self):
        session = MagicMock()
        session.execute.side_effect = OperationalError("UPDATE", {}, Exception("connection refused"))
        with pytest.raises(ConversationStoreError):
            self._store(session).append_history("id-1", HistoryEntry(role="user", text="hi"))
        session.rollback.assert_called_once()
        session.close.assert_called_once()

    def test_claim_message_reports_duplicates(self):
        session = MagicMock()
        session.execute.return_value.rowcount = 0
        assert self._store(session).claim_message("wamid.1", "id-1") is False

    def test_release_message_deletes_claim(self):
        session = MagicMock()
        self._store(session).release_message("wamid.1")
        statement = session.execute.call_args[0][0]
        assert statement.table.name == "processed_messages"
        session.commit.assert_called_once()

    def test_patch_rejects_unknown_field_before_touching_db(self):
        session = MagicMock()
        with pytest.raises(ValueError):
            self._store(session).apply_patch("id-1", {"identity": "other"})
        session.execute.assert_not_called()
