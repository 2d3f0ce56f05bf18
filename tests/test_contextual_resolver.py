import pytest

from amana.services.contextual_resolver import resolve_contextual
from amana.services.conversation_store import ConversationState
from amana.services.intent_service import Intent


@pytest.fixture
def with_artifact():
    return ConversationState(identity="id-1", last_artifact_id="INV-1", last_counterparty_name="ABC Ltd")


class TestPreviewRule:
    @pytest.mark.parametrize("text", ["show", "preview", "Preview!", "let me see", "show me", "view invoice", "see it"])
    def test_preview_utterances(self, with_artifact, text):
        resolution = resolve_contextual(text, with_artifact)
        assert resolution.intent == Intent.PREVIEW_INVOICE
        assert resolution.artifact_id == "INV-1"

    def test_preview_needs_artifact(self):
        assert resolve_contextual("preview", ConversationState(identity="id-1")) is None


class TestSendRule:
    def test_send_it_resolves_to_last_artifact(self, with_artifact):
        resolution = resolve_contextual("send it", with_artifact)
        assert resolution.intent == Intent.SEND_INVOICE
        assert resolution.entities == {"invoiceNumber": "INV-1"}

    @pytest.mark.parametrize("text", ["email", "deliver it", "send to client", "Send the invoice"])
    def test_send_variants(self, with_artifact, text):
        assert resolve_contextual(text, with_artifact).intent == Intent.SEND_INVOICE

    def test_send_it_without_artifact_falls_through(self):
        state = ConversationState(identity="id-1", last_counterparty_name="ABC Ltd")
        assert resolve_contextual("send it", state) is None


class TestAnotherRule:
    @pytest.mark.parametrize("text", ["another", "one more", "create another invoice for them", "same client", "again"])
    def test_create_similar(self, with_artifact, text):
        resolution = resolve_contextual(text, with_artifact)
        assert resolution.intent == Intent.CREATE_INVOICE
        assert resolution.counterparty_name == "ABC Ltd"
        assert resolution.entities == {"clientName": "ABC Ltd"}

    def test_another_needs_counterparty(self):
        state = ConversationState(identity="id-1", last_artifact_id="INV-1")
        assert resolve_contextual("another", state) is None


class TestNoMatch:
    def test_longer_sentences_are_left_to_classifier(self, with_artifact):
        assert resolve_contextual("send 50000 to driver John", with_artifact) is None
        assert resolve_contextual("show my routes", with_artifact) is None

    def test_no_state(self):
        assert resolve_contextual("send it", None) is None

    def test_resolver_does_not_mutate_state(self, with_artifact):
        before = ConversationState(**vars(with_artifact))
        resolve_contextual("send it", with_artifact)
        assert with_artifact == before


class TestDispatcherIntegration:
    def test_send_it_goes_to_handler_without_classifier(self, store, dispatcher, classifier, handler):
        store.create_if_absent("id-1")
        store.apply_patch("id-1", {"last_artifact_id": "INV-1"})
        outcome = dispatcher.handle("id-1", "send it")
        assert outcome.branch == "contextual"
        assert classifier.calls == []
        assert handler.calls[0][0] == Intent.SEND_INVOICE

    def test_send_it_without_artifact_reaches_classifier(self, dispatcher, classifier):
        dispatcher.handle("id-2", "send it")
        assert classifier.calls == ["send it"]

    def test_another_sets_pending_details(self, store, dispatcher, handler, sender):
        store.create_if_absent("id-1")
        store.apply_patch("id-1", {"last_counterparty_name": "ABC Ltd"})
        outcome = dispatcher.handle("id-1", "another")
        state = store.get("id-1")
        assert outcome.action == "create_similar"
        assert handler.calls == []
        assert state.pending_artifact_data == {"clientName": "ABC Ltd"}
        assert "ABC Ltd" in sender.texts_for("id-1")[-1]
