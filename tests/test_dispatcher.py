import pytest

from amana.schemas.action import ActionReply
from amana.schemas.outbound import OutboundPayload
from amana.services import replies
from amana.services.account_service import Account
from amana.services.action_handlers import ActionHandlerError, build_handler_table
from amana.services.confirmation import enter_confirmation_patch
from amana.services.conversation_store import AwaitingInput
from amana.services.dispatcher import Dispatcher
from amana.services.intent_service import Intent, IntentResult

from conftest import FakeClassifier, RecordingHandler


def make_dispatcher(store, sender, chooser, classifier=None, handler=None):
    handler = handler or RecordingHandler()
    return Dispatcher(
        store,
        classifier or FakeClassifier(),
        sender,
        build_handler_table(handler),
        chooser=chooser,
    )


class TestHelp:
    @pytest.mark.parametrize("text", ["help", "HELP", "menu", " Menu! "])
    def test_help_returns_fixed_menu(self, dispatcher, sender, classifier, text):
        outcome = dispatcher.handle("id-1", text)
        assert outcome.branch == "help"
        assert sender.texts_for("id-1") == [replies.HELP_MENU]
        assert classifier.calls == []

    def test_help_is_idempotent(self, store, dispatcher, sender):
        store.create_if_absent("id-1")
        store.apply_patch("id-1", {"last_intent": Intent.CREATE_INVOICE, **enter_confirmation_patch("INV-1", {"total": 5000})})
        before = store.get("id-1")

        dispatcher.handle("id-1", "help")
        dispatcher.handle("id-1", "help")

        after = store.get("id-1")
        assert sender.texts_for("id-1") == [replies.HELP_MENU, replies.HELP_MENU]
        assert after.last_artifact_id == before.last_artifact_id
        assert after.last_intent == before.last_intent
        assert after.current_intent == before.current_intent
        assert after.awaiting_confirmation is True
        assert after.pending_artifact_data == before.pending_artifact_data
        assert [entry.text for entry in after.history] == ["help", "Sent help menu", "help", "Sent help menu"]


class TestGreeting:
    def test_first_hi_gets_greeting(self, store, dispatcher, sender):
        outcome = dispatcher.handle("id-1", "hi")
        state = store.get("id-1")

        assert outcome.branch == "out_of_scope"
        assert outcome.action == "greeting"
        assert len(state.history) == 2
        assert state.history[0].role == "user"
        assert state.history[1].role == "assistant"
        assert state.current_intent is None
        assert sender.texts_for("id-1")[0] in replies.GREETING_REPLIES

    def test_seeded_from_account(self, store, dispatcher):
        account = Account(identity="id-1", tenant_id="t1", user_id="u1", display_name="Ada", language="pidgin")
        dispatcher.handle("id-1", "hi", account)
        state = store.get("id-1")
        assert state.tenant_id == "t1"
        assert state.user_id == "u1"
        assert state.language == "pidgin"


class TestNumberedFollowUp:
    def test_option_one_previews_last_invoice_without_classifier(self, store, sender, chooser):
        classifier = FakeClassifier(error=RuntimeError("classifier must not be called"))
        handler = RecordingHandler()
        dispatcher = make_dispatcher(store, sender, chooser, classifier, handler)
        store.create_if_absent("id-1")
        store.apply_patch("id-1", {"last_intent": Intent.CREATE_INVOICE, "last_artifact_id": "INV-1"})

        outcome = dispatcher.handle("id-1", "1")

        assert outcome.branch == "follow_up"
        assert outcome.intent == Intent.PREVIEW_INVOICE
        assert classifier.calls == []
        intent, entities, _ = handler.calls[0]
        assert intent == Intent.PREVIEW_INVOICE
        assert entities == {"invoiceNumber": "INV-1"}


class TestCompliment:
    def test_thanks_gets_compliment_reply(self, dispatcher, sender, classifier):
        outcome = dispatcher.handle("id-1", "Thank you!")
        assert outcome.branch == "compliment"
        assert outcome.action == "en"
        assert classifier.calls == []
        assert len(sender.texts_for("id-1")) == 1


class TestClassifierRouting:
    def test_confident_intent_gets_ack_then_handler(self, store, sender, chooser):
        classifier = FakeClassifier(
            IntentResult(intent=Intent.LIST_ROUTES, confidence=0.9, entities={"status": "active"})
        )
        handler = RecordingHandler()
        dispatcher = make_dispatcher(store, sender, chooser, classifier, handler)

        outcome = dispatcher.handle("id-1", "show my active routes")
        state = store.get("id-1")

        assert outcome.branch == "handler"
        assert handler.calls[0][1] == {"status": "active"}
        texts = sender.texts_for("id-1")
        assert texts[0] in replies.acknowledgement_options(Intent.LIST_ROUTES)
        assert texts[1] == "done: list_routes"
        assert state.current_intent == Intent.LIST_ROUTES
        assert state.last_intent == Intent.LIST_ROUTES
        assert [entry.role for entry in state.history] == ["user", "assistant"]

    def test_low_confidence_is_out_of_scope(self, store, sender, chooser):
        classifier = FakeClassifier(IntentResult(intent=Intent.LIST_ROUTES, confidence=0.2))
        handler = RecordingHandler()
        dispatcher = make_dispatcher(store, sender, chooser, classifier, handler)

        outcome = dispatcher.handle("id-1", "tell me about football")
        assert outcome.branch == "out_of_scope"
        assert outcome.action == "chitchat"
        assert handler.calls == []
        assert store.get("id-1").current_intent is None

    def test_out_of_scope_text_matches_reply_helper(self, store, sender):
        classifier = FakeClassifier(IntentResult(intent=Intent.UNKNOWN, confidence=0.1))
        dispatcher = make_dispatcher(store, sender, replies.ReplyChooser(seed=7), classifier)
        dispatcher.handle("id-1", "who won the match")
        expected = replies.out_of_scope_reply("who won the match", 0.1, replies.ReplyChooser(seed=7))
        assert sender.texts_for("id-1") == [expected]

    def test_classifier_exception_becomes_out_of_scope(self, store, sender, chooser):
        classifier = FakeClassifier(error=TimeoutError("model timed out"))
        dispatcher = make_dispatcher(store, sender, chooser, classifier)
        outcome = dispatcher.handle("id-1", "asdfgh")
        assert outcome.branch == "out_of_scope"
        assert len(sender.texts_for("id-1")) == 1

    def test_detected_language_is_stored(self, store, sender, chooser):
        classifier = FakeClassifier(IntentResult(intent=Intent.VIEW_BALANCE, confidence=0.8, language="ha"))
        dispatcher = make_dispatcher(store, sender, chooser, classifier)
        dispatcher.handle("id-1", "nawa ne kudina")
        assert store.get("id-1").language == "ha"

    def test_unsupported_language_is_ignored(self, store, sender, chooser):
        classifier = FakeClassifier(IntentResult(intent=Intent.VIEW_BALANCE, confidence=0.8, language="fr"))
        dispatcher = make_dispatcher(store, sender, chooser, classifier)
        dispatcher.handle("id-1", "quel est mon solde")
        assert store.get("id-1").language == "en"

    def test_classified_help_sends_menu(self, store, sender, chooser):
        classifier = FakeClassifier(IntentResult(intent=Intent.HELP, confidence=0.9))
        dispatcher = make_dispatcher(store, sender, chooser, classifier)
        outcome = dispatcher.handle("id-1", "what can you do")
        assert outcome.branch == "help"
        assert sender.texts_for("id-1") == [replies.HELP_MENU]

    def test_intent_without_handler_is_not_supported(self, store, sender, chooser):
        classifier = FakeClassifier(IntentResult(intent=Intent.TRANSFER_TO_DRIVER, confidence=0.9))
        dispatcher = make_dispatcher(store, sender, chooser, classifier)
        outcome = dispatcher.handle("id-1", "send 5000 to driver Musa")
        assert outcome.branch == "not_supported"
        assert "transfer to driver" in sender.texts_for("id-1")[-1]


class TestHandlerFailures:
    def _dispatch(self, store, sender, chooser, handler):
        classifier = FakeClassifier(IntentResult(intent=Intent.CREATE_INVOICE, confidence=0.95))
        return make_dispatcher(store, sender, chooser, classifier, handler).handle("id-1", "invoice ABC Ltd 50000")

    def test_error_reply_is_recorded(self, store, sender, chooser):
        handler = RecordingHandler(ActionReply(error="Client ABC Ltd not found"))
        outcome = self._dispatch(store, sender, chooser, handler)
        state = store.get("id-1")
        assert outcome.branch == "handler_error"
        assert state.last_error == "Client ABC Ltd not found"
        assert state.last_intent == Intent.CREATE_INVOICE
        assert "try again" in sender.texts_for("id-1")[-1]

    def test_handler_error_exception(self, store, sender, chooser):
        handler = RecordingHandler(error=ActionHandlerError("Invoice service unavailable", Intent.CREATE_INVOICE))
        self._dispatch(store, sender, chooser, handler)
        assert store.get("id-1").last_error == "Invoice service unavailable"

    def test_unexpected_exception_uses_fallback_text(self, store, sender, chooser):
        handler = RecordingHandler(error=KeyError("total"))
        outcome = self._dispatch(store, sender, chooser, handler)
        assert outcome.branch == "handler_error"
        assert store.get("id-1").last_error

    def test_failure_then_retry_then_success(self, store, sender, chooser):
        handler = RecordingHandler(ActionReply(error="timeout"))
        self._dispatch(store, sender, chooser, handler)

        dispatcher = make_dispatcher(store, sender, chooser, FakeClassifier(), handler)
        dispatcher.handle("id-1", "try again")
        assert store.get("id-1").retry_count == 1

        handler.reply = None
        dispatcher.classifier = FakeClassifier(IntentResult(intent=Intent.CREATE_INVOICE, confidence=0.95))
        dispatcher.handle("id-1", "invoice ABC Ltd 50000")
        state = store.get("id-1")
        assert state.last_error is None
        assert state.awaiting_input is None
        assert state.retry_count == 1


class TestHandlerSuccess:
    def test_reply_updates_references_and_requests_confirmation(self, store, sender, chooser):
        reply = ActionReply(
            messages=[
                OutboundPayload.text_message("Invoice INV-9 for ABC Ltd"),
                OutboundPayload(type="document", url="https://files.example.com/INV-9.pdf", filename="INV-9.pdf"),
            ],
            artifact_id="INV-9",
            counterparty_name="ABC Ltd",
            request_confirmation=True,
            pending_data={"total": 50000},
            history_text="Created invoice INV-9",
        )
        classifier = FakeClassifier(IntentResult(intent=Intent.CREATE_INVOICE, confidence=0.95))
        dispatcher = make_dispatcher(store, sender, chooser, classifier, RecordingHandler(reply))

        dispatcher.handle("id-1", "invoice ABC Ltd 50000")
        state = store.get("id-1")

        assert state.last_artifact_id == "INV-9"
        assert state.last_counterparty_name == "ABC Ltd"
        assert state.awaiting_confirmation is True
        assert state.awaiting_input == AwaitingInput.AWAITING_CONFIRMATION
        assert state.pending_artifact_data == {"total": 50000, "artifact_id": "INV-9"}
        assert state.history[-1].text == "Created invoice INV-9"
        assert [payload.type for _, payload in sender.sent][-2:] == ["text", "document"]

    def test_handler_receives_conversation_context(self, store, sender, chooser):
        handler = RecordingHandler()
        classifier = FakeClassifier(IntentResult(intent=Intent.VIEW_BALANCE, confidence=0.9))
        dispatcher = make_dispatcher(store, sender, chooser, classifier, handler)
        store.create_if_absent("id-1", {"tenant_id": "t1", "user_id": "u1"})
        store.apply_patch("id-1", {"last_counterparty_name": "ABC Ltd"})

        dispatcher.handle("id-1", "my balance")
        context = handler.calls[0][2]
        assert context.identity == "id-1"
        assert context.tenant_id == "t1"
        assert context.last_counterparty_name == "ABC Ltd"
        assert context.retry is False


class TestDeterminism:
    def test_same_seed_same_replies(self, store, sender):
        first = make_dispatcher(store, sender, replies.ReplyChooser(seed=3))
        first.handle("id-1", "hello there")

        other_sender = type(sender)()
        second = make_dispatcher(type(store)(), other_sender, replies.ReplyChooser(seed=3))
        second.handle("id-1", "hello there")

        assert sender.texts_for("id-1") == other_sender.texts_for("id-1")
