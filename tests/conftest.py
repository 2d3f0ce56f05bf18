import os

os.environ.setdefault("CONVERSATION_STORE", "memory")
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")
os.environ.pop("WHATSAPP_TOKEN", None)
os.environ.pop("OPENAI_API_KEY", None)

import pytest

from amana.schemas.action import ActionReply
from amana.schemas.outbound import OutboundPayload
from amana.services.action_handlers import ActionHandler, build_handler_table
from amana.services.conversation_store import InMemoryConversationStore
from amana.services.dispatcher import Dispatcher
from amana.services.gateway import DryRunSender
from amana.services.intent_service import IntentClassifier, IntentResult
from amana.services.replies import ReplyChooser


class FakeClassifier(IntentClassifier):
    """Returns a fixed result, or raises the configured error."""

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def classify(self, text):
        self.calls.append(text)
        if self.error:
            raise self.error
        return self.result or IntentResult.unknown(text)


class RecordingHandler(ActionHandler):
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def handle(self, intent, entities, context):
        self.calls.append((intent, entities, context))
        if self.error:
            raise self.error
        if self.reply is not None:
            return self.reply
        return ActionReply(messages=[OutboundPayload.text_message(f"done: {intent.value}")])


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def sender():
    return DryRunSender()


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def chooser():
    return ReplyChooser(seed=7)


@pytest.fixture
def dispatcher(store, classifier, sender, handler, chooser):
    return Dispatcher(store, classifier, sender, build_handler_table(handler), chooser=chooser)
