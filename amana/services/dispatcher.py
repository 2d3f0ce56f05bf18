"""Dispatcher: one inbound text, one terminal branch, one assistant history entry.

Precedence (first claimant wins):
    1. help/menu literal
    2. compliment
    3. confirmation flow, only while awaiting-confirmation
    4. contextual references (preview / send / another)
    5. follow-ups (yes/no, numbered options, retry)
    6. classifier; unknown or low confidence ends in an out-of-scope reply
    7. acknowledgement, then the business handler for the intent
"""

from dataclasses import dataclass
from typing import Any, Optional

from amana.logging_config import get_logger
from amana.schemas.outbound import OutboundPayload
from amana.services import replies
from amana.services.account_service import Account
from amana.services.action_handlers import ActionHandler, ActionHandlerError, HandlerContext
from amana.services.compliments import compliment_reply, detect_compliment
from amana.services.confirmation import (
    ConfirmationAction,
    ConfirmationDecision,
    ConfirmationState,
    classify_confirmation_reply,
    current_state,
    enter_confirmation_patch,
    exit_patch,
)
from amana.services.contextual_resolver import resolve_contextual
from amana.services.conversation_store import AwaitingInput, ConversationState, ConversationStore, HistoryEntry
from amana.services.follow_up import FollowUpKind, FollowUpResolution, resolve_follow_up
from amana.services.gateway import MessageSender
from amana.services.intent_service import SUPPORTED_LANGUAGES, Intent, IntentClassifier, IntentResult
from amana.services.matching import normalize_for_matching
from amana.services.replies import ReplyChooser

logger = get_logger("dispatcher")

HELP_COMMANDS = frozenset({"help", "menu"})
HANDLER_FAILURE_FALLBACK = "Something went wrong while processing your request"


@dataclass
class DispatchOutcome:
    branch: str  # help, compliment, confirmation, contextual, follow_up, out_of_scope, handler, handler_error, not_supported
    intent: Optional[Intent] = None
    action: Optional[str] = None


class Dispatcher:
    def __init__(
        self,
        store: ConversationStore,
        classifier: IntentClassifier,
        sender: MessageSender,
        handlers: dict[Intent, ActionHandler],
        chooser: Optional[ReplyChooser] = None,
        low_confidence_threshold: float = 0.4,
        bare_no_action: str = "edit",
    ):
        self.store = store
        self.classifier = classifier
        self.sender = sender
        self.handlers = handlers
        self.chooser = chooser or ReplyChooser()
        self.low_confidence_threshold = low_confidence_threshold
        self.bare_no_action = bare_no_action

    # --- output helpers ---

    def _send(self, identity: str, payload: OutboundPayload) -> None:
        if not self.sender.send(identity, payload):
            logger.warning("Outbound send not delivered", extra={"context": {"identity": identity, "type": payload.type}})

    def _say(self, identity: str, text: str) -> None:
        self._send(identity, OutboundPayload.text_message(text))

    def _remember(self, identity: str, text: str, intent: Optional[Intent] = None) -> None:
        self.store.append_history(identity, HistoryEntry(role="assistant", text=text, intent=intent))

    def _reply(self, identity: str, text: str, intent: Optional[Intent] = None, history_text: Optional[str] = None):
        self._say(identity, text)
        self._remember(identity, history_text or text, intent)

    # --- entry point ---

    def handle(self, identity: str, text: str, account: Optional[Account] = None) -> DispatchOutcome:
        seed = {}
        if account:
            seed = {"tenant_id": account.tenant_id, "user_id": account.user_id, "language": account.language}
        state = self.store.create_if_absent(identity, seed)
        self.store.append_history(identity, HistoryEntry(role="user", text=text))

        normalized = normalize_for_matching(text)

        if normalized in HELP_COMMANDS:
            self._reply(identity, replies.HELP_MENU, Intent.HELP, history_text=replies.HELP_HISTORY_TEXT)
            return DispatchOutcome(branch="help", intent=Intent.HELP)

        compliment = detect_compliment(text)
        if compliment:
            self._reply(identity, compliment_reply(compliment, self.chooser))
            return DispatchOutcome(branch="compliment", action=compliment.locale)

        if current_state(state) == ConfirmationState.AWAITING_CONFIRMATION:
            decision = classify_confirmation_reply(text, self.bare_no_action)
            if decision:
                return self._handle_confirmation(state, decision)

        contextual = resolve_contextual(text, state)
        if contextual:
            logger.info(
                "Contextual command detected",
                extra={"context": {"identity": identity, "intent": contextual.intent.value}},
            )
            if contextual.intent == Intent.CREATE_INVOICE and contextual.counterparty_name:
                return self._start_similar_invoice(state, contextual.counterparty_name)
            outcome = self._run_handler(state, contextual.intent, contextual.entities)
            outcome.branch = "contextual" if outcome.branch == "handler" else outcome.branch
            return outcome

        follow_up = resolve_follow_up(text, state)
        if follow_up:
            logger.info("Follow-up handled", extra={"context": {"identity": identity, "kind": follow_up.kind.value}})
            return self._handle_follow_up(state, follow_up)

        return self._classify_and_dispatch(state, text)

    # --- branches ---

    def _handle_confirmation(self, state: ConversationState, decision: ConfirmationDecision) -> DispatchOutcome:
        identity = state.identity
        artifact_id = state.pending_artifact_data.get("artifact_id") or state.last_artifact_id
        counterparty = state.last_counterparty_name
        action = decision.action
        outcome = DispatchOutcome(branch="confirmation", intent=state.current_intent, action=action.value)

        if action == ConfirmationAction.CONFIRM:
            self.store.apply_patch(identity, exit_patch(action))
            self._reply(identity, replies.confirmed_reply(artifact_id, counterparty))
            return outcome

        if action == ConfirmationAction.SEND:
            self.store.apply_patch(identity, exit_patch(action))
            self._say(identity, replies.sending_reply(artifact_id, counterparty))
            sent = self._run_handler(state, Intent.SEND_INVOICE, {"invoiceNumber": artifact_id})
            outcome.intent = sent.intent
            if sent.branch != "handler":
                outcome.branch = sent.branch
            return outcome

        if action == ConfirmationAction.CANCEL:
            self.store.apply_patch(identity, exit_patch(action))
            self._reply(identity, replies.cancelled_reply(artifact_id))
            return outcome

        # Edit keeps the conversation awaiting confirmation.
        if decision.edit_instructions and Intent.EDIT_INVOICE in self.handlers:
            edited = self._run_handler(
                state,
                Intent.EDIT_INVOICE,
                {"invoiceNumber": artifact_id, "instructions": decision.edit_instructions},
            )
            outcome.intent = edited.intent
            if edited.branch != "handler":
                outcome.branch = edited.branch
            return outcome
        self._reply(identity, replies.edit_prompt(artifact_id))
        return outcome

    def _start_similar_invoice(self, state: ConversationState, counterparty_name: str) -> DispatchOutcome:
        patch: dict[str, Any] = {"current_intent": Intent.CREATE_INVOICE}
        if not state.awaiting_confirmation:
            patch["awaiting_input"] = AwaitingInput.PENDING_ARTIFACT_DETAILS
            patch["pending_artifact_data"] = {"clientName": counterparty_name}
        self.store.apply_patch(state.identity, patch)
        self._reply(state.identity, replies.another_invoice_prompt(counterparty_name))
        return DispatchOutcome(branch="contextual", intent=Intent.CREATE_INVOICE, action="create_similar")

    def _handle_follow_up(self, state: ConversationState, follow_up: FollowUpResolution) -> DispatchOutcome:
        identity = state.identity

        if follow_up.kind == FollowUpKind.CANCEL:
            self.store.apply_patch(
                identity, {"awaiting_confirmation": False, "awaiting_input": None, "pending_artifact_data": {}}
            )
            self._reply(identity, replies.FOLLOW_UP_CANCELLED)
            return DispatchOutcome(branch="follow_up", action="cancel")

        if follow_up.kind == FollowUpKind.RETRY:
            self._reply(identity, self.chooser.choose(replies.retry_replies(state.last_error)))
            self.store.apply_patch(
                identity,
                {"last_error": None, "awaiting_input": AwaitingInput.RETRY, "retry_count": state.retry_count + 1},
            )
            return DispatchOutcome(branch="follow_up", intent=follow_up.intent, action="retry")

        if follow_up.kind == FollowUpKind.CONFIRM:
            self.store.apply_patch(identity, {"awaiting_confirmation": False, "awaiting_input": None})
            if follow_up.intent is None:
                artifact_id = state.pending_artifact_data.get("artifact_id") or state.last_artifact_id
                self._reply(identity, replies.confirmed_reply(artifact_id, state.last_counterparty_name))
                return DispatchOutcome(branch="follow_up", action="confirm")
            outcome = self._run_handler(state, follow_up.intent, follow_up.entities)
            return DispatchOutcome(branch="follow_up", intent=outcome.intent, action="confirm")

        outcome = self._run_handler(state, follow_up.intent, follow_up.entities)
        return DispatchOutcome(branch="follow_up", intent=outcome.intent, action=follow_up.option)

    def _classify(self, text: str) -> IntentResult:
        try:
            return self.classifier.classify(text)
        except Exception as exc:
            logger.error("Intent classifier failed", extra={"context": {"error": str(exc)}}, exc_info=True)
            return IntentResult.unknown(text, confidence=0.0)

    def _classify_and_dispatch(self, state: ConversationState, text: str) -> DispatchOutcome:
        identity = state.identity
        result = self._classify(text)
        logger.info(
            "Intent recognized",
            extra={"context": {"identity": identity, "intent": result.intent.value, "confidence": result.confidence}},
        )

        if result.language in SUPPORTED_LANGUAGES and result.language != state.language:
            self.store.apply_patch(identity, {"language": result.language})
            state.language = result.language

        if result.intent == Intent.UNKNOWN or result.confidence < self.low_confidence_threshold:
            family = replies.out_of_scope_family(text, result.confidence)
            self._reply(identity, replies.out_of_scope_reply(text, result.confidence, self.chooser))
            return DispatchOutcome(branch="out_of_scope", action=family)

        self.store.apply_patch(identity, {"current_intent": result.intent, "last_intent": result.intent})
        state.current_intent = result.intent
        state.last_intent = result.intent

        if result.intent == Intent.HELP:
            self._reply(identity, replies.HELP_MENU, Intent.HELP, history_text=replies.HELP_HISTORY_TEXT)
            return DispatchOutcome(branch="help", intent=Intent.HELP)

        self._say(identity, self.chooser.choose(replies.acknowledgement_options(result.intent)))
        return self._run_handler(state, result.intent, result.entities)

    def _run_handler(self, state: ConversationState, intent: Intent, entities: dict[str, Any]) -> DispatchOutcome:
        identity = state.identity
        handler = self.handlers.get(intent)
        if handler is None:
            self._reply(identity, replies.not_supported_reply(intent), intent)
            return DispatchOutcome(branch="not_supported", intent=intent)

        is_retry = state.awaiting_input == AwaitingInput.RETRY
        context = HandlerContext(
            identity=identity,
            tenant_id=state.tenant_id,
            user_id=state.user_id,
            language=state.language,
            last_artifact_id=state.last_artifact_id,
            last_counterparty_name=state.last_counterparty_name,
            pending_artifact_data=dict(state.pending_artifact_data),
            retry=is_retry,
        )

        error = None
        try:
            reply = handler.handle(intent, entities, context)
            error = reply.error
        except ActionHandlerError as exc:
            error = exc.message
        except Exception as exc:
            logger.error(
                "Action handler raised",
                extra={"context": {"identity": identity, "intent": intent.value, "error": str(exc)}},
                exc_info=True,
            )
            error = HANDLER_FAILURE_FALLBACK

        if error:
            self.store.apply_patch(identity, {"last_error": error, "last_intent": intent})
            self._reply(identity, replies.handler_failure_reply(error), intent)
            return DispatchOutcome(branch="handler_error", intent=intent)

        for message in reply.messages:
            self._send(identity, message)

        patch: dict[str, Any] = {"last_error": None}
        if not is_retry:
            patch["retry_count"] = 0
        if reply.artifact_id:
            patch["last_artifact_id"] = reply.artifact_id
        if reply.counterparty_name:
            patch["last_counterparty_name"] = reply.counterparty_name
        if state.awaiting_input in (AwaitingInput.RETRY, AwaitingInput.PENDING_ARTIFACT_DETAILS):
            patch["awaiting_input"] = None
            if not state.awaiting_confirmation:
                patch["pending_artifact_data"] = {}
        if reply.request_confirmation and reply.artifact_id:
            patch.update(enter_confirmation_patch(reply.artifact_id, reply.pending_data))
            patch["current_intent"] = intent
        self.store.apply_patch(identity, patch)

        self._remember(identity, reply.summary() or intent.value, intent)
        return DispatchOutcome(branch="handler", intent=intent)
