"""One webhook message as one unit of work: dedup, account, normalization, dispatch."""

from typing import Optional

from amana.logging_config import LoggerAdapter, get_logger
from amana.schemas.outbound import OutboundPayload
from amana.schemas.webhook import WhatsAppInboundMessage
from amana.services import replies
from amana.services.account_service import NOT_REGISTERED, AccountService
from amana.services.conversation_store import ConversationStore, ConversationStoreError
from amana.services.dispatcher import HELP_COMMANDS, Dispatcher
from amana.services.gateway import UNSUPPORTED, VOICE, MessageSender, VoicePipeline, normalize_inbound
from amana.services.matching import normalize_for_matching
from amana.services.transcription import UNKNOWN

logger = get_logger("message_processor")


class MessageProcessor:
    def __init__(
        self,
        store: ConversationStore,
        sender: MessageSender,
        dispatcher: Dispatcher,
        accounts: AccountService,
        voice: Optional[VoicePipeline] = None,
    ):
        self.store = store
        self.sender = sender
        self.dispatcher = dispatcher
        self.accounts = accounts
        self.voice = voice

    def _say(self, identity: str, text: str) -> None:
        self.sender.send(identity, OutboundPayload.text_message(text))

    def process(self, message: WhatsAppInboundMessage) -> None:
        """Never raises: failures are logged and answered with a generic apology."""
        log = LoggerAdapter(logger, {"identity": message.from_, "message_id": message.id})
        claimed = False
        try:
            if not self.store.claim_message(message.id, message.from_):
                log.info("Duplicate delivery skipped")
                return
            claimed = True
            self._process(message, log)
        except ConversationStoreError as exc:
            log.error(f"Conversation store error: {exc}", exc_info=True)
            # Store errors are transient; let the redelivery through.
            if claimed:
                self._release_claim(message.id, log)
            self._apologize(message.from_, log)
        except Exception as exc:
            log.error(f"Error processing message: {exc}", exc_info=True)
            self._apologize(message.from_, log)

    def _release_claim(self, message_id: str, log: LoggerAdapter) -> None:
        try:
            self.store.release_message(message_id)
        except ConversationStoreError as exc:
            log.error(f"Failed to release message claim: {exc}")

    def _apologize(self, identity: str, log: LoggerAdapter) -> None:
        try:
            self._say(identity, replies.GENERIC_APOLOGY)
        except Exception as send_exc:
            log.error(f"Failed to send apology: {send_exc}")

    def _process(self, message: WhatsAppInboundMessage, log: LoggerAdapter) -> None:
        identity = message.from_
        if not self.sender.mark_as_read(message.id):
            log.warning("mark_as_read failed")

        inbound = normalize_inbound(message)
        log.info("Inbound message", context={"type": message.type, "kind": inbound.kind})

        account_result = self.accounts.lookup(identity)
        if not account_result.ok:
            if account_result.error_code != NOT_REGISTERED:
                log.error("Account lookup failed", context=account_result.log_context())
                self._say(identity, replies.GENERIC_APOLOGY)
                return
            if inbound.kind != VOICE and normalize_for_matching(inbound.text) in HELP_COMMANDS:
                self._say(identity, replies.HELP_MENU)
            else:
                self._say(identity, replies.ONBOARDING_MESSAGE)
            log.info("Unregistered number", context={"kind": inbound.kind})
            return

        # No ConversationState is created for unsupported media.
        if inbound.kind == UNSUPPORTED:
            self._say(identity, replies.UNSUPPORTED_MESSAGE_TYPE)
            return

        text = inbound.text
        if inbound.kind == VOICE:
            if self.voice is None:
                self._say(identity, replies.VOICE_ERROR_REPLIES[UNKNOWN])
                return
            result = self.voice.process(inbound.media_id, inbound.mime_type)
            # Failed voice notes also return before the record is created.
            if not result.ok:
                log.warning("Voice note failed", context=result.log_context())
                family = result.error_code if result.error_code in replies.VOICE_ERROR_REPLIES else UNKNOWN
                self._say(identity, replies.VOICE_ERROR_REPLIES[family])
                return
            text = result.value.text
            self._say(identity, replies.transcript_echo(text))

        log.info("Processing message text", context={"text": text[:100]})
        outcome = self.dispatcher.handle(identity, text, account_result.value)
        log.info(
            "Message dispatched",
            context={"branch": outcome.branch, "intent": outcome.intent.value if outcome.intent else None},
        )
