"""Process-wide collaborators, built once from settings and injected with Depends."""

from functools import lru_cache

from amana.config import settings
from amana.database import SessionLocal
from amana.logging_config import get_logger
from amana.services.account_service import AccountService, SqlAccountService, StaticAccountService
from amana.services.action_handlers import HttpActionHandler, build_handler_table
from amana.services.conversation_store import ConversationStore, InMemoryConversationStore, SqlConversationStore
from amana.services.dispatcher import Dispatcher
from amana.services.gateway import DryRunSender, MediaDownloader, MessageSender, VoicePipeline, WhatsAppSender
from amana.services.intent_service import LLMIntentClassifier
from amana.services.llm import OpenAIProvider
from amana.services.message_processor import MessageProcessor
from amana.services.transcription import OpenAITranscriber

logger = get_logger("dependencies")

LOCAL_TENANT_ID = "local"


@lru_cache
def get_store() -> ConversationStore:
    if settings.conversation_store == "memory":
        return InMemoryConversationStore(history_limit=settings.history_limit)
    return SqlConversationStore(SessionLocal, history_limit=settings.history_limit)


@lru_cache
def get_sender() -> MessageSender:
    if settings.whatsapp_token and settings.whatsapp_phone_number_id:
        return WhatsAppSender(settings.whatsapp_token, settings.whatsapp_phone_number_id, settings.graph_api_version)
    logger.warning("WhatsApp credentials not configured, using dry-run sender")
    return DryRunSender()


@lru_cache
def get_accounts() -> AccountService:
    if settings.conversation_store == "memory":
        return StaticAccountService(default_tenant_id=LOCAL_TENANT_ID)
    return SqlAccountService(SessionLocal, ttl_seconds=settings.account_cache_ttl_seconds)


@lru_cache
def get_message_processor() -> MessageProcessor:
    provider = OpenAIProvider(settings.openai_api_key, settings.fast_model) if settings.openai_api_key else None
    classifier = LLMIntentClassifier(provider, model=settings.fast_model, timeout_seconds=settings.intent_timeout_seconds)

    voice = None
    if provider is not None:
        downloader = MediaDownloader(
            settings.whatsapp_token,
            graph_api_version=settings.graph_api_version,
            max_attempts=settings.media_max_attempts,
            base_delay_seconds=settings.media_retry_base_delay_seconds,
            timeout_seconds=settings.media_timeout_seconds,
        )
        voice = VoicePipeline(downloader, OpenAITranscriber(provider, timeout_seconds=settings.transcription_timeout_seconds))

    handlers = build_handler_table(HttpActionHandler(settings.actions_base_url, settings.actions_timeout_seconds))
    dispatcher = Dispatcher(
        get_store(),
        classifier,
        get_sender(),
        handlers,
        low_confidence_threshold=settings.low_confidence_threshold,
        bare_no_action=settings.bare_no_action,
    )
    return MessageProcessor(get_store(), get_sender(), dispatcher, get_accounts(), voice)
