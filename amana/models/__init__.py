from amana.models.conversation import WhatsAppConversation
from amana.models.processed_message import ProcessedMessage
from amana.models.whatsapp_user import WhatsAppUser

__all__ = [
    "WhatsAppConversation",
    "WhatsAppUser",
    "ProcessedMessage",
]
