from sqlalchemy import Boolean, Column, Integer, Text, text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP

from amana.database import Base


class WhatsAppConversation(Base):
    __tablename__ = "whatsapp_conversations"

    identity = Column(Text, primary_key=True)  # WhatsApp "from" number
    tenant_id = Column(Text)
    user_id = Column(Text)
    current_intent = Column(Text)
    last_intent = Column(Text)
    awaiting_confirmation = Column(Boolean, nullable=False, default=False)
    awaiting_input = Column(Text)  # pending-artifact-details, awaiting-confirmation, retry, media-upload
    pending_artifact_data = Column(JSONB, nullable=False, default=dict)
    last_error = Column(Text)
    retry_count = Column(Integer, nullable=False, default=0)
    last_artifact_id = Column(Text)
    last_counterparty_name = Column(Text)
    history = Column(JSONB, nullable=False, default=list, server_default=text("'[]'::jsonb"))
    language = Column(Text, nullable=False, default="en")
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)
