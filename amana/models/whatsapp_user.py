from sqlalchemy import Boolean, Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP

from amana.database import Base


class WhatsAppUser(Base):
    __tablename__ = "whatsapp_users"

    identity = Column(Text, primary_key=True)
    tenant_id = Column(Text, nullable=False)
    user_id = Column(Text, nullable=False)
    display_name = Column(Text)
    language = Column(Text, default="en")
    verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    last_active_at = Column(TIMESTAMP(timezone=True))
