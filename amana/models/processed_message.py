from sqlalchemy import Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP

from amana.database import Base


class ProcessedMessage(Base):
    __tablename__ = "processed_messages"

    message_id = Column(Text, primary_key=True)
    identity = Column(Text, nullable=False)
    received_at = Column(TIMESTAMP(timezone=True), nullable=False)
