from sqlalchemy import Column, DateTime, Integer, String, func

from orderbot.core.database import Base


class ProcessedMessage(Base):
    """Ids de mensagens do WhatsApp já recebidas (o Meta reenvia webhooks)."""

    __tablename__ = "processed_messages"

    message_id = Column(String, primary_key=True)
    restaurant_id = Column(Integer, nullable=True)
    received_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
