from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, func

from orderbot.core.database import Base


class AIMessageLog(Base):
    __tablename__ = "ai_message_logs"

    id = Column(Integer, primary_key=True)
    restaurant_id = Column(Integer, index=True, nullable=False)
    phone = Column(String, index=True, nullable=True)
    direction = Column(String, nullable=False)  # in / out
    provider = Column(String, nullable=False)
    intent = Column(String, nullable=True)
    state_before = Column(String, nullable=True)
    state_after = Column(String, nullable=True)
    prompt = Column(Text, nullable=True)
    raw_response = Column(Text, nullable=True)
    tool_calls = Column(JSON, nullable=True)
    offered_product_id = Column(Integer, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
