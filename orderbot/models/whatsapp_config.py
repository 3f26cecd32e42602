from sqlalchemy import Boolean, Column, DateTime, Integer, String, func

from orderbot.core.database import Base


class WhatsAppConfig(Base):
    __tablename__ = "whatsapp_configs"

    id = Column(Integer, primary_key=True)
    restaurant_id = Column(Integer, index=True, nullable=False, unique=True)
    phone_number_id = Column(String, nullable=True)
    access_token = Column(String, nullable=True)
    verify_token = Column(String, nullable=True)
    api_version = Column(String, nullable=True)
    is_enabled = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
