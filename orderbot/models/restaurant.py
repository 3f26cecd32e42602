from sqlalchemy import JSON, Column, DateTime, Float, Integer, String, func

from orderbot.core.database import Base


class Restaurant(Base):
    __tablename__ = "restaurants"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    # número exibido no WhatsApp
    phone = Column(String, index=True, nullable=True)
    delivery_fee_cents = Column(Integer, nullable=False, default=0)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    language = Column(String, nullable=False, default="pt-PT")
    accepted_payment_methods = Column(JSON, nullable=False, default=lambda: ["cash", "card", "mbway"])
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
