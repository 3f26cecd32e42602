from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, func

from orderbot.core.database import Base


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), index=True, nullable=False)
    customer_phone = Column(String, index=True, nullable=False)
    cart_id = Column(Integer, ForeignKey("carts.id"), nullable=False)
    items = Column(JSON, nullable=False, default=list)
    delivery_address = Column(Text, nullable=False)
    payment_method = Column(String, nullable=False)
    subtotal_cents = Column(Integer, nullable=False)
    delivery_fee_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="new")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
