from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func

from orderbot.core.database import Base


class ConversationState(Base):
    __tablename__ = "conversation_states"
    __table_args__ = (
        UniqueConstraint("restaurant_id", "customer_phone", name="uq_conversation_restaurant_phone"),
    )

    id = Column(Integer, primary_key=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), index=True, nullable=False)
    customer_phone = Column(String, index=True, nullable=False)

    state = Column(String, nullable=False, default="idle")
    cart_id = Column(Integer, ForeignKey("carts.id"), nullable=True)

    # dados coletados no checkout
    delivery_address = Column(Text, nullable=True)
    delivery_fee_cents = Column(Integer, nullable=True)
    payment_method = Column(String, nullable=True)

    last_intent = Column(String, nullable=True)
    last_offered_product_id = Column(Integer, nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"version_id_col": version}
