from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, func

from orderbot.core.database import Base


class RecoveryAttempt(Base):
    __tablename__ = "conversation_recovery_attempts"
    __table_args__ = (
        Index("ix_recovery_restaurant_phone_status", "restaurant_id", "customer_phone", "status"),
    )

    id = Column(Integer, primary_key=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False)
    customer_phone = Column(String, nullable=False)
    recovery_type = Column(String, nullable=False)  # cart_abandoned / conversation_paused / customer_inactive
    # primeira tentativa da sequência; as seguintes apontam para ela
    root_id = Column(Integer, nullable=True)
    attempt_number = Column(Integer, nullable=False, default=1)
    max_attempts = Column(Integer, nullable=False, default=1)
    status = Column(String, nullable=False, default="pending")  # pending / sent / failed / recovered / skipped_cooldown

    conversation_id = Column(Integer, ForeignKey("conversation_states.id"), nullable=True)
    cart_id = Column(Integer, ForeignKey("carts.id"), nullable=True)
    last_state = Column(String, nullable=True)
    items_count = Column(Integer, nullable=True)
    cart_value_cents = Column(Integer, nullable=True)
    customer_name = Column(String, nullable=True)
    preferred_item = Column(String, nullable=True)

    message_template = Column(Text, nullable=False)
    message_sent = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)

    scheduled_for = Column(DateTime(timezone=True), nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    recovered_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
