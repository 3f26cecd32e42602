from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text

from orderbot.core.database import Base


class DebounceQueueEntry(Base):
    __tablename__ = "message_debounce_queue"
    __table_args__ = (
        Index("ix_debounce_queue_key_status", "restaurant_id", "customer_phone", "status"),
    )

    id = Column(String(36), primary_key=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False)
    customer_phone = Column(String, nullable=False)
    # [{"body": "oi", "received_at": "2025-01-01T12:00:00+00:00"}]
    messages = Column(JSON, nullable=False, default=list)
    first_message_at = Column(DateTime(timezone=True), nullable=False)
    last_message_at = Column(DateTime(timezone=True), nullable=False)
    scheduled_process_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, nullable=False, default="pending")  # pending / processing / completed / failed
    error_message = Column(Text, nullable=True)
    result = Column(JSON, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    # incrementado também pelo claim; um append sobre entrada já reclamada falha
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}
