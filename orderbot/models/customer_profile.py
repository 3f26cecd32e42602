from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint

from orderbot.core.database import Base


class CustomerProfile(Base):
    __tablename__ = "customer_profiles"
    __table_args__ = (
        UniqueConstraint("restaurant_id", "phone", name="uq_customer_profile_restaurant_phone"),
    )

    id = Column(Integer, primary_key=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), index=True, nullable=False)
    phone = Column(String, index=True, nullable=False)
    name = Column(String, nullable=True)
    default_address = Column(Text, nullable=True)
    default_payment_method = Column(String, nullable=True)
    order_count = Column(Integer, nullable=False, default=0)
    average_ticket_cents = Column(Integer, nullable=False, default=0)
    # [{"id": 3, "name": "Pizza Margherita", "count": 4}]
    preferred_items = Column(JSON, nullable=False, default=list)
    last_order_at = Column(DateTime(timezone=True), nullable=True)
