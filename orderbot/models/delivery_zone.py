from sqlalchemy import JSON, Boolean, Column, ForeignKey, Integer, String

from orderbot.core.database import Base


class DeliveryZone(Base):
    __tablename__ = "delivery_zones"

    id = Column(Integer, primary_key=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), index=True, nullable=False)
    name = Column(String, nullable=False)
    # {"type": "circle", "center": {"lat": .., "lng": ..}, "radius": 3} ou {"type": "polygon", "points": [{"lat": .., "lng": ..}]}
    # fee_type=tiered lê "tiers": [{"distance": 5, "fee_cents": 300}]
    coordinates = Column(JSON, nullable=False, default=dict)
    fee_type = Column(String, nullable=False, default="fixed")  # fixed / per_km / tiered
    fee_cents = Column(Integer, nullable=False, default=0)
    min_order_cents = Column(Integer, nullable=True)
    max_delivery_time_minutes = Column(Integer, nullable=True)
    priority = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, default=True, nullable=False)
