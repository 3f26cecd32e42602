from __future__ import annotations

from datetime import datetime
from typing import Any, Sequence

from sqlalchemy.orm import Session

from orderbot.core.clock import utcnow
from orderbot.models.customer_profile import CustomerProfile
from orderbot.models.order import Order


def get_profile(db: Session, restaurant_id: int, phone: str) -> CustomerProfile | None:
    return (
        db.query(CustomerProfile)
        .filter(CustomerProfile.restaurant_id == restaurant_id, CustomerProfile.phone == phone)
        .first()
    )


def get_or_create_profile(db: Session, restaurant_id: int, phone: str) -> CustomerProfile:
    profile = get_profile(db, restaurant_id, phone)
    if profile is None:
        profile = CustomerProfile(
            restaurant_id=restaurant_id,
            phone=phone,
            order_count=0,
            average_ticket_cents=0,
            preferred_items=[],
        )
        db.add(profile)
        db.flush()
    return profile


def update_profile(
    db: Session,
    restaurant_id: int,
    phone: str,
    *,
    name: str | None = None,
    default_address: str | None = None,
    default_payment_method: str | None = None,
) -> CustomerProfile:
    profile = get_or_create_profile(db, restaurant_id, phone)
    if name:
        profile.name = name.strip()
    if default_address:
        profile.default_address = default_address.strip()
    if default_payment_method:
        profile.default_payment_method = default_payment_method
    db.flush()
    return profile


def update_insights_after_order(
    db: Session,
    order: Order,
    items: Sequence[dict[str, Any]],
    now: datetime | None = None,
) -> CustomerProfile:
    """Contadores determinísticos: nº de pedidos, ticket médio e itens preferidos."""
    profile = get_or_create_profile(db, order.restaurant_id, order.customer_phone)
    count = int(profile.order_count or 0) + 1
    previous_avg = int(profile.average_ticket_cents or 0)
    profile.average_ticket_cents = int(round((previous_avg * (count - 1) + int(order.total_cents)) / count))
    profile.order_count = count

    preferred = [dict(entry) for entry in (profile.preferred_items or [])]
    for item in items:
        existing = next((entry for entry in preferred if entry.get("id") == item["menu_item_id"]), None)
        if existing:
            existing["count"] = int(existing.get("count", 0)) + 1
        else:
            preferred.append({"id": item["menu_item_id"], "name": item["name"], "count": 1})
    preferred.sort(key=lambda entry: entry["count"], reverse=True)
    profile.preferred_items = preferred
    profile.last_order_at = now or utcnow()
    db.flush()
    return profile


def customer_history(db: Session, restaurant_id: int, phone: str, limit: int = 5) -> dict[str, Any]:
    profile = get_profile(db, restaurant_id, phone)
    orders = (
        db.query(Order)
        .filter(Order.restaurant_id == restaurant_id, Order.customer_phone == phone)
        .order_by(Order.id.desc())
        .limit(limit)
        .all()
    )
    return {
        "name": profile.name if profile else None,
        "default_address": profile.default_address if profile else None,
        "default_payment_method": profile.default_payment_method if profile else None,
        "order_count": int(profile.order_count or 0) if profile else 0,
        "average_ticket_cents": int(profile.average_ticket_cents or 0) if profile else 0,
        "preferred_items": list(profile.preferred_items or [])[:5] if profile else [],
        "recent_orders": [
            {"id": order.id, "total_cents": order.total_cents, "items": order.items, "status": order.status}
            for order in orders
        ],
    }


def describe_customer(profile: CustomerProfile | None) -> str | None:
    if not profile:
        return None
    parts = []
    if profile.name:
        parts.append(f"Nome: {profile.name}")
    if profile.default_address:
        parts.append(f"Morada habitual: {profile.default_address}")
    if profile.default_payment_method:
        parts.append(f"Pagamento habitual: {profile.default_payment_method}")
    if profile.preferred_items:
        favorites = ", ".join(entry["name"] for entry in list(profile.preferred_items)[:3])
        parts.append(f"Preferidos: {favorites}")
    return "\n".join(parts) or None
