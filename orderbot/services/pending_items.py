from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Sequence

from sqlalchemy.orm import Session

from orderbot.core.clock import as_utc, utcnow
from orderbot.core.errors import ToolExecutionError
from orderbot.models.cart import Cart
from orderbot.models.pending_item import PendingItem
from orderbot.services import cart as cart_service
from orderbot.services.menu_catalog import MenuSnapshot

logger = logging.getLogger(__name__)


def _query(db: Session, restaurant_id: int, phone: str):
    return db.query(PendingItem).filter(
        PendingItem.restaurant_id == restaurant_id,
        PendingItem.customer_phone == phone,
    )


def drop_expired(db: Session, restaurant_id: int, phone: str, now: datetime | None = None) -> int:
    now = now or utcnow()
    dropped = 0
    for item in _query(db, restaurant_id, phone).all():
        if as_utc(item.expires_at) <= now:
            db.delete(item)
            dropped += 1
    if dropped:
        db.flush()
        logger.info("pending items expired count=%s", dropped)
    return dropped


def list_pending(db: Session, restaurant_id: int, phone: str, now: datetime | None = None) -> list[PendingItem]:
    """Itens pendentes ainda válidos; os expirados são removidos antes."""
    drop_expired(db, restaurant_id, phone, now=now)
    return _query(db, restaurant_id, phone).order_by(PendingItem.id.asc()).all()


def describe_pending(
    db: Session,
    restaurant_id: int,
    phone: str,
    menu: MenuSnapshot,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Lista pendente no formato usado no prompt e nas respostas das tools."""
    payload = []
    for item in list_pending(db, restaurant_id, phone, now=now):
        product = menu.product(item.menu_item_id)
        payload.append(
            {
                "item_id": item.id,
                "product_id": item.menu_item_id,
                "name": product.name if product else str(item.menu_item_id),
                "quantity": int(item.quantity),
            }
        )
    return payload


def add_pending(
    db: Session,
    restaurant_id: int,
    phone: str,
    *,
    product_id: int,
    quantity: int = 1,
    addon_ids: Sequence[int] | None = None,
    notes: str | None = None,
    expiration_minutes: int = 15,
    allow_multiple: bool = True,
    now: datetime | None = None,
) -> PendingItem:
    now = now or utcnow()
    if not allow_multiple:
        clear_pending(db, restaurant_id, phone)
    item = PendingItem(
        restaurant_id=restaurant_id,
        customer_phone=phone,
        menu_item_id=product_id,
        quantity=max(int(quantity or 1), 1),
        addon_ids=list(addon_ids or []),
        notes=notes,
        created_at=now,
        expires_at=now + timedelta(minutes=expiration_minutes),
    )
    db.add(item)
    db.flush()
    return item


def remove_pending(
    db: Session,
    restaurant_id: int,
    phone: str,
    *,
    item_id: int | None = None,
    remove_last: bool = False,
    now: datetime | None = None,
) -> bool:
    items = list_pending(db, restaurant_id, phone, now=now)
    target = None
    if item_id is not None:
        target = next((item for item in items if item.id == item_id), None)
    elif remove_last and items:
        target = items[-1]
    if not target:
        return False
    db.delete(target)
    db.flush()
    return True


def clear_pending(db: Session, restaurant_id: int, phone: str) -> int:
    removed = _query(db, restaurant_id, phone).delete(synchronize_session=False)
    db.flush()
    return removed


def confirm_pending(
    db: Session,
    restaurant_id: int,
    phone: str,
    cart: Cart,
    menu: MenuSnapshot,
    now: datetime | None = None,
) -> list[dict]:
    """Move todos os pendentes para o carrinho ou nenhum."""
    items = list_pending(db, restaurant_id, phone, now=now)
    if not items:
        raise ToolExecutionError("não há itens pendentes para confirmar")

    resolved = []
    for item in items:
        product = menu.product(item.menu_item_id)
        if not product or not product.available:
            raise ToolExecutionError(f"produto {item.menu_item_id} indisponível")
        cart_service.resolve_addons(product, item.addon_ids)
        resolved.append((item, product))

    added = []
    for item, product in resolved:
        cart_service.add_item(db, cart, product, item.quantity, item.addon_ids, item.notes)
        added.append({"product_id": product.id, "name": product.name, "quantity": int(item.quantity)})
        db.delete(item)
    db.flush()
    return added
