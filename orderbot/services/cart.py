from __future__ import annotations

import logging
from typing import Any, Sequence

from sqlalchemy.orm import Session

from orderbot.core.clock import utcnow
from orderbot.core.errors import ToolExecutionError
from orderbot.models.cart import Cart
from orderbot.models.cart_item import CartItem
from orderbot.models.conversation import ConversationState
from orderbot.services.menu_catalog import MenuProduct

logger = logging.getLogger(__name__)


def get_open_cart(db: Session, conversation: ConversationState) -> Cart | None:
    if not conversation.cart_id:
        return None
    cart = db.query(Cart).filter(Cart.id == conversation.cart_id).first()
    if not cart or cart.status != "open":
        return None
    return cart


def ensure_open_cart(db: Session, conversation: ConversationState) -> Cart:
    cart = get_open_cart(db, conversation)
    if cart:
        return cart
    cart = Cart(
        restaurant_id=conversation.restaurant_id,
        customer_phone=conversation.customer_phone,
        status="open",
        updated_at=utcnow(),
    )
    db.add(cart)
    db.flush()
    conversation.cart_id = cart.id
    logger.info("cart opened cart_id=%s", cart.id)
    return cart


def _addon_total(addons: Sequence[dict[str, Any]] | None) -> int:
    return sum(int(addon.get("price_cents", 0) or 0) for addon in (addons or []))


def line_total_cents(item: CartItem) -> int:
    return (int(item.unit_price_cents or 0) + _addon_total(item.addons)) * int(item.quantity or 0)


def cart_subtotal_cents(cart: Cart | None) -> int:
    if not cart:
        return 0
    return sum(line_total_cents(item) for item in cart.items)


def cart_lines(cart: Cart | None) -> list[dict[str, Any]]:
    if not cart:
        return []
    return [
        {
            "item_id": item.id,
            "menu_item_id": item.menu_item_id,
            "name": item.name,
            "quantity": int(item.quantity),
            "unit_price_cents": int(item.unit_price_cents),
            "addons": list(item.addons or []),
            "notes": item.notes,
            "line_total_cents": line_total_cents(item),
        }
        for item in cart.items
    ]


def resolve_addons(product: MenuProduct, addon_ids: Sequence[int] | None) -> list[dict[str, Any]]:
    resolved = []
    for addon_id in addon_ids or []:
        option = product.addon(addon_id)
        if option is None:
            raise ToolExecutionError(f"addon {addon_id} não pertence a {product.name}")
        resolved.append({"id": option.id, "name": option.name, "price_cents": option.price_cents})
    return resolved


def _addons_key(addons: Sequence[dict[str, Any]] | None) -> tuple:
    return tuple(sorted(int(addon.get("id")) for addon in (addons or []) if addon.get("id") is not None))


def _touch(cart: Cart) -> None:
    # força UPDATE na linha do carrinho para o controle otimista de versão
    cart.updated_at = utcnow()


def add_item(
    db: Session,
    cart: Cart,
    product: MenuProduct,
    quantity: int = 1,
    addon_ids: Sequence[int] | None = None,
    notes: str | None = None,
) -> CartItem:
    if not product.available:
        raise ToolExecutionError(f"{product.name} está indisponível")
    quantity = max(int(quantity or 1), 1)
    addons = resolve_addons(product, addon_ids)
    signature = _addons_key(addons)

    for item in cart.items:
        if item.menu_item_id == product.id and _addons_key(item.addons) == signature and (item.notes or None) == (notes or None):
            item.quantity = int(item.quantity) + quantity
            _touch(cart)
            db.flush()
            return item

    item = CartItem(
        menu_item_id=product.id,
        name=product.name,
        quantity=quantity,
        unit_price_cents=product.price_cents,
        notes=notes,
        addons=addons,
    )
    cart.items.append(item)
    _touch(cart)
    db.flush()
    return item


def find_item(cart: Cart, product_id: int) -> CartItem | None:
    for item in reversed(cart.items):
        if item.menu_item_id == product_id:
            return item
    return None


def remove_item(db: Session, cart: Cart, product_id: int) -> bool:
    item = find_item(cart, product_id)
    if not item:
        return False
    cart.items.remove(item)
    _touch(cart)
    db.flush()
    return True


def update_item(
    db: Session,
    cart: Cart,
    product: MenuProduct,
    quantity: int | None = None,
    addon_ids: Sequence[int] | None = None,
    notes: str | None = None,
) -> CartItem | None:
    item = find_item(cart, product.id)
    if not item:
        return None
    if quantity is not None:
        if quantity <= 0:
            cart.items.remove(item)
            _touch(cart)
            db.flush()
            return None
        item.quantity = int(quantity)
    if addon_ids is not None:
        item.addons = resolve_addons(product, addon_ids)
    if notes is not None:
        item.notes = notes or None
    _touch(cart)
    db.flush()
    return item


def clear(db: Session, cart: Cart) -> int:
    removed = len(cart.items)
    cart.items.clear()
    _touch(cart)
    db.flush()
    return removed
