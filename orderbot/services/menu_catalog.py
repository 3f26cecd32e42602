from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from orderbot.models.addon import Addon
from orderbot.models.menu_category import MenuCategory
from orderbot.models.menu_item import MenuItem
from orderbot.models.menu_synonym import MenuSynonym
from orderbot.models.restaurant import Restaurant


@dataclass(frozen=True)
class AddonOption:
    id: int
    name: str
    price_cents: int


@dataclass(frozen=True)
class MenuProduct:
    id: int
    name: str
    price_cents: int
    category: str = ""
    description: str = ""
    available: bool = True
    sort_order: int = 0
    search_keywords: tuple[str, ...] = ()
    ingredients: tuple[str, ...] = ()
    addons: tuple[AddonOption, ...] = ()

    def addon(self, addon_id: int) -> AddonOption | None:
        for option in self.addons:
            if option.id == addon_id:
                return option
        return None


@dataclass(frozen=True)
class MenuSnapshot:
    """Fotografia somente-leitura do cardápio usada durante um turno."""

    restaurant_id: int
    restaurant_name: str
    delivery_fee_cents: int = 0
    products: tuple[MenuProduct, ...] = ()
    synonyms: tuple[tuple[str, str], ...] = ()
    categories: tuple[str, ...] = field(default_factory=tuple)

    def product(self, product_id: int | None) -> MenuProduct | None:
        if product_id is None:
            return None
        for product in self.products:
            if product.id == product_id:
                return product
        return None

    def structure(self) -> list[dict[str, Any]]:
        grouped: dict[str, list[dict[str, Any]]] = {}
        order = list(self.categories)
        for product in self.products:
            if not product.available:
                continue
            category = product.category or "Outros"
            if category not in order:
                order.append(category)
            grouped.setdefault(category, []).append(
                {
                    "id": product.id,
                    "name": product.name,
                    "price": format_price(product.price_cents),
                    "description": product.description or None,
                    "addons": [
                        {"id": addon.id, "name": addon.name, "price": format_price(addon.price_cents)}
                        for addon in product.addons
                    ],
                }
            )
        return [{"category": name, "products": grouped[name]} for name in order if name in grouped]


def format_price(cents: int) -> str:
    return f"{(int(cents or 0)) / 100:.2f}"


def format_eur(cents: int) -> str:
    return f"€{format_price(cents)}"


def load_menu_snapshot(db: Session, restaurant_id: int) -> MenuSnapshot:
    restaurant = db.query(Restaurant).filter(Restaurant.id == restaurant_id).first()
    if not restaurant:
        raise LookupError(f"restaurant {restaurant_id} not found")

    categories = (
        db.query(MenuCategory)
        .filter(MenuCategory.restaurant_id == restaurant_id, MenuCategory.active.is_(True))
        .order_by(MenuCategory.sort_order.asc(), MenuCategory.id.asc())
        .all()
    )
    category_names = {category.id: category.name for category in categories}

    addons_by_item: dict[int, list[AddonOption]] = {}
    addon_rows = (
        db.query(Addon)
        .filter(Addon.restaurant_id == restaurant_id, Addon.active.is_(True))
        .order_by(Addon.id.asc())
        .all()
    )
    for row in addon_rows:
        addons_by_item.setdefault(row.menu_item_id, []).append(
            AddonOption(id=row.id, name=row.name, price_cents=int(row.price_cents or 0))
        )

    items = (
        db.query(MenuItem)
        .filter(MenuItem.restaurant_id == restaurant_id)
        .order_by(MenuItem.sort_order.asc(), MenuItem.id.asc())
        .all()
    )
    products = tuple(
        MenuProduct(
            id=item.id,
            name=item.name,
            price_cents=int(item.price_cents or 0),
            category=category_names.get(item.category_id, ""),
            description=item.description or "",
            available=bool(item.active),
            sort_order=int(item.sort_order or 0),
            search_keywords=tuple(item.search_keywords or ()),
            ingredients=tuple(item.ingredients or ()),
            addons=tuple(addons_by_item.get(item.id, ())),
        )
        for item in items
    )

    synonyms = tuple(
        (row.original_term, row.synonym)
        for row in db.query(MenuSynonym).filter(MenuSynonym.restaurant_id == restaurant_id).all()
    )

    return MenuSnapshot(
        restaurant_id=restaurant.id,
        restaurant_name=restaurant.name,
        delivery_fee_cents=int(restaurant.delivery_fee_cents or 0),
        products=products,
        synonyms=synonyms,
        categories=tuple(category.name for category in categories),
    )
