from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy.orm import Session

from orderbot.core.errors import ToolExecutionError
from orderbot.fsm import states
from orderbot.models.conversation import ConversationState
from orderbot.models.order import Order
from orderbot.models.restaurant import Restaurant
from orderbot.services import cart as cart_service
from orderbot.services import customer_profile as profile_service
from orderbot.services import pending_items as pending_service
from orderbot.services.delivery import Geocoder, validate_address
from orderbot.services.menu_catalog import MenuSnapshot, format_eur
from orderbot.services.menu_search import is_strong_unique_match, search

if TYPE_CHECKING:
    from orderbot.schemas.agent_config import BehaviorConfig

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("cash", "card", "mbway")
PaymentMethod = Literal["cash", "card", "mbway"]


@dataclass
class ToolContext:
    db: Session
    restaurant: Restaurant
    conversation: ConversationState
    menu: MenuSnapshot
    behavior: "BehaviorConfig"
    geocoder: Geocoder
    now: datetime
    # estado corrente dentro do turno (avança a cada tool bem-sucedida)
    state: str = states.IDLE


@dataclass
class ToolOutcome:
    data: dict[str, Any]
    next_state: str | None = None
    side_effects: dict[str, Any] = field(default_factory=dict)


class ToolArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")


class NoArgs(ToolArgs):
    pass


class SearchMenuArgs(ToolArgs):
    query: Optional[str] = Field(None, description="Nome, ingrediente ou descrição do produto")
    category: Optional[str] = Field(None, description="Categoria do menu (ex.: pizzas, bebidas)")
    max_results: int = Field(5, ge=1, le=10)


class AddToCartArgs(ToolArgs):
    product_id: int = Field(..., description="ID do produto (da lista do menu)")
    quantity: int = Field(1, ge=1, le=50)
    addon_ids: list[int] = Field(default_factory=list, description="IDs dos addons escolhidos")
    notes: Optional[str] = Field(None, description="Pedidos especiais que não existem como addon")


class RemoveFromCartArgs(ToolArgs):
    product_id: int


class UpdateCartItemArgs(ToolArgs):
    product_id: int
    quantity: Optional[int] = Field(None, ge=0, le=50)
    addon_ids: Optional[list[int]] = None
    notes: Optional[str] = None


class AddPendingItemArgs(ToolArgs):
    product_id: int
    quantity: int = Field(1, ge=1, le=50)
    addon_ids: list[int] = Field(default_factory=list)
    notes: Optional[str] = None


class RemovePendingItemArgs(ToolArgs):
    item_id: Optional[int] = None
    action: Optional[Literal["remove_last"]] = None

    @model_validator(mode="after")
    def _needs_target(self) -> "RemovePendingItemArgs":
        if self.item_id is None and self.action is None:
            raise ValueError("item_id ou action='remove_last' é obrigatório")
        return self


class DeliveryAddressArgs(ToolArgs):
    address: str = Field(..., min_length=3, description="Morada completa de entrega")


class PaymentMethodArgs(ToolArgs):
    method: PaymentMethod


class UpdateCustomerProfileArgs(ToolArgs):
    name: Optional[str] = None
    default_address: Optional[str] = None
    default_payment_method: Optional[PaymentMethod] = None


class FinalizeOrderArgs(ToolArgs):
    confirmed: bool = True


class TransitionStateArgs(ToolArgs):
    next_state: str

    @field_validator("next_state")
    @classmethod
    def _known_state(cls, value: str) -> str:
        if not states.is_valid_state(value):
            raise ValueError(f"estado desconhecido: {value}")
        return value


Handler = Callable[[ToolContext, Any], ToolOutcome]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    args_model: type[ToolArgs]
    handler: Handler

    def parameters(self) -> dict[str, Any]:
        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        return schema

    def parse_args(self, raw: dict[str, Any] | None) -> ToolArgs:
        return self.args_model.model_validate(raw or {})


def _require_cart(ctx: ToolContext):
    cart = cart_service.get_open_cart(ctx.db, ctx.conversation)
    if not cart or not cart.items:
        raise ToolExecutionError("o carrinho está vazio")
    return cart


def _require_product(ctx: ToolContext, product_id: int):
    product = ctx.menu.product(product_id)
    if not product:
        raise ToolExecutionError(f"produto {product_id} não existe no menu")
    if not product.available:
        raise ToolExecutionError(f"{product.name} está indisponível")
    return product


def _cart_payload(ctx: ToolContext) -> dict[str, Any]:
    cart = cart_service.get_open_cart(ctx.db, ctx.conversation)
    subtotal = cart_service.cart_subtotal_cents(cart)
    fee = ctx.conversation.delivery_fee_cents
    if fee is None:
        fee = ctx.menu.delivery_fee_cents
    return {
        "items": cart_service.cart_lines(cart),
        "subtotal_cents": subtotal,
        "delivery_fee_cents": fee,
        "total_cents": subtotal + fee if subtotal else 0,
    }


def search_menu(ctx: ToolContext, args: SearchMenuArgs) -> ToolOutcome:
    results = search(
        ctx.menu.products,
        args.query,
        category=args.category,
        max_results=args.max_results,
        synonyms=ctx.menu.synonyms,
    )
    payload = [
        {
            "id": result.product.id,
            "name": result.product.name,
            "price": format_eur(result.product.price_cents),
            "category": result.product.category,
            "similarity": result.similarity,
            "match_type": result.match_type,
            "addons": [
                {"id": addon.id, "name": addon.name, "price": format_eur(addon.price_cents)}
                for addon in result.product.addons
            ],
        }
        for result in results
    ]
    next_state = None
    strong = bool(args.query) and is_strong_unique_match(results)
    if strong and ctx.state in (states.IDLE, states.BROWSING_MENU, states.CONFIRMING_ITEM):
        next_state = states.ADDING_ITEM
    elif ctx.state in (states.IDLE, states.BROWSING_MENU, states.CONFIRMING_ITEM, states.CONFIRMING_ORDER):
        next_state = states.BROWSING_MENU
    data = {"results": payload}
    if strong:
        data["best_match_id"] = results[0].product.id
    return ToolOutcome(data=data, next_state=next_state)


def add_to_cart(ctx: ToolContext, args: AddToCartArgs) -> ToolOutcome:
    product = _require_product(ctx, args.product_id)
    cart = cart_service.ensure_open_cart(ctx.db, ctx.conversation)
    item = cart_service.add_item(ctx.db, cart, product, args.quantity, args.addon_ids, args.notes)
    needs_addons = bool(product.addons) and not args.addon_ids
    data = {
        "added": {"product_id": product.id, "name": product.name, "quantity": int(item.quantity)},
        **_cart_payload(ctx),
    }
    if needs_addons:
        data["available_addons"] = [
            {"id": addon.id, "name": addon.name, "price": format_eur(addon.price_cents)} for addon in product.addons
        ]
    return ToolOutcome(
        data=data,
        next_state=states.CHOOSING_ADDONS if needs_addons else states.CONFIRMING_ITEM,
    )


def remove_from_cart(ctx: ToolContext, args: RemoveFromCartArgs) -> ToolOutcome:
    cart = _require_cart(ctx)
    if not cart_service.remove_item(ctx.db, cart, args.product_id):
        raise ToolExecutionError(f"produto {args.product_id} não está no carrinho")
    return ToolOutcome(data=_cart_payload(ctx))


def update_cart_item(ctx: ToolContext, args: UpdateCartItemArgs) -> ToolOutcome:
    cart = _require_cart(ctx)
    product = ctx.menu.product(args.product_id)
    if not product:
        raise ToolExecutionError(f"produto {args.product_id} não existe no menu")
    if cart_service.find_item(cart, product.id) is None:
        raise ToolExecutionError(f"produto {args.product_id} não está no carrinho")
    cart_service.update_item(ctx.db, cart, product, args.quantity, args.addon_ids, args.notes)
    next_state = None
    if ctx.state == states.CHOOSING_ADDONS and args.addon_ids is not None:
        next_state = states.CONFIRMING_ITEM
    return ToolOutcome(data=_cart_payload(ctx), next_state=next_state)


def clear_cart(ctx: ToolContext, args: NoArgs) -> ToolOutcome:
    cart = cart_service.get_open_cart(ctx.db, ctx.conversation)
    removed = cart_service.clear(ctx.db, cart) if cart else 0
    next_state = states.BROWSING_MENU if ctx.state != states.IDLE else None
    return ToolOutcome(data={"removed_items": removed}, next_state=next_state)


def show_cart(ctx: ToolContext, args: NoArgs) -> ToolOutcome:
    return ToolOutcome(data=_cart_payload(ctx))


def _pending_payload(ctx: ToolContext) -> list[dict[str, Any]]:
    return pending_service.describe_pending(
        ctx.db, ctx.conversation.restaurant_id, ctx.conversation.customer_phone, ctx.menu, now=ctx.now
    )


def add_pending_item(ctx: ToolContext, args: AddPendingItemArgs) -> ToolOutcome:
    product = _require_product(ctx, args.product_id)
    cart_service.resolve_addons(product, args.addon_ids)
    policy = ctx.behavior.pending_products
    pending_service.add_pending(
        ctx.db,
        ctx.conversation.restaurant_id,
        ctx.conversation.customer_phone,
        product_id=product.id,
        quantity=args.quantity,
        addon_ids=args.addon_ids,
        notes=args.notes,
        expiration_minutes=policy.expiration_minutes,
        allow_multiple=policy.allow_multiple,
        now=ctx.now,
    )
    return ToolOutcome(data={"pending_items": _pending_payload(ctx)}, next_state=states.ADDING_ITEM)


def remove_pending_item(ctx: ToolContext, args: RemovePendingItemArgs) -> ToolOutcome:
    removed = pending_service.remove_pending(
        ctx.db,
        ctx.conversation.restaurant_id,
        ctx.conversation.customer_phone,
        item_id=args.item_id,
        remove_last=args.action == "remove_last",
        now=ctx.now,
    )
    if not removed:
        raise ToolExecutionError("item pendente não encontrado")
    return ToolOutcome(data={"pending_items": _pending_payload(ctx)})


def clear_pending_items(ctx: ToolContext, args: NoArgs) -> ToolOutcome:
    removed = pending_service.clear_pending(ctx.db, ctx.conversation.restaurant_id, ctx.conversation.customer_phone)
    return ToolOutcome(data={"removed_items": removed})


def confirm_pending_items(ctx: ToolContext, args: NoArgs) -> ToolOutcome:
    cart = cart_service.ensure_open_cart(ctx.db, ctx.conversation)
    added = pending_service.confirm_pending(
        ctx.db,
        ctx.conversation.restaurant_id,
        ctx.conversation.customer_phone,
        cart,
        ctx.menu,
        now=ctx.now,
    )
    return ToolOutcome(data={"added": added, **_cart_payload(ctx)}, next_state=states.CONFIRMING_ITEM)


def validate_and_set_delivery_address(ctx: ToolContext, args: DeliveryAddressArgs) -> ToolOutcome:
    cart = _require_cart(ctx)
    validation = validate_address(
        ctx.db,
        ctx.restaurant,
        args.address,
        order_subtotal_cents=cart_service.cart_subtotal_cents(cart),
        geocoder=ctx.geocoder,
    )
    if not validation.valid:
        return ToolOutcome(data=validation.as_dict(), side_effects={"address_validated": False})

    conversation = ctx.conversation
    conversation.delivery_address = validation.formatted_address or args.address
    conversation.delivery_fee_cents = validation.delivery_fee_cents
    if ctx.behavior.customer_profile.update_address_on_confirmation:
        profile_service.update_profile(
            ctx.db, conversation.restaurant_id, conversation.customer_phone, default_address=args.address
        )
    return ToolOutcome(
        data=validation.as_dict(),
        next_state=states.COLLECTING_PAYMENT,
        side_effects={"address_validated": True},
    )


def set_payment_method(ctx: ToolContext, args: PaymentMethodArgs) -> ToolOutcome:
    accepted = list(ctx.restaurant.accepted_payment_methods or PAYMENT_METHODS)
    if args.method not in accepted:
        raise ToolExecutionError(f"método {args.method} não é aceite (aceites: {', '.join(accepted)})")
    conversation = ctx.conversation
    conversation.payment_method = args.method
    if ctx.behavior.customer_profile.update_payment_on_confirmation:
        profile_service.update_profile(
            ctx.db, conversation.restaurant_id, conversation.customer_phone, default_payment_method=args.method
        )
    return ToolOutcome(data={"payment_method": args.method, **_cart_payload(ctx)}, next_state=states.CONFIRMING_ORDER)


def update_customer_profile(ctx: ToolContext, args: UpdateCustomerProfileArgs) -> ToolOutcome:
    name = args.name
    if name and not ctx.behavior.customer_profile.update_name_from_conversation:
        name = None
    profile = profile_service.update_profile(
        ctx.db,
        ctx.conversation.restaurant_id,
        ctx.conversation.customer_phone,
        name=name,
        default_address=args.default_address,
        default_payment_method=args.default_payment_method,
    )
    return ToolOutcome(
        data={
            "name": profile.name,
            "default_address": profile.default_address,
            "default_payment_method": profile.default_payment_method,
        }
    )


def get_customer_history(ctx: ToolContext, args: NoArgs) -> ToolOutcome:
    return ToolOutcome(
        data=profile_service.customer_history(ctx.db, ctx.conversation.restaurant_id, ctx.conversation.customer_phone)
    )


def finalize_order(ctx: ToolContext, args: FinalizeOrderArgs) -> ToolOutcome:
    if not args.confirmed:
        raise ToolExecutionError("o cliente ainda não confirmou o pedido")
    conversation = ctx.conversation
    cart = _require_cart(ctx)
    if not conversation.delivery_address:
        raise ToolExecutionError("falta a morada de entrega")
    if not conversation.payment_method:
        raise ToolExecutionError("falta o método de pagamento")

    lines = cart_service.cart_lines(cart)
    subtotal = cart_service.cart_subtotal_cents(cart)
    fee = conversation.delivery_fee_cents
    if fee is None:
        fee = ctx.menu.delivery_fee_cents
    order = Order(
        restaurant_id=conversation.restaurant_id,
        customer_phone=conversation.customer_phone,
        cart_id=cart.id,
        items=lines,
        delivery_address=conversation.delivery_address,
        payment_method=conversation.payment_method,
        subtotal_cents=subtotal,
        delivery_fee_cents=fee,
        total_cents=subtotal + fee,
        status="new",
    )
    ctx.db.add(order)
    cart.status = "completed"
    cart.updated_at = ctx.now
    ctx.db.flush()
    profile_service.update_insights_after_order(ctx.db, order, lines, now=ctx.now)
    logger.info("order created order_id=%s total_cents=%s", order.id, order.total_cents)
    created = {"order_id": order.id, "total_cents": order.total_cents}
    return ToolOutcome(data=created, next_state=states.ORDER_COMPLETED, side_effects={"order_created": created})


def transition_state(ctx: ToolContext, args: TransitionStateArgs) -> ToolOutcome:
    if not states.can_transition(ctx.state, args.next_state):
        raise ToolExecutionError(f"transição inválida: {ctx.state} -> {args.next_state}")
    return ToolOutcome(data={"state": args.next_state}, next_state=args.next_state)


TOOL_REGISTRY: dict[str, ToolSpec] = {
    spec.name: spec
    for spec in (
        ToolSpec("search_menu", "Procura produtos no menu por nome, categoria, ingrediente ou sinónimo.", SearchMenuArgs, search_menu),
        ToolSpec("add_to_cart", "Adiciona um produto ao carrinho do cliente, com addons opcionais.", AddToCartArgs, add_to_cart),
        ToolSpec("remove_from_cart", "Remove um produto do carrinho do cliente.", RemoveFromCartArgs, remove_from_cart),
        ToolSpec("update_cart_item", "Altera quantidade, addons ou notas de um item do carrinho.", UpdateCartItemArgs, update_cart_item),
        ToolSpec("clear_cart", "Esvazia o carrinho do cliente.", NoArgs, clear_cart),
        ToolSpec("show_cart", "Mostra o conteúdo atual do carrinho e os totais.", NoArgs, show_cart),
        ToolSpec("add_pending_item", "Guarda um produto como pendente (ainda não no carrinho, aguarda confirmação).", AddPendingItemArgs, add_pending_item),
        ToolSpec("remove_pending_item", "Remove um item pendente pelo id, ou o último com action='remove_last'.", RemovePendingItemArgs, remove_pending_item),
        ToolSpec("clear_pending_items", "Remove todos os itens pendentes.", NoArgs, clear_pending_items),
        ToolSpec("confirm_pending_items", "Move todos os itens pendentes para o carrinho.", NoArgs, confirm_pending_items),
        ToolSpec("validate_and_set_delivery_address", "Valida a morada na área de entrega e guarda taxa e tempo estimado.", DeliveryAddressArgs, validate_and_set_delivery_address),
        ToolSpec("set_payment_method", "Define o método de pagamento do pedido.", PaymentMethodArgs, set_payment_method),
        ToolSpec("update_customer_profile", "Atualiza nome, morada ou pagamento habituais do cliente.", UpdateCustomerProfileArgs, update_customer_profile),
        ToolSpec("get_customer_history", "Consulta pedidos anteriores e preferências do cliente.", NoArgs, get_customer_history),
        ToolSpec("finalize_order", "Cria o pedido final. Só depois de confirmação clara do cliente.", FinalizeOrderArgs, finalize_order),
        ToolSpec("transition_state", "Muda o estado da conversa quando a transição é permitida.", TransitionStateArgs, transition_state),
    )
}


def known_tool_names() -> set[str]:
    return set(TOOL_REGISTRY)
