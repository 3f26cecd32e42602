from __future__ import annotations

import re
from typing import Any

from orderbot.ai.base import LLMRequest, ToolRound
from orderbot.ai.schema import LLMResponse, ToolCall
from orderbot.fsm import states
from orderbot.services.menu_catalog import MenuSnapshot, format_eur
from orderbot.services.menu_search import (
    is_strong_unique_match,
    normalize_text,
    search,
    split_order_text,
)

_PAYMENT_KEYWORDS = {
    "mbway": "mbway",
    "mb way": "mbway",
    "dinheiro": "cash",
    "numerario": "cash",
    "cash": "cash",
    "cartao": "card",
    "multibanco": "card",
    "card": "card",
}
_NAME_PATTERN = re.compile(r"(?:meu nome e|o meu nome e|chamo me|chamo-me)\s+(?P<name>[a-z ]{2,40})")
_PAYMENT_LABELS = {"cash": "dinheiro", "card": "cartão", "mbway": "MB WAY"}
_REMOVE_VERBS = re.compile(r"^(?:remove|remover|tira|tirar|retira|cancela|apaga)\s+(?:o|a|os|as)?\s*")


def _extract_payment(text: str) -> str | None:
    normalized = normalize_text(text)
    for keyword, method in _PAYMENT_KEYWORDS.items():
        if keyword in normalized:
            return method
    return None


def _extract_name(text: str) -> str | None:
    match = _NAME_PATTERN.search(normalize_text(text))
    if not match:
        return None
    return match.group("name").strip().title() or None


def _order_parts(text: str, menu: MenuSnapshot | None) -> list[tuple[int, int]]:
    """Pares (product_id, quantidade) com correspondência forte no menu."""
    if not menu:
        return []
    parts = []
    for part in split_order_text(text):
        results = search(menu.products, part["raw_name"], max_results=3, synonyms=menu.synonyms)
        if is_strong_unique_match(results):
            parts.append((results[0].product.id, int(part["qty"])))
    return parts


def _mentioned_addons(text: str, product) -> list[int]:
    normalized = normalize_text(text)
    return [addon.id for addon in product.addons if normalize_text(addon.name) in normalized]


def _last_result(rounds: list[ToolRound], tool_name: str) -> dict[str, Any] | None:
    for tool_round in reversed(rounds):
        for call, result in zip(reversed(tool_round.calls), reversed(tool_round.results)):
            if call.name == tool_name:
                return result
    return None


def _describe_results(rounds: list[ToolRound]) -> str:
    """Resposta final a partir do último resultado de ferramenta."""
    last_round = rounds[-1]
    call, result = last_round.calls[-1], last_round.results[-1]
    if not result.get("ok"):
        return f"Desculpa, não consegui concluir isso: {result.get('error', 'erro desconhecido')}."
    data = result.get("data") or {}

    if call.name == "search_menu":
        products = data.get("results") or []
        if not products:
            return "Não encontrei esse produto no menu. Queres ver as categorias disponíveis?"
        if len(products) == 1 or data.get("best_match_id"):
            product = products[0]
            return f"Temos a {product['name']} por {product['price']}. Queres adicionar ao pedido?"
        lines = [f"• {product['name']} ({product['price']})" for product in products]
        return "Temos estas opções:\n" + "\n".join(lines) + "\nQual preferes?"

    if call.name in ("add_to_cart", "confirm_pending_items"):
        subtotal = format_eur(int(data.get("subtotal_cents") or 0))
        if data.get("available_addons"):
            addons = ", ".join(f"{addon['name']} ({addon['price']})" for addon in data["available_addons"])
            return f"Adicionado! Queres algum extra? Opções: {addons}."
        return f"Adicionado ao carrinho. Subtotal: {subtotal}. Queres mais alguma coisa ou posso fechar o pedido?"

    if call.name == "add_pending_item":
        names = ", ".join(f"{item['quantity']}x {item['name']}" for item in data.get("pending_items") or [])
        return f"Anotei: {names}. Confirmas estes itens?"

    if call.name == "validate_and_set_delivery_address":
        if not data.get("valid"):
            return f"Lamento, não conseguimos entregar nessa morada: {data.get('error') or 'fora da área'}."
        fee = format_eur(int(data.get("delivery_fee_cents") or 0))
        return f"Morada confirmada! Taxa de entrega: {fee}. Como preferes pagar? (dinheiro, cartão ou MB WAY)"

    if call.name == "set_payment_method":
        total = format_eur(int(data.get("total_cents") or 0))
        method = _PAYMENT_LABELS.get(data.get("payment_method"), data.get("payment_method"))
        return f"Pagamento em {method}. Total do pedido: {total}. Confirmas o pedido?"

    if call.name == "finalize_order":
        return f"Pedido #{data.get('order_id')} confirmado! Total: {format_eur(int(data.get('total_cents') or 0))}. Obrigado!"

    if call.name in ("show_cart", "remove_from_cart", "update_cart_item"):
        lines = [f"• {item['quantity']}x {item['name']}" for item in data.get("items") or []]
        if not lines:
            return "O teu carrinho está vazio. O que te apetece?"
        return "O teu carrinho:\n" + "\n".join(lines) + f"\nSubtotal: {format_eur(int(data.get('subtotal_cents') or 0))}"

    if call.name == "clear_cart":
        return "Carrinho limpo. O que queres pedir?"

    return "Feito! Posso ajudar em mais alguma coisa?"


class MockProvider:
    """Provider determinístico por regras, para desenvolvimento e testes.

    Só pede ferramentas oferecidas no turno. Na primeira ronda decide a
    ferramenta pela mensagem; nas seguintes encadeia search_menu -> add_to_cart
    quando a busca deu um resultado forte, e depois responde em texto.
    """

    name = "mock"

    def complete(self, request: LLMRequest) -> LLMResponse:
        offered = request.offered_tool_names
        context = request.context
        menu: MenuSnapshot | None = context.get("menu")
        intent = context.get("intent")
        state = context.get("state")
        text = request.user_message or ""

        if request.rounds:
            follow_up = self._follow_up(request, offered, menu, text)
            if follow_up is not None:
                return follow_up
            return LLMResponse(reply_text=_describe_results(request.rounds))

        calls = self._first_round_calls(offered, menu, intent, state, text)
        if calls:
            return LLMResponse(tool_calls=calls)
        return LLMResponse(reply_text=self._plain_reply(intent, state))

    def _first_round_calls(self, offered, menu, intent, state, text) -> list[ToolCall]:
        def call(name: str, **args) -> list[ToolCall]:
            return [ToolCall(name=name, args=args)] if name in offered else []

        if intent == "provide_address":
            return call("validate_and_set_delivery_address", address=text.strip())
        if intent == "provide_payment":
            method = _extract_payment(text)
            return call("set_payment_method", method=method) if method else []
        if intent == "finalize":
            if state == states.CONFIRMING_ORDER:
                return call("finalize_order", confirmed=True)
            return call("show_cart")
        if intent == "confirm_pending_items":
            return call("confirm_pending_items")
        if intent == "collect_customer_data":
            name = _extract_name(text)
            return call("update_customer_profile", name=name) if name else []
        if intent == "modify_cart":
            normalized = normalize_text(text)
            if "limpa" in normalized or "tudo" in normalized:
                return call("clear_cart")
            parts = _order_parts(_REMOVE_VERBS.sub("", normalized), menu)
            if parts:
                return call("remove_from_cart", product_id=parts[0][0])
            return call("show_cart")
        if intent == "manage_pending_items" and "add_pending_item" in offered:
            return [
                ToolCall(name="add_pending_item", args={"product_id": product_id, "quantity": quantity})
                for product_id, quantity in _order_parts(text, menu)
            ]
        if intent in ("browse_product", "ask_question"):
            parts = split_order_text(text)
            query = parts[0]["raw_name"] if parts else text
            return call("search_menu", query=query)
        if intent == "browse_menu":
            return call("search_menu", max_results=10)
        return []

    def _follow_up(self, request: LLMRequest, offered, menu, text) -> LLMResponse | None:
        last_round = request.rounds[-1]
        if len(request.rounds) > 1 or not last_round.calls:
            return None
        if last_round.calls[-1].name != "search_menu" or "add_to_cart" not in offered:
            return None
        if request.context.get("intent") != "browse_product":
            return None
        result = _last_result(request.rounds, "search_menu") or {}
        best_id = (result.get("data") or {}).get("best_match_id")
        product = menu.product(best_id) if menu and best_id else None
        if product is None:
            return None
        quantity = 1
        parts = split_order_text(text)
        if parts:
            quantity = int(parts[0]["qty"])
        args: dict[str, Any] = {"product_id": product.id, "quantity": quantity}
        addon_ids = _mentioned_addons(text, product)
        if addon_ids:
            args["addon_ids"] = addon_ids
        return LLMResponse(tool_calls=[ToolCall(name="add_to_cart", args=args)])

    def _plain_reply(self, intent: str | None, state: str | None) -> str:
        if intent == "confirm_item":
            return "Perfeito! Qual é a morada de entrega?"
        if intent == "provide_payment":
            return "Aceitamos dinheiro, cartão ou MB WAY. Qual preferes?"
        if state == states.COLLECTING_ADDRESS:
            return "Preciso da morada completa para a entrega (rua, número e código postal)."
        return "Olá! Posso mostrar o menu ou anotar o teu pedido. O que te apetece hoje?"
