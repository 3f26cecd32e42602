from __future__ import annotations

import re
from typing import Any

from orderbot.ai.schema import IntentClassification
from orderbot.fsm import states
from orderbot.services.menu_catalog import MenuSnapshot
from orderbot.services.menu_search import normalize_text, search, split_order_text

_GREETINGS = {"oi", "ola", "bom dia", "boa tarde", "boa noite", "hey", "hello"}
_CONFIRM_WORDS = ("sim", "confirmo", "confirmar", "confirma", "pode ser", "ok", "isso", "correto", "certo", "claro", "exato")
_FINALIZE_WORDS = ("finalizar", "fechar pedido", "fechar o pedido", "e tudo", "so isso", "e so", "mais nada", "acabar", "checkout")
_MENU_WORDS = ("menu", "cardapio", "o que tem", "o que voces tem", "opcoes", "carta")
_MODIFY_WORDS = ("remove", "remover", "tira", "tirar", "retira", "cancela", "limpa", "limpar", "sem o ", "apaga", "mudar", "alterar", "trocar")
_PAYMENT_WORDS = ("mbway", "mb way", "dinheiro", "numerario", "cartao", "multibanco", "card", "cash")
_PROFILE_PATTERN = re.compile(r"\b(meu nome e|o meu nome e|chamo me|sou o|sou a)\b")
_ADDRESS_PATTERN = re.compile(r"\b(rua|avenida|av|travessa|largo|praca|estrada|alameda|urbanizacao|lote)\b|\b\d{4}-\d{3}\b")
_QUESTION_WORDS = ("horario", "entregam", "quanto tempo", "demora", "aberto", "fecham", "taxa", "onde fica")


def _contains_any(text: str, words) -> bool:
    padded = f" {text} "
    return any(f" {word} " in padded or (word.endswith(" ") and word in padded) for word in words)


def _product_mentions(text: str, menu: MenuSnapshot | None) -> int:
    if not menu or not menu.products:
        return 0
    mentions = 0
    for part in split_order_text(text):
        name = normalize_text(part["raw_name"])
        if not name or name in _GREETINGS:
            continue
        results = search(menu.products, name, max_results=1, min_similarity=0.6, synonyms=menu.synonyms)
        if results:
            mentions += 1
    return mentions


class KeywordIntentClassifier:
    """Regras simples em português; usado por omissão e como fallback do classificador LLM."""

    def classify(self, text: str, *, state: str, context: dict[str, Any]) -> IntentClassification:
        normalized = re.sub(r"[^\w\s-]", " ", normalize_text(text))
        normalized = re.sub(r"\s+", " ", normalized).strip()
        menu: MenuSnapshot | None = context.get("menu")
        has_pending = bool(context.get("pending_items"))

        if not normalized:
            return IntentClassification(intent="unclear", confidence=0.2)

        if _PROFILE_PATTERN.search(normalized):
            return IntentClassification(intent="collect_customer_data", confidence=0.8)

        if state == states.COLLECTING_ADDRESS and (_ADDRESS_PATTERN.search(normalized) or len(normalized.split()) >= 3):
            return IntentClassification(intent="provide_address", confidence=0.8)
        if _ADDRESS_PATTERN.search(normalized) and state in (states.CONFIRMING_ITEM, states.COLLECTING_ADDRESS):
            return IntentClassification(intent="provide_address", confidence=0.7)

        if _contains_any(normalized, _PAYMENT_WORDS):
            return IntentClassification(intent="provide_payment", confidence=0.85)

        if _contains_any(normalized, _MODIFY_WORDS):
            return IntentClassification(intent="modify_cart", confidence=0.75)

        if _contains_any(normalized, _FINALIZE_WORDS):
            return IntentClassification(intent="finalize", confidence=0.8)

        mentions = _product_mentions(text, menu)
        if mentions > 1:
            return IntentClassification(intent="manage_pending_items", confidence=0.75)

        if _contains_any(normalized, _CONFIRM_WORDS) and mentions == 0:
            if state == states.CONFIRMING_ORDER:
                return IntentClassification(intent="finalize", confidence=0.85)
            if has_pending:
                return IntentClassification(intent="confirm_pending_items", confidence=0.8)
            return IntentClassification(intent="confirm_item", confidence=0.8)

        if mentions == 1:
            return IntentClassification(intent="browse_product", confidence=0.8)

        if _contains_any(normalized, _MENU_WORDS) or normalized in _GREETINGS:
            return IntentClassification(intent="browse_menu", confidence=0.7)

        if "?" in text or _contains_any(normalized, _QUESTION_WORDS):
            return IntentClassification(intent="ask_question", confidence=0.6)

        return IntentClassification(intent="unclear", confidence=0.3)
