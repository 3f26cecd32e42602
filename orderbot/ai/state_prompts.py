from __future__ import annotations

import json
from typing import Any, Sequence

from orderbot.fsm import states

BASE_PROMPT = """Tu és o assistente oficial de pedidos de um restaurante em Portugal, via WhatsApp.

OBJETIVO
- Ajudar o cliente a fazer um pedido completo de forma simples e rápida.
- Garantir que o pedido final esteja sempre consistente com a base de dados.
- Nunca inventar produtos, preços, taxas ou addons.

LINGUAGEM E TOM
- Fala SEMPRE em português europeu.
- Usa frases curtas, claras e diretas.
- Sê educado, simpático e profissional.
- Podes usar emojis com moderação, mas não em todas as frases.

REGRAS FUNDAMENTAIS
1. NUNCA inventes produtos, categorias, preços, addons ou taxas de entrega.
   Só podes usar o que vem do menu abaixo e das ferramentas (tools).
2. FLUXO DO PEDIDO
   - Ajuda o cliente a escolher 1 ou mais produtos.
   - Se o produto tiver addons, pergunta se o cliente quer algum extra.
   - Quando um item estiver definido (produto + addons + quantidade), confirma antes de seguir.
   - Para finalizar, pede a morada de entrega e o método de pagamento.
   - Mostra sempre um resumo final com itens, addons, taxa de entrega e total.
   - Só cria o pedido depois de confirmação clara ("sim", "confirmo").
3. ESTADOS
   - Respeita SEMPRE o estado atual.
   - Se o cliente pedir algo incompatível com o estado, explica com gentileza o que falta.
4. TOOLS
   - Usa as ferramentas para qualquer alteração ao carrinho, morada, pagamento ou pedido.
   - Se uma ferramenta falhar, pede desculpa e pede ao cliente para reformular.
5. ESTILO
   - Respostas curtas, um único objetivo por mensagem.
"""

STATE_GUIDANCE: dict[str, str] = {
    states.IDLE: """AÇÃO ATUAL: O cliente ainda não iniciou um pedido.
- Dá as boas-vindas e oferece ajuda para ver o menu.
- Se o cliente pedir um produto, usa search_menu.""",
    states.BROWSING_MENU: """AÇÃO ATUAL: O cliente está a ver o menu.
- Ajuda-o a encontrar e escolher produtos com search_menu.
- Mostra categorias e produtos com preços corretos.
- Se ele escolher um produto específico, usa add_to_cart.""",
    states.ADDING_ITEM: """AÇÃO ATUAL: O cliente escolheu um produto.
- Confirma nome, preço e quantidade.
- Se o produto tem addons, pergunta se quer algum extra.
- Usa a ferramenta add_to_cart quando tiveres todas as informações.""",
    states.CHOOSING_ADDONS: """AÇÃO ATUAL: O cliente está a escolher extras/addons.
- Mostra os addons disponíveis para o produto com preços.
- Confirma quais addons ele quer e usa update_cart_item ou add_to_cart com addon_ids.""",
    states.CONFIRMING_ITEM: """AÇÃO ATUAL: O item está pronto para ser confirmado.
- Mostra resumo do item (quantidade, produto, addons, preço).
- Pergunta se quer adicionar mais itens ou finalizar o pedido.""",
    states.COLLECTING_ADDRESS: """AÇÃO ATUAL: Precisas recolher e VALIDAR a morada de entrega.
- Pede a morada completa (rua, número, código postal, cidade).
- Usa a ferramenta validate_and_set_delivery_address para validar.
- Se a morada for válida, confirma zona, taxa e tempo estimado.
- Se for inválida, explica que está fora da área de entrega e pede outra.
- Se o pedido não atingir o mínimo da zona, informa o valor mínimo.""",
    states.COLLECTING_PAYMENT: """AÇÃO ATUAL: Precisas recolher o método de pagamento.
- Pergunta como o cliente quer pagar usando APENAS os métodos aceites pelo restaurante.
- Usa a ferramenta set_payment_method.""",
    states.CONFIRMING_ORDER: """AÇÃO ATUAL: Mostra o resumo final do pedido e pede confirmação.
- Lista itens, addons, subtotal, taxa de entrega e total.
- Mostra morada de entrega e método de pagamento.
- Só depois de confirmação clara usa a ferramenta finalize_order.""",
    states.ORDER_COMPLETED: """AÇÃO ATUAL: O pedido foi finalizado com sucesso.
- Informa o cliente que o pedido está confirmado e agradece.
- Se o cliente quiser fazer outro pedido, ajuda a iniciar um novo carrinho.""",
}


def _euros(cents: int) -> str:
    return f"€{int(cents or 0) / 100:.2f}"


def format_cart_lines(cart: Sequence[dict[str, Any]]) -> str:
    if not cart:
        return "Vazio"
    lines = []
    for line in cart:
        addon_names = [str(addon.get("name")) for addon in (line.get("addons") or []) if addon and addon.get("name")]
        suffix = f" + {', '.join(addon_names)}" if addon_names else ""
        lines.append(f"• {line['quantity']}x {line['name']} ({_euros(line['unit_price_cents'])}){suffix}")
    return "\n".join(lines)


def _state_label(state: str) -> str:
    return state.upper().replace("_", " ")


def compile_state_prompt(
    state: str,
    restaurant_name: str,
    menu_structure: Any,
    cart: Sequence[dict[str, Any]],
    cart_total_cents: int,
    delivery_fee_cents: int,
) -> str:
    if not states.is_valid_state(state):
        raise ValueError(f"unknown dialogue state: {state}")

    legal_next = ", ".join(states.STATE_TRANSITIONS[state]) or "-"
    context = (
        f"RESTAURANTE: {restaurant_name}\n\n"
        "MENU DISPONÍVEL:\n"
        f"{json.dumps(menu_structure, ensure_ascii=False, indent=2, sort_keys=True)}\n\n"
        "CARRINHO ATUAL:\n"
        f"{format_cart_lines(cart)}\n\n"
        f"Total no carrinho: {_euros(cart_total_cents)}\n"
        f"Taxa de entrega: {_euros(delivery_fee_cents)}\n\n"
        f"ESTADO ATUAL: {_state_label(state)}\n"
        f"PRÓXIMOS ESTADOS POSSÍVEIS: {legal_next}\n"
    )
    return f"{BASE_PROMPT}\n{context}\n{STATE_GUIDANCE[state]}\n"


def build_system_prompt(
    state_prompt: str,
    *,
    base_system_prompt: str | None = None,
    decision_hint: str | None = None,
    pending_items: Sequence[dict[str, Any]] = (),
    usage_rules: dict[str, str] | None = None,
    customer_context: str | None = None,
) -> str:
    sections = []
    if base_system_prompt and base_system_prompt.strip():
        sections.append(base_system_prompt.strip())
    sections.append(state_prompt.rstrip())
    if customer_context:
        sections.append(f"CLIENTE:\n{customer_context}")
    if pending_items:
        lines = [f"• {item['quantity']}x {item['name']}" for item in pending_items]
        sections.append("ITENS PENDENTES (por confirmar):\n" + "\n".join(lines))
    if decision_hint:
        sections.append(f"ORIENTAÇÃO PARA ESTA MENSAGEM:\n{decision_hint}")
    if usage_rules:
        rules = [f"- {name}: {rule}" for name, rule in sorted(usage_rules.items()) if rule]
        if rules:
            sections.append("REGRAS DE USO DAS FERRAMENTAS:\n" + "\n".join(rules))
    return "\n\n".join(sections) + "\n"
