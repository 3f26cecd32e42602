import pytest

from orderbot.ai.state_prompts import build_system_prompt, compile_state_prompt, format_cart_lines
from orderbot.fsm import states

MENU_STRUCTURE = [
    {
        "category": "Pizzas",
        "products": [{"id": 1, "name": "Pizza Margherita", "price": "9.50", "description": None, "addons": []}],
    }
]

CART = [
    {
        "name": "Pizza Margherita",
        "quantity": 2,
        "unit_price_cents": 950,
        "addons": [{"id": 1, "name": "Borda recheada", "price_cents": 200}],
    }
]


def _compile(state: str) -> str:
    return compile_state_prompt(state, "Pizzaria Lisboa", MENU_STRUCTURE, CART, 2300, 250)


def test_compile_is_deterministic():
    assert _compile(states.ADDING_ITEM) == _compile(states.ADDING_ITEM)


def test_compile_includes_context_and_state_guidance():
    prompt = _compile(states.ADDING_ITEM)

    assert "RESTAURANTE: Pizzaria Lisboa" in prompt
    assert "• 2x Pizza Margherita (€9.50) + Borda recheada" in prompt
    assert "Total no carrinho: €23.00" in prompt
    assert "Taxa de entrega: €2.50" in prompt
    assert "ESTADO ATUAL: ADDING ITEM" in prompt
    assert "PRÓXIMOS ESTADOS POSSÍVEIS: choosing_addons, confirming_item" in prompt
    assert "add_to_cart" in prompt


def test_each_state_has_its_own_guidance():
    prompts = {state: _compile(state) for state in states.ALL_STATES}

    assert len(set(prompts.values())) == len(states.ALL_STATES)
    assert "validate_and_set_delivery_address" in prompts[states.COLLECTING_ADDRESS]
    assert "finalize_order" in prompts[states.CONFIRMING_ORDER]


def test_unknown_state_is_rejected():
    with pytest.raises(ValueError):
        _compile("dancing")


def test_empty_cart_is_rendered_as_vazio():
    assert format_cart_lines([]) == "Vazio"


def test_system_prompt_layers_sections_in_order():
    prompt = build_system_prompt(
        "ESTADO",
        base_system_prompt="  Regras da casa  ",
        decision_hint="Procura o produto.",
        pending_items=[{"quantity": 1, "name": "Coca-Cola"}],
        usage_rules={"search_menu": "usa sempre o nome exato", "show_cart": ""},
        customer_context="Nome: Maria",
    )

    assert prompt.index("Regras da casa") < prompt.index("ESTADO") < prompt.index("CLIENTE:")
    assert "ITENS PENDENTES (por confirmar):\n• 1x Coca-Cola" in prompt
    assert "ORIENTAÇÃO PARA ESTA MENSAGEM:\nProcura o produto." in prompt
    assert "- search_menu: usa sempre o nome exato" in prompt
    assert "show_cart" not in prompt
