from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import orderbot.models  # noqa: F401
from orderbot.ai.intent import KeywordIntentClassifier
from orderbot.ai.mock_provider import MockProvider
from orderbot.ai.schema import IntentClassification, LLMResponse, ToolCall
from orderbot.core.database import Base
from orderbot.core.errors import LLMProviderError
from orderbot.fsm import states
from orderbot.fsm.engine import FALLBACK_REPLY, OrderSessionEngine, implied_transition
from orderbot.models.addon import Addon
from orderbot.models.agent_config import AgentConfig
from orderbot.models.cart import Cart
from orderbot.models.menu_category import MenuCategory
from orderbot.models.menu_item import MenuItem
from orderbot.models.menu_synonym import MenuSynonym
from orderbot.models.order import Order
from orderbot.models.restaurant import Restaurant
from orderbot.services import cart as cart_service
from orderbot.services import conversation_store
from orderbot.services.delivery import GeocodeResult
from tests.fixtures_data import (
    ADDONS,
    CATEGORIES,
    CUSTOMER_PHONE,
    DELIVERY_ADDRESS,
    GEOCODED_ADDRESS,
    MENU_ITEMS,
    RESTAURANT,
    SYNONYMS,
)

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    db.add(Restaurant(**RESTAURANT))
    db.add_all(MenuCategory(**category) for category in CATEGORIES)
    db.add_all(MenuItem(**item) for item in MENU_ITEMS)
    db.add_all(Addon(**addon) for addon in ADDONS)
    db.add_all(MenuSynonym(**synonym) for synonym in SYNONYMS)
    db.commit()
    return db


class _FakeGeocoder:
    def __init__(self):
        self.queries = []

    def geocode(self, address):
        self.queries.append(address)
        return GeocodeResult(**GEOCODED_ADDRESS)


class _FixedIntent:
    def __init__(self, intent):
        self.intent = intent

    def classify(self, text, *, state, context):
        return IntentClassification(intent=self.intent, confidence=0.9)


class _ScriptedProvider:
    name = "scripted"

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def complete(self, request):
        self.requests.append(request)
        if not self.responses:
            return LLMResponse(reply_text="Posso ajudar em mais alguma coisa?")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _engine(provider=None, classifier=None):
    return OrderSessionEngine(
        provider or MockProvider(),
        classifier or KeywordIntentClassifier(),
        geocoder=_FakeGeocoder(),
    )


def _cart(db):
    conversation = conversation_store.find(db, 1, CUSTOMER_PHONE)
    return cart_service.get_open_cart(db, conversation)


def test_product_request_adds_to_cart_and_confirm_moves_to_address():
    db = _session()
    engine = _engine()

    first = engine.run_turn(db, 1, CUSTOMER_PHONE, "quero uma pizza margherita", now=T0)

    assert first.intent == "browse_product"
    assert first.executed_tools == ["search_menu", "add_to_cart"]
    assert first.state_before == states.IDLE
    assert first.state_after == states.CONFIRMING_ITEM
    assert cart_service.cart_subtotal_cents(_cart(db)) == 950

    second = engine.run_turn(db, 1, CUSTOMER_PHONE, "confirmar", now=T0 + timedelta(minutes=1))

    assert second.intent == "confirm_item"
    assert second.executed_tools == []
    assert second.state_after == states.COLLECTING_ADDRESS
    assert conversation_store.find(db, 1, CUSTOMER_PHONE).state == states.COLLECTING_ADDRESS


def test_full_checkout_creates_order_and_next_message_starts_over():
    db = _session()
    engine = _engine()
    engine.run_turn(db, 1, CUSTOMER_PHONE, "quero uma pizza margherita", now=T0)
    engine.run_turn(db, 1, CUSTOMER_PHONE, "confirmar", now=T0 + timedelta(minutes=1))

    address = engine.run_turn(db, 1, CUSTOMER_PHONE, DELIVERY_ADDRESS, now=T0 + timedelta(minutes=2))
    assert address.intent == "provide_address"
    assert address.side_effects == {"address_validated": True}
    assert address.state_after == states.COLLECTING_PAYMENT

    payment = engine.run_turn(db, 1, CUSTOMER_PHONE, "mbway", now=T0 + timedelta(minutes=3))
    assert payment.executed_tools == ["set_payment_method"]
    assert payment.state_after == states.CONFIRMING_ORDER
    assert "€12.00" in payment.reply_text

    final = engine.run_turn(db, 1, CUSTOMER_PHONE, "sim", now=T0 + timedelta(minutes=4))
    assert final.intent == "finalize"
    assert final.state_after == states.ORDER_COMPLETED
    assert final.side_effects["order_created"]["total_cents"] == 950 + 250

    order = db.query(Order).one()
    assert order.payment_method == "mbway"
    assert order.delivery_address == GEOCODED_ADDRESS["formatted_address"]
    assert db.query(Cart).filter_by(id=order.cart_id).one().status == "completed"

    fresh = engine.run_turn(db, 1, CUSTOMER_PHONE, "oi", now=T0 + timedelta(minutes=5))
    assert fresh.state_before == states.IDLE
    assert fresh.state_after == states.BROWSING_MENU
    assert conversation_store.find(db, 1, CUSTOMER_PHONE).cart_id is None


def test_tool_outside_the_intent_policy_is_rejected():
    db = _session()
    db.add(
        AgentConfig(
            restaurant_id=1,
            provider="mock",
            enabled=False,
            behavior_config={},
            orchestration_config={"intents": {"browse_menu": {"allowed_tools": ["search_menu"]}}},
        )
    )
    db.commit()
    provider = _ScriptedProvider(
        [
            LLMResponse(tool_calls=[ToolCall(name="finalize_order", args={"confirmed": True})]),
            LLMResponse(reply_text="Pedido confirmado!"),
        ]
    )

    result = _engine(provider, _FixedIntent("browse_menu")).run_turn(db, 1, CUSTOMER_PHONE, "menu", now=T0)

    assert provider.requests[0].offered_tool_names == {"search_menu"}
    assert result.rejected_tools == ["finalize_order"]
    assert result.executed_tools == []
    assert result.state_after != states.ORDER_COMPLETED
    assert result.reply_text == "Pedido confirmado!"
    assert provider.requests[-1].rounds[0].results[0]["ok"] is False
    assert db.query(Order).count() == 0


def test_invalid_tool_arguments_are_rejected():
    db = _session()
    provider = _ScriptedProvider(
        [
            LLMResponse(tool_calls=[ToolCall(name="add_to_cart", args={"product_id": 1, "quantity": 0})]),
            LLMResponse(reply_text="Quantas queres?"),
        ]
    )

    result = _engine(provider, _FixedIntent("browse_product")).run_turn(db, 1, CUSTOMER_PHONE, "pizza", now=T0)

    assert result.rejected_tools == ["add_to_cart"]
    assert _cart(db) is None
    assert result.state_after == states.BROWSING_MENU


def test_failing_tool_does_not_abort_the_turn():
    db = _session()
    provider = _ScriptedProvider(
        [
            LLMResponse(tool_calls=[ToolCall(name="add_to_cart", args={"product_id": 999})]),
            LLMResponse(reply_text="Esse produto não existe, queres ver o menu?"),
        ]
    )

    result = _engine(provider, _FixedIntent("browse_product")).run_turn(db, 1, CUSTOMER_PHONE, "pizza havaiana", now=T0)

    assert result.failed_tools == ["add_to_cart"]
    assert result.reply_text == "Esse produto não existe, queres ver o menu?"
    failure = provider.requests[-1].rounds[0].results[0]
    assert failure["ok"] is False
    assert "999" in failure["error"]


def test_illegal_explicit_transition_fails():
    db = _session()
    provider = _ScriptedProvider(
        [
            LLMResponse(tool_calls=[ToolCall(name="transition_state", args={"next_state": "order_completed"})]),
            LLMResponse(reply_text="Ainda falta escolher os produtos."),
        ]
    )

    result = _engine(provider, _FixedIntent("finalize")).run_turn(db, 1, CUSTOMER_PHONE, "fechar pedido", now=T0)

    assert result.failed_tools == ["transition_state"]
    assert result.state_after == states.IDLE


def test_provider_failure_leaves_session_untouched():
    db = _session()
    conversation = conversation_store.get_or_create(db, 1, CUSTOMER_PHONE, now=T0)
    conversation.state = states.CONFIRMING_ITEM
    conversation.last_intent = "browse_product"
    db.commit()
    provider = _ScriptedProvider([LLMProviderError("timeout")])

    with pytest.raises(LLMProviderError):
        _engine(provider, _FixedIntent("confirm_item")).run_turn(
            db, 1, CUSTOMER_PHONE, "confirmar", now=T0 + timedelta(minutes=1)
        )

    stored = conversation_store.find(db, 1, CUSTOMER_PHONE)
    assert stored.state == states.CONFIRMING_ITEM
    assert stored.last_intent == "browse_product"


def test_tool_rounds_are_capped():
    db = _session()
    db.add(AgentConfig(restaurant_id=1, provider="mock", enabled=False, max_tool_rounds=2, behavior_config={}))
    db.commit()
    search_call = LLMResponse(tool_calls=[ToolCall(name="search_menu", args={"query": "pizza"})])
    provider = _ScriptedProvider([search_call] * 10)

    result = _engine(provider, _FixedIntent("browse_product")).run_turn(db, 1, CUSTOMER_PHONE, "pizza", now=T0)

    assert result.executed_tools == ["search_menu"] * 2
    assert len(provider.requests) == 3
    assert result.reply_text == FALLBACK_REPLY


def test_unknown_restaurant_raises_lookup_error():
    db = _session()

    with pytest.raises(LookupError):
        _engine().run_turn(db, 99, CUSTOMER_PHONE, "oi", now=T0)


def test_offered_product_is_remembered():
    db = _session()
    provider = _ScriptedProvider([LLMResponse(reply_text="Temos a Pizza Calabresa por €11.00, queres?")])

    result = _engine(provider, _FixedIntent("ask_question")).run_turn(db, 1, CUSTOMER_PHONE, "o que recomendas?", now=T0)

    assert result.offered_product_id == 2
    assert conversation_store.find(db, 1, CUSTOMER_PHONE).last_offered_product_id == 2


def test_implied_transitions_respect_table_and_cart():
    assert implied_transition(states.IDLE, "browse_menu", cart_has_items=False) == states.BROWSING_MENU
    assert implied_transition(states.CONFIRMING_ITEM, "confirm_item", cart_has_items=False) is None
    assert implied_transition(states.CONFIRMING_ITEM, "confirm_item", cart_has_items=True) == states.COLLECTING_ADDRESS
    assert implied_transition(states.IDLE, "finalize", cart_has_items=True) is None
    assert implied_transition(states.COLLECTING_PAYMENT, "unclear", cart_has_items=True) is None


def test_provider_failure_after_tool_round_discards_the_whole_turn():
    db = _session()
    provider = _ScriptedProvider(
        [
            LLMResponse(tool_calls=[ToolCall(name="add_to_cart", args={"product_id": 1})]),
            LLMProviderError("timeout"),
        ]
    )

    with pytest.raises(LLMProviderError):
        _engine(provider, _FixedIntent("browse_product")).run_turn(db, 1, CUSTOMER_PHONE, "pizza", now=T0)

    assert _cart(db) is None
    assert db.query(Cart).count() == 0
    assert conversation_store.find(db, 1, CUSTOMER_PHONE).state == states.IDLE

    retry = _ScriptedProvider(
        [
            LLMResponse(tool_calls=[ToolCall(name="add_to_cart", args={"product_id": 1})]),
            LLMResponse(reply_text="Adicionei uma Pizza Margherita."),
        ]
    )
    result = _engine(retry, _FixedIntent("browse_product")).run_turn(
        db, 1, CUSTOMER_PHONE, "pizza", now=T0 + timedelta(minutes=1)
    )

    assert result.executed_tools == ["add_to_cart"]
    cart = _cart(db)
    assert len(cart.items) == 1
    assert cart.items[0].quantity == 1


def test_failed_tool_in_a_round_keeps_earlier_tool_writes():
    db = _session()
    provider = _ScriptedProvider(
        [
            LLMResponse(
                tool_calls=[
                    ToolCall(name="add_to_cart", args={"product_id": 1}),
                    ToolCall(name="add_to_cart", args={"product_id": 999}),
                ]
            ),
            LLMResponse(reply_text="Só encontrei a margherita."),
        ]
    )

    result = _engine(provider, _FixedIntent("browse_product")).run_turn(db, 1, CUSTOMER_PHONE, "pizza", now=T0)

    assert result.executed_tools == ["add_to_cart"]
    assert result.failed_tools == ["add_to_cart"]
    assert [item.menu_item_id for item in _cart(db).items] == [1]


def test_zero_quantity_update_for_product_outside_the_cart_fails():
    db = _session()
    provider = _ScriptedProvider(
        [
            LLMResponse(tool_calls=[ToolCall(name="add_to_cart", args={"product_id": 1})]),
            LLMResponse(tool_calls=[ToolCall(name="update_cart_item", args={"product_id": 2, "quantity": 0})]),
            LLMResponse(reply_text="A calabresa não está no carrinho."),
        ]
    )

    result = _engine(provider, _FixedIntent("confirm_item")).run_turn(db, 1, CUSTOMER_PHONE, "sim, sem calabresa", now=T0)

    assert result.failed_tools == ["update_cart_item"]
    failure = provider.requests[-1].rounds[1].results[0]
    assert failure["ok"] is False
    assert "não está no carrinho" in failure["error"]
    assert [item.menu_item_id for item in _cart(db).items] == [1]
