from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable

from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from orderbot.ai.agent_settings import AgentSettings, load_agent_settings
from orderbot.ai.base import IntentClassifier, LLMProvider, LLMRequest, ToolRound
from orderbot.ai.intent import KeywordIntentClassifier
from orderbot.ai.offer_detection import DEFAULT_OFFER_PATTERNS, OfferPatterns, detect_offered_product
from orderbot.ai.schema import ToolCall
from orderbot.ai.state_prompts import build_system_prompt, compile_state_prompt, format_cart_lines
from orderbot.ai.tools import TOOL_REGISTRY, ToolContext
from orderbot.core.clock import utcnow
from orderbot.core.config import CONVERSATION_TTL_HOURS
from orderbot.core.errors import ContractViolation, LLMProviderError, ToolExecutionError
from orderbot.core.metrics import turn_metrics
from orderbot.fsm import states
from orderbot.models.conversation import ConversationState
from orderbot.models.restaurant import Restaurant
from orderbot.services import cart as cart_service
from orderbot.services import conversation_store
from orderbot.services import customer_profile as profile_service
from orderbot.services import pending_items as pending_service
from orderbot.services.delivery import Geocoder, NominatimGeocoder
from orderbot.services.menu_catalog import load_menu_snapshot

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "Desculpa, não percebi bem. Podes repetir ou dizer o que queres pedir?"

# transições implícitas pela intenção quando nenhuma tool mudou o estado
INTENT_TRANSITIONS: dict[tuple[str, str], str] = {
    (states.IDLE, "browse_menu"): states.BROWSING_MENU,
    (states.IDLE, "browse_product"): states.BROWSING_MENU,
    (states.CONFIRMING_ITEM, "browse_menu"): states.BROWSING_MENU,
    (states.CONFIRMING_ITEM, "browse_product"): states.BROWSING_MENU,
    (states.CONFIRMING_ITEM, "confirm_item"): states.COLLECTING_ADDRESS,
    (states.CONFIRMING_ITEM, "finalize"): states.COLLECTING_ADDRESS,
    (states.BROWSING_MENU, "finalize"): states.COLLECTING_ADDRESS,
    (states.ADDING_ITEM, "confirm_item"): states.CONFIRMING_ITEM,
    (states.CHOOSING_ADDONS, "confirm_item"): states.CONFIRMING_ITEM,
    (states.CONFIRMING_ORDER, "modify_cart"): states.BROWSING_MENU,
}

# estados que só fazem sentido com itens no carrinho
_NEEDS_CART = {states.COLLECTING_ADDRESS, states.COLLECTING_PAYMENT, states.CONFIRMING_ORDER}


@dataclass
class TurnResult:
    reply_text: str
    state_before: str
    state_after: str
    intent: str
    side_effects: dict[str, Any] = field(default_factory=dict)
    executed_tools: list[str] = field(default_factory=list)
    rejected_tools: list[str] = field(default_factory=list)
    failed_tools: list[str] = field(default_factory=list)
    offered_product_id: int | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class _TurnLog:
    executed: list[str] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    side_effects: dict[str, Any] = field(default_factory=dict)
    tool_state: str | None = None


def implied_transition(state: str, intent: str | None, *, cart_has_items: bool) -> str | None:
    target = INTENT_TRANSITIONS.get((state, intent or ""))
    if not target or not states.can_transition(state, target):
        return None
    if target in _NEEDS_CART and not cart_has_items:
        return None
    return target


class OrderSessionEngine:
    """Executa um turno de conversa: intenção, política de tools, LLM e máquina de estados."""

    def __init__(
        self,
        provider: LLMProvider | None = None,
        classifier: IntentClassifier | None = None,
        *,
        geocoder: Geocoder | None = None,
        provider_factory: Callable[[AgentSettings], LLMProvider] | None = None,
        classifier_factory: Callable[[AgentSettings], IntentClassifier] | None = None,
        offer_patterns: OfferPatterns = DEFAULT_OFFER_PATTERNS,
        ttl_hours: int = CONVERSATION_TTL_HOURS,
    ) -> None:
        if provider is None and provider_factory is None:
            raise ValueError("provider or provider_factory is required")
        self._provider = provider
        self._provider_factory = provider_factory
        self._classifier = classifier
        self._classifier_factory = classifier_factory
        self._geocoder = geocoder
        self.offer_patterns = offer_patterns
        self.ttl_hours = ttl_hours

    def _provider_for(self, settings: AgentSettings) -> LLMProvider:
        if self._provider is not None:
            return self._provider
        return self._provider_factory(settings)

    def _classifier_for(self, settings: AgentSettings) -> IntentClassifier:
        if self._classifier is not None:
            return self._classifier
        if self._classifier_factory is not None:
            return self._classifier_factory(settings)
        return KeywordIntentClassifier()

    def _geocoder_for(self) -> Geocoder:
        if self._geocoder is None:
            self._geocoder = NominatimGeocoder()
        return self._geocoder

    def run_turn(
        self,
        db: Session,
        restaurant_id: int,
        phone: str,
        text: str,
        now: datetime | None = None,
    ) -> TurnResult:
        now = now or utcnow()
        started = time.perf_counter()
        restaurant = db.query(Restaurant).filter(Restaurant.id == restaurant_id).first()
        if restaurant is None:
            raise LookupError(f"restaurant {restaurant_id} not found")

        settings = load_agent_settings(db, restaurant_id)
        conversation = conversation_store.get_or_create(db, restaurant_id, phone, now=now, ttl_hours=self.ttl_hours)
        if conversation.state == states.ORDER_COMPLETED:
            # pedido anterior encerrado; o novo turno começa do zero
            conversation_store.reset(db, conversation, now=now, cart_status="completed")
            db.flush()
        # abre a transação do turno na linha da conversa; tudo até ao commit final é atómico
        db.execute(
            update(ConversationState)
            .where(ConversationState.id == conversation.id)
            .values(updated_at=now)
            .execution_options(synchronize_session=False)
        )

        menu = load_menu_snapshot(db, restaurant_id)
        state_before = conversation.state
        cart = cart_service.get_open_cart(db, conversation)
        lines = cart_service.cart_lines(cart)
        subtotal = cart_service.cart_subtotal_cents(cart)
        fee = conversation.delivery_fee_cents
        if fee is None:
            fee = menu.delivery_fee_cents
        pending = pending_service.describe_pending(db, restaurant_id, phone, menu, now=now)

        profile = None
        if settings.behavior.customer_profile.auto_load:
            profile = profile_service.get_profile(db, restaurant_id, phone)

        classification = self._classifier_for(settings).classify(
            text,
            state=state_before,
            context={
                "menu": menu,
                "pending_items": pending,
                "cart_summary": format_cart_lines(lines),
                "pending_summary": [f"{item['quantity']}x {item['name']}" for item in pending],
            },
        )
        intent = classification.intent
        allowed = settings.policy.resolve(intent)
        logger.info(
            "turn started state=%s intent=%s confidence=%.2f tools=%s",
            state_before,
            intent,
            classification.confidence,
            allowed.names,
            extra={"intent": intent, "state": state_before},
        )

        state_prompt = compile_state_prompt(state_before, menu.restaurant_name, menu.structure(), lines, subtotal, fee)
        request = LLMRequest(
            system_prompt=build_system_prompt(
                state_prompt,
                base_system_prompt=settings.base_system_prompt,
                decision_hint=allowed.hint,
                pending_items=pending,
                usage_rules=allowed.usage_rules(),
                customer_context=profile_service.describe_customer(profile),
            ),
            user_message=text,
            tools=allowed.function_schemas(),
            model=settings.model,
            temperature=settings.temperature,
            timeout_seconds=settings.timeout_seconds,
            context={"menu": menu, "intent": intent, "state": state_before},
        )
        ctx = ToolContext(
            db=db,
            restaurant=restaurant,
            conversation=conversation,
            menu=menu,
            behavior=settings.behavior,
            geocoder=self._geocoder_for(),
            now=now,
            state=state_before,
        )
        turn = _TurnLog()
        provider = self._provider_for(settings)
        offered = set(allowed.names)

        try:
            reply_text = self._converse(provider, request, ctx, offered, turn, settings.max_tool_rounds)
        except LLMProviderError:
            db.rollback()
            duration_ms = (time.perf_counter() - started) * 1000
            turn_metrics.observe_failure(restaurant_id, duration_ms)
            logger.error("llm provider failed; turn aborted state=%s", state_before, extra={"state": state_before})
            raise

        state_after = turn.tool_state
        if state_after is None:
            cart = cart_service.get_open_cart(db, ctx.conversation)
            state_after = implied_transition(state_before, intent, cart_has_items=bool(cart and cart.items))
        state_after = state_after or state_before

        offered_product = detect_offered_product(reply_text, menu.products, patterns=self.offer_patterns)
        offered_product_id = offered_product.id if offered_product else None
        conversation = self._persist(db, ctx.conversation, state_after, intent, offered_product_id, now)

        duration_ms = (time.perf_counter() - started) * 1000
        turn_metrics.observe_turn(
            restaurant_id,
            intent=intent,
            duration_ms=duration_ms,
            executed=turn.executed,
            rejected=turn.rejected,
            failed=turn.failed,
            offer_detected=offered_product is not None,
        )
        logger.info(
            "turn finished state=%s->%s executed=%s rejected=%s failed=%s offered_product=%s",
            state_before,
            conversation.state,
            turn.executed,
            turn.rejected,
            turn.failed,
            offered_product_id,
            extra={"intent": intent, "state": conversation.state},
        )
        return TurnResult(
            reply_text=reply_text,
            state_before=state_before,
            state_after=conversation.state,
            intent=intent,
            side_effects=turn.side_effects,
            executed_tools=turn.executed,
            rejected_tools=turn.rejected,
            failed_tools=turn.failed,
            offered_product_id=offered_product_id,
        )

    def _converse(
        self,
        provider: LLMProvider,
        request: LLMRequest,
        ctx: ToolContext,
        offered: set[str],
        turn: _TurnLog,
        max_rounds: int,
    ) -> str:
        reply_text = ""
        for round_index in range(max_rounds + 1):
            request.context["state"] = ctx.state
            response = provider.complete(request)
            if response.reply_text:
                reply_text = response.reply_text
            if not response.tool_calls:
                break
            if round_index == max_rounds:
                logger.warning("tool round limit reached; ignoring %d calls", len(response.tool_calls))
                break
            results = [self._execute_call(ctx, call, offered, turn) for call in response.tool_calls]
            request.rounds.append(ToolRound(reply_text=response.reply_text, calls=response.tool_calls, results=results))
        return reply_text or FALLBACK_REPLY

    def _check_call(self, call: ToolCall, offered: set[str]):
        if call.name not in offered:
            raise ContractViolation(call.name, "ferramenta não oferecida neste turno")
        if call.parse_error:
            raise ContractViolation(call.name, f"argumentos ilegíveis: {call.parse_error}")
        spec = TOOL_REGISTRY[call.name]
        try:
            return spec, spec.parse_args(call.args)
        except ValidationError as exc:
            raise ContractViolation(call.name, f"argumentos inválidos: {exc.errors(include_url=False)}") from exc

    def _execute_call(self, ctx: ToolContext, call: ToolCall, offered: set[str], turn: _TurnLog) -> dict[str, Any]:
        try:
            spec, args = self._check_call(call, offered)
        except ContractViolation as exc:
            logger.warning("tool call rejected tool=%s reason=%s", exc.tool_name, exc.reason)
            turn.rejected.append(call.name)
            return {"tool": call.name, "ok": False, "error": f"chamada rejeitada: {exc.reason}"}

        try:
            # savepoint por chamada: a falha desfaz só esta tool, o commit é do turno
            with ctx.db.begin_nested():
                outcome = spec.handler(ctx, args)
        except (ToolExecutionError, StaleDataError, SQLAlchemyError) as exc:
            logger.warning("tool call failed tool=%s error=%s", call.name, exc)
            turn.failed.append(call.name)
            return {"tool": call.name, "ok": False, "error": str(exc)}

        turn.executed.append(call.name)
        turn.side_effects.update(outcome.side_effects)
        if outcome.next_state:
            ctx.state = outcome.next_state
            turn.tool_state = outcome.next_state
        return {"tool": call.name, "ok": True, "data": outcome.data}

    def _persist(self, db: Session, conversation, state_after: str, intent: str, offered_product_id: int | None, now: datetime):
        conversation.state = state_after
        conversation.last_intent = intent
        if offered_product_id is not None:
            conversation.last_offered_product_id = offered_product_id
        conversation.updated_at = now
        try:
            db.commit()
        except StaleDataError:
            # outra escrita na mesma conversa: o turno inteiro é descartado
            db.rollback()
            logger.warning("conversation version conflict; turn discarded")
            raise
        return conversation
