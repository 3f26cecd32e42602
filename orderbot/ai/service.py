from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from orderbot.ai.agent_settings import AgentSettings, load_agent_settings
from orderbot.ai.base import IntentClassifier, LLMProvider
from orderbot.ai.intent import KeywordIntentClassifier
from orderbot.ai.mock_provider import MockProvider
from orderbot.ai.openai_provider import OpenAIIntentClassifier, OpenAIProvider
from orderbot.ai.orchestration import DEFAULT_INTENTS
from orderbot.core.config import OPENAI_API_KEY
from orderbot.core.errors import LLMProviderError
from orderbot.fsm.engine import OrderSessionEngine, TurnResult
from orderbot.models.ai_message_log import AIMessageLog

logger = logging.getLogger(__name__)


def _uses_openai(settings: AgentSettings) -> bool:
    return settings.enabled and settings.provider == "openai"


def build_provider(settings: AgentSettings) -> LLMProvider:
    if _uses_openai(settings):
        return OpenAIProvider(model=settings.model)
    return MockProvider()


def build_classifier(settings: AgentSettings) -> IntentClassifier:
    keyword = KeywordIntentClassifier()
    if _uses_openai(settings) and OPENAI_API_KEY:
        return OpenAIIntentClassifier(list(DEFAULT_INTENTS), model=settings.model, fallback=keyword)
    return keyword


def build_engine(**kwargs) -> OrderSessionEngine:
    kwargs.setdefault("provider_factory", build_provider)
    kwargs.setdefault("classifier_factory", build_classifier)
    return OrderSessionEngine(**kwargs)


def _log_message(
    db: Session,
    *,
    restaurant_id: int,
    phone: str,
    direction: str,
    provider: str,
    prompt: str | None = None,
    raw_response: str | None = None,
    intent: str | None = None,
    state_before: str | None = None,
    state_after: str | None = None,
    tool_calls: dict[str, Any] | None = None,
    offered_product_id: int | None = None,
    error: str | None = None,
) -> None:
    entry = AIMessageLog(
        restaurant_id=restaurant_id,
        phone=phone,
        direction=direction,
        provider=provider,
        prompt=prompt,
        raw_response=raw_response,
        intent=intent,
        state_before=state_before,
        state_after=state_after,
        tool_calls=tool_calls,
        offered_product_id=offered_product_id,
        error=error,
    )
    db.add(entry)
    db.commit()


def run_assistant(
    db: Session,
    restaurant_id: int,
    phone: str,
    message: str,
    *,
    engine: OrderSessionEngine | None = None,
) -> TurnResult:
    """Corre um turno e regista entrada/saída em ai_message_logs."""
    engine = engine or build_engine()
    provider_name = "openai" if _uses_openai(load_agent_settings(db, restaurant_id)) else "mock"
    _log_message(db, restaurant_id=restaurant_id, phone=phone, direction="in", provider=provider_name, prompt=message)
    try:
        result = engine.run_turn(db, restaurant_id, phone, message)
    except LLMProviderError as exc:
        _log_message(
            db,
            restaurant_id=restaurant_id,
            phone=phone,
            direction="out",
            provider=provider_name,
            prompt=message,
            error=f"provider_error: {exc}",
        )
        raise

    errors = [f"tool_rejected:{name}" for name in result.rejected_tools]
    errors += [f"tool_failed:{name}" for name in result.failed_tools]
    _log_message(
        db,
        restaurant_id=restaurant_id,
        phone=phone,
        direction="out",
        provider=provider_name,
        prompt=message,
        raw_response=result.reply_text,
        intent=result.intent,
        state_before=result.state_before,
        state_after=result.state_after,
        tool_calls={
            "executed": result.executed_tools,
            "rejected": result.rejected_tools,
            "failed": result.failed_tools,
        },
        offered_product_id=result.offered_product_id,
        error="; ".join(errors) or None,
    )
    return result
