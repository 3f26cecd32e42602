from __future__ import annotations

import json
import logging
from typing import Any

from openai import APIError, APITimeoutError, OpenAI, OpenAIError

from orderbot.ai.base import LLMRequest
from orderbot.ai.schema import IntentClassification, LLMResponse, ToolCall
from orderbot.core.config import LLM_TIMEOUT_SECONDS, OPENAI_API_KEY, OPENAI_MODEL
from orderbot.core.errors import LLMProviderError

logger = logging.getLogger(__name__)


def _build_client(api_key: str | None, timeout: float) -> OpenAI:
    key = api_key or OPENAI_API_KEY
    if not key:
        raise LLMProviderError("OPENAI_API_KEY não configurada")
    return OpenAI(api_key=key, timeout=timeout, max_retries=0)


def _call_id(round_index: int, call_index: int, call: ToolCall) -> str:
    return call.call_id or f"call_{round_index}_{call_index}"


def build_messages(request: LLMRequest) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = [
        {"role": "system", "content": request.system_prompt},
        {"role": "user", "content": request.user_message},
    ]
    for round_index, tool_round in enumerate(request.rounds):
        messages.append(
            {
                "role": "assistant",
                "content": tool_round.reply_text or "",
                "tool_calls": [
                    {
                        "id": _call_id(round_index, call_index, call),
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.args, ensure_ascii=False)},
                    }
                    for call_index, call in enumerate(tool_round.calls)
                ],
            }
        )
        for call_index, (call, result) in enumerate(zip(tool_round.calls, tool_round.results)):
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": _call_id(round_index, call_index, call),
                    "content": json.dumps(result, ensure_ascii=False, default=str),
                }
            )
    return messages


class OpenAIProvider:
    name = "openai"

    def __init__(self, api_key: str | None = None, model: str | None = None, client: OpenAI | None = None) -> None:
        self._api_key = api_key
        self._model = model or OPENAI_MODEL
        self._client = client

    def _client_for(self, timeout: float) -> OpenAI:
        if self._client is not None:
            return self._client
        return _build_client(self._api_key, timeout)

    def complete(self, request: LLMRequest) -> LLMResponse:
        timeout = request.timeout_seconds or LLM_TIMEOUT_SECONDS
        kwargs: dict[str, Any] = {
            "model": request.model or self._model,
            "messages": build_messages(request),
            "timeout": timeout,
        }
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.tools:
            kwargs["tools"] = request.tools
            kwargs["tool_choice"] = "auto"

        try:
            completion = self._client_for(timeout).chat.completions.create(**kwargs)
        except APITimeoutError as exc:
            raise LLMProviderError(f"timeout do provedor LLM: {exc}") from exc
        except (APIError, OpenAIError) as exc:
            raise LLMProviderError(f"erro do provedor LLM: {exc}") from exc

        if not completion.choices:
            raise LLMProviderError("resposta do LLM sem choices")
        message = completion.choices[0].message
        calls: list[ToolCall] = []
        for call in message.tool_calls or []:
            raw_arguments = call.function.arguments or "{}"
            try:
                args = json.loads(raw_arguments)
                parse_error = None if isinstance(args, dict) else "argumentos não são um objeto JSON"
            except json.JSONDecodeError as exc:
                args, parse_error = {}, str(exc)
            calls.append(
                ToolCall(
                    name=call.function.name,
                    args=args if isinstance(args, dict) else {},
                    call_id=call.id,
                    parse_error=parse_error,
                )
            )
        return LLMResponse(reply_text=(message.content or "").strip(), tool_calls=calls)


INTENT_SYSTEM_PROMPT = """És o classificador de intenções de um assistente de pedidos via WhatsApp.
Responde APENAS com JSON: {"intent": "<intenção>", "confidence": 0.0-1.0, "reasoning": "<curto>"}.
Intenções válidas: %s.
Se não tiveres certeza, usa "unclear" com confiança baixa."""


class OpenAIIntentClassifier:
    def __init__(self, intents: list[str], *, api_key: str | None = None, model: str | None = None,
                 client: OpenAI | None = None, fallback=None) -> None:
        self.intents = list(intents)
        self._api_key = api_key
        self._model = model or OPENAI_MODEL
        self._client = client
        self._fallback = fallback

    def classify(self, text: str, *, state: str, context: dict[str, Any]) -> IntentClassification:
        payload = {
            "estado_atual": state,
            "mensagem": text,
            "carrinho": context.get("cart_summary"),
            "pendentes": context.get("pending_summary"),
        }
        try:
            client = self._client or _build_client(self._api_key, LLM_TIMEOUT_SECONDS)
            completion = client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": INTENT_SYSTEM_PROMPT % ", ".join(self.intents)},
                    {"role": "user", "content": json.dumps(payload, ensure_ascii=False)},
                ],
                response_format={"type": "json_object"},
                temperature=0,
                timeout=LLM_TIMEOUT_SECONDS,
            )
            data = json.loads(completion.choices[0].message.content or "{}")
            result = IntentClassification.model_validate(data)
        except (OpenAIError, LLMProviderError, ValueError, IndexError) as exc:
            if self._fallback is None:
                raise LLMProviderError(f"falha ao classificar intenção: {exc}") from exc
            logger.warning("intent classification failed, using keyword rules: %s", exc)
            return self._fallback.classify(text, state=state, context=context)

        if result.intent not in self.intents:
            logger.info("classifier returned unknown intent=%s", result.intent)
            return IntentClassification(intent="unclear", confidence=0.3, reasoning=result.reasoning)
        return result
