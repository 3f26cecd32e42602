from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from orderbot.ai.schema import IntentClassification, LLMResponse, ToolCall


@dataclass
class ToolRound:
    """Chamadas pedidas pelo modelo numa ronda e os resultados devolvidos."""

    reply_text: str
    calls: list[ToolCall]
    results: list[dict[str, Any]]


@dataclass
class LLMRequest:
    system_prompt: str
    user_message: str
    tools: list[dict[str, Any]] = field(default_factory=list)
    rounds: list[ToolRound] = field(default_factory=list)
    model: str | None = None
    temperature: float | None = None
    timeout_seconds: float | None = None
    # dados auxiliares para providers locais (mock); nunca enviados a APIs externas
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def offered_tool_names(self) -> set[str]:
        return {tool["function"]["name"] for tool in self.tools}


class LLMProvider(Protocol):
    name: str

    def complete(self, request: LLMRequest) -> LLMResponse:
        """Levanta LLMProviderError em timeout/erro do provedor."""
        ...


class IntentClassifier(Protocol):
    def classify(self, text: str, *, state: str, context: dict[str, Any]) -> IntentClassification:
        ...
