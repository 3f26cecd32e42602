from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from orderbot.ai.tools import TOOL_REGISTRY
from orderbot.schemas.agent_config import IntentPolicy, OrchestrationConfig, parse_orchestration_config

logger = logging.getLogger(__name__)

NEUTRAL_HINT = "Responde de forma simpática e pede ao cliente para clarificar o que pretende."

DEFAULT_INTENTS = (
    "browse_product",
    "browse_menu",
    "confirm_item",
    "provide_address",
    "provide_payment",
    "finalize",
    "ask_question",
    "collect_customer_data",
    "manage_pending_items",
    "confirm_pending_items",
    "modify_cart",
    "unclear",
)

DEFAULT_ORCHESTRATION_CONFIG: dict[str, Any] = {
    "intents": {
        "browse_product": {
            "allowed_tools": ["search_menu", "add_to_cart", "add_pending_item"],
            "decision_hint": "O cliente pediu um produto específico: procura-o no menu e, se for claro, adiciona-o.",
        },
        "browse_menu": {
            "allowed_tools": ["search_menu"],
            "decision_hint": "Mostra categorias ou produtos do menu com preços reais.",
        },
        "confirm_item": {
            "allowed_tools": ["add_to_cart", "update_cart_item", "confirm_pending_items", "show_cart"],
            "decision_hint": "O cliente confirmou o item oferecido: adiciona-o ou pergunta se quer finalizar.",
        },
        "provide_address": {
            "allowed_tools": ["validate_and_set_delivery_address"],
            "decision_hint": "Valida a morada recebida antes de avançar para o pagamento.",
        },
        "provide_payment": {
            "allowed_tools": ["set_payment_method"],
            "decision_hint": "Regista o método de pagamento e apresenta o resumo final.",
        },
        "finalize": {
            "allowed_tools": ["show_cart", "finalize_order", "transition_state"],
            "decision_hint": "Se faltar morada ou pagamento, pede-os; só finaliza após confirmação clara.",
        },
        "ask_question": {
            "allowed_tools": ["search_menu", "show_cart"],
            "decision_hint": "Responde à dúvida com dados reais e volta a guiar o pedido.",
        },
        "collect_customer_data": {
            "allowed_tools": ["update_customer_profile", "get_customer_history"],
            "decision_hint": "Regista os dados do cliente sem interromper o pedido.",
        },
        "manage_pending_items": {
            "allowed_tools": ["search_menu", "add_pending_item", "remove_pending_item", "clear_pending_items"],
            "decision_hint": "O cliente listou vários produtos: guarda-os como pendentes e pede confirmação.",
        },
        "confirm_pending_items": {
            "allowed_tools": ["confirm_pending_items", "remove_pending_item"],
            "decision_hint": "Confirma todos os itens pendentes de uma vez.",
        },
        "modify_cart": {
            "allowed_tools": ["remove_from_cart", "update_cart_item", "clear_cart", "show_cart"],
            "decision_hint": "Altera o carrinho conforme pedido e mostra o resultado.",
        },
        "unclear": {
            "allowed_tools": [],
            "decision_hint": NEUTRAL_HINT,
        },
    }
}


@dataclass(frozen=True)
class ToolOverride:
    enabled: bool = True
    ordering: int = 0
    description_override: str | None = None
    usage_rules: str | None = None


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    parameters: dict[str, Any]
    usage_rules: str | None = None

    def to_function_schema(self) -> dict[str, Any]:
        description = self.description
        if self.usage_rules:
            description = f"{description}\nRegras: {self.usage_rules}"
        return {
            "type": "function",
            "function": {"name": self.name, "description": description, "parameters": self.parameters},
        }


@dataclass(frozen=True)
class AllowedTools:
    tools: list[ToolDefinition] = field(default_factory=list)
    hint: str = NEUTRAL_HINT

    @property
    def names(self) -> list[str]:
        return [tool.name for tool in self.tools]

    def function_schemas(self) -> list[dict[str, Any]]:
        return [tool.to_function_schema() for tool in self.tools]

    def usage_rules(self) -> dict[str, str]:
        return {tool.name: tool.usage_rules for tool in self.tools if tool.usage_rules}


_OVERRIDE_FIELDS = ("tool_name", "enabled", "ordering", "description_override", "usage_rules")


def build_tool_overrides(rows: Iterable[Any]) -> dict[str, ToolOverride]:
    """Aceita linhas AgentTool ou dicts; nomes desconhecidos são descartados."""
    overrides: dict[str, ToolOverride] = {}
    for row in rows:
        if isinstance(row, Mapping):
            data = row
        else:
            data = {key: getattr(row, key, None) for key in _OVERRIDE_FIELDS}
            data["enabled"] = True if data["enabled"] is None else data["enabled"]
        name = data.get("tool_name")
        if name not in TOOL_REGISTRY:
            logger.warning("ignoring override for unknown tool %r", name)
            continue
        overrides[name] = ToolOverride(
            enabled=bool(data.get("enabled", True)),
            ordering=int(data.get("ordering") or 0),
            description_override=data.get("description_override") or None,
            usage_rules=data.get("usage_rules") or None,
        )
    return overrides


_DEFAULT_CONFIG = OrchestrationConfig.model_validate(DEFAULT_ORCHESTRATION_CONFIG)


def validate_orchestration_config(raw: Mapping[str, Any] | None) -> OrchestrationConfig:
    """Validação no momento de salvar; ferramentas desconhecidas levantam ConfigurationError."""
    return parse_orchestration_config(dict(raw or {}))


def resolve_allowed_tools(
    intent: str | None,
    orchestration: OrchestrationConfig | None = None,
    overrides: Mapping[str, ToolOverride] | None = None,
) -> AllowedTools:
    config = orchestration if orchestration is not None else _DEFAULT_CONFIG
    policy: IntentPolicy | None = config.intents.get(intent or "")
    if policy is None:
        logger.info("no orchestration policy for intent=%s; offering no tools", intent)
        return AllowedTools(tools=[], hint=NEUTRAL_HINT)

    overrides = overrides or {}
    definitions: list[tuple[int, int, ToolDefinition]] = []
    for position, name in enumerate(policy.allowed_tools):
        spec = TOOL_REGISTRY.get(name)
        if spec is None:
            logger.warning("policy for intent=%s references unknown tool %r", intent, name)
            continue
        override = overrides.get(name, ToolOverride())
        if not override.enabled:
            continue
        definitions.append(
            (
                override.ordering,
                position,
                ToolDefinition(
                    name=name,
                    description=override.description_override or spec.description,
                    parameters=spec.parameters(),
                    usage_rules=override.usage_rules,
                ),
            )
        )
    definitions.sort(key=lambda entry: (entry[0], entry[1]))
    return AllowedTools(tools=[entry[2] for entry in definitions], hint=policy.decision_hint or NEUTRAL_HINT)


class OrchestrationPolicy:
    def __init__(
        self,
        orchestration: OrchestrationConfig | None = None,
        overrides: Mapping[str, ToolOverride] | None = None,
    ) -> None:
        self.orchestration = orchestration
        self.overrides = dict(overrides or {})

    def resolve(self, intent: str | None) -> AllowedTools:
        return resolve_allowed_tools(intent, self.orchestration, self.overrides)
