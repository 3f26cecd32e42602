from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from orderbot.ai.tools import known_tool_names
from orderbot.core.config import PENDING_ITEMS_DEFAULT_EXPIRATION_MINUTES
from orderbot.core.errors import ConfigurationError


def _unknown_tools(names: list[str]) -> list[str]:
    known = known_tool_names()
    return [name for name in names if name not in known]


class CustomerProfileBehavior(BaseModel):
    auto_load: bool = True
    update_name_from_conversation: bool = False
    update_address_on_confirmation: bool = False
    update_payment_on_confirmation: bool = False


class PendingProductsBehavior(BaseModel):
    allow_multiple: bool = True
    expiration_minutes: int = Field(PENDING_ITEMS_DEFAULT_EXPIRATION_MINUTES, ge=1, le=1440)


class BehaviorConfig(BaseModel):
    customer_profile: CustomerProfileBehavior = Field(default_factory=CustomerProfileBehavior)
    pending_products: PendingProductsBehavior = Field(default_factory=PendingProductsBehavior)


class IntentPolicy(BaseModel):
    allowed_tools: List[str]
    decision_hint: str = ""

    @field_validator("allowed_tools")
    @classmethod
    def _tools_exist(cls, value: list[str]) -> list[str]:
        unknown = _unknown_tools(value)
        if unknown:
            raise ValueError(f"ferramentas desconhecidas: {', '.join(unknown)}")
        return value


class OrchestrationConfig(BaseModel):
    intents: Dict[str, IntentPolicy] = Field(default_factory=dict)


class RecoveryType(BaseModel):
    enabled: bool = True
    delay_minutes: int = Field(30, ge=1, le=60 * 24 * 90)
    max_attempts: int = Field(1, ge=1, le=3)
    message_template: str = Field("Olá! Posso ajudar com o teu pedido?", min_length=1)


def _default_types() -> Dict[str, RecoveryType]:
    return {
        "cart_abandoned": RecoveryType(
            delay_minutes=30,
            max_attempts=2,
            message_template=(
                "Olá {{customer_name}}! Deixaste {{items_count}} item(ns) no carrinho "
                "({{cart_value}}). Queres finalizar o pedido?"
            ),
        ),
        "conversation_paused": RecoveryType(
            delay_minutes=15,
            max_attempts=1,
            message_template="Olá! Ficou alguma dúvida? Estou aqui para continuar o teu pedido.",
        ),
        "customer_inactive": RecoveryType(
            enabled=False,
            delay_minutes=30 * 24 * 60,
            max_attempts=1,
            message_template="{{customer_name}}, sentimos a tua falta! Que tal repetir {{preferred_item}}?",
        ),
    }


class RecoveryConfig(BaseModel):
    enabled: bool = False
    # horas (UTC) em que o envio é permitido, [start, end)
    send_hour_start: int = Field(9, ge=0, le=23)
    send_hour_end: int = Field(22, ge=1, le=24)
    types: Dict[Literal["cart_abandoned", "conversation_paused", "customer_inactive"], RecoveryType] = Field(
        default_factory=_default_types
    )

    @model_validator(mode="after")
    def _fill_types(self) -> "RecoveryConfig":
        defaults = _default_types()
        for name, default in defaults.items():
            self.types.setdefault(name, default)
        if self.send_hour_start >= self.send_hour_end:
            raise ValueError("send_hour_start tem de ser menor que send_hour_end")
        return self


class AgentToolOverride(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tool_name: str = Field(..., min_length=1)
    enabled: bool = True
    ordering: int = 0
    description_override: Optional[str] = None
    usage_rules: Optional[str] = None

    @field_validator("tool_name")
    @classmethod
    def _tool_exists(cls, value: str) -> str:
        if _unknown_tools([value]):
            raise ValueError(f"ferramenta desconhecida: {value}")
        return value


class AgentConfigRead(BaseModel):
    restaurant_id: int
    provider: str
    enabled: bool
    model: Optional[str] = None
    temperature: Optional[float] = None
    timeout_seconds: Optional[float] = None
    max_tool_rounds: Optional[int] = None
    base_system_prompt: Optional[str] = None
    behavior_config: BehaviorConfig
    orchestration_config: Optional[OrchestrationConfig] = None
    recovery_config: RecoveryConfig = Field(default_factory=RecoveryConfig)
    tools: List[AgentToolOverride] = Field(default_factory=list)


class AgentConfigUpdate(BaseModel):
    provider: Literal["mock", "openai"] = "mock"
    enabled: bool = False
    model: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)
    timeout_seconds: Optional[float] = Field(None, gt=0, le=120)
    max_tool_rounds: Optional[int] = Field(None, ge=1, le=5)
    base_system_prompt: Optional[str] = None
    behavior_config: Optional[Dict[str, Any]] = None
    orchestration_config: Optional[Dict[str, Any]] = None
    recovery_config: Optional[Dict[str, Any]] = None
    tools: Optional[List[Dict[str, Any]]] = None


def _format_errors(exc: ValidationError) -> list[str]:
    errors = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        errors.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return errors


def parse_behavior_config(raw: dict[str, Any] | None) -> BehaviorConfig:
    try:
        return BehaviorConfig.model_validate(raw or {})
    except ValidationError as exc:
        raise ConfigurationError("behavior_config inválido", _format_errors(exc)) from exc


def parse_orchestration_config(raw: dict[str, Any] | None) -> OrchestrationConfig | None:
    if raw is None:
        return None
    try:
        return OrchestrationConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError("orchestration_config inválido", _format_errors(exc)) from exc


def parse_tool_overrides(raw: list[dict[str, Any]] | None) -> list[AgentToolOverride]:
    overrides = []
    errors: list[str] = []
    for index, entry in enumerate(raw or []):
        try:
            overrides.append(AgentToolOverride.model_validate(entry))
        except ValidationError as exc:
            errors.extend(f"tools.{index}.{message}" for message in _format_errors(exc))
    names = [override.tool_name for override in overrides]
    errors.extend(f"tools: {name} repetida" for name in sorted({name for name in names if names.count(name) > 1}))
    if errors:
        raise ConfigurationError("tools inválidas", errors)
    return overrides


def parse_recovery_config(raw: dict[str, Any] | None) -> RecoveryConfig:
    try:
        return RecoveryConfig.model_validate(raw or {})
    except ValidationError as exc:
        raise ConfigurationError("recovery_config inválido", _format_errors(exc)) from exc
