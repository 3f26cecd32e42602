from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from orderbot.ai.orchestration import OrchestrationPolicy, build_tool_overrides
from orderbot.core.config import LLM_MAX_TOOL_ROUNDS, LLM_TIMEOUT_SECONDS
from orderbot.core.errors import ConfigurationError
from orderbot.models.agent_config import AgentConfig
from orderbot.models.agent_tool import AgentTool
from orderbot.schemas.agent_config import BehaviorConfig, parse_behavior_config, parse_orchestration_config

logger = logging.getLogger(__name__)


@dataclass
class AgentSettings:
    provider: str = "mock"
    enabled: bool = False
    model: str | None = None
    temperature: float | None = None
    timeout_seconds: float = LLM_TIMEOUT_SECONDS
    max_tool_rounds: int = LLM_MAX_TOOL_ROUNDS
    base_system_prompt: str | None = None
    behavior: BehaviorConfig = field(default_factory=BehaviorConfig)
    policy: OrchestrationPolicy = field(default_factory=OrchestrationPolicy)


def get_agent_config(db: Session, restaurant_id: int) -> AgentConfig:
    config = db.query(AgentConfig).filter(AgentConfig.restaurant_id == restaurant_id).first()
    if not config:
        config = AgentConfig(restaurant_id=restaurant_id, provider="mock", enabled=False, behavior_config={})
        db.add(config)
        db.commit()
        db.refresh(config)
    return config


def list_agent_tools(db: Session, restaurant_id: int) -> list[AgentTool]:
    return (
        db.query(AgentTool)
        .filter(AgentTool.restaurant_id == restaurant_id)
        .order_by(AgentTool.ordering.asc(), AgentTool.id.asc())
        .all()
    )


def load_agent_settings(db: Session, restaurant_id: int) -> AgentSettings:
    """Lê a configuração gravada; blocos inválidos caem para os defaults."""
    config = db.query(AgentConfig).filter(AgentConfig.restaurant_id == restaurant_id).first()
    overrides = build_tool_overrides(list_agent_tools(db, restaurant_id))
    if config is None:
        return AgentSettings(policy=OrchestrationPolicy(overrides=overrides))

    try:
        behavior = parse_behavior_config(config.behavior_config)
    except ConfigurationError as exc:
        logger.warning("stored behavior_config invalid, using defaults: %s", exc.errors)
        behavior = BehaviorConfig()
    try:
        orchestration = parse_orchestration_config(config.orchestration_config)
    except ConfigurationError as exc:
        logger.warning("stored orchestration_config invalid, using defaults: %s", exc.errors)
        orchestration = None

    return AgentSettings(
        provider=(config.provider or "mock").strip().lower(),
        enabled=bool(config.enabled),
        model=config.model,
        temperature=config.temperature,
        timeout_seconds=config.timeout_seconds or LLM_TIMEOUT_SECONDS,
        max_tool_rounds=config.max_tool_rounds or LLM_MAX_TOOL_ROUNDS,
        base_system_prompt=config.base_system_prompt,
        behavior=behavior,
        policy=OrchestrationPolicy(orchestration, overrides),
    )
