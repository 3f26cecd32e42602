from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from orderbot.ai.agent_settings import get_agent_config, list_agent_tools
from orderbot.core.database import get_db
from orderbot.core.errors import ConfigurationError
from orderbot.deps import require_admin_token
from orderbot.models.agent_tool import AgentTool
from orderbot.models.ai_message_log import AIMessageLog
from orderbot.models.restaurant import Restaurant
from orderbot.schemas.agent_config import (
    AgentConfigRead,
    AgentConfigUpdate,
    AgentToolOverride,
    parse_behavior_config,
    parse_orchestration_config,
    parse_recovery_config,
    parse_tool_overrides,
)

router = APIRouter(prefix="/api/admin", tags=["admin-ai"], dependencies=[Depends(require_admin_token)])


def _ensure_restaurant(db: Session, restaurant_id: int) -> None:
    if not db.query(Restaurant).filter(Restaurant.id == restaurant_id).first():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Restaurante não encontrado")


def _serialize_config(config, tools: list[AgentTool]) -> dict:
    # config gravado já foi validado; ainda assim um bloco antigo inválido volta aos defaults
    try:
        behavior = parse_behavior_config(config.behavior_config)
    except ConfigurationError:
        behavior = parse_behavior_config(None)
    try:
        orchestration = parse_orchestration_config(config.orchestration_config)
    except ConfigurationError:
        orchestration = None
    try:
        recovery = parse_recovery_config(config.recovery_config)
    except ConfigurationError:
        recovery = parse_recovery_config(None)
    return AgentConfigRead(
        restaurant_id=config.restaurant_id,
        provider=config.provider,
        enabled=config.enabled,
        model=config.model,
        temperature=config.temperature,
        timeout_seconds=config.timeout_seconds,
        max_tool_rounds=config.max_tool_rounds,
        base_system_prompt=config.base_system_prompt,
        behavior_config=behavior,
        orchestration_config=orchestration,
        recovery_config=recovery,
        tools=[AgentToolOverride.model_validate(tool) for tool in tools],
    ).model_dump()


@router.get("/{restaurant_id}/ai/config", response_model=AgentConfigRead)
def get_ai_config(restaurant_id: int, db: Session = Depends(get_db)):
    _ensure_restaurant(db, restaurant_id)
    config = get_agent_config(db, restaurant_id)
    return _serialize_config(config, list_agent_tools(db, restaurant_id))


@router.put("/{restaurant_id}/ai/config", response_model=AgentConfigRead)
def update_ai_config(restaurant_id: int, payload: AgentConfigUpdate, db: Session = Depends(get_db)):
    _ensure_restaurant(db, restaurant_id)
    try:
        behavior = parse_behavior_config(payload.behavior_config)
        orchestration = parse_orchestration_config(payload.orchestration_config)
        overrides = parse_tool_overrides(payload.tools) if payload.tools is not None else None
        recovery = parse_recovery_config(payload.recovery_config) if payload.recovery_config is not None else None
    except ConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(exc), "errors": exc.errors},
        ) from exc

    config = get_agent_config(db, restaurant_id)
    config.provider = payload.provider
    config.enabled = bool(payload.enabled)
    config.model = payload.model.strip() if payload.model else None
    config.temperature = payload.temperature
    config.timeout_seconds = payload.timeout_seconds
    config.max_tool_rounds = payload.max_tool_rounds
    config.base_system_prompt = payload.base_system_prompt.strip() if payload.base_system_prompt else None
    config.behavior_config = behavior.model_dump()
    config.orchestration_config = orchestration.model_dump() if orchestration else None
    if recovery is not None:
        config.recovery_config = recovery.model_dump()

    if overrides is not None:
        db.query(AgentTool).filter(AgentTool.restaurant_id == restaurant_id).delete(synchronize_session=False)
        for override in overrides:
            db.add(AgentTool(restaurant_id=restaurant_id, **override.model_dump()))

    db.commit()
    db.refresh(config)
    return _serialize_config(config, list_agent_tools(db, restaurant_id))


@router.get("/{restaurant_id}/ai/logs", response_model=List[dict])
def list_ai_logs(
    restaurant_id: int,
    phone: Optional[str] = None,
    direction: Optional[str] = None,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    query = db.query(AIMessageLog).filter(AIMessageLog.restaurant_id == restaurant_id)
    if phone:
        query = query.filter(AIMessageLog.phone == phone)
    if direction:
        query = query.filter(AIMessageLog.direction == direction)

    logs = query.order_by(AIMessageLog.created_at.desc(), AIMessageLog.id.desc()).limit(min(max(limit, 1), 200)).all()

    return [
        {
            "id": entry.id,
            "restaurant_id": entry.restaurant_id,
            "phone": entry.phone,
            "direction": entry.direction,
            "provider": entry.provider,
            "intent": entry.intent,
            "state_before": entry.state_before,
            "state_after": entry.state_after,
            "tool_calls": entry.tool_calls,
            "offered_product_id": entry.offered_product_id,
            "error": entry.error,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }
        for entry in logs
    ]
