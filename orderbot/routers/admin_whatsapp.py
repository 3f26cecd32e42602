from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from orderbot.core.database import get_db
from orderbot.deps import require_admin_token
from orderbot.models.restaurant import Restaurant
from orderbot.models.whatsapp_config import WhatsAppConfig
from orderbot.schemas.whatsapp_config import WhatsAppConfigRead, WhatsAppConfigUpdate
from orderbot.services import whatsapp_config
from orderbot.whatsapp.base import mask_secret

router = APIRouter(prefix="/api/admin", tags=["admin-whatsapp"], dependencies=[Depends(require_admin_token)])


def _strip(value: str | None) -> str | None:
    return value.strip() if value and value.strip() else None


def _serialize_config(config: WhatsAppConfig) -> dict:
    return {
        "restaurant_id": config.restaurant_id,
        "phone_number_id": config.phone_number_id,
        "access_token_masked": mask_secret(config.access_token),
        "verify_token_masked": mask_secret(config.verify_token),
        "api_version": config.api_version,
        "is_enabled": bool(config.is_enabled),
    }


def _load_or_create(db: Session, restaurant_id: int) -> WhatsAppConfig:
    if not db.query(Restaurant).filter(Restaurant.id == restaurant_id).first():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Restaurante não encontrado")
    config = whatsapp_config.get_config(db, restaurant_id)
    if config is None:
        config = WhatsAppConfig(restaurant_id=restaurant_id, is_enabled=False)
        db.add(config)
        db.flush()
    return config


@router.get("/{restaurant_id}/whatsapp/config", response_model=WhatsAppConfigRead)
def get_whatsapp_config(restaurant_id: int, db: Session = Depends(get_db)):
    config = _load_or_create(db, restaurant_id)
    db.commit()
    return _serialize_config(config)


@router.put("/{restaurant_id}/whatsapp/config", response_model=WhatsAppConfigRead)
def update_whatsapp_config(restaurant_id: int, payload: WhatsAppConfigUpdate, db: Session = Depends(get_db)):
    config = _load_or_create(db, restaurant_id)
    config.phone_number_id = _strip(payload.phone_number_id)
    config.verify_token = _strip(payload.verify_token)
    config.api_version = _strip(payload.api_version)
    config.is_enabled = bool(payload.is_enabled)
    if payload.update_token:
        config.access_token = _strip(payload.access_token)

    db.commit()
    db.refresh(config)
    return _serialize_config(config)
