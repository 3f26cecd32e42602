from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from orderbot.core.config import META_API_VERSION, META_WA_ACCESS_TOKEN, META_WA_PHONE_NUMBER_ID
from orderbot.models.whatsapp_config import WhatsAppConfig


@dataclass(frozen=True)
class CloudCredentials:
    access_token: str
    phone_number_id: str
    api_version: str = META_API_VERSION

    @property
    def complete(self) -> bool:
        return bool(self.access_token and self.phone_number_id)


def get_config(db: Session, restaurant_id: int) -> WhatsAppConfig | None:
    return db.query(WhatsAppConfig).filter(WhatsAppConfig.restaurant_id == restaurant_id).first()


def resolve_credentials(
    db: Session,
    restaurant_id: int,
    default: CloudCredentials | None = None,
) -> CloudCredentials:
    """Credenciais do restaurante quando ativas e completas; senão as globais."""
    default = default or CloudCredentials(META_WA_ACCESS_TOKEN, META_WA_PHONE_NUMBER_ID)
    config = get_config(db, restaurant_id)
    if config and config.is_enabled and config.access_token and config.phone_number_id:
        return CloudCredentials(
            access_token=config.access_token,
            phone_number_id=config.phone_number_id,
            api_version=config.api_version or default.api_version,
        )
    return default


def verify_token_for(db: Session, restaurant_id: int, default: str = "") -> str:
    config = get_config(db, restaurant_id)
    if config and config.verify_token:
        return config.verify_token
    return default
