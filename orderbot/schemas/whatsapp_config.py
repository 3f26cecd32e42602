from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class WhatsAppConfigRead(BaseModel):
    restaurant_id: int
    phone_number_id: Optional[str] = None
    access_token_masked: Optional[str] = None
    verify_token_masked: Optional[str] = None
    api_version: Optional[str] = None
    is_enabled: bool


class WhatsAppConfigUpdate(BaseModel):
    phone_number_id: Optional[str] = None
    access_token: Optional[str] = None
    verify_token: Optional[str] = None
    api_version: Optional[str] = None
    is_enabled: bool = False
    # sem isto o token gravado é mantido
    update_token: bool = False
