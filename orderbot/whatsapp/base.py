from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass
class SendResult:
    status: str  # sent / failed
    provider_message_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "sent"


class MessageTransport(Protocol):
    """Canal de saída das respostas do assistente."""

    name: str

    def send_text(self, *, restaurant_id: int, to_phone: str, text: str) -> SendResult:
        ...


SECRET_FIELDS = frozenset({"access_token", "verify_token", "authorization", "token"})


def mask_secret(value: Any) -> str | None:
    if value is None:
        return None
    raw = str(value)
    return "****" + raw[-4:] if len(raw) > 4 else "****"


def sanitize_payload(payload: Any) -> Any:
    """Cópia do payload com credenciais mascaradas, para logs."""
    if isinstance(payload, list):
        return [sanitize_payload(item) for item in payload]
    if not isinstance(payload, dict):
        return payload
    cleaned = {}
    for key, value in payload.items():
        if str(key).lower() in SECRET_FIELDS:
            cleaned[key] = mask_secret(value)
        else:
            cleaned[key] = sanitize_payload(value)
    return cleaned
