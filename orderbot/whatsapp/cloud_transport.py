from __future__ import annotations

import logging
from typing import Any, Callable

import httpx
from sqlalchemy.orm import Session

from orderbot.core.config import META_API_VERSION, META_WA_ACCESS_TOKEN, META_WA_PHONE_NUMBER_ID
from orderbot.core.logging_setup import mask_phone
from orderbot.services.whatsapp_config import CloudCredentials, resolve_credentials
from orderbot.whatsapp.base import MessageTransport, SendResult, sanitize_payload

logger = logging.getLogger(__name__)


def parse_cloud_webhook(payload: dict[str, Any]) -> list[dict[str, Any]]:
    """Extrai mensagens de um webhook do WhatsApp Cloud; só texto tem corpo."""
    messages: list[dict[str, Any]] = []
    for entry in payload.get("entry", []) or []:
        for change in entry.get("changes", []) or []:
            value = change.get("value") or {}
            metadata = value.get("metadata") or {}
            phone_number_id = metadata.get("phone_number_id")

            contacts = value.get("contacts") or []
            contact_name = None
            if contacts:
                contact_name = ((contacts[0].get("profile") or {}).get("name")) or None

            for msg in value.get("messages", []) or []:
                msg_type = msg.get("type") or "text"
                text = ""
                if msg_type == "text":
                    text = ((msg.get("text") or {}).get("body")) or ""
                message_id = msg.get("id")
                from_number = msg.get("from")
                if not message_id or not from_number:
                    continue
                messages.append(
                    {
                        "message_id": message_id,
                        "from_number": from_number,
                        "text": text.strip(),
                        "message_type": msg_type,
                        "phone_number_id": phone_number_id,
                        "contact_name": contact_name,
                    }
                )
    return messages


class CloudWhatsAppTransport:
    """Envio pela Cloud API.

    Com session_factory, as credenciais vêm do WhatsAppConfig do restaurante
    e as do construtor ficam como fallback. Sem credenciais nenhumas, delega
    em ``fallback`` quando existe.
    """

    name = "whatsapp_cloud"
    MAX_RETRIES = 3

    def __init__(
        self,
        access_token: str = META_WA_ACCESS_TOKEN,
        phone_number_id: str = META_WA_PHONE_NUMBER_ID,
        *,
        api_version: str = META_API_VERSION,
        timeout: float = 20.0,
        client: httpx.Client | None = None,
        session_factory: Callable[[], Session] | None = None,
        fallback: MessageTransport | None = None,
    ) -> None:
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.api_version = api_version
        self.timeout = timeout
        self._client = client
        self._session_factory = session_factory
        self._fallback = fallback

    def credentials_for(self, restaurant_id: int) -> CloudCredentials:
        default = CloudCredentials(self.access_token, self.phone_number_id, self.api_version)
        if self._session_factory is None:
            return default
        db = self._session_factory()
        try:
            return resolve_credentials(db, restaurant_id, default)
        finally:
            db.close()

    def send_text(self, *, restaurant_id: int, to_phone: str, text: str) -> SendResult:
        credentials = self.credentials_for(restaurant_id)
        if not credentials.complete:
            if self._fallback is not None:
                return self._fallback.send_text(restaurant_id=restaurant_id, to_phone=to_phone, text=text)
            logger.warning("whatsapp cloud credentials missing; message not sent")
            return SendResult(status="failed", error="Credenciais do WhatsApp Cloud incompletas")

        url = f"https://graph.facebook.com/{credentials.api_version}/{credentials.phone_number_id}/messages"
        headers = {"Authorization": f"Bearer {credentials.access_token}", "Content-Type": "application/json"}
        payload = {
            "messaging_product": "whatsapp",
            "to": to_phone,
            "type": "text",
            "text": {"preview_url": False, "body": text},
        }

        last_error: str | None = None
        for attempt in range(1, self.MAX_RETRIES + 1):
            try:
                if self._client is not None:
                    response = self._client.post(url, headers=headers, json=payload)
                else:
                    with httpx.Client(timeout=self.timeout) as client:
                        response = client.post(url, headers=headers, json=payload)
            except httpx.HTTPError as exc:
                last_error = str(exc)
                logger.warning("whatsapp send attempt=%s failed: %s", attempt, exc)
                continue

            if 200 <= response.status_code < 300:
                provider_id = None
                try:
                    provider_id = ((response.json().get("messages") or [{}])[0].get("id"))
                except ValueError:
                    pass
                logger.info("whatsapp message sent to=%s", mask_phone(to_phone))
                return SendResult(status="sent", provider_message_id=provider_id)

            last_error = f"Erro WhatsApp {response.status_code}: {response.text}"
            logger.warning("whatsapp send attempt=%s status=%s", attempt, response.status_code)
            if response.status_code < 500 and response.status_code != 429:
                break

        logger.error("whatsapp send failed payload=%s error=%s", sanitize_payload(payload), last_error)
        return SendResult(status="failed", error=last_error)
