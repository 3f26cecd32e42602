from __future__ import annotations

import logging
import uuid

from orderbot.core.logging_setup import mask_phone
from orderbot.whatsapp.base import SendResult

logger = logging.getLogger(__name__)


class LoggingTransport:
    """Transporte de desenvolvimento: só regista a resposta e guarda-a em memória."""

    name = "logging"

    def __init__(self) -> None:
        self.sent: list[dict] = []

    def send_text(self, *, restaurant_id: int, to_phone: str, text: str) -> SendResult:
        message_id = f"mock-{uuid.uuid4().hex[:10]}"
        self.sent.append({"restaurant_id": restaurant_id, "to_phone": to_phone, "text": text, "id": message_id})
        logger.info("outbound message to=%s text=%r", mask_phone(to_phone), text)
        return SendResult(status="sent", provider_message_id=message_id)
