# orderbot/deps.py
from __future__ import annotations

import hmac
import logging
from typing import Callable, Optional

from fastapi import Header, HTTPException, status
from sqlalchemy.orm import Session

from orderbot.ai.service import build_engine, run_assistant
from orderbot.core.config import ADMIN_API_TOKEN, DEBOUNCE_SCHEDULER_ENABLED
from orderbot.core.database import SessionLocal
from orderbot.fsm.engine import OrderSessionEngine
from orderbot.services.debounce import DebounceScheduler, EngineRunner
from orderbot.whatsapp.base import MessageTransport
from orderbot.whatsapp.cloud_transport import CloudWhatsAppTransport
from orderbot.whatsapp.logging_transport import LoggingTransport

logger = logging.getLogger(__name__)

_engine: OrderSessionEngine | None = None
_transport: MessageTransport | None = None
_scheduler: DebounceScheduler | None = None


def get_engine() -> OrderSessionEngine:
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def get_transport() -> MessageTransport:
    """Cloud API com as credenciais do restaurante ou globais; sem nenhuma, só regista as respostas."""
    global _transport
    if _transport is None:
        _transport = CloudWhatsAppTransport(session_factory=SessionLocal, fallback=LoggingTransport())
    return _transport


def make_turn_runner(
    session_factory: Callable[[], Session] = SessionLocal,
    engine: OrderSessionEngine | None = None,
    transport: MessageTransport | None = None,
) -> EngineRunner:
    def run(restaurant_id: int, phone: str, text: str) -> dict:
        db = session_factory()
        try:
            result = run_assistant(db, restaurant_id, phone, text, engine=engine or get_engine())
        finally:
            db.close()
        sent = (transport or get_transport()).send_text(
            restaurant_id=restaurant_id, to_phone=phone, text=result.reply_text
        )
        if not sent.ok:
            logger.warning("reply not delivered restaurant_id=%s error=%s", restaurant_id, sent.error)
        payload = result.as_dict()
        payload["delivery_status"] = sent.status
        return payload

    return run


def get_turn_runner() -> EngineRunner:
    return make_turn_runner()


def get_scheduler() -> Optional[DebounceScheduler]:
    """None quando o agendamento em processo está desligado (só varredura via cron)."""
    global _scheduler
    if not DEBOUNCE_SCHEDULER_ENABLED:
        return None
    if _scheduler is None:
        _scheduler = DebounceScheduler(SessionLocal, make_turn_runner())
    return _scheduler


def shutdown_scheduler() -> None:
    if _scheduler is not None:
        _scheduler.shutdown()


def require_admin_token(x_admin_token: Optional[str] = Header(None)) -> None:
    if not ADMIN_API_TOKEN:
        return
    if not x_admin_token or not hmac.compare_digest(x_admin_token, ADMIN_API_TOKEN):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token de administração inválido")
