import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderbot.core.config import DEBOUNCE_QUIET_WINDOW_SECONDS, META_WA_VERIFY_TOKEN
from orderbot.core.database import get_db
from orderbot.core.logging_setup import mask_phone
from orderbot.core.request_context import set_request_context
from orderbot.deps import get_scheduler
from orderbot.models.processed_message import ProcessedMessage
from orderbot.models.restaurant import Restaurant
from orderbot.services import debounce
from orderbot.services import whatsapp_config
from orderbot.services.debounce import DebounceScheduler
from orderbot.whatsapp.cloud_transport import parse_cloud_webhook

router = APIRouter()
logger = logging.getLogger(__name__)


def _verify_token_for_restaurant(db: Session, restaurant_id: int) -> str:
    return whatsapp_config.verify_token_for(db, restaurant_id, default=META_WA_VERIFY_TOKEN)


@router.get("/api/whatsapp/{restaurant_id}/webhook")
async def verify_webhook(restaurant_id: int, request: Request, db: Session = Depends(get_db)):
    qp = request.query_params
    mode = qp.get("hub.mode")
    token = qp.get("hub.verify_token")
    challenge = qp.get("hub.challenge")

    verify_token = _verify_token_for_restaurant(db, restaurant_id)
    if mode == "subscribe" and verify_token and token == verify_token:
        return PlainTextResponse(challenge or "")

    raise HTTPException(status_code=403, detail="Verify token inválido")


def _already_processed(db: Session, restaurant_id: int, message_id: str) -> bool:
    if db.query(ProcessedMessage).filter_by(message_id=message_id).first():
        return True
    db.add(ProcessedMessage(message_id=message_id, restaurant_id=restaurant_id))
    try:
        db.commit()
    except IntegrityError:
        # o mesmo id chegou em paralelo
        db.rollback()
        return True
    return False


def _handle_inbound_message(
    db: Session,
    scheduler: Optional[DebounceScheduler],
    *,
    restaurant_id: int,
    message_id: str,
    from_number: str,
    text: str,
    message_type: str = "text",
) -> dict:
    set_request_context(restaurant_id=str(restaurant_id), customer_phone=from_number)
    logger.info(
        "WhatsApp recebido: restaurant=%s from=%s message_id=%s type=%s",
        restaurant_id,
        mask_phone(from_number),
        message_id,
        message_type,
    )

    if _already_processed(db, restaurant_id, message_id):
        return {"status": "duplicate", "message_id": message_id}
    if message_type != "text" or not text:
        return {"status": "ignored", "message_id": message_id}

    entry = debounce.enqueue(db, restaurant_id, from_number, text)
    if scheduler is not None:
        scheduler.schedule(entry.id, DEBOUNCE_QUIET_WINDOW_SECONDS)
    return {"status": "queued", "message_id": message_id, "queue_id": entry.id}


@router.post("/api/whatsapp/{restaurant_id}/webhook")
async def whatsapp_webhook(
    restaurant_id: int,
    request: Request,
    db: Session = Depends(get_db),
    scheduler: Optional[DebounceScheduler] = Depends(get_scheduler),
):
    if not db.query(Restaurant).filter(Restaurant.id == restaurant_id).first():
        raise HTTPException(status_code=404, detail="Restaurante não encontrado")

    payload = await request.json()
    messages = parse_cloud_webhook(payload)
    if not messages:
        return {"status": "ignored"}

    results = [
        _handle_inbound_message(
            db,
            scheduler,
            restaurant_id=restaurant_id,
            message_id=extracted["message_id"],
            from_number=extracted["from_number"],
            text=extracted.get("text", ""),
            message_type=extracted.get("message_type", "text"),
        )
        for extracted in messages
    ]
    return {"status": "ok", "messages": results}
