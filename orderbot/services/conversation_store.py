from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderbot.core.clock import as_utc, utcnow
from orderbot.core.config import CONVERSATION_TTL_HOURS
from orderbot.fsm import states
from orderbot.models.cart import Cart
from orderbot.models.conversation import ConversationState

logger = logging.getLogger(__name__)


def find(db: Session, restaurant_id: int, phone: str) -> ConversationState | None:
    return (
        db.query(ConversationState)
        .filter(ConversationState.restaurant_id == restaurant_id, ConversationState.customer_phone == phone)
        .first()
    )


def get_or_create(
    db: Session,
    restaurant_id: int,
    phone: str,
    *,
    now: datetime | None = None,
    ttl_hours: int = CONVERSATION_TTL_HOURS,
) -> ConversationState:
    """Carrega a sessão do cliente; cria em idle se não existir e aplica o TTL."""
    now = now or utcnow()
    conversation = find(db, restaurant_id, phone)
    if conversation is None:
        conversation = ConversationState(
            restaurant_id=restaurant_id,
            customer_phone=phone,
            state=states.IDLE,
            updated_at=now,
        )
        db.add(conversation)
        try:
            db.commit()
        except IntegrityError:
            # outra requisição criou a mesma sessão
            db.rollback()
            conversation = find(db, restaurant_id, phone)
            if conversation is None:
                raise
        else:
            db.refresh(conversation)
            logger.info("conversation created state=idle")
        return conversation

    last_seen = as_utc(conversation.updated_at)
    if ttl_hours and last_seen and now - last_seen > timedelta(hours=ttl_hours) and conversation.state != states.IDLE:
        logger.info("conversation expired previous_state=%s", conversation.state)
        reset(db, conversation, now=now)
        db.commit()
    return conversation


def reset(db: Session, conversation: ConversationState, *, now: datetime | None = None, cart_status: str = "abandoned") -> None:
    if conversation.cart_id:
        cart = db.query(Cart).filter(Cart.id == conversation.cart_id).first()
        if cart and cart.status == "open":
            cart.status = cart_status
            cart.updated_at = now or utcnow()
    conversation.state = states.IDLE
    conversation.cart_id = None
    conversation.delivery_address = None
    conversation.delivery_fee_cents = None
    conversation.payment_method = None
    conversation.last_offered_product_id = None
    conversation.updated_at = now or utcnow()
