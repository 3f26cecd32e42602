"""Follow-ups automáticos para conversas que pararam a meio.

Uma varredura por restaurante com recuperação ativa:

1. deteta carrinhos abandonados, conversas pausadas e clientes inativos
   e agenda a primeira tentativa de cada sequência;
2. agenda as tentativas seguintes das sequências já enviadas;
3. envia as tentativas pendentes dentro do horário permitido.

Um cliente só recebe uma mensagem de recuperação de cada nova sequência
por janela de cooldown (RECOVERY_COOLDOWN_HOURS).
"""
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Iterator

from sqlalchemy.orm import Session

from orderbot.core.clock import as_utc, utcnow
from orderbot.core.config import RECOVERY_BATCH_SIZE, RECOVERY_COOLDOWN_HOURS
from orderbot.core.errors import ConfigurationError
from orderbot.core.logging_setup import mask_phone
from orderbot.core.request_context import set_request_context
from orderbot.fsm import states
from orderbot.models.agent_config import AgentConfig
from orderbot.models.ai_message_log import AIMessageLog
from orderbot.models.conversation import ConversationState
from orderbot.models.customer_profile import CustomerProfile
from orderbot.models.recovery_attempt import RecoveryAttempt
from orderbot.models.restaurant import Restaurant
from orderbot.schemas.agent_config import RecoveryConfig, RecoveryType, parse_recovery_config
from orderbot.services import cart as cart_service
from orderbot.services import conversation_store
from orderbot.services import customer_profile as profile_service
from orderbot.services.menu_catalog import format_eur
from orderbot.whatsapp.base import MessageTransport

logger = logging.getLogger(__name__)

CART_ABANDONED = "cart_abandoned"
CONVERSATION_PAUSED = "conversation_paused"
CUSTOMER_INACTIVE = "customer_inactive"

PENDING = "pending"
SENT = "sent"
FAILED = "failed"
RECOVERED = "recovered"
SKIPPED_COOLDOWN = "skipped_cooldown"

MAX_ATTEMPTS = 3
# minutos até à tentativa seguinte, pelo número da tentativa enviada
ATTEMPT_INTERVALS_MINUTES = {1: 60, 2: 720}


@dataclass
class Candidate:
    phone: str
    activity_at: datetime
    conversation_id: int | None = None
    cart_id: int | None = None
    last_state: str | None = None
    items_count: int | None = None
    cart_value_cents: int | None = None
    preferred_item: str | None = None


@dataclass
class SweepSummary:
    restaurant_id: int
    scheduled: int = 0
    follow_ups: int = 0
    sent: int = 0
    failed: int = 0
    recovered: int = 0
    skipped: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def load_recovery_config(db: Session, restaurant_id: int) -> RecoveryConfig:
    config = db.query(AgentConfig).filter(AgentConfig.restaurant_id == restaurant_id).first()
    try:
        return parse_recovery_config(config.recovery_config if config else None)
    except ConfigurationError as exc:
        logger.warning("invalid recovery_config; recovery disabled errors=%s", exc.errors)
        return parse_recovery_config(None)


def render_message(attempt: RecoveryAttempt) -> str:
    values = {
        "customer_name": attempt.customer_name or "",
        "items_count": str(attempt.items_count or 0),
        "cart_value": format_eur(attempt.cart_value_cents or 0),
        "preferred_item": attempt.preferred_item or "o teu pedido favorito",
    }
    text = attempt.message_template
    for key, value in values.items():
        text = text.replace("{{" + key + "}}", value)
    # sem nome o template fica com espaços e vírgulas soltos
    text = re.sub(r"[ \t]+([!?.,])", r"\1", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    return text.lstrip(" ,")


def _root(attempt: RecoveryAttempt) -> int:
    return attempt.root_id or attempt.id


def in_cooldown(
    db: Session,
    restaurant_id: int,
    phone: str,
    now: datetime,
    *,
    exclude_root: int | None = None,
    cooldown_hours: int = RECOVERY_COOLDOWN_HOURS,
) -> bool:
    """Houve envio de outra sequência para o cliente dentro da janela de cooldown."""
    threshold = now - timedelta(hours=cooldown_hours)
    recent = (
        db.query(RecoveryAttempt)
        .filter(
            RecoveryAttempt.restaurant_id == restaurant_id,
            RecoveryAttempt.customer_phone == phone,
            RecoveryAttempt.status.in_((SENT, RECOVERED)),
            RecoveryAttempt.sent_at.isnot(None),
        )
        .all()
    )
    for attempt in recent:
        if exclude_root is not None and _root(attempt) == exclude_root:
            continue
        if as_utc(attempt.sent_at) >= threshold:
            return True
    return False


def _already_scheduled(db: Session, restaurant_id: int, recovery_type: str, candidate: Candidate) -> bool:
    """Já existe sequência deste tipo aberta depois da última atividade do cliente."""
    roots = (
        db.query(RecoveryAttempt)
        .filter(
            RecoveryAttempt.restaurant_id == restaurant_id,
            RecoveryAttempt.customer_phone == candidate.phone,
            RecoveryAttempt.recovery_type == recovery_type,
            RecoveryAttempt.attempt_number == 1,
        )
        .all()
    )
    activity_at = as_utc(candidate.activity_at)
    return any(as_utc(root.scheduled_for) >= activity_at for root in roots)


def _customer_active_since(db: Session, restaurant_id: int, phone: str, since: datetime | None) -> bool:
    if since is None:
        return False
    conversation = conversation_store.find(db, restaurant_id, phone)
    if conversation is None or conversation.updated_at is None:
        return False
    return as_utc(conversation.updated_at) > as_utc(since)


def _idle_conversations(db: Session, restaurant_id: int, cutoff: datetime) -> Iterator[ConversationState]:
    conversations = (
        db.query(ConversationState)
        .filter(
            ConversationState.restaurant_id == restaurant_id,
            ConversationState.state != states.ORDER_COMPLETED,
        )
        .order_by(ConversationState.id.asc())
        .all()
    )
    for conversation in conversations:
        last_seen = as_utc(conversation.updated_at)
        if last_seen is not None and last_seen <= cutoff:
            yield conversation


def detect_abandoned_carts(db: Session, restaurant_id: int, delay: timedelta, now: datetime) -> list[Candidate]:
    candidates = []
    for conversation in _idle_conversations(db, restaurant_id, now - delay):
        cart = cart_service.get_open_cart(db, conversation)
        if cart is None or not cart.items:
            continue
        candidates.append(
            Candidate(
                phone=conversation.customer_phone,
                activity_at=conversation.updated_at,
                conversation_id=conversation.id,
                cart_id=cart.id,
                last_state=conversation.state,
                items_count=sum(int(item.quantity) for item in cart.items),
                cart_value_cents=cart_service.cart_subtotal_cents(cart),
            )
        )
    return candidates


def detect_paused_conversations(db: Session, restaurant_id: int, delay: timedelta, now: datetime) -> list[Candidate]:
    candidates = []
    for conversation in _idle_conversations(db, restaurant_id, now - delay):
        if conversation.state == states.IDLE:
            continue
        cart = cart_service.get_open_cart(db, conversation)
        if cart is not None and cart.items:
            # coberta pelo carrinho abandonado
            continue
        candidates.append(
            Candidate(
                phone=conversation.customer_phone,
                activity_at=conversation.updated_at,
                conversation_id=conversation.id,
                last_state=conversation.state,
            )
        )
    return candidates


def detect_inactive_customers(db: Session, restaurant_id: int, delay: timedelta, now: datetime) -> list[Candidate]:
    cutoff = now - delay
    profiles = (
        db.query(CustomerProfile)
        .filter(CustomerProfile.restaurant_id == restaurant_id, CustomerProfile.last_order_at.isnot(None))
        .order_by(CustomerProfile.id.asc())
        .all()
    )
    candidates = []
    for profile in profiles:
        last_order_at = as_utc(profile.last_order_at)
        if last_order_at > cutoff:
            continue
        activity_at = last_order_at
        conversation = conversation_store.find(db, restaurant_id, profile.phone)
        if conversation is not None and conversation.updated_at is not None:
            activity_at = max(activity_at, as_utc(conversation.updated_at))
        if activity_at > cutoff:
            continue
        preferred = (profile.preferred_items or [{}])[0].get("name")
        candidates.append(Candidate(phone=profile.phone, activity_at=activity_at, preferred_item=preferred))
    return candidates


DETECTORS = {
    CART_ABANDONED: detect_abandoned_carts,
    CONVERSATION_PAUSED: detect_paused_conversations,
    CUSTOMER_INACTIVE: detect_inactive_customers,
}


def schedule_first_attempts(
    db: Session,
    restaurant_id: int,
    recovery_type: str,
    settings: RecoveryType,
    now: datetime,
    summary: SweepSummary,
) -> None:
    delay = timedelta(minutes=settings.delay_minutes)
    for candidate in DETECTORS[recovery_type](db, restaurant_id, delay, now):
        if _already_scheduled(db, restaurant_id, recovery_type, candidate):
            continue
        if in_cooldown(db, restaurant_id, candidate.phone, now):
            logger.info("recovery skipped by cooldown type=%s phone=%s", recovery_type, mask_phone(candidate.phone))
            summary.skipped += 1
            continue
        profile = profile_service.get_profile(db, restaurant_id, candidate.phone)
        db.add(
            RecoveryAttempt(
                restaurant_id=restaurant_id,
                customer_phone=candidate.phone,
                recovery_type=recovery_type,
                attempt_number=1,
                max_attempts=min(settings.max_attempts, MAX_ATTEMPTS),
                status=PENDING,
                conversation_id=candidate.conversation_id,
                cart_id=candidate.cart_id,
                last_state=candidate.last_state,
                items_count=candidate.items_count,
                cart_value_cents=candidate.cart_value_cents,
                customer_name=profile.name if profile else None,
                preferred_item=candidate.preferred_item,
                message_template=settings.message_template,
                scheduled_for=now,
            )
        )
        summary.scheduled += 1
    db.flush()


def schedule_follow_ups(db: Session, restaurant_id: int, now: datetime, summary: SweepSummary) -> None:
    due = (
        db.query(RecoveryAttempt)
        .filter(
            RecoveryAttempt.restaurant_id == restaurant_id,
            RecoveryAttempt.status == SENT,
            RecoveryAttempt.next_attempt_at.isnot(None),
        )
        .order_by(RecoveryAttempt.id.asc())
        .all()
    )
    for attempt in due:
        if as_utc(attempt.next_attempt_at) > now or attempt.attempt_number >= min(attempt.max_attempts, MAX_ATTEMPTS):
            continue
        if _customer_active_since(db, restaurant_id, attempt.customer_phone, attempt.sent_at):
            attempt.status = RECOVERED
            attempt.recovered_at = now
            attempt.next_attempt_at = None
            summary.recovered += 1
            continue
        root = _root(attempt)
        if in_cooldown(db, restaurant_id, attempt.customer_phone, now, exclude_root=root):
            summary.skipped += 1
            continue
        db.add(
            RecoveryAttempt(
                restaurant_id=restaurant_id,
                customer_phone=attempt.customer_phone,
                recovery_type=attempt.recovery_type,
                root_id=root,
                attempt_number=attempt.attempt_number + 1,
                max_attempts=attempt.max_attempts,
                status=PENDING,
                conversation_id=attempt.conversation_id,
                cart_id=attempt.cart_id,
                last_state=attempt.last_state,
                items_count=attempt.items_count,
                cart_value_cents=attempt.cart_value_cents,
                customer_name=attempt.customer_name,
                preferred_item=attempt.preferred_item,
                message_template=attempt.message_template,
                scheduled_for=now,
            )
        )
        attempt.next_attempt_at = None
        summary.follow_ups += 1
    db.flush()


def _next_attempt_at(attempt: RecoveryAttempt, now: datetime) -> datetime | None:
    if attempt.attempt_number >= min(attempt.max_attempts, MAX_ATTEMPTS):
        return None
    minutes = ATTEMPT_INTERVALS_MINUTES.get(attempt.attempt_number)
    return now + timedelta(minutes=minutes) if minutes else None


def send_pending(
    db: Session,
    restaurant_id: int,
    config: RecoveryConfig,
    transport: MessageTransport,
    now: datetime,
    summary: SweepSummary,
    *,
    batch_size: int = RECOVERY_BATCH_SIZE,
) -> None:
    if not (config.send_hour_start <= now.hour < config.send_hour_end):
        logger.info("recovery send skipped outside send hours hour=%s", now.hour)
        return

    pending = (
        db.query(RecoveryAttempt)
        .filter(RecoveryAttempt.restaurant_id == restaurant_id, RecoveryAttempt.status == PENDING)
        .order_by(RecoveryAttempt.attempt_number.asc(), RecoveryAttempt.id.asc())
        .all()
    )
    pending = [attempt for attempt in pending if as_utc(attempt.scheduled_for) <= now][:batch_size]
    for attempt in pending:
        phone = attempt.customer_phone
        if in_cooldown(db, restaurant_id, phone, now, exclude_root=_root(attempt)):
            attempt.status = SKIPPED_COOLDOWN
            summary.skipped += 1
            db.commit()
            continue
        if _customer_active_since(db, restaurant_id, phone, attempt.scheduled_for):
            attempt.status = RECOVERED
            attempt.recovered_at = now
            summary.recovered += 1
            db.commit()
            continue

        message = render_message(attempt)
        result = transport.send_text(restaurant_id=restaurant_id, to_phone=phone, text=message)
        if result.ok:
            attempt.status = SENT
            attempt.message_sent = message
            attempt.sent_at = now
            attempt.next_attempt_at = _next_attempt_at(attempt, now)
            db.add(
                AIMessageLog(
                    restaurant_id=restaurant_id,
                    phone=phone,
                    direction="out",
                    provider="recovery",
                    intent=attempt.recovery_type,
                    raw_response=message,
                )
            )
            summary.sent += 1
            logger.info(
                "recovery sent type=%s attempt=%s phone=%s",
                attempt.recovery_type,
                attempt.attempt_number,
                mask_phone(phone),
            )
        else:
            attempt.status = FAILED
            attempt.error_message = result.error
            summary.failed += 1
            logger.warning("recovery send failed type=%s error=%s", attempt.recovery_type, result.error)
        # um commit por envio: uma falha a seguir não reenvia o que já saiu
        db.commit()


def run_sweep(db: Session, transport: MessageTransport, now: datetime | None = None) -> list[SweepSummary]:
    now = now or utcnow()
    summaries = []
    for (restaurant_id,) in db.query(Restaurant.id).order_by(Restaurant.id.asc()).all():
        config = load_recovery_config(db, restaurant_id)
        if not config.enabled:
            continue
        set_request_context(restaurant_id=str(restaurant_id))
        summary = SweepSummary(restaurant_id=restaurant_id)
        for recovery_type, settings in config.types.items():
            if settings.enabled:
                schedule_first_attempts(db, restaurant_id, recovery_type, settings, now, summary)
        schedule_follow_ups(db, restaurant_id, now, summary)
        db.commit()
        send_pending(db, restaurant_id, config, transport, now, summary)
        logger.info("recovery sweep finished %s", summary.as_dict())
        summaries.append(summary)
    return summaries
