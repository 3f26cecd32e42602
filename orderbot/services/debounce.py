from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from orderbot.core.clock import as_utc, utcnow
from orderbot.core.config import DEBOUNCE_QUIET_WINDOW_SECONDS
from orderbot.core.request_context import set_request_context
from orderbot.models.debounce_queue import DebounceQueueEntry

logger = logging.getLogger(__name__)

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

ENQUEUE_ATTEMPTS = 3

# recebe (restaurant_id, phone, texto compilado) e devolve o payload do resultado
EngineRunner = Callable[[int, str, str], dict[str, Any]]


@dataclass
class DispatchResult:
    status: str  # noop / waiting / completed / failed
    queue_id: str | None = None
    remaining_seconds: float = 0.0
    compiled_text: str | None = None
    result: dict[str, Any] | None = field(default=None)
    error: str | None = None
    reason: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "queue_id": self.queue_id,
            "remaining_seconds": round(self.remaining_seconds, 3),
            "compiled_text": self.compiled_text,
            "result": self.result,
            "error": self.error,
            "reason": self.reason,
        }


def _window(quiet_window_seconds: float | None) -> timedelta:
    seconds = DEBOUNCE_QUIET_WINDOW_SECONDS if quiet_window_seconds is None else quiet_window_seconds
    return timedelta(seconds=seconds)


def _pending_entry(db: Session, restaurant_id: int, phone: str) -> DebounceQueueEntry | None:
    return (
        db.query(DebounceQueueEntry)
        .filter(
            DebounceQueueEntry.restaurant_id == restaurant_id,
            DebounceQueueEntry.customer_phone == phone,
            DebounceQueueEntry.status == PENDING,
        )
        .order_by(DebounceQueueEntry.first_message_at.asc())
        .first()
    )


def enqueue(
    db: Session,
    restaurant_id: int,
    phone: str,
    body: str,
    now: datetime | None = None,
    *,
    quiet_window_seconds: float | None = None,
) -> DebounceQueueEntry:
    """Acrescenta a mensagem à entrada pending da chave ou abre uma nova.

    Se a entrada for reclamada por um dispatch entre a leitura e o commit,
    o append falha pela versão e a mensagem vai para uma entrada nova.
    """
    now = now or utcnow()
    window = _window(quiet_window_seconds)
    message = {"body": body, "received_at": now.isoformat()}
    attempt = 0
    while True:
        attempt += 1
        entry = _pending_entry(db, restaurant_id, phone)
        if entry is None:
            entry = DebounceQueueEntry(
                id=str(uuid.uuid4()),
                restaurant_id=restaurant_id,
                customer_phone=phone,
                messages=[message],
                first_message_at=now,
                last_message_at=now,
                scheduled_process_at=now + window,
                status=PENDING,
            )
            db.add(entry)
            logger.info("debounce entry created", extra={"queue_id": entry.id})
        else:
            # reatribuição para o JSON ser marcado como alterado
            entry.messages = list(entry.messages or []) + [message]
            entry.last_message_at = now
            entry.scheduled_process_at = now + window
            logger.info("debounce entry extended messages=%s", len(entry.messages), extra={"queue_id": entry.id})
        queue_id = entry.id
        try:
            db.commit()
        except StaleDataError:
            db.rollback()
            if attempt == ENQUEUE_ATTEMPTS:
                raise
            logger.warning("debounce entry claimed during append; retrying", extra={"queue_id": queue_id})
            continue
        db.refresh(entry)
        return entry


def compile_messages(entry: DebounceQueueEntry) -> str:
    return "\n".join(message.get("body", "") for message in entry.messages or [])


def _claim(db: Session, queue_id: str) -> bool:
    updated = (
        db.query(DebounceQueueEntry)
        .filter(DebounceQueueEntry.id == queue_id, DebounceQueueEntry.status == PENDING)
        .update(
            {DebounceQueueEntry.status: PROCESSING, DebounceQueueEntry.version: DebounceQueueEntry.version + 1},
            synchronize_session=False,
        )
    )
    db.commit()
    return updated == 1


def try_dispatch(
    db: Session,
    queue_id: str,
    runner: EngineRunner,
    now: datetime | None = None,
    *,
    quiet_window_seconds: float | None = None,
) -> DispatchResult:
    now = now or utcnow()
    window = _window(quiet_window_seconds)
    entry = db.query(DebounceQueueEntry).filter(DebounceQueueEntry.id == queue_id).first()
    if entry is None:
        return DispatchResult(status="noop", queue_id=queue_id, reason="not_found")
    if entry.status != PENDING:
        return DispatchResult(status="noop", queue_id=queue_id, reason=f"already_{entry.status}")

    elapsed = now - as_utc(entry.last_message_at)
    if elapsed < window:
        remaining = (window - elapsed).total_seconds()
        return DispatchResult(status="waiting", queue_id=queue_id, remaining_seconds=remaining)

    if not _claim(db, queue_id):
        logger.info("debounce entry claimed elsewhere", extra={"queue_id": queue_id})
        return DispatchResult(status="noop", queue_id=queue_id, reason="already_processing")

    db.refresh(entry)
    compiled = compile_messages(entry)
    restaurant_id, phone = entry.restaurant_id, entry.customer_phone
    set_request_context(restaurant_id=str(restaurant_id), customer_phone=phone)
    logger.info("debounce dispatch messages=%s", len(entry.messages or []), extra={"queue_id": queue_id})
    # sem transação aberta enquanto o turno corre
    db.commit()

    try:
        result = runner(restaurant_id, phone, compiled)
    except Exception as exc:
        db.rollback()
        entry = db.query(DebounceQueueEntry).filter(DebounceQueueEntry.id == queue_id).first()
        entry.status = FAILED
        entry.error_message = str(exc)[:2000]
        entry.processed_at = utcnow()
        db.commit()
        logger.exception("debounce dispatch failed", extra={"queue_id": queue_id})
        return DispatchResult(status="failed", queue_id=queue_id, compiled_text=compiled, error=str(exc))

    entry = db.query(DebounceQueueEntry).filter(DebounceQueueEntry.id == queue_id).first()
    entry.status = COMPLETED
    entry.result = result
    entry.processed_at = utcnow()
    db.commit()
    return DispatchResult(status="completed", queue_id=queue_id, compiled_text=compiled, result=result)


def due_entries(db: Session, now: datetime | None = None) -> list[DebounceQueueEntry]:
    now = now or utcnow()
    entries = (
        db.query(DebounceQueueEntry)
        .filter(DebounceQueueEntry.status == PENDING)
        .order_by(DebounceQueueEntry.scheduled_process_at.asc())
        .all()
    )
    return [entry for entry in entries if as_utc(entry.scheduled_process_at) <= now]


class DebounceScheduler:
    """Agenda tentativas de dispatch com threading.Timer, uma por entrada.

    Em "waiting" volta a armar o timer com o tempo restante; a varredura
    (due_entries) cobre timers perdidos num restart.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        runner: EngineRunner,
        *,
        quiet_window_seconds: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._runner = runner
        self._quiet_window_seconds = quiet_window_seconds
        self._timers: dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def schedule(self, queue_id: str, delay_seconds: float) -> None:
        timer = threading.Timer(max(delay_seconds, 0.0), self._fire, args=(queue_id,))
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(queue_id, None)
            if previous is not None:
                previous.cancel()
            self._timers[queue_id] = timer
        timer.start()

    def _fire(self, queue_id: str) -> None:
        with self._lock:
            self._timers.pop(queue_id, None)
        db = self._session_factory()
        try:
            result = try_dispatch(db, queue_id, self._runner, quiet_window_seconds=self._quiet_window_seconds)
        finally:
            db.close()
        if result.status == "waiting":
            self.schedule(queue_id, result.remaining_seconds)

    def pending_count(self) -> int:
        with self._lock:
            return len(self._timers)

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
