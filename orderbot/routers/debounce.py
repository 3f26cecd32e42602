from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from orderbot.core.database import get_db
from orderbot.deps import get_turn_runner, require_admin_token
from orderbot.models.debounce_queue import DebounceQueueEntry
from orderbot.services import debounce
from orderbot.services.debounce import EngineRunner

router = APIRouter(prefix="/internal/debounce", tags=["internal-debounce"], dependencies=[Depends(require_admin_token)])
logger = logging.getLogger(__name__)


class ProcessRequest(BaseModel):
    queue_id: str = Field(..., min_length=1)


@router.post("/process")
def process_entry(
    payload: ProcessRequest,
    db: Session = Depends(get_db),
    runner: EngineRunner = Depends(get_turn_runner),
):
    if not db.query(DebounceQueueEntry).filter(DebounceQueueEntry.id == payload.queue_id).first():
        raise HTTPException(status_code=404, detail="Entrada de fila não encontrada")
    return debounce.try_dispatch(db, payload.queue_id, runner).as_dict()


@router.post("/sweep")
def sweep_due_entries(
    db: Session = Depends(get_db),
    runner: EngineRunner = Depends(get_turn_runner),
):
    results = [debounce.try_dispatch(db, entry.id, runner).as_dict() for entry in debounce.due_entries(db)]
    logger.info("debounce sweep processed=%s", len(results))
    return {"processed": len(results), "results": results}
