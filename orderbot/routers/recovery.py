from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from orderbot.core.database import get_db
from orderbot.deps import get_transport, require_admin_token
from orderbot.services import conversation_recovery
from orderbot.whatsapp.base import MessageTransport

router = APIRouter(prefix="/internal/recovery", tags=["internal-recovery"], dependencies=[Depends(require_admin_token)])
logger = logging.getLogger(__name__)


@router.post("/sweep")
def sweep_recoveries(
    db: Session = Depends(get_db),
    transport: MessageTransport = Depends(get_transport),
):
    """Corre a varredura de follow-ups; pensado para um cron de poucos em poucos minutos."""
    summaries = conversation_recovery.run_sweep(db, transport)
    logger.info("recovery sweep restaurants=%s", len(summaries))
    return {"restaurants": [summary.as_dict() for summary in summaries]}
