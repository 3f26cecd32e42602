from __future__ import annotations

from fastapi import APIRouter, Depends

from orderbot.core.metrics import turn_metrics
from orderbot.deps import require_admin_token

router = APIRouter(prefix="/internal/metrics", tags=["internal-metrics"])


@router.get("/turns")
def turn_metrics_snapshot(_auth: None = Depends(require_admin_token)):
    return {"restaurants": turn_metrics.snapshot()}
