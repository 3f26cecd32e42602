from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from orderbot.ai.service import run_assistant
from orderbot.core.database import get_db
from orderbot.core.errors import LLMProviderError
from orderbot.deps import get_engine, require_admin_token
from orderbot.fsm.engine import OrderSessionEngine

router = APIRouter(prefix="/simulator", dependencies=[Depends(require_admin_token)])


class SimulatorMessage(BaseModel):
    restaurant_id: int
    phone: str = Field(..., min_length=3)
    text: str = Field(..., min_length=1)


@router.post("/message")
def simulate(payload: SimulatorMessage, db: Session = Depends(get_db), engine: OrderSessionEngine = Depends(get_engine)):
    """Corre um turno diretamente, sem debounce nem envio pelo WhatsApp."""
    try:
        result = run_assistant(db, payload.restaurant_id, payload.phone, payload.text, engine=engine)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except LLMProviderError as exc:
        raise HTTPException(status_code=502, detail=f"Falha do provedor LLM: {exc}") from exc
    return result.as_dict()
