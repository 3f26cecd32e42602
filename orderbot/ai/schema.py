from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, Field


class ToolCall(BaseModel):
    name: str = Field(..., min_length=1)
    args: dict[str, Any] = Field(default_factory=dict)
    call_id: Optional[str] = None
    # preenchido quando o provedor devolveu argumentos que não são JSON
    parse_error: Optional[str] = None


class LLMResponse(BaseModel):
    reply_text: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)


class IntentClassification(BaseModel):
    intent: str = Field(..., min_length=1)
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    reasoning: Optional[str] = None
