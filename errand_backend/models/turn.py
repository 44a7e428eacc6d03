# Role: Single conversation turn. Appended to Session.history and never modified afterwards
# (frozen model). User turns may carry the NLU analysis; assistant turns may carry tool calls and a route id.

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from errand_backend.models.tool import ToolCallRecord

Role = Literal["user", "assistant"]


def _turn_id() -> str:
    return f"turn_{uuid.uuid4().hex[:12]}"


class Turn(BaseModel):
    model_config = ConfigDict(frozen=True)

    turn_id: str = Field(default_factory=_turn_id)
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # NLU analysis (user turns)
    intent: Optional[str] = None
    confidence: Optional[float] = None
    entities: Dict[str, Any] = Field(default_factory=dict)

    # Agent actions (assistant turns)
    tool_calls: Tuple[ToolCallRecord, ...] = ()
    route_id: Optional[str] = None
