"""
Usage event model.

One ``UsageEvent`` is recorded per completed recipe execution by the calling
layer (``ReportService``); the engine itself never writes usage.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class UsageEvent(BaseModel):
    """Audit record for one report run.

    Attributes:
        event_id:   Auto-assigned DB PK; ``None`` before insertion.
        user_id:    Caller.
        event_type: Always ``"report_run"`` for engine executions.
        recipe_id:  Executed recipe.
        metadata:   Free-form summary (format, counts, credential tiers used).
        created_at: UTC time the event was recorded.
    """

    model_config = ConfigDict(frozen=True)

    event_id: Optional[int] = None
    user_id: str
    event_type: str = "report_run"
    recipe_id: str
    metadata: dict[str, Any] = {}
    created_at: Optional[datetime] = None
