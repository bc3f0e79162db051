"""
Alternative.me Fear & Greed Index adapter — free public API, no key.

API:   https://api.alternative.me/fng/?limit=30
Docs:  https://alternative.me/crypto/fear-and-greed-index/#api

One data point per day; ``limit`` is the lookback in days.  Rows are
returned oldest first so the sheet reads chronologically.
"""

from __future__ import annotations

from typing import ClassVar

from report_kit.models.credentials import Credential
from report_kit.models.execution import ColumnDef, ColumnType, NormalizedTable
from report_kit.models.recipe import DatasetSpec
from report_kit.providers.base import (
    FetchParams,
    ProviderAdapter,
    RawPayload,
    select_metrics,
    to_int,
)
from report_kit.utils.time_utils import from_epoch_s

_FNG_COLUMNS = (
    ColumnDef(name="date", type=ColumnType.DATE),
    ColumnDef(name="value", type=ColumnType.INTEGER),
    ColumnDef(name="classification", type=ColumnType.TEXT),
)


class AlternativeMeAdapter(ProviderAdapter):
    """Adapter for the Alternative.me Fear & Greed Index."""

    provider_id: ClassVar[str] = "alternativeme"
    supported_kinds: ClassVar[frozenset[str]] = frozenset({"fear-greed"})

    BASE_URL: ClassVar[str] = "https://api.alternative.me"

    async def fetch(
        self,
        spec: DatasetSpec,
        params: FetchParams,
        credential: Credential,
    ) -> RawPayload:
        self._check_kind(spec)
        return await self._get_json(
            f"{self.BASE_URL}/fng/",
            params={"limit": params.days or 30, "format": "json"},
        )

    def normalize(
        self,
        payload: RawPayload,
        spec: DatasetSpec,
        params: FetchParams,
    ) -> NormalizedTable:
        data = payload.get("data") if isinstance(payload, dict) else None
        if data is None:
            raise self._shape_error("missing 'data' list")
        rows = [
            {
                "date": from_epoch_s(point["timestamp"]).date(),
                "value": to_int(point.get("value")),
                "classification": point.get("value_classification"),
            }
            for point in data
            if isinstance(point, dict) and point.get("timestamp") is not None
        ]
        rows.sort(key=lambda r: r["date"])
        return select_metrics(_FNG_COLUMNS, rows, params.metrics, ("date",))
