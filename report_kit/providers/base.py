"""
Provider adapter interface and shared HTTP plumbing.

Every upstream data source is wrapped in a ``ProviderAdapter`` subclass that
exposes two steps:

  fetch(spec, params, credential) -> RawPayload      (async, network I/O only)
  normalize(payload, spec, params) -> NormalizedTable (pure)

Adapters never cache and never retry; the execution engine owns both so the
behaviour is centrally testable.  Failures are raised as ``ProviderError``
with a ``ProviderErrorKind``:

  401 / 403        → AuthError
  404              → NotFound
  429              → RateLimited   (``Retry-After`` parsed when present)
  timeouts         → Timeout
  anything else    → Unknown

All adapters share one ``httpx.AsyncClient`` owned by the caller, so
cancelling the engine task cancels the in-flight request.

Error messages never include request URLs or headers: some providers take
the API key as a query parameter.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Iterable, Mapping, Optional

import httpx

from report_kit.errors import ProviderError, ProviderErrorKind
from report_kit.models.credentials import Credential
from report_kit.models.execution import ColumnDef, NormalizedTable
from report_kit.models.recipe import DatasetSpec

logger = logging.getLogger(__name__)

RawPayload = Any

USER_AGENT = "report-kit/0.1"


@dataclass(frozen=True)
class FetchParams:
    """Normalized, plan-limited fetch parameters for one dataset.

    Built by the engine after applying plan limits; hashable so it can be
    part of the cache key.

    Attributes:
        coin_ids: Coin identifiers (or addresses) after the per-plan cap.
        currency: Quote currency (lower case).
        days:     Lookback in days after clamping, for series kinds.
        limit:    Row cap for listing kinds.
        metrics:  Requested metric columns (empty = all).
    """

    coin_ids: tuple[str, ...] = ()
    currency: str = "usd"
    days: Optional[int] = None
    limit: Optional[int] = None
    metrics: tuple[str, ...] = ()


# ── Status classification ─────────────────────────────────────────────────────


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a ``Retry-After`` header given in seconds; HTTP dates are ignored."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return max(0.0, seconds)


def error_for_response(provider: str, response: httpx.Response) -> Optional[ProviderError]:
    """Return the ``ProviderError`` a non-2xx response maps to, or None on success."""
    status = response.status_code
    if 200 <= status < 300:
        return None
    if status in (401, 403):
        kind = ProviderErrorKind.AUTH_ERROR
    elif status == 404:
        kind = ProviderErrorKind.NOT_FOUND
    elif status == 429:
        kind = ProviderErrorKind.RATE_LIMITED
    else:
        kind = ProviderErrorKind.UNKNOWN
    return ProviderError(
        kind,
        f"{provider} responded with HTTP {status}",
        provider=provider,
        status_code=status,
        retry_after=parse_retry_after(response.headers.get("Retry-After")),
    )


# ── Normalization helpers ─────────────────────────────────────────────────────


def to_float(value: Any) -> Optional[float]:
    """Coerce numeric-ish upstream values (often strings) to float; None if blank."""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_int(value: Any) -> Optional[int]:
    number = to_float(value)
    return int(number) if number is not None else None


def select_metrics(
    columns: Iterable[ColumnDef],
    rows: Iterable[Mapping[str, Any]],
    metrics: Iterable[str],
    key_columns: Iterable[str],
) -> NormalizedTable:
    """Project a table onto its key columns plus the requested metrics.

    With no metrics requested every column is kept.  Unknown metric names
    are ignored.
    """
    columns = list(columns)
    wanted = set(metrics)
    if wanted:
        keep = set(key_columns) | wanted
        columns = [c for c in columns if c.name in keep]
    names = [c.name for c in columns]
    projected = tuple({name: row.get(name) for name in names} for row in rows)
    return NormalizedTable(columns=tuple(columns), rows=projected)


# ── Adapter base ──────────────────────────────────────────────────────────────


class ProviderAdapter(ABC):
    """Uniform fetch capability for one provider.

    Args:
        client:  Shared ``httpx.AsyncClient``.
        timeout: Per-request timeout in seconds.
    """

    provider_id: ClassVar[str]
    supported_kinds: ClassVar[frozenset[str]]

    def __init__(self, client: httpx.AsyncClient, timeout: float = 15.0) -> None:
        self._client = client
        self._timeout = timeout

    def __repr__(self) -> str:
        return f"{type(self).__name__}(provider_id={self.provider_id!r})"

    @abstractmethod
    async def fetch(
        self,
        spec: DatasetSpec,
        params: FetchParams,
        credential: Credential,
    ) -> RawPayload:
        """Fetch the raw upstream payload for ``spec``.

        Raises:
            ProviderError: On any upstream or transport failure.
        """

    @abstractmethod
    def normalize(
        self,
        payload: RawPayload,
        spec: DatasetSpec,
        params: FetchParams,
    ) -> NormalizedTable:
        """Map a raw payload onto the fixed columns/rows shape.

        Raises:
            ProviderError: With kind Unknown if the payload shape is unexpected.
        """

    def _check_kind(self, spec: DatasetSpec) -> None:
        if spec.kind not in self.supported_kinds:
            raise ProviderError(
                ProviderErrorKind.UNKNOWN,
                f"{self.provider_id} does not serve dataset kind '{spec.kind}'",
                provider=self.provider_id,
            )

    def _shape_error(self, detail: str) -> ProviderError:
        return ProviderError(
            ProviderErrorKind.UNKNOWN,
            f"Unexpected {self.provider_id} payload: {detail}",
            provider=self.provider_id,
        )

    async def _get_json(
        self,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """GET ``url`` and decode JSON, translating failures to ``ProviderError``."""
        request_headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        if headers:
            request_headers.update(headers)
        try:
            response = await self._client.get(
                url, params=params, headers=request_headers, timeout=self._timeout
            )
        except httpx.TimeoutException as exc:
            raise ProviderError(
                ProviderErrorKind.TIMEOUT,
                f"{self.provider_id} request timed out ({type(exc).__name__})",
                provider=self.provider_id,
            ) from None
        except httpx.HTTPError as exc:
            raise ProviderError(
                ProviderErrorKind.UNKNOWN,
                f"{self.provider_id} request failed ({type(exc).__name__})",
                provider=self.provider_id,
            ) from None

        error = self._classify(response)
        if error is not None:
            raise error

        try:
            return response.json()
        except ValueError:
            raise self._shape_error("response body is not JSON") from None

    def _classify(self, response: httpx.Response) -> Optional[ProviderError]:
        """Map a response to a ``ProviderError``; adapters override for quirks."""
        return error_for_response(self.provider_id, response)
