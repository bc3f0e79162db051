"""
Exception taxonomy for the report engine.

Two families live here:

Fatal (raised, abort before any provider I/O)
---------------------------------------------
  RecipeValidationError     — structural / policy problems with a recipe.
  PlanIncompatibleError     — recipe needs a higher plan tier than the caller has.
  PolicyViolation           — redistribution gate refused a source for a purpose.
  SourceConfigurationError  — a provider has no entry in config/sources.toml.
  VaultUnavailableError     — no master key configured; the vault fails closed.
  DecryptionError           — ciphertext could not be decrypted with the master key.

Dataset-scoped (recorded on a DatasetResult, never raised out of the engine)
----------------------------------------------------------------------------
  ``DatasetErrorCode`` enumerates the codes written into ``DatasetError.code``.
  ``ProviderError`` is what adapters raise; the engine translates its
  ``kind`` into a dataset error code.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ReportKitError(Exception):
    """Base class for all errors raised by this package."""


# ── Fatal errors ──────────────────────────────────────────────────────────────


class RecipeValidationError(ReportKitError):
    """Raised when a recipe fails validation.

    Attributes:
        errors:   Every violated constraint, in check order.
        warnings: Non-blocking advisories collected during validation.
    """

    def __init__(self, errors: list[str], warnings: Optional[list[str]] = None) -> None:
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        summary = "; ".join(self.errors) if self.errors else "unknown validation failure"
        super().__init__(f"Recipe validation failed: {summary}")


class PlanIncompatibleError(ReportKitError):
    """Raised when the caller's plan tier cannot run the recipe.

    Attributes:
        required_plan: Lowest tier that can run the recipe.
        reason:        Human-readable reason naming the offending dataset.
    """

    def __init__(self, required_plan: str, reason: str) -> None:
        self.required_plan = required_plan
        self.reason = reason
        super().__init__(f"{reason} (required plan: {required_plan})")


class PolicyViolation(ReportKitError):
    """Raised when the redistribution policy refuses one or more sources.

    Attributes:
        source_ids: The disallowed sources (subset of what was checked).
        purpose:    ``"display"`` or ``"download"``.
        reason:     Human-readable block reason for the first disallowed source.
    """

    def __init__(self, source_ids: list[str], purpose: str, reason: str) -> None:
        self.source_ids = list(source_ids)
        self.purpose = purpose
        self.reason = reason
        super().__init__(reason)


class SourceConfigurationError(ReportKitError):
    """Raised when a provider is referenced but has no source classification."""

    def __init__(self, source_id: str, detail: str = "") -> None:
        self.source_id = source_id
        msg = f"Source '{source_id}' has no classification in the source registry."
        if detail:
            msg = f"{msg} {detail}"
        super().__init__(msg)


class VaultUnavailableError(ReportKitError):
    """Raised by every vault operation when no master key is configured."""

    def __init__(self) -> None:
        super().__init__(
            "Key vault has no master key configured; refusing to encrypt or decrypt."
        )


class DecryptionError(ReportKitError):
    """Raised when a stored credential cannot be decrypted.

    Attributes:
        provider: Provider of the record that failed, when known.
    """

    def __init__(self, provider: Optional[str] = None) -> None:
        self.provider = provider
        where = f" for provider '{provider}'" if provider else ""
        super().__init__(f"Stored credential could not be decrypted{where}.")


# ── Provider / dataset-scoped errors ──────────────────────────────────────────


class ProviderErrorKind(str, Enum):
    """Machine-readable failure kinds reported by provider adapters."""

    AUTH_ERROR   = "AuthError"
    RATE_LIMITED = "RateLimited"
    NOT_FOUND    = "NotFound"
    TIMEOUT      = "Timeout"
    UNKNOWN      = "Unknown"


class ProviderError(ReportKitError):
    """Raised by a provider adapter when a fetch or normalization fails.

    Attributes:
        kind:        ``ProviderErrorKind`` classification.
        provider:    Provider identifier (e.g. ``"coingecko"``).
        status_code: HTTP status code, if the failure came from a response.
        retry_after: Seconds suggested by a ``Retry-After`` header, if any.
    """

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str,
        provider: str = "",
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        self.kind = kind
        self.provider = provider
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(message)


class DatasetErrorCode(str, Enum):
    """Error codes recorded on a failed or skipped ``DatasetResult``."""

    CREDENTIAL_REQUIRED = "CredentialRequired"
    PROVIDER_AUTH_ERROR = "ProviderAuthError"
    RATE_LIMIT_ERROR    = "RateLimitError"
    PROVIDER_TIMEOUT    = "ProviderTimeout"
    PROVIDER_NOT_FOUND  = "ProviderNotFound"
    PROVIDER_UNKNOWN    = "ProviderUnknownError"
    CANCELLED           = "Cancelled"
    POLICY_VIOLATION    = "PolicyViolation"


PROVIDER_KIND_TO_CODE: dict[ProviderErrorKind, DatasetErrorCode] = {
    ProviderErrorKind.AUTH_ERROR:   DatasetErrorCode.PROVIDER_AUTH_ERROR,
    ProviderErrorKind.RATE_LIMITED: DatasetErrorCode.RATE_LIMIT_ERROR,
    ProviderErrorKind.NOT_FOUND:    DatasetErrorCode.PROVIDER_NOT_FOUND,
    ProviderErrorKind.TIMEOUT:      DatasetErrorCode.PROVIDER_TIMEOUT,
    ProviderErrorKind.UNKNOWN:      DatasetErrorCode.PROVIDER_UNKNOWN,
}
