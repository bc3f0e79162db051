"""
Credential models.

``ProviderKeyRecord`` is the persisted, encrypted-at-rest BYOK key for one
(user, provider) pair.  ``ProviderCredential`` is its decrypted form and only
ever lives inside an ``ExecutionContext``; the plaintext is held in a
``pydantic.SecretStr`` so it renders as ``**********`` in reprs and logs.

Credential capability is a small tagged variant resolved once per dataset:

    NoKey    — call the provider's public tier without a key.
    DemoKey  — call with a demo/free-tier key.
    ProKey   — call with a paid key.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import ClassVar, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, SecretStr, field_validator

from report_kit.models.plan import PLAN_LIMITS, PlanLimits, PlanTier

KeyType = Literal["demo", "pro"]


class CredentialTier(str, Enum):
    NONE = "none"
    DEMO = "demo"
    PRO  = "pro"


# ── Tagged credential variant ─────────────────────────────────────────────────


@dataclass(frozen=True)
class NoKey:
    tier: ClassVar[CredentialTier] = CredentialTier.NONE


@dataclass(frozen=True)
class DemoKey:
    secret: SecretStr
    tier: ClassVar[CredentialTier] = CredentialTier.DEMO


@dataclass(frozen=True)
class ProKey:
    secret: SecretStr
    tier: ClassVar[CredentialTier] = CredentialTier.PRO


Credential = Union[NoKey, DemoKey, ProKey]


# ── Persisted record ──────────────────────────────────────────────────────────


class ProviderKeyRecord(BaseModel):
    """Encrypted provider key as stored by the credential store.

    Attributes:
        key_id:     Auto-assigned DB PK; ``None`` before insertion.
        user_id:    Owning user.
        provider:   Provider / source id (e.g. ``"coingecko"``).
        ciphertext: Vault ciphertext; never the plaintext key.
        key_type:   ``"demo"`` or ``"pro"``.
        key_hint:   Last four characters of the plaintext, for display.
        is_valid:   Flipped to False on provider 401/403 or decrypt failure.
    """

    model_config = ConfigDict(frozen=True)

    key_id: Optional[int] = None
    user_id: str
    provider: str
    ciphertext: str
    key_type: KeyType = "demo"
    key_hint: str = ""
    is_valid: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("provider")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("provider must not be empty.")
        return v


# ── Decrypted, per-run context ────────────────────────────────────────────────


class ProviderCredential(BaseModel):
    """Decrypted key for one provider, scoped to a single execution."""

    model_config = ConfigDict(frozen=True)

    provider: str
    key_type: KeyType
    secret: SecretStr

    def as_credential(self) -> Credential:
        if self.key_type == "pro":
            return ProKey(secret=self.secret)
        return DemoKey(secret=self.secret)


class ExecutionContext(BaseModel):
    """Everything one engine run needs to know about its caller.

    Absent providers in ``credentials`` mean "use the public tier if the
    provider has one".  Owned by exactly one ``ExecutionEngine.execute`` call.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    plan: PlanTier = "free"
    limits: PlanLimits = PLAN_LIMITS["free"]
    credentials: dict[str, ProviderCredential] = {}

    def credential_for(self, provider: str) -> Optional[ProviderCredential]:
        return self.credentials.get(provider)
