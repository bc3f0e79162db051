"""
Collaborator interfaces consumed by the report engine.

The engine is embedded in a larger application that owns users,
subscriptions and storage.  These protocols are the only surface it needs
from that application; ``report_kit.db.repositories`` provides SQLite
implementations used by the CLI and tests.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from report_kit.models.credentials import ProviderKeyRecord
from report_kit.models.plan import UserPlan
from report_kit.models.usage import UsageEvent


@runtime_checkable
class PlanLookup(Protocol):
    def get_user_plan(self, user_id: str) -> UserPlan:
        """Return the caller's plan tier and limits (unknown users are free)."""
        ...


@runtime_checkable
class CredentialStore(Protocol):
    def get_encrypted_keys(self, user_id: str) -> list[ProviderKeyRecord]:
        """Return every stored key for ``user_id``, valid or not."""
        ...

    def invalidate_key(self, user_id: str, provider: str) -> None:
        """Flip the validity flag of the (user, provider) key.  Never deletes."""
        ...

    def save_key(self, record: ProviderKeyRecord) -> ProviderKeyRecord:
        """Insert or replace the (user, provider) key; the saved record is valid."""
        ...


@runtime_checkable
class UsageRecorder(Protocol):
    def record_usage_event(self, event: UsageEvent) -> None:
        ...
