"""
Credential resolution: from stored records to a per-run ``ExecutionContext``.

``build_execution_context()`` decrypts every *valid* stored key for a user
exactly once per run.  A record that fails to decrypt is flagged invalid in
the credential store and skipped, so the run degrades to the provider's
public tier (or ``CredentialRequired``) instead of failing outright.

``resolve_credential()`` is the ordered capability lookup: it walks the
source's ``credential_tiers`` preference list and returns the first tier the
context can satisfy as a ``NoKey`` / ``DemoKey`` / ``ProKey`` variant, or
None when no tier is usable.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import SecretStr

from report_kit.errors import DecryptionError
from report_kit.governance.models import SourceClassification
from report_kit.interfaces import CredentialStore
from report_kit.models.credentials import (
    Credential,
    ExecutionContext,
    NoKey,
    ProviderCredential,
)
from report_kit.models.plan import UserPlan
from report_kit.vault.key_vault import KeyVault

logger = logging.getLogger(__name__)


def build_execution_context(
    plan: UserPlan,
    store: Optional[CredentialStore],
    vault: KeyVault,
) -> ExecutionContext:
    """Decrypt the user's valid keys into a fresh ``ExecutionContext``.

    Args:
        plan:  The caller's plan (carries ``user_id``, tier and limits).
        store: Credential store, or None for a keyless (public-tier) run.
        vault: Key vault holding the master key.

    Raises:
        VaultUnavailableError: If the user has valid stored keys but the
            vault has no master key.
    """
    credentials: dict[str, ProviderCredential] = {}
    if store is not None:
        for record in store.get_encrypted_keys(plan.user_id):
            if not record.is_valid:
                continue
            try:
                plaintext = vault.decrypt(record)
            except DecryptionError:
                logger.warning(
                    "Stored %s key for user %s could not be decrypted; marking it invalid.",
                    record.provider, plan.user_id,
                )
                store.invalidate_key(plan.user_id, record.provider)
                continue
            credentials[record.provider] = ProviderCredential(
                provider=record.provider,
                key_type=record.key_type,
                secret=SecretStr(plaintext),
            )

    logger.debug(
        "Execution context for user %s: plan=%s, keyed providers=%s",
        plan.user_id, plan.tier, sorted(credentials),
    )
    return ExecutionContext(
        user_id=plan.user_id,
        plan=plan.tier,
        limits=plan.limits,
        credentials=credentials,
    )


def resolve_credential(
    source: SourceClassification,
    context: ExecutionContext,
) -> Optional[Credential]:
    """Return the most preferred usable credential tier for ``source``.

    Tiers are tried in ``source.credential_tiers`` order.  ``"none"`` is
    always satisfiable; ``"pro"`` / ``"demo"`` need a stored key of that type.
    """
    stored = context.credential_for(source.source_id)
    for tier in source.credential_tiers:
        if tier == "none":
            return NoKey()
        if stored is not None and stored.key_type == tier:
            return stored.as_credential()
    return None
