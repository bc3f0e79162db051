"""
Key vault: symmetric encryption of user-supplied provider keys.

The vault wraps ``cryptography.fernet.Fernet`` with a key derived from a
process-wide master secret (``REPORT_KIT_MASTER_KEY`` by default).  Any
string works as the master secret; it is stretched to a Fernet key with
SHA-256.

Fail closed
-----------
A vault constructed without a master secret is non-functional: every
``encrypt`` / ``decrypt`` call raises ``VaultUnavailableError``.  There is no
pass-through mode.

The vault performs no I/O and never logs plaintext.  Invalidating a stored
record after a provider rejects it is the credential store's job; see
``report_kit.interfaces.CredentialStore.invalidate_key``.
"""

from __future__ import annotations

import base64
import hashlib
from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from report_kit.errors import DecryptionError, VaultUnavailableError
from report_kit.models.credentials import ProviderKeyRecord


def derive_fernet_key(master_secret: str) -> bytes:
    """Derive a url-safe base64 Fernet key from an arbitrary master secret."""
    digest = hashlib.sha256(master_secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


def key_hint(plaintext: str) -> str:
    """Return the display hint for a key: its last four characters."""
    plaintext = plaintext.strip()
    if len(plaintext) <= 4:
        return "*" * len(plaintext)
    return plaintext[-4:]


class KeyVault:
    """Encrypt and decrypt provider keys with the master secret.

    Args:
        master_key: Master secret, or None/empty for a fail-closed vault.
    """

    def __init__(self, master_key: Optional[str]) -> None:
        master_key = (master_key or "").strip()
        self._cipher: Optional[Fernet] = (
            Fernet(derive_fernet_key(master_key)) if master_key else None
        )

    def __repr__(self) -> str:
        state = "ready" if self._cipher is not None else "unavailable"
        return f"KeyVault({state})"

    @property
    def available(self) -> bool:
        return self._cipher is not None

    def _require_cipher(self) -> Fernet:
        if self._cipher is None:
            raise VaultUnavailableError()
        return self._cipher

    def encrypt(self, plaintext: str) -> str:
        """Encrypt ``plaintext`` and return the ciphertext as text.

        Raises:
            VaultUnavailableError: If no master key is configured.
            ValueError: If ``plaintext`` is empty.
        """
        cipher = self._require_cipher()
        if not plaintext or not plaintext.strip():
            raise ValueError("Refusing to encrypt an empty key.")
        return cipher.encrypt(plaintext.strip().encode("utf-8")).decode("ascii")

    def decrypt(self, record: Union[ProviderKeyRecord, str]) -> str:
        """Decrypt a stored record (or raw ciphertext) to its plaintext key.

        Raises:
            VaultUnavailableError: If no master key is configured.
            DecryptionError: If the ciphertext is corrupt or was produced
                with a different master key.
        """
        cipher = self._require_cipher()
        if isinstance(record, ProviderKeyRecord):
            ciphertext, provider = record.ciphertext, record.provider
        else:
            ciphertext, provider = record, None
        try:
            return cipher.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, ValueError):
            raise DecryptionError(provider) from None
