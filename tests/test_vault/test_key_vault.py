"""
Tests for vault/key_vault.py — Fernet encryption under a master secret.
"""

import pytest

from report_kit.errors import DecryptionError, VaultUnavailableError
from report_kit.models.credentials import ProviderKeyRecord
from report_kit.vault.key_vault import KeyVault, derive_fernet_key, key_hint


class TestKeyVault:
    def test_round_trip(self):
        vault = KeyVault("master-secret")
        ciphertext = vault.encrypt("CG-abc123xyz")
        assert ciphertext != "CG-abc123xyz"
        assert "abc123" not in ciphertext
        assert vault.decrypt(ciphertext) == "CG-abc123xyz"

    def test_decrypts_record_and_strips_input(self):
        vault = KeyVault("master-secret")
        record = ProviderKeyRecord(
            user_id="u1", provider="coingecko", ciphertext=vault.encrypt("  key-1234  ")
        )
        assert vault.decrypt(record) == "key-1234"

    def test_wrong_master_key_raises_decryption_error(self):
        ciphertext = KeyVault("one").encrypt("secret-key")
        record = ProviderKeyRecord(user_id="u1", provider="etherscan", ciphertext=ciphertext)
        with pytest.raises(DecryptionError) as exc_info:
            KeyVault("two").decrypt(record)
        assert exc_info.value.provider == "etherscan"
        assert "secret-key" not in str(exc_info.value)

    def test_garbage_ciphertext_raises_decryption_error(self):
        with pytest.raises(DecryptionError):
            KeyVault("master").decrypt("not-a-fernet-token")

    @pytest.mark.parametrize("master", [None, "", "   "])
    def test_fails_closed_without_master_key(self, master):
        vault = KeyVault(master)
        assert vault.available is False
        with pytest.raises(VaultUnavailableError):
            vault.encrypt("k")
        with pytest.raises(VaultUnavailableError):
            vault.decrypt("anything")

    def test_empty_plaintext_rejected(self):
        with pytest.raises(ValueError, match="empty"):
            KeyVault("m").encrypt("   ")

    def test_repr_reveals_nothing(self):
        assert repr(KeyVault("super-secret")) == "KeyVault(ready)"
        assert repr(KeyVault(None)) == "KeyVault(unavailable)"


class TestHelpers:
    def test_derived_key_is_stable_and_fernet_sized(self):
        assert derive_fernet_key("m") == derive_fernet_key("m")
        assert derive_fernet_key("m") != derive_fernet_key("n")
        assert len(derive_fernet_key("m")) == 44

    def test_key_hint(self):
        assert key_hint("CG-abcdef1234") == "1234"
        assert key_hint("abc") == "***"
