"""
Tests for the CredentialVault.

Uses real Fernet encryption. No mocks.
"""

import json
import logging

import pytest
from cryptography.fernet import Fernet

from conduit.connectors.errors import DecryptionError
from conduit.connectors.vault import CredentialVault, generate_key


# ── Initialization ────────────────────────────────────────────────

class TestInit:
    def test_initializes_with_key(self, vault_key):
        v = CredentialVault(key=vault_key)
        assert v.is_ephemeral is False

    def test_generates_ephemeral_key_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="conduit.connectors.vault"):
            v = CredentialVault()
        assert v.is_ephemeral is True
        assert "ephemeral" in caplog.text
        assert v.decrypt(v.encrypt({"a": "b"})) == {"a": "b"}

    def test_requires_key_when_ephemeral_disallowed(self):
        with pytest.raises(ValueError):
            CredentialVault(allow_ephemeral_key=False)

    def test_invalid_key_rejected(self):
        with pytest.raises(ValueError):
            CredentialVault(key="not-a-fernet-key")

    def test_from_env(self, monkeypatch, vault_key):
        monkeypatch.setenv("CONDUIT_VAULT_KEY", vault_key)
        v = CredentialVault.from_env()
        assert v.is_ephemeral is False
        blob = v.encrypt({"token": "x"})
        assert CredentialVault(key=vault_key).decrypt(blob) == {"token": "x"}

    def test_from_env_custom_variable(self, monkeypatch, vault_key):
        monkeypatch.setenv("MY_KEY", vault_key)
        v = CredentialVault.from_env(key_env_var="MY_KEY")
        assert v.is_ephemeral is False

    def test_from_env_missing_key_strict(self, monkeypatch):
        monkeypatch.delenv("CONDUIT_VAULT_KEY", raising=False)
        with pytest.raises(ValueError):
            CredentialVault.from_env(allow_ephemeral_key=False)

    def test_repr_hides_key(self, vault_key):
        assert vault_key not in repr(CredentialVault(key=vault_key))

    def test_generate_key_is_valid_fernet_key(self):
        Fernet(generate_key().encode())


# ── Encrypt / Decrypt ─────────────────────────────────────────────

class TestEncryptDecrypt:
    def test_roundtrip(self, vault):
        creds = {"token": "xoxb-12345", "scopes": ["chat:write"], "ttl": 30}
        assert vault.decrypt(vault.encrypt(creds)) == creds

    def test_blob_is_text_without_plaintext(self, vault):
        blob = vault.encrypt({"token": "super-secret-value"})
        assert isinstance(blob, str)
        assert "super-secret-value" not in blob

    def test_same_input_encrypts_differently(self, vault):
        assert vault.encrypt({"a": 1}) != vault.encrypt({"a": 1})

    def test_encrypt_requires_dict(self, vault):
        with pytest.raises(TypeError):
            vault.encrypt("token")

    def test_wrong_key_fails(self, vault):
        other = CredentialVault(key=generate_key())
        with pytest.raises(DecryptionError):
            other.decrypt(vault.encrypt({"token": "x"}))

    def test_tampered_blob_fails(self, vault):
        blob = vault.encrypt({"token": "x"})
        tampered = blob[:-5] + ("A" if blob[-5] != "A" else "B") + blob[-4:]
        with pytest.raises(DecryptionError):
            vault.decrypt(tampered)

    @pytest.mark.parametrize("blob", ["", "garbage", None])
    def test_malformed_blob_fails(self, vault, blob):
        with pytest.raises(DecryptionError):
            vault.decrypt(blob)

    def test_non_json_payload_fails(self, vault_key):
        v = CredentialVault(key=vault_key)
        blob = Fernet(vault_key.encode()).encrypt(b"\xff\xfe not json").decode()
        with pytest.raises(DecryptionError):
            v.decrypt(blob)

    def test_non_mapping_payload_fails(self, vault_key):
        v = CredentialVault(key=vault_key)
        blob = Fernet(vault_key.encode()).encrypt(json.dumps([1, 2]).encode()).decode()
        with pytest.raises(DecryptionError):
            v.decrypt(blob)

    def test_decryption_error_does_not_chain_cipher_error(self, vault):
        with pytest.raises(DecryptionError) as exc_info:
            vault.decrypt("garbage")
        assert exc_info.value.__cause__ is None


# ── Key Rotation ──────────────────────────────────────────────────

class TestRotation:
    def test_previous_key_still_decrypts(self):
        old_key, new_key = generate_key(), generate_key()
        blob = CredentialVault(key=old_key).encrypt({"token": "x"})
        rotated_vault = CredentialVault(key=new_key, previous_keys=[old_key])
        assert rotated_vault.decrypt(blob) == {"token": "x"}

    def test_rotate_reencrypts_under_primary(self):
        old_key, new_key = generate_key(), generate_key()
        blob = CredentialVault(key=old_key).encrypt({"token": "x"})
        rotated = CredentialVault(key=new_key, previous_keys=[old_key]).rotate(blob)
        assert CredentialVault(key=new_key).decrypt(rotated) == {"token": "x"}

    def test_rotate_unknown_blob_fails(self, vault):
        foreign = CredentialVault(key=generate_key()).encrypt({"token": "x"})
        with pytest.raises(DecryptionError):
            vault.rotate(foreign)

    def test_from_env_reads_previous_keys(self, monkeypatch):
        old_key, new_key = generate_key(), generate_key()
        blob = CredentialVault(key=old_key).encrypt({"token": "x"})
        monkeypatch.setenv("CONDUIT_VAULT_KEY", new_key)
        monkeypatch.setenv("CONDUIT_VAULT_PREVIOUS_KEYS", f" {old_key} ,")
        assert CredentialVault.from_env().decrypt(blob) == {"token": "x"}
