"""
Credential Vault — encrypts connector credential maps for storage at rest.

Credentials are encrypted with Fernet (AES-128-CBC + HMAC-SHA256). The
primary key comes from an environment variable, read once when the vault
is constructed; if not set, a new key is generated and a warning is
logged. Previous keys may be supplied for decryption only, which allows
rotating the primary key without invalidating stored blobs.

encrypt/decrypt are the only code path that handles plaintext credentials
outside an active connector object.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List, Optional, Sequence

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from conduit.connectors.errors import DecryptionError

logger = logging.getLogger(__name__)


def generate_key() -> str:
    """Return a new URL-safe base64 Fernet key."""
    return Fernet.generate_key().decode()


def _split_keys(raw: str) -> List[str]:
    return [k.strip() for k in raw.split(",") if k.strip()]


# ── Credential Vault ──────────────────────────────────────────────

class CredentialVault:
    """Symmetric, authenticated encryption of credential maps.

    The key material is process-wide and read-only after construction,
    so encrypt/decrypt need no locking.
    """

    def __init__(
        self,
        key: Optional[str] = None,
        previous_keys: Sequence[str] = (),
        allow_ephemeral_key: bool = True,
    ) -> None:
        if not key:
            if not allow_ephemeral_key:
                raise ValueError("CredentialVault requires an encryption key")
            key = generate_key()
            logger.warning(
                "No vault key configured — generated ephemeral key. "
                "Stored credentials will NOT survive restarts."
            )
            self._ephemeral = True
        else:
            self._ephemeral = False

        try:
            primary = Fernet(key.encode())
            fallbacks = [Fernet(k.encode()) for k in previous_keys]
        except (ValueError, TypeError) as exc:
            # Fernet's message does not contain the key itself
            raise ValueError(f"Invalid vault key: {exc}") from None

        self._primary = primary
        self._cipher = MultiFernet([primary, *fallbacks])
        self._previous_count = len(fallbacks)

    @classmethod
    def from_env(
        cls,
        key_env_var: str = "CONDUIT_VAULT_KEY",
        previous_keys_env_var: str = "CONDUIT_VAULT_PREVIOUS_KEYS",
        allow_ephemeral_key: bool = True,
    ) -> CredentialVault:
        """Build a vault from environment variables."""
        key = os.environ.get(key_env_var, "")
        if not key:
            logger.warning("%s not set", key_env_var)
        previous = _split_keys(os.environ.get(previous_keys_env_var, ""))
        return cls(key=key, previous_keys=previous, allow_ephemeral_key=allow_ephemeral_key)

    def __repr__(self) -> str:
        return (
            f"CredentialVault(ephemeral={self._ephemeral}, "
            f"previous_keys={self._previous_count})"
        )

    @property
    def is_ephemeral(self) -> bool:
        """True if the key was generated for this process only."""
        return self._ephemeral

    def encrypt(self, credentials: Dict[str, Any]) -> str:
        """Encrypt a credential map. Returns the Fernet token as text.

        Raises:
            TypeError: If ``credentials`` is not a dict or not JSON-serializable
        """
        if not isinstance(credentials, dict):
            raise TypeError("credentials must be a dict")
        plaintext = json.dumps(credentials, sort_keys=True).encode("utf-8")
        return self._primary.encrypt(plaintext).decode("ascii")

    def decrypt(self, blob: str) -> Dict[str, Any]:
        """Decrypt a blob produced by encrypt().

        Raises:
            DecryptionError: If the blob is malformed, tampered with, or was
                encrypted under a key this vault does not hold
        """
        if not isinstance(blob, (str, bytes)) or not blob:
            raise DecryptionError("Credential blob is empty or not a string")
        token = blob.encode("ascii", errors="replace") if isinstance(blob, str) else blob
        try:
            plaintext = self._cipher.decrypt(token)
        except InvalidToken:
            raise DecryptionError(
                "Credential blob could not be decrypted (corrupted or key changed)"
            ) from None
        try:
            data = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise DecryptionError("Decrypted credential payload is not valid JSON") from None
        if not isinstance(data, dict):
            raise DecryptionError("Decrypted credential payload is not a mapping")
        return data

    def rotate(self, blob: str) -> str:
        """Re-encrypt ``blob`` under the primary key.

        Raises:
            DecryptionError: If no held key can decrypt ``blob``
        """
        token = blob.encode("ascii", errors="replace") if isinstance(blob, str) else blob
        try:
            return self._cipher.rotate(token).decode("ascii")
        except InvalidToken:
            raise DecryptionError("Credential blob could not be rotated") from None
