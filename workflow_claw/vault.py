"""Passphrase-unlocked secret vault for provider credentials."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
from typing import Dict, Optional, Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import VaultConfig
from .errors import VaultError, VaultLocked

logger = logging.getLogger(__name__)

CHECK_KEY = "unlock_check"
CHECK_VALUE = "workflow-claw"
KEY_BYTES = 32
SALT_BYTES = 16
NONCE_BYTES = 12
TAG_BYTES = 16


class SettingsStore(Protocol):
    """Storage for the vault's check record."""

    async def get_setting(self, key: str) -> str | None:
        """Return the stored value for ``key``."""

    async def set_setting(self, key: str, value: str) -> None:
        """Persist ``value`` under ``key``."""


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(data: str) -> bytes:
    return base64.b64decode(data.encode("ascii"))


def derive_key(passphrase: str, salt: bytes, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_BYTES,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def encrypt_with_key(plaintext: str, key: bytes) -> Dict[str, str]:
    """AES-256-GCM encrypt ``plaintext`` into a ``{nonce, tag, data}`` envelope."""
    nonce = os.urandom(NONCE_BYTES)
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    # AESGCM appends the tag to the ciphertext
    return {
        "nonce": _b64(nonce),
        "tag": _b64(sealed[-TAG_BYTES:]),
        "data": _b64(sealed[:-TAG_BYTES]),
    }


def decrypt_with_key(envelope: Dict[str, str], key: bytes) -> str:
    """Reverse :func:`encrypt_with_key`; raises ``InvalidTag`` on tampering."""
    nonce = _unb64(envelope["nonce"])
    sealed = _unb64(envelope["data"]) + _unb64(envelope["tag"])
    return AESGCM(key).decrypt(nonce, sealed, None).decode("utf-8")


class SecretVault:
    """Holds the derived key in memory between ``unlock`` and ``lock``.

    The key is never persisted. Only a check record (salt plus the sentinel
    encrypted under the key) is written to the settings store, so losing the
    passphrase makes every stored secret unrecoverable.
    """

    def __init__(self, store: SettingsStore, config: Optional[VaultConfig] = None) -> None:
        self._store = store
        self._config = config or VaultConfig()
        self._key: Optional[bytes] = None

    def is_unlocked(self) -> bool:
        return self._key is not None

    def lock(self) -> None:
        self._key = None

    async def unlock(self, passphrase: str) -> bool:
        """Unlock with ``passphrase``, initialising the vault on first use.

        Returns ``False`` (and stays locked) when the passphrase is wrong.
        """
        iterations = self._config.kdf_iterations
        existing = await self._store.get_setting(CHECK_KEY)

        if existing is None:
            salt = os.urandom(SALT_BYTES)
            key = await asyncio.to_thread(derive_key, passphrase, salt, iterations)
            envelope = encrypt_with_key(CHECK_VALUE, key)
            record = {
                "salt": _b64(salt),
                "nonce": envelope["nonce"],
                "tag": envelope["tag"],
                "ciphertext": envelope["data"],
            }
            await self._store.set_setting(CHECK_KEY, json.dumps(record))
            logger.info("Initialised secret vault")
            self._key = key
            return True

        try:
            record = json.loads(existing)
            salt = _unb64(record["salt"])
            envelope = {
                "nonce": record["nonce"],
                "tag": record["tag"],
                "data": record["ciphertext"],
            }
        except (ValueError, KeyError, TypeError) as exc:
            raise VaultError(f"Corrupt vault check record: {exc}") from exc

        key = await asyncio.to_thread(derive_key, passphrase, salt, iterations)
        try:
            value = decrypt_with_key(envelope, key)
        except (InvalidTag, ValueError):
            logger.warning("Vault unlock rejected")
            return False
        if value != CHECK_VALUE:
            logger.warning("Vault unlock rejected")
            return False
        self._key = key
        return True

    def encrypt_secret(self, plaintext: str) -> str:
        if self._key is None:
            raise VaultLocked()
        return json.dumps(encrypt_with_key(plaintext, self._key))

    def decrypt_secret(self, ciphertext: str) -> str:
        if self._key is None:
            raise VaultLocked()
        try:
            return decrypt_with_key(json.loads(ciphertext), self._key)
        except (InvalidTag, ValueError, KeyError) as exc:
            raise VaultError("Unable to decrypt secret") from exc


def encrypt_provider_env(vault: SecretVault, env: Dict[str, str]) -> str:
    """Encrypt a provider's environment mapping for storage."""
    return vault.encrypt_secret(json.dumps(env))


def decrypt_provider_env(vault: SecretVault, env_enc: Optional[str]) -> Dict[str, str]:
    """Decrypt a provider's environment blob.

    An empty blob yields ``{}``. Raises ``VaultLocked`` when the vault is locked.
    """
    if not env_enc:
        return {}
    raw = json.loads(vault.decrypt_secret(env_enc))
    if not isinstance(raw, dict):
        raise VaultError("Provider environment is not a mapping")
    return {str(k): str(v) for k, v in raw.items()}
