"""Tests for the passphrase-unlocked secret vault."""

import json
import random
import string

import pytest

from workflow_claw.config import VaultConfig
from workflow_claw.errors import VaultError, VaultLocked
from workflow_claw.persistence import InMemoryWorkflowRepository
from workflow_claw.vault import (
    CHECK_KEY,
    SecretVault,
    decrypt_provider_env,
    encrypt_provider_env,
)

FAST = VaultConfig(kdf_iterations=100_000)


@pytest.mark.asyncio
async def test_first_unlock_initialises_check_record():
    store = InMemoryWorkflowRepository()
    vault = SecretVault(store, FAST)

    assert not vault.is_unlocked()
    assert await vault.unlock("correct horse")
    assert vault.is_unlocked()

    record = json.loads(await store.get_setting(CHECK_KEY))
    assert set(record) == {"salt", "nonce", "tag", "ciphertext"}

    vault.lock()
    vault.lock()
    assert not vault.is_unlocked()
    assert await vault.unlock("correct horse")
    assert json.loads(await store.get_setting(CHECK_KEY)) == record


@pytest.mark.asyncio
async def test_wrong_passphrase_is_rejected():
    store = InMemoryWorkflowRepository()
    assert await SecretVault(store, FAST).unlock("right")

    other = SecretVault(store, FAST)
    assert not await other.unlock("wrong")
    assert not other.is_unlocked()
    assert await other.unlock("right")


@pytest.mark.asyncio
async def test_random_secrets_round_trip():
    vault = SecretVault(InMemoryWorkflowRepository(), FAST)
    await vault.unlock("pass")
    rng = random.Random(1234)
    alphabet = string.printable + "äöü€漢字🙂"

    for _ in range(1000):
        secret = "".join(rng.choice(alphabet) for _ in range(rng.randint(0, 64)))
        assert vault.decrypt_secret(vault.encrypt_secret(secret)) == secret


@pytest.mark.asyncio
async def test_encryption_uses_fresh_nonces():
    vault = SecretVault(InMemoryWorkflowRepository(), FAST)
    await vault.unlock("pass")
    assert vault.encrypt_secret("same") != vault.encrypt_secret("same")


@pytest.mark.asyncio
async def test_locked_vault_refuses_to_work():
    vault = SecretVault(InMemoryWorkflowRepository(), FAST)
    with pytest.raises(VaultLocked):
        vault.encrypt_secret("x")

    await vault.unlock("pass")
    blob = vault.encrypt_secret("x")
    vault.lock()
    with pytest.raises(VaultLocked, match="Vault locked"):
        vault.decrypt_secret(blob)


@pytest.mark.asyncio
async def test_tampered_ciphertext_fails():
    vault = SecretVault(InMemoryWorkflowRepository(), FAST)
    await vault.unlock("pass")
    envelope = json.loads(vault.encrypt_secret("secret"))
    envelope["tag"] = json.loads(vault.encrypt_secret("other"))["tag"]

    with pytest.raises(VaultError):
        vault.decrypt_secret(json.dumps(envelope))


@pytest.mark.asyncio
async def test_secret_from_other_passphrase_cannot_be_read():
    first = SecretVault(InMemoryWorkflowRepository(), FAST)
    await first.unlock("one")
    second = SecretVault(InMemoryWorkflowRepository(), FAST)
    await second.unlock("two")

    with pytest.raises(VaultError):
        second.decrypt_secret(first.encrypt_secret("secret"))


@pytest.mark.asyncio
@pytest.mark.parametrize("stored", ["not json", "[]", "42", '{"salt": "c2FsdA=="}'])
async def test_corrupt_check_record_raises(stored):
    store = InMemoryWorkflowRepository()
    await store.set_setting(CHECK_KEY, stored)
    with pytest.raises(VaultError):
        await SecretVault(store, FAST).unlock("pass")


@pytest.mark.asyncio
async def test_provider_env_helpers():
    vault = SecretVault(InMemoryWorkflowRepository(), FAST)
    await vault.unlock("pass")
    blob = encrypt_provider_env(vault, {"API_KEY": "abc", "REGION": "eu"})

    assert "abc" not in blob
    assert decrypt_provider_env(vault, blob) == {"API_KEY": "abc", "REGION": "eu"}
    assert decrypt_provider_env(vault, None) == {}


def test_kdf_iterations_have_a_floor():
    with pytest.raises(ValueError):
        VaultConfig(kdf_iterations=1000)
