"""Encrypted credential storage, one entry per (owner, provider).

The store only ever sees ciphertext. ``KeyringKeyStore`` keeps entries in the
OS keyring through the keyring library; ``InMemoryKeyStore`` is for tests and
single-process development.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

import keyring
import keyring.errors

from errors import StoreError

logger = logging.getLogger(__name__)

SERVICE_NAME = "token-tracker"


@dataclass
class Credential:
    owner_id: str
    provider: str
    ciphertext: str
    created_at: datetime
    updated_at: datetime

    def to_public_dict(self) -> dict:
        """Metadata safe to return to the owner (no ciphertext)."""
        return {
            "provider": self.provider,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


def _now() -> datetime:
    return datetime.now(timezone.utc)


class KeyStore(ABC):
    """Gateway to the persistent credential store."""

    @abstractmethod
    def get(self, owner_id: str, provider: str) -> Credential | None:
        ...

    @abstractmethod
    def upsert(self, owner_id: str, provider: str, ciphertext: str) -> Credential:
        """Create or replace the credential; keeps created_at, bumps updated_at."""
        ...

    @abstractmethod
    def delete(self, owner_id: str, provider: str) -> bool:
        """Remove the credential. Returns False if there was none."""
        ...

    def list(self, owner_id: str, providers: Iterable[str]) -> list[Credential]:
        """Return the owner's stored credentials among ``providers``."""
        found = []
        for provider in providers:
            cred = self.get(owner_id, provider)
            if cred is not None:
                found.append(cred)
        return found


class InMemoryKeyStore(KeyStore):
    def __init__(self):
        self._rows: dict[tuple[str, str], Credential] = {}
        self._lock = threading.Lock()

    def get(self, owner_id: str, provider: str) -> Credential | None:
        with self._lock:
            return self._rows.get((owner_id, provider))

    def upsert(self, owner_id: str, provider: str, ciphertext: str) -> Credential:
        now = _now()
        with self._lock:
            existing = self._rows.get((owner_id, provider))
            created_at = existing.created_at if existing else now
            cred = Credential(owner_id, provider, ciphertext, created_at, now)
            self._rows[(owner_id, provider)] = cred
            return cred

    def delete(self, owner_id: str, provider: str) -> bool:
        with self._lock:
            return self._rows.pop((owner_id, provider), None) is not None


class KeyringKeyStore(KeyStore):
    """Stores each credential as a JSON document in the OS keyring."""

    def __init__(self, service_name: str = SERVICE_NAME):
        self.service_name = service_name

    @staticmethod
    def _account(owner_id: str, provider: str) -> str:
        return f"{owner_id}:{provider}"

    def get(self, owner_id: str, provider: str) -> Credential | None:
        account = self._account(owner_id, provider)
        try:
            raw = keyring.get_password(self.service_name, account)
        except keyring.errors.KeyringError as e:
            raise StoreError(f"Keyring read failed for {provider}: {e}") from e
        if raw is None:
            return None

        try:
            doc = json.loads(raw)
            return Credential(
                owner_id=owner_id,
                provider=provider,
                ciphertext=doc["ciphertext"],
                created_at=datetime.fromisoformat(doc["created_at"]),
                updated_at=datetime.fromisoformat(doc["updated_at"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise StoreError(f"Corrupt keyring entry for {provider}: {e}") from e

    def upsert(self, owner_id: str, provider: str, ciphertext: str) -> Credential:
        existing = self.get(owner_id, provider)
        now = _now()
        cred = Credential(
            owner_id=owner_id,
            provider=provider,
            ciphertext=ciphertext,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        doc = {
            "ciphertext": cred.ciphertext,
            "created_at": cred.created_at.isoformat(),
            "updated_at": cred.updated_at.isoformat(),
        }
        try:
            keyring.set_password(
                self.service_name, self._account(owner_id, provider), json.dumps(doc)
            )
        except keyring.errors.KeyringError as e:
            raise StoreError(f"Keyring write failed for {provider}: {e}") from e
        return cred

    def delete(self, owner_id: str, provider: str) -> bool:
        try:
            keyring.delete_password(self.service_name, self._account(owner_id, provider))
        except keyring.errors.PasswordDeleteError:
            return False  # Key didn't exist
        except keyring.errors.KeyringError as e:
            raise StoreError(f"Keyring delete failed for {provider}: {e}") from e
        return True


def create_key_store(backend: str) -> KeyStore:
    """Build the store named in config."""
    if backend == "memory":
        logger.warning("Using in-memory key store; credentials are lost on restart.")
        return InMemoryKeyStore()
    return KeyringKeyStore()
