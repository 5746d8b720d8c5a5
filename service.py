"""Key management and usage fetching for signed-in users.

Ties together the key store, the credential codec and the provider adapters.
Plaintext keys live only inside a single call.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable

import config as app_config
from codec import CredentialCodec
from errors import AuthRequired, InvalidInput, NotFound, TrackerError
from keystore import KeyStore
from providers.base import BaseProvider, UsageWindow

logger = logging.getLogger(__name__)

_MAX_WORKERS = 8


class TokenTrackerService:
    def __init__(
        self,
        codec: CredentialCodec,
        store: KeyStore,
        providers: dict[str, BaseProvider],
        cfg: dict[str, Any],
    ):
        self.codec = codec
        self.store = store
        self.providers = providers
        self.cfg = cfg

    def enabled_providers(self) -> list[str]:
        return [
            pid for pid in app_config.get_enabled_providers(self.cfg) if pid in self.providers
        ]

    def _resolve(self, provider_id: str | None) -> BaseProvider:
        if not isinstance(provider_id, str) or provider_id not in self.providers:
            raise InvalidInput("Invalid provider")
        if not app_config.is_provider_enabled(self.cfg, provider_id):
            raise InvalidInput("Invalid provider")
        return self.providers[provider_id]

    @staticmethod
    def require_owner(owner_id: str | None) -> str:
        if not owner_id:
            raise AuthRequired()
        return owner_id

    def save_key(self, owner_id: str | None, provider_id: str | None, api_key: Any) -> None:
        """Validate, encrypt and store an API key."""
        owner_id = self.require_owner(owner_id)
        provider = self._resolve(provider_id)
        if not api_key or not isinstance(api_key, str):
            raise InvalidInput("Invalid API key")
        if not provider.validate_key(api_key):
            raise InvalidInput("Invalid API key format")

        ciphertext = self.codec.encrypt(api_key)
        self.store.upsert(owner_id, provider.provider_id, ciphertext)
        logger.info("Saved %s key for user %s", provider.provider_id, owner_id)

    def delete_key(self, owner_id: str | None, provider_id: str | None) -> None:
        owner_id = self.require_owner(owner_id)
        provider = self._resolve(provider_id)
        if self.store.delete(owner_id, provider.provider_id):
            logger.info("Deleted %s key for user %s", provider.provider_id, owner_id)

    def list_keys(self, owner_id: str | None) -> list[dict]:
        """Connected providers with timestamps; never the key itself."""
        owner_id = self.require_owner(owner_id)
        return [c.to_public_dict() for c in self.store.list(owner_id, self.enabled_providers())]

    def fetch_usage(self, owner_id: str | None, provider_id: str | None) -> dict:
        """Fetch the normalized usage record for one provider.

        Raises:
            AuthRequired, InvalidInput, NotFound, DecryptionError, StoreError,
            UpstreamError
        """
        owner_id = self.require_owner(owner_id)
        provider = self._resolve(provider_id)
        window = UsageWindow.trailing(app_config.get_lookback_days(self.cfg))

        cred = self.store.get(owner_id, provider.provider_id)
        if cred is None:
            if provider.handles_missing_key:
                return provider.fetch_usage(None, window).to_dict()
            raise NotFound()

        api_key = None
        if provider.requires_decryption:
            api_key = self.codec.decrypt(cred.ciphertext)
            if self.codec.needs_rotation(cred.ciphertext):
                self._rotate_credential(owner_id, provider.provider_id, cred.ciphertext)

        logger.info("Fetching usage for %s...", provider.provider_id)
        return provider.fetch_usage(api_key, window).to_dict()

    def _rotate_credential(self, owner_id: str, provider_id: str, ciphertext: str) -> None:
        """Re-store a credential under the primary key; a failure only delays it."""
        try:
            self.store.upsert(owner_id, provider_id, self.codec.rotate(ciphertext))
        except TrackerError as e:
            logger.warning("Could not rotate %s key for user %s: %s", provider_id, owner_id, e)
            return
        logger.info("Rotated %s key for user %s to the primary key", provider_id, owner_id)

    def fetch_many(self, owner_id: str | None, provider_ids: Iterable[str] | None = None) -> dict:
        """Fetch several providers concurrently.

        Each provider's outcome is reported on its own, so one failing
        upstream never hides the others.
        """
        owner_id = self.require_owner(owner_id)
        ids = list(dict.fromkeys(provider_ids)) if provider_ids else self.enabled_providers()
        if not ids:
            return {}

        with ThreadPoolExecutor(max_workers=min(_MAX_WORKERS, len(ids))) as pool:
            futures = {pid: pool.submit(self._fetch_one, owner_id, pid) for pid in ids}
            return {pid: fut.result() for pid, fut in futures.items()}

    def _fetch_one(self, owner_id: str, provider_id: str) -> dict:
        try:
            return {"ok": True, "data": self.fetch_usage(owner_id, provider_id)}
        except TrackerError as e:
            log_failure(provider_id, e)
            return {
                "ok": False,
                "error": e.public_message,
                "kind": type(e).__name__,
                "status": e.status_code,
            }
        except Exception as e:
            logger.exception("Provider %s fetch raised: %s", provider_id, e)
            return {
                "ok": False,
                "error": "Failed to fetch usage",
                "kind": "InternalError",
                "status": 500,
            }


def log_failure(scope: str, err: TrackerError) -> None:
    """Log full detail server-side; callers only ever see public_message."""
    if err.status_code >= 500:
        logger.error("%s failed (%s): %s", scope, type(err).__name__, err)
    else:
        logger.info("%s rejected (%s): %s", scope, type(err).__name__, err)
