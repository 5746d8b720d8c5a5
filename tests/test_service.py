"""Tests for the key management / usage service."""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
import requests
from cryptography.fernet import Fernet

from codec import CredentialCodec
from errors import AuthRequired, DecryptionError, InvalidInput, NotFound, UpstreamError
from keystore import KeyStore
from service import TokenTrackerService
from conftest import make_response

MOONSHOT_KEY = "sk-" + "m" * 40
OPENAI_KEY = "sk-" + "o" * 40


class TestSaveKey:
    def test_stores_ciphertext_not_plaintext(self, service, store, codec):
        service.save_key("user-1", "moonshot", MOONSHOT_KEY)
        cred = store.get("user-1", "moonshot")
        assert cred.ciphertext != MOONSHOT_KEY
        assert MOONSHOT_KEY not in cred.ciphertext
        assert codec.decrypt(cred.ciphertext) == MOONSHOT_KEY

    def test_resave_replaces(self, service, store, codec):
        service.save_key("user-1", "moonshot", MOONSHOT_KEY)
        service.save_key("user-1", "moonshot", "sk-" + "n" * 40)
        assert codec.decrypt(store.get("user-1", "moonshot").ciphertext) == "sk-" + "n" * 40

    def test_no_owner(self, service):
        with pytest.raises(AuthRequired):
            service.save_key(None, "moonshot", MOONSHOT_KEY)

    @pytest.mark.parametrize("provider", [None, "", "google", "anthropic"])
    def test_invalid_provider(self, service, provider):
        with pytest.raises(InvalidInput, match="Invalid provider"):
            service.save_key("user-1", provider, MOONSHOT_KEY)

    def test_disabled_provider(self, service, cfg):
        cfg["providers"]["deepseek"]["enabled"] = False
        with pytest.raises(InvalidInput):
            service.save_key("user-1", "deepseek", "sk-" + "d" * 40)

    def test_short_key_rejected_before_encryption(self, service, store):
        with pytest.raises(InvalidInput, match="format"):
            service.save_key("user-1", "moonshot", "sk-1234567")
        assert store.get("user-1", "moonshot") is None

    def test_wrong_prefix(self, service):
        with pytest.raises(InvalidInput, match="format"):
            service.save_key("user-1", "openai", "xx-" + "a" * 47)

    @pytest.mark.parametrize("api_key", [None, "", 12345])
    def test_missing_key(self, service, api_key):
        with pytest.raises(InvalidInput, match="Invalid API key"):
            service.save_key("user-1", "openai", api_key)


class TestDeleteAndList:
    def test_delete(self, service, store):
        service.save_key("user-1", "openai", OPENAI_KEY)
        service.delete_key("user-1", "openai")
        assert store.get("user-1", "openai") is None

    def test_delete_missing_is_ok(self, service):
        service.delete_key("user-1", "openai")

    def test_delete_invalid_provider(self, service):
        with pytest.raises(InvalidInput):
            service.delete_key("user-1", "nope")

    def test_list_keys(self, service):
        service.save_key("user-1", "openai", OPENAI_KEY)
        service.save_key("user-1", "moonshot", MOONSHOT_KEY)
        keys = service.list_keys("user-1")
        assert sorted(k["provider"] for k in keys) == ["moonshot", "openai"]
        assert all("ciphertext" not in k for k in keys)


class TestFetchUsage:
    def test_end_to_end_moonshot(self, service, providers):
        service.save_key("user-1", "moonshot", MOONSHOT_KEY)
        providers["moonshot"]._session.get.return_value = make_response(
            {"data": {"available_balance": "12.50"}}
        )

        data = service.fetch_usage("user-1", "moonshot")

        assert data["balance"] == "12.50"
        assert data["currency"] == "USD"
        headers = providers["moonshot"]._session.get.call_args[1]["headers"]
        assert headers["Authorization"] == f"Bearer {MOONSHOT_KEY}"

    def test_no_credential(self, service):
        with pytest.raises(NotFound):
            service.fetch_usage("user-1", "openai")

    def test_anthropic_without_key_asks_for_admin_key(self, service, providers):
        data = service.fetch_usage("user-1", "anthropic-admin")
        assert data["requires_admin_key"] is True
        assert data["total_cost"] == 0
        providers["anthropic-admin"]._session.get.assert_not_called()

    def test_minimax_needs_credential_but_no_decrypt(self, service, store):
        with pytest.raises(NotFound):
            service.fetch_usage("user-1", "minimax")

        # Even an unreadable ciphertext is fine: the key is never used.
        store.upsert("user-1", "minimax", "garbage")
        data = service.fetch_usage("user-1", "minimax")
        assert data["unavailable"] is True

    def test_undecryptable_credential(self, service, store, providers):
        store.upsert("user-1", "openai", "gAAAAAB-corrupted")
        with pytest.raises(DecryptionError):
            service.fetch_usage("user-1", "openai")
        providers["openai"]._session.get.assert_not_called()

    def test_credential_under_retired_key_is_rotated(self, store, providers, cfg):
        old_key = Fernet.generate_key().decode()
        new_key = Fernet.generate_key().decode()
        store.upsert("user-1", "moonshot", CredentialCodec([old_key]).encrypt(MOONSHOT_KEY))
        providers["moonshot"]._session.get.return_value = make_response(
            {"data": {"available_balance": "1.00"}}
        )
        rotating = TokenTrackerService(CredentialCodec([new_key, old_key]), store, providers, cfg)

        assert rotating.fetch_usage("user-1", "moonshot")["balance"] == "1.00"

        stored = store.get("user-1", "moonshot").ciphertext
        assert CredentialCodec([new_key]).decrypt(stored) == MOONSHOT_KEY

    def test_credential_under_primary_key_is_not_rewritten(self, service, store, providers):
        service.save_key("user-1", "moonshot", MOONSHOT_KEY)
        before = store.get("user-1", "moonshot").ciphertext
        providers["moonshot"]._session.get.return_value = make_response(
            {"data": {"available_balance": "1.00"}}
        )

        service.fetch_usage("user-1", "moonshot")

        assert store.get("user-1", "moonshot").ciphertext == before

    def test_rotation_store_failure_does_not_fail_fetch(self, providers, cfg):
        from errors import StoreError
        from keystore import InMemoryKeyStore

        old_key = Fernet.generate_key().decode()
        store = InMemoryKeyStore()
        store.upsert("user-1", "moonshot", CredentialCodec([old_key]).encrypt(MOONSHOT_KEY))
        store.upsert = MagicMock(side_effect=StoreError("read-only"))
        providers["moonshot"]._session.get.return_value = make_response(
            {"data": {"available_balance": "2.00"}}
        )
        codec = CredentialCodec([Fernet.generate_key().decode(), old_key])

        data = TokenTrackerService(codec, store, providers, cfg).fetch_usage("user-1", "moonshot")

        assert data["balance"] == "2.00"
        store.upsert.assert_called_once()

    def test_upstream_failure_propagates(self, service, providers):
        service.save_key("user-1", "deepseek", "sk-" + "d" * 40)
        providers["deepseek"]._session.get.return_value = make_response(status=500, text="boom")
        with pytest.raises(UpstreamError):
            service.fetch_usage("user-1", "deepseek")

    def test_lookback_window_from_config(self, service, providers, cfg):
        cfg["usageLookbackDays"] = 3
        service.save_key("user-1", "anthropic-admin", "sk-ant-admin01-" + "a" * 30)
        providers["anthropic-admin"]._session.get.return_value = make_response(
            {"data": [], "has_more": False}
        )
        service.fetch_usage("user-1", "anthropic-admin")
        params = providers["anthropic-admin"]._session.get.call_args[1]["params"]
        start = datetime.strptime(params["starting_at"], "%Y-%m-%dT%H:%M:%SZ")
        end = datetime.strptime(params["ending_at"], "%Y-%m-%dT%H:%M:%SZ")
        assert end - start == timedelta(days=3)


class TestFetchMany:
    def test_partial_failure(self, service, providers):
        service.save_key("user-1", "moonshot", MOONSHOT_KEY)
        service.save_key("user-1", "deepseek", "sk-" + "d" * 40)
        providers["moonshot"]._session.get.return_value = make_response(
            {"data": {"available_balance": "12.50"}}
        )
        providers["deepseek"]._session.get.return_value = make_response(
            status=500, text="internal"
        )

        results = service.fetch_many("user-1", ["moonshot", "deepseek"])

        assert results["moonshot"]["ok"] is True
        assert results["moonshot"]["data"]["balance"] == "12.50"
        assert results["deepseek"]["ok"] is False
        assert results["deepseek"]["kind"] == "UpstreamError"
        assert results["deepseek"]["status"] == 500
        assert "internal" not in results["deepseek"]["error"]

    def test_transport_failure_and_missing_key(self, service, providers):
        service.save_key("user-1", "openai", OPENAI_KEY)
        providers["openai"]._session.get.side_effect = requests.ConnectionError("down")

        results = service.fetch_many("user-1", ["openai", "moonshot", "bogus"])

        assert results["openai"]["kind"] == "UpstreamError"
        assert results["moonshot"]["kind"] == "NotFound"
        assert results["moonshot"]["status"] == 404
        assert results["bogus"]["kind"] == "InvalidInput"

    def test_defaults_to_enabled_providers(self, service, cfg):
        cfg["providers"]["openai"]["enabled"] = False
        results = service.fetch_many("user-1")
        assert "openai" not in results
        assert results["anthropic-admin"]["ok"] is True
        assert results["minimax"]["kind"] == "NotFound"

    def test_unexpected_error_is_contained(self, service, providers):
        service.save_key("user-1", "moonshot", MOONSHOT_KEY)
        providers["moonshot"]._session.get.side_effect = RuntimeError("bug")
        results = service.fetch_many("user-1", ["moonshot", "anthropic-admin"])
        assert results["moonshot"]["ok"] is False
        assert results["moonshot"]["status"] == 500
        assert results["anthropic-admin"]["ok"] is True

    def test_requires_owner(self, service):
        with pytest.raises(AuthRequired):
            service.fetch_many(None, ["moonshot"])

    def test_store_failure_is_per_provider(self, codec, providers, cfg):
        from errors import StoreError
        from service import TokenTrackerService

        class BrokenStore(KeyStore):
            def get(self, owner_id, provider):
                if provider == "openai":
                    raise StoreError("connection reset by db")
                return None

            def upsert(self, owner_id, provider, ciphertext):
                raise StoreError("read-only")

            def delete(self, owner_id, provider):
                return False

        svc = TokenTrackerService(codec, BrokenStore(), providers, cfg)
        results = svc.fetch_many("user-1", ["openai", "anthropic-admin"])
        assert results["openai"]["kind"] == "StoreError"
        assert "connection reset" not in results["openai"]["error"]
        assert results["anthropic-admin"]["ok"] is True
