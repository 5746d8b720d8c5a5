"""Shared fixtures: a real codec, an in-memory store and adapters with mocked HTTP."""

from unittest.mock import MagicMock

import pytest
from cryptography.fernet import Fernet

import config as app_config
from codec import CredentialCodec
from identity import IdentityGateway
from keystore import InMemoryKeyStore
from providers import build_providers
from rate_limiter import FixedWindowRateLimiter
from service import TokenTrackerService


def make_response(payload=None, status=200, text=""):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.json.return_value = payload
    resp.text = text
    return resp


class HeaderIdentity(IdentityGateway):
    """Test gateway: the bearer token is the user id."""

    def get_current_user(self, headers, cookies):
        auth = headers.get("authorization", "")
        return auth[7:] if auth.startswith("Bearer ") else None


@pytest.fixture
def codec():
    return CredentialCodec([Fernet.generate_key().decode()])


@pytest.fixture
def store():
    return InMemoryKeyStore()


@pytest.fixture
def providers():
    built = build_providers(timeout=5)
    for provider in built.values():
        provider._session = MagicMock()
    return built


@pytest.fixture
def cfg():
    return app_config.default_config()


@pytest.fixture
def service(codec, store, providers, cfg):
    return TokenTrackerService(codec, store, providers, cfg)


@pytest.fixture
def identity():
    return HeaderIdentity()


@pytest.fixture
def limiter():
    return FixedWindowRateLimiter(window_seconds=60, max_requests=1000)
