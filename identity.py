"""Caller identity resolution.

Session handling belongs to the external auth provider; this module only asks
it who the bearer of a token is.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Mapping

import requests

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "sb-access-token"


class IdentityGateway(ABC):
    @abstractmethod
    def get_current_user(
        self, headers: Mapping[str, str], cookies: Mapping[str, str]
    ) -> str | None:
        """Return the caller's user id, or None if unauthenticated."""
        ...


def extract_access_token(headers: Mapping[str, str], cookies: Mapping[str, str]) -> str | None:
    """Bearer token from the Authorization header, else the session cookie."""
    auth = headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        token = auth[7:].strip()
        if token:
            return token
    token = cookies.get(ACCESS_TOKEN_COOKIE)
    return token or None


class SupabaseIdentityGateway(IdentityGateway):
    """Resolves users through the Supabase Auth ``/auth/v1/user`` endpoint."""

    def __init__(self, url: str, anon_key: str, timeout: float = 10):
        self._url = url.rstrip("/")
        self._anon_key = anon_key
        self._timeout = timeout
        self._session = requests.Session()

    def get_current_user(
        self, headers: Mapping[str, str], cookies: Mapping[str, str]
    ) -> str | None:
        token = extract_access_token(headers, cookies)
        if not token:
            return None

        try:
            resp = self._session.get(
                f"{self._url}/auth/v1/user",
                headers={"apikey": self._anon_key, "Authorization": f"Bearer {token}"},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            logger.error("Supabase auth lookup failed: %s", e)
            return None

        if resp.status_code != 200:
            logger.info("Supabase rejected access token (HTTP %d)", resp.status_code)
            return None

        try:
            user = resp.json()
        except ValueError:
            logger.warning("Supabase auth returned non-JSON body")
            return None
        user_id = user.get("id") if isinstance(user, dict) else None
        return str(user_id) if user_id else None


class AnonymousIdentityGateway(IdentityGateway):
    """Used when no auth provider is configured: nobody is signed in."""

    def get_current_user(
        self, headers: Mapping[str, str], cookies: Mapping[str, str]
    ) -> str | None:
        return None


def create_identity_gateway(url: str, anon_key: str) -> IdentityGateway:
    if not url or not anon_key:
        logger.warning("Supabase is not configured; all credential requests will be rejected.")
        return AnonymousIdentityGateway()
    return SupabaseIdentityGateway(url, anon_key)
