"""Base provider class and normalized usage records."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import requests

from errors import UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15
MIN_KEY_LENGTH = 20
MAX_KEY_LENGTH = 200


@dataclass
class UsageWindow:
    """Half-open time range [start, end) for a usage query, in UTC."""

    start: datetime
    end: datetime

    @classmethod
    def trailing(cls, days: int = 7, now: datetime | None = None) -> "UsageWindow":
        end = now or datetime.now(timezone.utc)
        return cls(start=end - timedelta(days=days), end=end)

    def contains_day(self, day: str) -> bool:
        return self.start.strftime("%Y-%m-%d") <= day <= self.end.strftime("%Y-%m-%d")


@dataclass
class DailyUsage:
    date: str
    input: int = 0
    output: int = 0
    cost: float = 0.0

    def to_dict(self) -> dict:
        return {"date": self.date, "input": self.input, "output": self.output, "cost": self.cost}


@dataclass
class TokenUsage:
    """Token-usage record (Anthropic, OpenAI).

    Totals are always derived from ``daily`` so they match it exactly.
    """

    provider_id: str
    daily: list[DailyUsage] = field(default_factory=list)
    is_real_data: bool = True
    cost_is_estimate: bool = False
    requires_admin_key: bool = False
    message: Optional[str] = None
    credits: Optional[dict] = None

    def __post_init__(self):
        self.daily = sorted(self.daily, key=lambda d: d.date)

    @property
    def total_input_tokens(self) -> int:
        return sum(d.input for d in self.daily)

    @property
    def total_output_tokens(self) -> int:
        return sum(d.output for d in self.daily)

    @property
    def total_cost(self) -> float:
        return sum(d.cost for d in self.daily)

    def to_dict(self) -> dict:
        data = {
            "provider": self.provider_id,
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "total_cost": self.total_cost,
            "daily": [d.to_dict() for d in self.daily],
            "is_real_data": self.is_real_data,
            "cost_is_estimate": self.cost_is_estimate,
        }
        if self.requires_admin_key:
            data["requires_admin_key"] = True
        if self.message:
            data["message"] = self.message
        if self.credits is not None:
            data["credits"] = self.credits
        return data


@dataclass
class BalanceUsage:
    """Balance record (Moonshot, DeepSeek). Amounts stay as upstream strings."""

    provider_id: str
    balance: str = "0"
    currency: str = "USD"
    components: Optional[dict] = None

    def to_dict(self) -> dict:
        data = {"provider": self.provider_id, "balance": self.balance, "currency": self.currency}
        if self.components is not None:
            data["components"] = self.components
        return data


@dataclass
class UnavailableUsage:
    """Marker record for providers with no usage API."""

    provider_id: str
    message: str
    console_url: str

    def to_dict(self) -> dict:
        return {
            "provider": self.provider_id,
            "unavailable": True,
            "message": self.message,
            "console_url": self.console_url,
        }


class BaseProvider(ABC):
    """Abstract base class for provider usage adapters."""

    provider_id: str
    provider_name: str
    key_prefixes: tuple[str, ...] = ()
    # False for providers whose adapter never sends the key upstream.
    requires_decryption: bool = True
    # True when a missing credential is reported through the record itself.
    handles_missing_key: bool = False

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self._timeout = timeout
        self._session = requests.Session()

    def validate_key(self, api_key: str) -> bool:
        """Format check applied before encryption (not an upstream check)."""
        if not isinstance(api_key, str):
            return False
        if not MIN_KEY_LENGTH <= len(api_key) <= MAX_KEY_LENGTH:
            return False
        if self.key_prefixes:
            return api_key.startswith(self.key_prefixes)
        return True

    @abstractmethod
    def fetch_usage(self, api_key: str | None, window: UsageWindow):
        """Fetch usage for the given window.

        Args:
            api_key: Decrypted API key, or None if the user stored none.
            window: Time range to report on.

        Returns:
            A TokenUsage, BalanceUsage or UnavailableUsage record.

        Raises:
            UpstreamError: on any non-2xx response or transport failure.
        """
        ...

    def _get_json(
        self,
        url: str,
        headers: dict[str, str],
        params: dict[str, Any] | None = None,
    ) -> Any:
        """GET a JSON document, converting every failure to UpstreamError."""
        try:
            resp = self._session.get(url, headers=headers, params=params, timeout=self._timeout)
        except requests.RequestException as e:
            logger.error("%s request to %s failed: %s", self.provider_id, url, e)
            raise UpstreamError(self.provider_id, None, str(e)) from e

        if not resp.ok:
            body = resp.text
            logger.error("%s API error: %s %s", self.provider_id, resp.status_code, body[:500])
            raise UpstreamError(self.provider_id, resp.status_code, body)

        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamError(self.provider_id, resp.status_code, f"invalid JSON: {e}") from e


def _safe_int(value, default: int = 0) -> int:
    """Safely coerce a value to int."""
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _safe_float(value, default: float = 0.0) -> float:
    """Safely coerce a value to float."""
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default
