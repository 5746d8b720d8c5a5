"""Moonshot provider: account balance via /v1/users/me/balance."""

from __future__ import annotations

import logging

from providers.base import BalanceUsage, BaseProvider, UsageWindow

logger = logging.getLogger(__name__)

MOONSHOT_API_BASE = "https://api.moonshot.ai"


class MoonshotProvider(BaseProvider):
    provider_id = "moonshot"
    provider_name = "Moonshot"
    key_prefixes = ("sk-",)

    def fetch_usage(self, api_key: str | None, window: UsageWindow) -> BalanceUsage:
        """Fetch the current balance. Moonshot has no date-bucketed usage."""
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        data = self._get_json(f"{MOONSHOT_API_BASE}/v1/users/me/balance", headers)

        payload = data.get("data") if isinstance(data, dict) else None
        if not isinstance(payload, dict):
            payload = {}

        balance = payload.get("available_balance")
        components = None
        if "cash_balance" in payload or "voucher_balance" in payload:
            components = {
                "cash": payload.get("cash_balance"),
                "voucher": payload.get("voucher_balance"),
            }
        return BalanceUsage(
            provider_id=self.provider_id,
            balance=str(balance) if balance is not None else "0",
            currency="USD",
            components=components,
        )
