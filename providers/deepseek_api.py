"""DeepSeek provider: account balance via /user/balance."""

from __future__ import annotations

import logging

from providers.base import BalanceUsage, BaseProvider, UsageWindow

logger = logging.getLogger(__name__)

DEEPSEEK_API_BASE = "https://api.deepseek.com"


class DeepSeekProvider(BaseProvider):
    provider_id = "deepseek"
    provider_name = "DeepSeek"
    key_prefixes = ("sk-",)

    def fetch_usage(self, api_key: str | None, window: UsageWindow) -> BalanceUsage:
        """Fetch the balance, passing the upstream amounts through verbatim.

        The API nests amounts under ``balance_infos`` (one entry per
        currency); older responses put them at the top level.
        """
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        data = self._get_json(f"{DEEPSEEK_API_BASE}/user/balance", headers)
        if not isinstance(data, dict):
            data = {}

        info = data
        balance_infos = data.get("balance_infos")
        if isinstance(balance_infos, list) and balance_infos and isinstance(balance_infos[0], dict):
            info = balance_infos[0]

        total = info.get("total_balance", info.get("balance"))
        return BalanceUsage(
            provider_id=self.provider_id,
            balance=str(total) if total is not None else "0",
            currency=info.get("currency") or "USD",
            components={
                "granted": info.get("granted_balance"),
                "topped_up": info.get("topped_up_balance"),
            },
        )
