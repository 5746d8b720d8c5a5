"""MiniMax provider: no public balance or usage API.

The adapter only reports that fact, so a stored MiniMax key proves a
connection was registered and nothing more.
"""

from __future__ import annotations

from providers.base import BaseProvider, UnavailableUsage, UsageWindow

MINIMAX_CONSOLE_URL = "https://platform.minimax.io/"


class MiniMaxProvider(BaseProvider):
    provider_id = "minimax"
    provider_name = "MiniMax"
    requires_decryption = False

    def fetch_usage(self, api_key: str | None, window: UsageWindow) -> UnavailableUsage:
        return UnavailableUsage(
            provider_id=self.provider_id,
            message=(
                "MiniMax does not provide a public balance API. "
                f"Please check your balance at {MINIMAX_CONSOLE_URL}"
            ),
            console_url=MINIMAX_CONSOLE_URL,
        )
