"""Anthropic provider: token usage via Admin API /v1/organizations/usage_report/messages.

Cost is estimated from the static price table because the usage report
carries token counts only.
"""

from __future__ import annotations

import logging

from providers.base import BaseProvider, DailyUsage, TokenUsage, UsageWindow, _safe_int
from providers.pricing import estimate_cost

logger = logging.getLogger(__name__)

ANTHROPIC_API_BASE = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"

ADMIN_KEY_MESSAGE = "Add an Anthropic Admin API key to see real usage data."

# Guards against an upstream that keeps returning has_more forever.
_MAX_PAGES = 50


class AnthropicAdminProvider(BaseProvider):
    provider_id = "anthropic-admin"
    provider_name = "Anthropic"
    key_prefixes = ("sk-ant-", "sk-")
    handles_missing_key = True

    def fetch_usage(self, api_key: str | None, window: UsageWindow) -> TokenUsage:
        """Fetch daily token usage and an estimated cost for the window."""
        if not api_key:
            logger.info("No Anthropic admin key; returning placeholder usage.")
            return TokenUsage(
                provider_id=self.provider_id,
                is_real_data=False,
                requires_admin_key=True,
                message=ADMIN_KEY_MESSAGE,
            )

        days: dict[str, DailyUsage] = {}
        for bucket in self._iter_usage_buckets(api_key, window):
            day = str(bucket.get("starting_at") or "")[:10]
            if len(day) != 10 or not window.contains_day(day):
                continue
            entry = days.setdefault(day, DailyUsage(date=day))
            for result in bucket.get("results", []) or []:
                if not isinstance(result, dict):
                    continue
                tokens_in = _input_tokens(result)
                tokens_out = _safe_int(result.get("output_tokens"))
                entry.input += tokens_in
                entry.output += tokens_out
                entry.cost += estimate_cost(result.get("model"), tokens_in, tokens_out)

        return TokenUsage(
            provider_id=self.provider_id,
            daily=list(days.values()),
            is_real_data=True,
            cost_is_estimate=True,
        )

    def _iter_usage_buckets(self, api_key: str, window: UsageWindow):
        """Yield daily buckets, following has_more / next_page pagination."""
        headers = {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        url = f"{ANTHROPIC_API_BASE}/v1/organizations/usage_report/messages"
        page = None

        for _ in range(_MAX_PAGES):
            params = {
                "starting_at": window.start.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "ending_at": window.end.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "bucket_width": "1d",
                "group_by[]": "model",
            }
            if page:
                params["page"] = page

            data = self._get_json(url, headers, params)
            for bucket in data.get("data", []) or []:
                if isinstance(bucket, dict):
                    yield bucket

            if not data.get("has_more", False):
                return
            page = data.get("next_page")
            if not page:
                return
        logger.warning("Anthropic usage report exceeded %d pages; truncating.", _MAX_PAGES)


def _input_tokens(result: dict) -> int:
    total = _safe_int(result.get("uncached_input_tokens"))
    total += _safe_int(result.get("cache_read_input_tokens"))
    cache_creation = result.get("cache_creation", {})
    if isinstance(cache_creation, dict):
        total += _safe_int(cache_creation.get("ephemeral_5m_input_tokens"))
        total += _safe_int(cache_creation.get("ephemeral_1h_input_tokens"))
    return total
