"""OpenAI provider: credit grants plus daily usage from /v1/usage.

The two calls are independent. A failed credit-grant lookup only drops the
credits block; a failed usage lookup fails the fetch.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from errors import UpstreamError
from providers.base import (
    BaseProvider,
    DailyUsage,
    TokenUsage,
    UsageWindow,
    _safe_float,
    _safe_int,
)

logger = logging.getLogger(__name__)

OPENAI_API_BASE = "https://api.openai.com"


class OpenAIProvider(BaseProvider):
    provider_id = "openai"
    provider_name = "OpenAI"
    key_prefixes = ("sk-",)

    def fetch_usage(self, api_key: str | None, window: UsageWindow) -> TokenUsage:
        """Fetch credits and per-day token usage for the window."""
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

        credits = None
        try:
            credits = self._call_credit_grants(headers)
        except UpstreamError as e:
            logger.warning("OpenAI credit grants unavailable: %s", e)

        data = self._get_json(
            f"{OPENAI_API_BASE}/v1/usage",
            headers,
            params={
                "start_date": window.start.strftime("%Y-%m-%d"),
                "end_date": window.end.strftime("%Y-%m-%d"),
            },
        )

        days: dict[str, DailyUsage] = {}
        for item in data.get("data", []) or []:
            if not isinstance(item, dict):
                continue
            day = _extract_day(item)
            if day is None or not window.contains_day(day):
                logger.debug("Dropping OpenAI usage entry outside the window or undated")
                continue
            entry = days.setdefault(day, DailyUsage(date=day))
            entry.input += _safe_int(item.get("n_context_tokens_total"))
            entry.output += _safe_int(item.get("n_generated_tokens_total"))
            # Usage is reported in cents.
            entry.cost += _safe_float(item.get("usage")) / 100.0

        return TokenUsage(
            provider_id=self.provider_id,
            daily=list(days.values()),
            is_real_data=True,
            credits=credits,
        )

    def _call_credit_grants(self, headers: dict[str, str]) -> dict:
        data = self._get_json(f"{OPENAI_API_BASE}/dashboard/billing/credit_grants", headers)
        if not isinstance(data, dict):
            data = {}
        return {
            "total_granted": _safe_float(data.get("total_granted")),
            "total_used": _safe_float(data.get("total_used")),
            "total_available": _safe_float(data.get("total_available")),
        }


def _extract_day(item: dict) -> str | None:
    """Return the YYYY-MM-DD day of a usage entry, or None if unusable.

    The snapshot id looks like ``2024-05-01@model``; the timestamp is either
    an ISO string or epoch seconds.
    """
    candidate = None
    snapshot_id = item.get("snapshot_id")
    if isinstance(snapshot_id, str) and "@" in snapshot_id:
        candidate = snapshot_id.split("@")[0]
    else:
        timestamp = item.get("timestamp")
        if isinstance(timestamp, str):
            candidate = timestamp.split("T")[0]
        elif isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
            try:
                candidate = datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime(
                    "%Y-%m-%d"
                )
            except (ValueError, OSError, OverflowError):
                return None

    if not candidate or len(candidate) != 10:
        return None
    try:
        datetime.strptime(candidate, "%Y-%m-%d")
    except ValueError:
        return None
    return candidate
