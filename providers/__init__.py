"""Token Tracker: provider usage adapters."""

from providers.base import (
    BalanceUsage,
    BaseProvider,
    DailyUsage,
    TokenUsage,
    UnavailableUsage,
    UsageWindow,
)
from providers.anthropic_api import AnthropicAdminProvider
from providers.moonshot_api import MoonshotProvider
from providers.openai_api import OpenAIProvider
from providers.deepseek_api import DeepSeekProvider
from providers.minimax_api import MiniMaxProvider

PROVIDERS = {
    "anthropic-admin": AnthropicAdminProvider,
    "moonshot": MoonshotProvider,
    "openai": OpenAIProvider,
    "deepseek": DeepSeekProvider,
    "minimax": MiniMaxProvider,
}


def build_providers(timeout: float) -> dict[str, BaseProvider]:
    """Instantiate every registered adapter with the given upstream timeout."""
    return {pid: cls(timeout=timeout) for pid, cls in PROVIDERS.items()}


__all__ = [
    "BaseProvider",
    "UsageWindow",
    "DailyUsage",
    "TokenUsage",
    "BalanceUsage",
    "UnavailableUsage",
    "AnthropicAdminProvider",
    "MoonshotProvider",
    "OpenAIProvider",
    "DeepSeekProvider",
    "MiniMaxProvider",
    "PROVIDERS",
    "build_providers",
]
