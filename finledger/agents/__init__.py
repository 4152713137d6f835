"""AI Agents package."""

from finledger.agents.ai_agents import (
    ADVICE_EMPTY,
    ADVICE_UNAVAILABLE,
    ADVICE_UNCONFIGURED,
    AdviceAgent,
    Advisor,
    PriceSource,
    StockPriceAgent,
    parse_price_updates,
)

__all__ = [
    "ADVICE_EMPTY",
    "ADVICE_UNAVAILABLE",
    "ADVICE_UNCONFIGURED",
    "AdviceAgent",
    "Advisor",
    "PriceSource",
    "StockPriceAgent",
    "parse_price_updates",
]
