"""
AI Agents for the Ledger

Two thin collaborators backed by Gemini:

1. STOCK PRICE AGENT:
   - CAN: Return approximate prices for the symbols it is given
   - CANNOT: Write anything; the ledger decides what to apply
   - MUST: Return an empty list when unconfigured or on any failure

2. ADVICE AGENT:
   - CAN: Turn a plain-text financial summary into a short paragraph
   - CANNOT: Touch ledger state
   - MUST: Return a fallback text instead of raising

The prices are estimates from the model, not a market data feed.
"""

import json
from typing import Any, Optional, Protocol

import google.generativeai as genai
import structlog
from pydantic import ValidationError

from finledger.config import GeminiSettings
from finledger.models.ledger import StockHolding, StockPriceUpdate


logger = structlog.get_logger(__name__)


ADVICE_UNCONFIGURED = "Cannot connect to the AI service."
ADVICE_EMPTY = "No advice is available right now."
ADVICE_UNAVAILABLE = "The analysis service is temporarily unavailable."


class PriceSource(Protocol):
    """Anything that can price a list of holdings."""

    async def fetch_prices(self, holdings: list[StockHolding]) -> list[StockPriceUpdate]:
        ...


class Advisor(Protocol):
    """Anything that can turn a financial summary into advice text."""

    async def get_financial_advice(self, summary: str) -> str:
        ...


def parse_price_updates(text: str) -> list[StockPriceUpdate]:
    """
    Parse the model's JSON array of {symbol, price} objects.

    Items that do not validate are dropped; anything unparseable yields [].
    """
    start = text.find("[")
    end = text.rfind("]") + 1
    if start < 0 or end <= start:
        return []
    try:
        items = json.loads(text[start:end])
    except json.JSONDecodeError:
        return []

    updates = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            updates.append(StockPriceUpdate(**item))
        except ValidationError:
            logger.warning("price_update_dropped", item=item)
    return updates


class _GeminiAgent:
    """Shared Gemini setup. A model can be injected for testing."""

    max_output_tokens = 1024

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        model: Optional[Any] = None,
    ):
        self._settings = settings
        self._model = model
        if self._model is None and settings is not None:
            self._configure_genai()

    @property
    def configured(self) -> bool:
        return self._model is not None

    def _generation_config(self) -> dict:
        return {
            "temperature": self._settings.temperature,
            "max_output_tokens": min(self.max_output_tokens, self._settings.max_tokens),
        }

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config=self._generation_config(),
        )


class StockPriceAgent(_GeminiAgent):
    """Price-update collaborator."""

    max_output_tokens = 2048

    def _generation_config(self) -> dict:
        config = super()._generation_config()
        config["response_mime_type"] = "application/json"
        return config

    async def fetch_prices(self, holdings: list[StockHolding]) -> list[StockPriceUpdate]:
        """
        Ask the model for approximate current prices of the holdings.

        Returns [] when unconfigured, when there is nothing to price,
        or when the call or the parse fails.
        """
        if not self.configured:
            logger.warning("gemini_not_configured", agent="stock_price")
            return []
        if not holdings:
            return []

        symbols = ", ".join(sorted({h.symbol for h in holdings}))
        prompt = f"""Provide the approximate current market price for the following stock symbols: {symbols}.
Return the data as a JSON array of objects with 'symbol' (string) and 'price' (number) properties.
If you don't have exact real-time data, provide a realistic estimate based on the most recent trading data you have knowledge of.
Output ONLY the JSON."""

        try:
            response = await self._model.generate_content_async(prompt)
            text = (response.text or "").strip()
        except Exception as e:
            logger.error("price_fetch_failed", error=str(e))
            return []

        return parse_price_updates(text)


class AdviceAgent(_GeminiAgent):
    """Advice-generation collaborator. Purely informational."""

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        model: Optional[Any] = None,
        language: str = "Traditional Chinese",
    ):
        super().__init__(settings=settings, model=model)
        self._language = language

    async def get_financial_advice(self, summary: str) -> str:
        if not self.configured:
            return ADVICE_UNCONFIGURED

        prompt = (
            "Based on this financial summary, give a short, encouraging paragraph "
            f"of financial advice (in {self._language}):\n{summary}"
        )
        try:
            response = await self._model.generate_content_async(prompt)
            text = (response.text or "").strip()
        except Exception as e:
            logger.error("advice_failed", error=str(e))
            return ADVICE_UNAVAILABLE

        return text or ADVICE_EMPTY
