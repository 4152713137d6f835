"""
Tests for the Gemini-backed agents.

A stub model stands in for genai.GenerativeModel; no API calls are made.
"""

from decimal import Decimal

import pytest

from finledger.agents import (
    ADVICE_EMPTY,
    ADVICE_UNAVAILABLE,
    ADVICE_UNCONFIGURED,
    AdviceAgent,
    StockPriceAgent,
    parse_price_updates,
)
from finledger.models.ledger import StockHolding


class StubResponse:
    def __init__(self, text):
        self.text = text


class StubModel:
    def __init__(self, text="", error=None):
        self._text = text
        self._error = error
        self.prompts = []

    async def generate_content_async(self, prompt):
        self.prompts.append(prompt)
        if self._error:
            raise self._error
        return StubResponse(self._text)


def holding(symbol):
    return StockHolding(id=symbol, symbol=symbol, quantity=Decimal("1"),
                        avg_cost=Decimal("1"), current_price=Decimal("1"))


class TestPriceParsing:
    """Model output → StockPriceUpdate list."""

    def test_parses_json_array(self):
        updates = parse_price_updates('[{"symbol": "aapl", "price": 190.5}]')
        assert updates[0].symbol == "AAPL"
        assert updates[0].price == Decimal("190.5")

    def test_ignores_surrounding_text(self):
        text = 'Here you go:\n```json\n[{"symbol": "TSLA", "price": 250}]\n```'
        assert [u.symbol for u in parse_price_updates(text)] == ["TSLA"]

    def test_drops_invalid_items(self):
        text = '[{"symbol": "AAPL", "price": -1}, {"symbol": "MSFT", "price": 400}, "junk"]'
        assert [u.symbol for u in parse_price_updates(text)] == ["MSFT"]

    def test_garbage_yields_empty(self):
        assert parse_price_updates("no prices today") == []
        assert parse_price_updates("[not json]") == []


class TestStockPriceAgent:
    """Price collaborator fallbacks."""

    @pytest.mark.asyncio
    async def test_unconfigured_returns_empty(self):
        agent = StockPriceAgent()
        assert agent.configured is False
        assert await agent.fetch_prices([holding("AAPL")]) == []

    @pytest.mark.asyncio
    async def test_prompt_lists_symbols(self):
        model = StubModel('[{"symbol": "AAPL", "price": 190}]')
        agent = StockPriceAgent(model=model)

        updates = await agent.fetch_prices([holding("AAPL"), holding("2330.TW")])

        assert [u.symbol for u in updates] == ["AAPL"]
        assert "2330.TW, AAPL" in model.prompts[0]

    @pytest.mark.asyncio
    async def test_no_holdings_skips_call(self):
        model = StubModel("[]")
        assert await StockPriceAgent(model=model).fetch_prices([]) == []
        assert model.prompts == []

    @pytest.mark.asyncio
    async def test_model_error_returns_empty(self):
        agent = StockPriceAgent(model=StubModel(error=RuntimeError("quota")))
        assert await agent.fetch_prices([holding("AAPL")]) == []


class TestAdviceAgent:
    """Advice collaborator fallbacks."""

    @pytest.mark.asyncio
    async def test_returns_model_text(self):
        model = StubModel("  Save more.  ")
        agent = AdviceAgent(model=model, language="English")

        assert await agent.get_financial_advice("Total cash: 10") == "Save more."
        assert "in English" in model.prompts[0]
        assert "Total cash: 10" in model.prompts[0]

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        assert await AdviceAgent().get_financial_advice("x") == ADVICE_UNCONFIGURED

    @pytest.mark.asyncio
    async def test_error_fallback(self):
        agent = AdviceAgent(model=StubModel(error=RuntimeError("down")))
        assert await agent.get_financial_advice("x") == ADVICE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_empty_response(self):
        agent = AdviceAgent(model=StubModel(""))
        assert await agent.get_financial_advice("x") == ADVICE_EMPTY


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
