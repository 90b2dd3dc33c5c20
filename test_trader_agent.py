"""
Test suite for TraderAgent

Tests prompt rendering, decision parsing, timeout and provider failures
with a mocked LLM client.
"""

import time
from unittest.mock import MagicMock

import pytest

from autotrader_llm.execution.broker_interface import PositionInfo
from autotrader_llm.llm import LLMError, LLMResponse, RateLimitError
from autotrader_llm.trader.trader_agent import (
    AnalysisError,
    AnalysisRequest,
    TickerAnalysis,
    TraderAgent,
    build_user_prompt,
)

SBER_RESPONSE = (
    '<think>volume spike</think>\n'
    '```json\n'
    '[{"action": "BUY", "ticker": "SBER", "stop_loss": 250.0, "take_profit": 290.0, '
    '"confidence": 80, "reasoning": "momentum"}]\n'
    '```'
)


def response(content):
    return LLMResponse(content=content, model="deepseek-reasoner", provider="deepseek")


@pytest.fixture
def request_():
    return AnalysisRequest(
        tickers=[
            TickerAnalysis(ticker="SBER", last_price=240.0, change_3h=2.13, change_1d=-0.5,
                           volume_24h=1500000, news=["Sberbank raises dividend"]),
            TickerAnalysis(ticker="GAZP", last_price=160.0),
        ],
        positions=[PositionInfo(ticker="GAZP", quantity=10, avg_price=150.0, current_price=160.0, pnl=100.0)],
        available_cash=10000.0,
        total_value=11600.0
    )


@pytest.fixture
def client():
    client = MagicMock()
    client.generate.return_value = response(SBER_RESPONSE)
    return client


class TestBuildUserPrompt:

    def test_contains_portfolio_market_and_news(self, request_):
        prompt = build_user_prompt(request_)

        assert "Total value: $11,600.00 / Available: $10,000.00" in prompt
        assert "- GAZP: 10 shares, avg price 150.00" in prompt
        assert "| SBER | 240.00 | +2.1 | -0.5 |" in prompt
        assert "### SBER" in prompt
        assert "- Sberbank raises dividend" in prompt
        assert "### GAZP" not in prompt

    def test_empty_portfolio_and_news(self):
        prompt = build_user_prompt(AnalysisRequest(tickers=[TickerAnalysis(ticker="SBER")]))
        assert "No open positions." in prompt
        assert "No relevant news found." in prompt


class TestTraderAgent:

    def test_analyze_returns_decisions_and_raw(self, client, request_):
        agent = TraderAgent(client, temperature=0.2, max_tokens=2000)

        result = agent.analyze(request_)

        assert len(result.decisions) == 1
        decision = result.decisions[0]
        assert (decision.action, decision.ticker, decision.confidence) == ("BUY", "SBER", 80)
        assert result.raw_response == SBER_RESPONSE

        kwargs = client.generate.call_args.kwargs
        assert [m.role for m in kwargs['messages']] == ["system", "user"]
        assert kwargs['messages'][0].content == TraderAgent.SYSTEM_PROMPT
        assert kwargs['temperature'] == 0.2
        assert kwargs['max_tokens'] == 2000

    def test_empty_array_is_no_decisions(self, client, request_):
        client.generate.return_value = response("[]")
        assert TraderAgent(client).analyze(request_).decisions == []

    def test_unparseable_response_keeps_raw_text(self, client, request_):
        client.generate.return_value = response("I would rather not say.")

        with pytest.raises(AnalysisError) as exc:
            TraderAgent(client).analyze(request_)

        assert exc.value.raw_response == "I would rather not say."

    def test_provider_error(self, client, request_):
        client.generate.side_effect = RateLimitError("slow down", "deepseek", "deepseek-reasoner")

        with pytest.raises(AnalysisError) as exc:
            TraderAgent(client).analyze(request_)

        assert isinstance(exc.value.__cause__, LLMError)
        assert exc.value.raw_response == ""

    def test_unexpected_client_error_is_wrapped(self, client, request_):
        client.generate.side_effect = ValueError("Expecting value")

        with pytest.raises(AnalysisError, match="Expecting value") as exc:
            TraderAgent(client).analyze(request_)

        assert isinstance(exc.value.__cause__, ValueError)

    def test_timeout(self, client, request_):
        def slow(**kwargs):
            time.sleep(0.5)
            return response("[]")
        client.generate.side_effect = slow

        started = time.monotonic()
        with pytest.raises(AnalysisError, match="timed out"):
            TraderAgent(client, timeout_seconds=0.05).analyze(request_)
        assert time.monotonic() - started < 0.4
