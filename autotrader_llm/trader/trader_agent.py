"""
Trader Agent: asks the language model for BUY/SELL/HOLD decisions on the universe.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import List, Optional

from pydantic import BaseModel, Field

from autotrader_llm.execution.broker_interface import PositionInfo
from autotrader_llm.llm import LLMClient, LLMError, LLMMessage
from autotrader_llm.trader.decision_parser import ParseError, TradeDecision, parse_decisions

logger = logging.getLogger(__name__)


class TickerAnalysis(BaseModel):
    """Per-ticker market context sent to the model"""
    ticker: str
    last_price: float = 0.0
    price_3h_ago: float = 0.0
    price_1d_ago: float = 0.0
    price_3d_ago: float = 0.0
    price_1w_ago: float = 0.0
    volume_24h: float = 0.0
    change_3h: float = 0.0  # percent
    change_1d: float = 0.0
    change_3d: float = 0.0
    change_1w: float = 0.0
    news: List[str] = Field(default_factory=list)


class AnalysisRequest(BaseModel):
    tickers: List[TickerAnalysis] = Field(default_factory=list)
    positions: List[PositionInfo] = Field(default_factory=list)
    available_cash: float = 0.0
    total_value: float = 0.0


class AnalysisResult(BaseModel):
    decisions: List[TradeDecision] = Field(default_factory=list)
    raw_response: str = ""


class AnalysisError(Exception):
    """Model call failed, timed out, or returned unparseable output"""

    def __init__(self, message: str, raw_response: str = ""):
        self.raw_response = raw_response
        super().__init__(message)


def build_user_prompt(request: AnalysisRequest) -> str:
    """Render portfolio, market table and news as markdown"""
    lines = [
        "## Current portfolio",
        f"Total value: ${request.total_value:,.2f} / Available: ${request.available_cash:,.2f}",
        "",
    ]

    if request.positions:
        lines.append("### Open positions")
        for p in request.positions:
            lines.append(
                f"- {p.ticker}: {p.quantity:.0f} shares, avg price {p.avg_price:.2f}, "
                f"current {p.current_price:.2f}, P&L {p.pnl:.2f}"
            )
    else:
        lines.append("No open positions.")
    lines.append("")

    lines.append(f"## Market data (top {len(request.tickers)} by volume)")
    lines.append("| Ticker | Price | 3h% | 1d% | 3d% | 1w% | Volume 24h |")
    lines.append("|--------|-------|-----|-----|-----|-----|------------|")
    for t in request.tickers:
        lines.append(
            f"| {t.ticker} | {t.last_price:.2f} | {t.change_3h:+.1f} | {t.change_1d:+.1f} | "
            f"{t.change_3d:+.1f} | {t.change_1w:+.1f} | {t.volume_24h:.0f} |"
        )
    lines.append("")

    lines.append("## News (last 24h)")
    with_news = [t for t in request.tickers if t.news]
    if with_news:
        for t in with_news:
            lines.append(f"### {t.ticker}")
            lines.extend(f"- {headline}" for headline in t.news)
    else:
        lines.append("No relevant news found.")

    lines.append("")
    lines.append("Analyze and return your decisions as JSON.")
    return "\n".join(lines)


class TraderAgent:
    """
    Turns an AnalysisRequest into trade decisions with one model call.

    The call runs on a worker thread so a hung provider cannot stall the
    trading cycle past timeout_seconds.
    """

    SYSTEM_PROMPT = """You are an experienced short-term equity trader.
Analyze the market data (price moves, volumes, news) and the current portfolio.
Decide: BUY (open a position), SELL (close a position) or HOLD.
Trade horizon is from a few hours to 2 days.

You are given:
- The most liquid stocks with prices, % change over 3h/1d/3d/1w and 24h volume
- News from the last 24h, grouped by ticker
- The current portfolio with open positions

Rules:
1. Weigh price momentum (3h, 1d, 3d, 1w), volume and news for each ticker.
2. Do not BUY a ticker that already has an open position.
3. For BUY, give stop_loss and take_profit as price levels.
4. For SELL, explain why the position should be closed in reasoning.
5. confidence is 0-100; higher means more certain.
6. Risk management: no more than 10% of the portfolio per position.
7. Look for strong short-term moves confirmed by volume and/or news.
8. Review open positions; if the trend has reversed, recommend SELL.

Respond with JSON only (an array of objects):
[
  {
    "action": "BUY",
    "ticker": "AAPL",
    "stop_loss": 250.0,
    "take_profit": 290.0,
    "confidence": 75,
    "reasoning": "Why"
  }
]

If there are no good opportunities, return an empty array []."""

    def __init__(
        self,
        client: LLMClient,
        timeout_seconds: float = 120.0,
        temperature: float = 0.3,
        max_tokens: Optional[int] = None
    ):
        """
        Args:
            client: LLM provider client
            timeout_seconds: Upper bound on one analysis call
            temperature: Sampling temperature (ignored by reasoning models)
            max_tokens: Optional completion limit
        """
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature
        self.max_tokens = max_tokens

    def _generate(self, messages: List[LLMMessage]) -> str:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="llm")
        future = executor.submit(
            self.client.generate,
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens
        )
        try:
            response = future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError:
            raise AnalysisError(f"AI analysis timed out after {self.timeout_seconds}s")
        except LLMError as e:
            raise AnalysisError(f"AI provider error: {e}") from e
        except Exception as e:
            raise AnalysisError(f"AI analysis failed: {e}") from e
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        if response.reasoning:
            logger.debug(f"AI reasoning: {response.reasoning}")
        return response.content

    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        """
        Request decisions for the given market context.

        Returns:
            AnalysisResult with decisions and the raw response text

        Raises:
            AnalysisError: On provider failure, timeout or unparseable output;
                raw_response holds the text when one was received
        """
        messages = [
            LLMMessage(role="system", content=self.SYSTEM_PROMPT),
            LLMMessage(role="user", content=build_user_prompt(request))
        ]

        logger.info(
            f"Sending analysis request: {len(request.tickers)} tickers, "
            f"{len(request.positions)} positions"
        )
        raw = self._generate(messages)
        logger.info(f"Received AI response ({len(raw)} chars)")
        logger.debug(f"AI raw response: {raw}")

        try:
            decisions = parse_decisions(raw)
        except ParseError as e:
            raise AnalysisError(f"parse AI response: {e}", raw_response=raw) from e

        return AnalysisResult(decisions=decisions, raw_response=raw)
