"""
AutoTrader-LLM: interval-driven equity trading bot guided by an LLM.

Each cycle samples market data, asks a language model for BUY/SELL/HOLD
decisions and executes them against a brokerage account while keeping a
trade ledger of open positions and protective orders.
"""

__version__ = "1.0.0"
