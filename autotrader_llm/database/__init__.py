"""Trade ledger persistence"""

from autotrader_llm.database.ledger import LedgerError, TradeLedger
from autotrader_llm.database.models import AnalysisLog, PortfolioSnapshot, Trade

__all__ = ['TradeLedger', 'LedgerError', 'Trade', 'AnalysisLog', 'PortfolioSnapshot']
