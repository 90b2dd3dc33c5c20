"""
JSON logging for trading cycles, executions and errors.

Every cycle outcome and order result is appended as one JSON object per line
(JSONL) for later analysis.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class JSONLogger:
    """
    Structured JSON logging for trading cycles.

    Writes newline-delimited JSON (JSONL) format.
    """

    def __init__(self, log_path: str = "logs/trade_log.jsonl"):
        """
        Args:
            log_path: Path to JSONL log file
        """
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"JSONLogger initialized: {self.log_path}")

    def _write_entry(self, entry: Dict[str, Any]):
        """Write a single JSON entry; logging failures never interrupt trading"""
        entry.setdefault('timestamp', datetime.now(timezone.utc).isoformat())
        try:
            with open(self.log_path, 'a') as f:
                json.dump(entry, f, default=str)
                f.write('\n')
        except OSError as e:
            logger.error(f"Failed to write JSON log entry: {e}")

    def log_cycle(
        self,
        state: str,
        instruments: int,
        decisions: int,
        results: List[Dict[str, Any]],
        error: Optional[str] = None
    ):
        """
        Log the outcome of one trading cycle.

        Args:
            state: Final cycle state (e.g. idle, gated, failed)
            instruments: Number of instruments analyzed
            decisions: Number of decisions returned by the model
            results: Serialized execution results
            error: Error text when the cycle aborted
        """
        entry = {
            'type': 'cycle',
            'state': state,
            'instruments': instruments,
            'decisions': decisions,
            'results': results,
        }
        if error:
            entry['error'] = error

        self._write_entry(entry)
        logger.debug(f"Logged cycle: state={state}, instruments={instruments}, decisions={decisions}")

    def log_execution(
        self,
        ticker: str,
        action: str,
        price: float,
        lots: int,
        order_id: str,
        pnl: Optional[float] = None
    ):
        entry = {
            'type': 'execution',
            'ticker': ticker,
            'action': action,
            'price': price,
            'lots': lots,
            'order_id': order_id,
        }
        if pnl is not None:
            entry['pnl'] = pnl

        self._write_entry(entry)
        logger.debug(f"Logged execution: {action} {ticker} x{lots} @ {price}")
