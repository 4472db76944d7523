"""
Paper Trade Log
===============

Append-only audit trail of closed paper trades, one CSV row per trade.
The column order is fixed; the header is written once per file.
"""

import csv
from collections import deque
from pathlib import Path
from typing import Deque, List, Sequence, Union


PAPER_HEADER = (
    "timestamp",
    "market_slug",
    "side",
    "entry_time",
    "entry_price",
    "price_to_beat",
    "settlement_time",
    "exit_time",
    "exit_price",
    "outcome",
    "payout",
    "pnl",
    "equity",
    "trade_number",
)


class MemoryTradeLog:
    """Keeps rows in memory. Used by tests and previews."""

    def __init__(self):
        self.rows: List[list] = []

    def append(self, row: Sequence):
        self.rows.append(list(row))

    def recent(self, limit: int = 50) -> List[dict]:
        return [dict(zip(PAPER_HEADER, row)) for row in self.rows[-limit:]]


class CsvTradeLog:
    """
    Appends rows to a CSV file.

    Parent directories are created on first write. Rows are never
    rewritten. The last `keep_recent` rows are also held in memory
    for the dashboard.
    """

    def __init__(self, path: Union[str, Path], keep_recent: int = 100):
        self.path = Path(path)
        self._recent: Deque[list] = deque(maxlen=keep_recent)

    def append(self, row: Sequence):
        """
        Append one row, writing the header first if the file is new.

        Raises:
            ValueError: row length doesn't match the header
            OSError: the file can't be written
        """
        if len(row) != len(PAPER_HEADER):
            raise ValueError(
                f"Expected {len(PAPER_HEADER)} columns, got {len(row)}"
            )

        self.path.parent.mkdir(parents=True, exist_ok=True)
        write_header = not self.path.exists() or self.path.stat().st_size == 0

        with open(self.path, "a", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            if write_header:
                writer.writerow(PAPER_HEADER)
            writer.writerow(row)

        self._recent.append(list(row))

    def recent(self, limit: int = 50) -> List[dict]:
        """Most recent rows written by this process, oldest first."""
        rows = list(self._recent)[-limit:]
        return [dict(zip(PAPER_HEADER, row)) for row in rows]
