"""
Paper Trading Models
====================

Position, running stats and the events the engine consumes.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional


ENTER = "ENTER"


class Side(str, Enum):
    """Direction bet. Compares equal to the plain strings."""
    UP = "UP"
    DOWN = "DOWN"


@dataclass(frozen=True)
class Position:
    """The single open paper position."""
    side: Side
    entry_price: float
    market_slug: Optional[str]
    price_to_beat: Optional[float]
    settlement_ms: Optional[int]
    entry_time_ms: int

    def to_dict(self) -> dict:
        data = asdict(self)
        data["side"] = self.side.value
        return data


@dataclass
class Stats:
    """Process-lifetime aggregate, updated once per closed trade."""
    trades: int = 0
    wins: int = 0
    losses: int = 0
    total_pnl: float = 0.0
    equity: float = 0.0
    peak_equity: float = 0.0
    max_drawdown: float = 0.0
    sum_win: float = 0.0
    sum_loss: float = 0.0

    def record(self, pnl: float):
        """Fold one realized pnl into the aggregate."""
        self.trades += 1
        if pnl >= 0:
            # breakeven counts as a win
            self.wins += 1
            self.sum_win += pnl
        else:
            self.losses += 1
            self.sum_loss += pnl

        self.total_pnl += pnl
        self.equity += pnl
        self.peak_equity = max(self.peak_equity, self.equity)
        self.max_drawdown = max(self.max_drawdown, self.peak_equity - self.equity)

    @property
    def win_rate(self) -> float:
        return self.wins / self.trades if self.trades > 0 else 0.0

    @property
    def avg_win(self) -> float:
        return self.sum_win / self.wins if self.wins > 0 else 0.0

    @property
    def avg_loss(self) -> float:
        return self.sum_loss / self.losses if self.losses > 0 else 0.0


@dataclass(frozen=True)
class TradeResult:
    """Settlement of one position."""
    outcome: Side
    pnl: float


@dataclass(frozen=True)
class Summary:
    """Read-only snapshot of the engine."""
    trades: int
    wins: int
    losses: int
    win_rate: float
    total_pnl: float
    equity: float
    peak_equity: float
    max_drawdown: float
    avg_win: float
    avg_loss: float
    position: Optional[Position] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["position"] = self.position.to_dict() if self.position else None
        return data


@dataclass(frozen=True)
class SignalEvent:
    """Entry instruction from the strategy layer."""
    action: Optional[str]
    side: Optional[str]
    market_slug: Optional[str] = None
    price_to_beat: Optional[float] = None
    settlement_ms: Optional[int] = None
    market_up: Optional[float] = None
    market_down: Optional[float] = None
    timestamp_ms: Optional[int] = None


@dataclass(frozen=True)
class TickEvent:
    """Reference price update."""
    market_slug: Optional[str]
    current_price: Optional[float]
    now_ms: Optional[int] = None
