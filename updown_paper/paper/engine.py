"""
Paper Trading Engine
====================

Simulates binary up/down trades against a reference price.
Holds at most one position, settles it at the deadline or when the
market rolls over, and keeps running P&L / drawdown statistics.

Malformed input never raises: the engine just returns None so a
partial signal can't take the feed loop down.
"""

import time
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from config.settings import settings
from updown_paper.paper.models import (
    ENTER,
    Position,
    Side,
    SignalEvent,
    Stats,
    Summary,
    TickEvent,
    TradeResult,
)
from updown_paper.paper.trade_log import CsvTradeLog
from updown_paper.utils.numbers import to_number

logger = structlog.get_logger()


def now_ms() -> int:
    return int(time.time() * 1000)


def iso_ms(timestamp_ms: int) -> str:
    """Epoch ms -> ISO-8601 UTC with millisecond precision, e.g. 2024-01-01T00:00:00.000Z"""
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _to_side(side) -> Optional[Side]:
    if not side:
        return None
    try:
        return Side(side)
    except ValueError:
        return None


class PaperTrader:
    """
    Single-position paper trader.

    State: Closed (no position) -> Open -> Closed. Only open_position()
    and close_position() touch the position slot.
    """

    def __init__(
        self,
        trade_log=None,
        clock: Callable[[], int] = now_ms
    ):
        """
        Args:
            trade_log: Anything with append(row). Defaults to the CSV log
            clock: Returns the current time in epoch ms
        """
        self.trade_log = trade_log if trade_log is not None else CsvTradeLog(settings.paper_log_path)
        self.stats = Stats()
        self._clock = clock
        self._position: Optional[Position] = None

    @property
    def position(self) -> Optional[Position]:
        return self._position

    @property
    def has_position(self) -> bool:
        return self._position is not None

    def get_summary(self) -> Summary:
        """Snapshot of stats, derived rates and the open position."""
        s = self.stats
        return Summary(
            trades=s.trades,
            wins=s.wins,
            losses=s.losses,
            win_rate=s.win_rate,
            total_pnl=s.total_pnl,
            equity=s.equity,
            peak_equity=s.peak_equity,
            max_drawdown=s.max_drawdown,
            avg_win=s.avg_win,
            avg_loss=s.avg_loss,
            position=self._position
        )

    def open_position(
        self,
        side,
        entry_price,
        market_slug: Optional[str] = None,
        price_to_beat=None,
        settlement_ms: Optional[int] = None,
        timestamp_ms: Optional[int] = None
    ) -> Optional[Position]:
        """
        Open a position if none is open.

        Returns None (and changes nothing) when a position is already
        open, or side, entry price or price to beat is missing.
        """
        if self.has_position:
            return None

        position_side = _to_side(side)
        price = to_number(entry_price)
        strike = to_number(price_to_beat)
        if position_side is None or price is None or strike is None:
            return None

        self._position = Position(
            side=position_side,
            entry_price=price,
            market_slug=market_slug,
            price_to_beat=strike,
            settlement_ms=settlement_ms,
            entry_time_ms=timestamp_ms if timestamp_ms is not None else self._clock()
        )

        logger.info(
            "paper_position_opened",
            side=position_side.value,
            entry_price=price,
            market=market_slug,
            price_to_beat=strike,
            settlement=iso_ms(settlement_ms) if settlement_ms else None
        )
        return self._position

    def close_position(
        self,
        exit_price,
        exit_time_ms: Optional[int] = None
    ) -> Optional[TradeResult]:
        """
        Settle the open position against exit_price.

        Outcome is UP only if exit_price is strictly above the price to
        beat. The winning side pays 1, the other 0. The position is
        cleared and stats updated before the row is logged.
        """
        pos = self._position
        if pos is None or pos.price_to_beat is None:
            return None

        exit_price = to_number(exit_price)
        if exit_price is None:
            return None

        outcome = Side.UP if exit_price > pos.price_to_beat else Side.DOWN
        payout = 1 if pos.side == outcome else 0
        pnl = payout - pos.entry_price

        self.stats.record(pnl)
        self._position = None

        exit_time = exit_time_ms if exit_time_ms is not None else self._clock()
        row = [
            iso_ms(self._clock()),
            pos.market_slug,
            pos.side.value,
            iso_ms(pos.entry_time_ms),
            pos.entry_price,
            pos.price_to_beat,
            iso_ms(pos.settlement_ms) if pos.settlement_ms else "",
            iso_ms(exit_time),
            exit_price,
            outcome.value,
            payout,
            pnl,
            self.stats.equity,
            self.stats.trades,
        ]

        logger.info(
            "paper_position_closed",
            market=pos.market_slug,
            side=pos.side.value,
            outcome=outcome.value,
            entry_price=pos.entry_price,
            exit_price=exit_price,
            pnl=f"{pnl:+.4f}",
            equity=f"{self.stats.equity:.4f}",
            trade_number=self.stats.trades
        )

        try:
            self.trade_log.append(row)
        except OSError as e:
            # State has already moved on; the row is lost but stats stay consistent
            logger.error(
                "paper_trade_log_error",
                error=str(e),
                trade_number=self.stats.trades
            )

        return TradeResult(outcome=outcome, pnl=pnl)

    def on_signal(
        self,
        action: Optional[str],
        side,
        market_slug: Optional[str] = None,
        price_to_beat=None,
        settlement_ms: Optional[int] = None,
        market_up=None,
        market_down=None,
        timestamp_ms: Optional[int] = None
    ) -> Optional[Position]:
        """
        Enter on an ENTER instruction when flat and a price to beat is known.

        Entry price is the UP quote for UP, otherwise the DOWN quote.
        """
        if action != ENTER:
            return None
        if self.has_position:
            return None
        if price_to_beat is None:
            logger.debug("paper_signal_ignored", reason="no price to beat", market=market_slug)
            return None

        entry_price = market_up if side == Side.UP else market_down
        if entry_price is None:
            logger.debug("paper_signal_ignored", reason="no quote", market=market_slug, side=side)
            return None

        return self.open_position(
            side=side,
            entry_price=entry_price,
            market_slug=market_slug,
            price_to_beat=price_to_beat,
            settlement_ms=settlement_ms,
            timestamp_ms=timestamp_ms
        )

    def on_tick(
        self,
        market_slug: Optional[str],
        current_price,
        now_ms: Optional[int] = None
    ) -> Optional[TradeResult]:
        """
        Settle on a price tick once the deadline passed or the market rolled over.
        """
        pos = self._position
        if pos is None or current_price is None:
            return None

        now = now_ms if now_ms is not None else self._clock()
        expired = pos.settlement_ms is not None and now >= pos.settlement_ms
        rolled_over = bool(market_slug and pos.market_slug and market_slug != pos.market_slug)
        if not (expired or rolled_over):
            return None

        return self.close_position(exit_price=current_price, exit_time_ms=now)

    def handle_signal(self, event: SignalEvent) -> Optional[Position]:
        return self.on_signal(
            action=event.action,
            side=event.side,
            market_slug=event.market_slug,
            price_to_beat=event.price_to_beat,
            settlement_ms=event.settlement_ms,
            market_up=event.market_up,
            market_down=event.market_down,
            timestamp_ms=event.timestamp_ms
        )

    def handle_tick(self, event: TickEvent) -> Optional[TradeResult]:
        return self.on_tick(
            market_slug=event.market_slug,
            current_price=event.current_price,
            now_ms=event.now_ms
        )
