"""
UpDown Paper Trader - Main Entry Point
======================================

Polls Kraken for the reference price and drives the paper trading
engine: one tick per poll, plus any entry signals queued by a
strategy or the dashboard.

USAGE:
    python -m updown_paper.main
"""

import asyncio
import signal
import sys
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional

from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

from config.settings import settings
from updown_paper.data.kraken_feed import DataSourceError, KrakenMarketData
from updown_paper.paper.engine import PaperTrader, now_ms
from updown_paper.paper.models import ENTER, SignalEvent, TradeResult
from updown_paper.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MarketWindow:
    """One rolling up/down market: [start_ms, settlement_ms)."""
    slug: str
    start_ms: int
    settlement_ms: int


@dataclass(frozen=True)
class MarketContext:
    """What a signal source gets to look at on each poll."""
    window: MarketWindow
    price: float
    price_to_beat: Optional[float]
    history: List[float]


SignalSource = Callable[[MarketContext], Optional[SignalEvent]]


def market_window(
    timestamp_ms: int,
    window_minutes: Optional[int] = None,
    prefix: Optional[str] = None
) -> MarketWindow:
    """
    Market window containing timestamp_ms.

    Windows are aligned to the epoch, so 15-minute windows start at
    :00, :15, :30 and :45. The slug ends with the start in epoch seconds.
    """
    window_ms = (window_minutes or settings.market_window_minutes) * 60_000
    start_ms = timestamp_ms - timestamp_ms % window_ms
    return MarketWindow(
        slug=f"{prefix or settings.market_slug_prefix}-{start_ms // 1000}",
        start_ms=start_ms,
        settlement_ms=start_ms + window_ms
    )


class PaperTradingRunner:
    """
    Event loop around one PaperTrader.

    Everything the engine sees goes through step(), one call at a time.
    """

    def __init__(
        self,
        trader: PaperTrader,
        market_data: KrakenMarketData,
        signal_source: Optional[SignalSource] = None,
        poll_interval: Optional[float] = None,
        summary_interval: Optional[float] = None,
        clock: Callable[[], int] = now_ms
    ):
        self.trader = trader
        self.market_data = market_data
        self.signal_source = signal_source
        self.poll_interval = poll_interval or settings.poll_interval_seconds
        self.summary_interval = summary_interval or settings.summary_interval_seconds
        self._clock = clock

        self.window: Optional[MarketWindow] = None
        self.price_to_beat: Optional[float] = None
        self.last_price: Optional[float] = None
        self.price_history: Deque[float] = deque(maxlen=settings.candle_history_limit)
        self._pending: Deque[SignalEvent] = deque()

        self.running = False

    async def warmup(self) -> int:
        """
        Seed price history from recent candles.

        If the newest candle opened with the current window, its open
        becomes the window's price to beat.
        """
        try:
            candles = list(await self.market_data.fetch_candles(
                interval=settings.market_window_minutes,
                limit=settings.candle_history_limit
            ))
        except DataSourceError as e:
            logger.warning("runner_warmup_failed", error=str(e))
            return 0

        self.price_history.extend(c.close for c in candles if c.close is not None)

        window = market_window(self._clock())
        if candles and candles[-1].open_time == window.start_ms and candles[-1].open is not None:
            self.window = window
            self.price_to_beat = candles[-1].open

        logger.info(
            "runner_warmup_complete",
            candles=len(candles),
            market=self.window.slug if self.window else None,
            price_to_beat=self.price_to_beat
        )
        return len(candles)

    def context(self) -> Optional[MarketContext]:
        if self.window is None or self.last_price is None:
            return None
        return MarketContext(
            window=self.window,
            price=self.last_price,
            price_to_beat=self.price_to_beat,
            history=list(self.price_history)
        )

    def submit_signal(self, event: SignalEvent):
        """Queue an entry signal for the next step."""
        self._pending.append(event)

    def manual_signal(
        self,
        side: str,
        market_up: Optional[float] = None,
        market_down: Optional[float] = None
    ) -> Optional[SignalEvent]:
        """
        Build an ENTER signal for the current window and queue it.

        Returns None before the first price has been seen.
        """
        if self.window is None:
            return None
        event = SignalEvent(
            action=ENTER,
            side=side,
            market_slug=self.window.slug,
            price_to_beat=self.price_to_beat,
            settlement_ms=self.window.settlement_ms,
            market_up=market_up,
            market_down=market_down,
            timestamp_ms=self._clock()
        )
        self.submit_signal(event)
        return event

    def _roll_window(self, timestamp_ms: int, price: float):
        window = market_window(timestamp_ms)
        if self.window is not None and window.slug == self.window.slug:
            return
        self.window = window
        self.price_to_beat = price
        logger.info(
            "market_window_started",
            market=window.slug,
            price_to_beat=price,
            settlement_ms=window.settlement_ms
        )

    def _enter(self, event: SignalEvent, now: int):
        # A signal from an earlier window would enter with its outcome already known
        expired = event.settlement_ms is not None and event.settlement_ms <= now
        other_market = bool(event.market_slug) and event.market_slug != self.window.slug
        if expired or other_market:
            logger.info(
                "paper_signal_ignored",
                reason="expired" if expired else "market rolled over",
                market=event.market_slug,
                current_market=self.window.slug
            )
            return None
        return self.trader.handle_signal(event)

    async def step(self, timestamp_ms: Optional[int] = None) -> Optional[TradeResult]:
        """
        Poll the last price once and feed the engine.

        A failed request skips this poll; the next one tries again.
        """
        try:
            price = await self.market_data.fetch_last_price()
        except DataSourceError as e:
            logger.warning("runner_price_unavailable", error=str(e))
            return None

        if price is None:
            logger.debug("runner_price_missing")
            return None

        now = timestamp_ms if timestamp_ms is not None else self._clock()
        self._roll_window(now, price)
        self.last_price = price
        self.price_history.append(price)

        result = self.trader.on_tick(self.window.slug, price, now)

        while self._pending:
            self._enter(self._pending.popleft(), now)

        if self.signal_source is not None:
            event = self.signal_source(self.context())
            if event is not None:
                self._enter(event, now)

        return result

    def log_summary(self):
        summary = self.trader.get_summary()
        logger.info(
            "paper_summary",
            trades=summary.trades,
            win_rate=f"{summary.win_rate:.1%}",
            total_pnl=f"{summary.total_pnl:+.4f}",
            max_drawdown=f"{summary.max_drawdown:.4f}",
            avg_win=f"{summary.avg_win:.4f}",
            avg_loss=f"{summary.avg_loss:.4f}",
            open_position=summary.position.side.value if summary.position else None
        )

    async def run(self):
        """Poll until stop() is called."""
        self.running = True
        logger.info(
            "runner_starting",
            pair=self.market_data.pair,
            poll_interval=self.poll_interval,
            log=settings.paper_log_path
        )

        await self.warmup()
        last_summary = time.monotonic()

        try:
            while self.running:
                try:
                    await self.step()
                except Exception as e:
                    logger.error("runner_step_error", error=str(e), exc_info=True)

                if time.monotonic() - last_summary >= self.summary_interval:
                    self.log_summary()
                    last_summary = time.monotonic()

                await asyncio.sleep(self.poll_interval)
        except asyncio.CancelledError:
            logger.info("runner_cancelled")
            raise
        finally:
            self.running = False
            self.log_summary()

    def stop(self):
        """Stop after the current poll."""
        logger.info("runner_stopping")
        self.running = False


async def main():
    """Entry point."""
    configure_logging()

    async with KrakenMarketData() as market_data:
        runner = PaperTradingRunner(PaperTrader(), market_data)

        loop = asyncio.get_running_loop()
        if sys.platform != "win32":
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, runner.stop)

        try:
            await runner.run()
        except Exception as e:
            logger.error("runner_crashed", error=str(e), exc_info=True)
            raise


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
