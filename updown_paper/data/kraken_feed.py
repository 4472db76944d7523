"""
Kraken Market Data
==================

Thin async client for Kraken's public REST API.
Normalizes OHLC candles and the ticker's last trade price.

Every call is one request/response cycle: no retry, no caching.
Retrying is up to whoever polls.
"""

import math
import re
import time
from dataclasses import dataclass, asdict
from typing import Any, Iterator, List, Mapping, Optional, Union

import aiohttp
import structlog

from config.settings import settings
from updown_paper.utils.numbers import to_number

logger = structlog.get_logger()

# Kraken adds this key next to the pair key in OHLC results
RESERVED_RESULT_KEY = "last"

_DIGITS = re.compile(r"(\d+)")


class DataSourceError(Exception):
    """Market data request failed with an HTTP status or a provider error."""


@dataclass(frozen=True)
class Candle:
    """One normalized candle. Times are epoch milliseconds."""
    open_time: int
    open: Optional[float]
    high: Optional[float]
    low: Optional[float]
    close: Optional[float]
    volume: Optional[float]
    close_time: int

    def to_dict(self) -> dict:
        return asdict(self)


def parse_interval_minutes(interval: Union[int, float, str, None]) -> Optional[Union[int, float]]:
    """
    Resolve a candle interval to minutes.

    Numbers are taken as minutes. Strings use their first run of
    digits ("5m" -> 5, "interval_15" -> 15). Anything else gives None.
    """
    if isinstance(interval, (int, float)) and not isinstance(interval, bool):
        return interval if math.isfinite(interval) else None
    match = _DIGITS.search(str(interval or ""))
    return int(match.group(1)) if match else None


def pick_result_key(result: Any) -> Optional[str]:
    """
    Find the data key of a Kraken result mapping.

    Kraken names the key after its own pair code (e.g. "XXBTZUSD"),
    so it is located as the first key that is not the reserved "last".
    """
    if not isinstance(result, Mapping):
        return None
    for key in result:
        if key != RESERVED_RESULT_KEY:
            return key
    return None


def _normalize_candle(row: List[Any], interval_minutes: Union[int, float]) -> Candle:
    # Kraken row: [time, open, high, low, close, vwap, volume, count]
    open_time_s = int(row[0])
    return Candle(
        open_time=open_time_s * 1000,
        open=to_number(row[1]),
        high=to_number(row[2]),
        low=to_number(row[3]),
        close=to_number(row[4]),
        volume=to_number(row[6]),
        close_time=int((open_time_s + interval_minutes * 60) * 1000),
    )


class KrakenMarketData:
    """
    Candles and last price for one fixed Kraken pair.

    Pass an existing aiohttp session to share it; otherwise one is
    created on first use and closed by close().
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        pair: Optional[str] = None,
        default_interval_minutes: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """
        Args:
            base_url: Kraken API host
            pair: Trading pair, e.g. "XBTUSD"
            default_interval_minutes: Used when an interval can't be parsed
            timeout_seconds: Total timeout per request
            session: Optional shared aiohttp session
        """
        self.base_url = (base_url or settings.kraken_base_url).rstrip("/")
        self.pair = pair or settings.kraken_pair
        self.default_interval_minutes = (
            default_interval_minutes or settings.candle_window_minutes
        )
        self.timeout = aiohttp.ClientTimeout(
            total=timeout_seconds or settings.request_timeout_seconds
        )
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "KrakenMarketData":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _get_json(self, path: str, params: dict, label: str) -> dict:
        session = await self._get_session()
        url = f"{self.base_url}{path}"

        async with session.get(url, params=params, timeout=self.timeout) as resp:
            if not 200 <= resp.status < 300:
                body = await resp.text()
                logger.warning(
                    "kraken_request_failed",
                    endpoint=label,
                    status=resp.status
                )
                raise DataSourceError(f"Kraken {label} error: {resp.status} {body}")
            data = await resp.json(content_type=None)

        errors = data.get("error") if isinstance(data, dict) else None
        if errors:
            logger.warning("kraken_provider_error", endpoint=label, errors=errors)
            raise DataSourceError(f"Kraken {label} error: {', '.join(map(str, errors))}")

        return data if isinstance(data, dict) else {}

    async def fetch_candles(
        self,
        interval: Union[int, float, str, None] = None,
        limit: Optional[int] = None
    ) -> Iterator[Candle]:
        """
        Fetch recent OHLC candles for the configured pair.

        Args:
            interval: Minutes, or a string containing them ("5m")
            limit: Keep only the most recent `limit` candles

        Returns:
            Lazy iterator of Candle, oldest first

        Raises:
            DataSourceError: non-2xx response or Kraken error list
        """
        interval_minutes = parse_interval_minutes(interval)
        if interval_minutes is None:
            interval_minutes = self.default_interval_minutes

        params = {"pair": self.pair, "interval": str(interval_minutes)}
        if limit:
            since = int(time.time()) - int(limit * interval_minutes * 60)
            params["since"] = str(since)

        data = await self._get_json("/0/public/OHLC", params, "OHLC")

        result = data.get("result")
        key = pick_result_key(result)
        rows = result[key] if key else []
        if limit:
            rows = rows[-int(limit):]

        logger.debug(
            "kraken_candles_fetched",
            pair=self.pair,
            interval=interval_minutes,
            count=len(rows)
        )
        return (_normalize_candle(row, interval_minutes) for row in rows)

    async def fetch_last_price(self) -> Optional[float]:
        """
        Fetch the last traded price for the configured pair.

        Returns:
            Finite price, or None if Kraken didn't send a usable one

        Raises:
            DataSourceError: non-2xx response or Kraken error list
        """
        data = await self._get_json("/0/public/Ticker", {"pair": self.pair}, "ticker")

        result = data.get("result")
        key = pick_result_key(result)
        ticker = result[key] if key else None

        price = None
        if isinstance(ticker, Mapping):
            last_trade = ticker.get("c")  # [price, lot volume]
            if last_trade:
                price = last_trade[0]
        return to_number(price)

    async def close(self):
        """Close the HTTP session if this client created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
