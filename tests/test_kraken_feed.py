import unittest
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from updown_paper.data.kraken_feed import (
    DataSourceError,
    KrakenMarketData,
    parse_interval_minutes,
    pick_result_key,
)
from updown_paper.utils.numbers import to_number


class FakeResponse:
    def __init__(self, status=200, payload=None, text=""):
        self.status = status
        self.payload = payload
        self._text = text

    async def json(self, content_type=None):
        return self.payload

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.calls = []
        self.closed = False

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params))
        return self.response

    async def close(self):
        self.closed = True


def ohlc_row(open_time_s, close="100.0"):
    return [open_time_s, "99.0", "101.5", "98.5", close, "99.9", "12.5", 42]


class TestParsing(unittest.TestCase):
    def test_pick_result_key_skips_last(self):
        self.assertEqual(pick_result_key({"last": 1, "XXBTZUSD": []}), "XXBTZUSD")

    def test_pick_result_key_only_last(self):
        self.assertIsNone(pick_result_key({"last": 1}))

    def test_pick_result_key_not_a_mapping(self):
        self.assertIsNone(pick_result_key(None))
        self.assertIsNone(pick_result_key([1, 2]))
        self.assertIsNone(pick_result_key({}))

    def test_parse_interval_numbers(self):
        self.assertEqual(parse_interval_minutes(5), 5)
        self.assertEqual(parse_interval_minutes(1.5), 1.5)
        self.assertIsNone(parse_interval_minutes(float("nan")))

    def test_parse_interval_strings(self):
        self.assertEqual(parse_interval_minutes("15m"), 15)
        self.assertEqual(parse_interval_minutes("interval_60"), 60)
        self.assertIsNone(parse_interval_minutes("abc"))
        self.assertIsNone(parse_interval_minutes(None))

    def test_to_number(self):
        self.assertEqual(to_number("65000.5"), 65000.5)
        self.assertEqual(to_number(3), 3.0)
        self.assertIsNone(to_number(None))
        self.assertIsNone(to_number("n/a"))
        self.assertIsNone(to_number("inf"))
        self.assertIsNone(to_number(True))


class TestFetchCandles(unittest.IsolatedAsyncioTestCase):
    def _client(self, response):
        session = FakeSession(response)
        client = KrakenMarketData(
            base_url="https://kraken.test/",
            pair="XBTUSD",
            default_interval_minutes=15,
            session=session
        )
        return client, session

    async def test_limit_truncates_to_most_recent(self):
        """limit=3 on 5-minute candles: exactly 3 records, 300000 ms each"""
        rows = [ohlc_row(1_700_000_000 + i * 300) for i in range(5)]
        client, session = self._client(FakeResponse(payload={
            "error": [],
            "result": {"last": 1_700_001_200, "XXBTZUSD": rows}
        }))

        candles = list(await client.fetch_candles(interval=5, limit=3))

        self.assertEqual(len(candles), 3)
        for candle in candles:
            self.assertEqual(candle.close_time - candle.open_time, 300_000)
        self.assertEqual(candles[0].open_time, (1_700_000_000 + 2 * 300) * 1000)
        self.assertEqual(candles[-1].open_time, (1_700_000_000 + 4 * 300) * 1000)

        url, params = session.calls[0]
        self.assertEqual(url, "https://kraken.test/0/public/OHLC")
        self.assertEqual(params["pair"], "XBTUSD")
        self.assertEqual(params["interval"], "5")
        self.assertIn("since", params)

    async def test_normalizes_fields(self):
        client, _ = self._client(FakeResponse(payload={
            "error": [],
            "result": {"XXBTZUSD": [[1_700_000_000, "99.0", "101.5", "98.5", "bad", "99.9", "12.5", 42]]}
        }))

        candle = next(iter(await client.fetch_candles(interval="1m")))

        self.assertEqual(candle.open, 99.0)
        self.assertEqual(candle.high, 101.5)
        self.assertEqual(candle.low, 98.5)
        self.assertIsNone(candle.close)
        self.assertEqual(candle.volume, 12.5)
        self.assertEqual(candle.close_time, candle.open_time + 60_000)

    async def test_unparsable_interval_uses_default(self):
        client, session = self._client(FakeResponse(payload={"error": [], "result": {}}))

        candles = list(await client.fetch_candles(interval="hourly"))

        self.assertEqual(candles, [])
        _, params = session.calls[0]
        self.assertEqual(params["interval"], "15")
        self.assertNotIn("since", params)

    async def test_http_error_raises(self):
        client, _ = self._client(FakeResponse(status=502, text="Bad Gateway"))

        with self.assertRaises(DataSourceError) as ctx:
            await client.fetch_candles(interval=5)
        self.assertIn("502", str(ctx.exception))

    async def test_provider_error_raises(self):
        client, _ = self._client(FakeResponse(payload={
            "error": ["EQuery:Unknown asset pair"], "result": {}
        }))

        with self.assertRaises(DataSourceError) as ctx:
            await client.fetch_candles(interval=5, limit=3)
        self.assertIn("EQuery:Unknown asset pair", str(ctx.exception))


class TestFetchLastPrice(unittest.IsolatedAsyncioTestCase):
    async def test_last_trade_price(self):
        session = FakeSession(FakeResponse(payload={
            "error": [],
            "result": {"XXBTZUSD": {"a": ["65001.0", "1", "1.0"], "c": ["65000.1", "0.01"]}}
        }))
        client = KrakenMarketData(base_url="https://kraken.test", pair="XBTUSD", session=session)

        self.assertEqual(await client.fetch_last_price(), 65000.1)
        url, params = session.calls[0]
        self.assertEqual(url, "https://kraken.test/0/public/Ticker")
        self.assertEqual(params, {"pair": "XBTUSD"})

    async def test_missing_price_is_none(self):
        session = FakeSession(FakeResponse(payload={"error": [], "result": {"XXBTZUSD": {}}}))
        client = KrakenMarketData(session=session)
        self.assertIsNone(await client.fetch_last_price())

    async def test_non_numeric_price_is_none(self):
        session = FakeSession(FakeResponse(payload={
            "error": [], "result": {"XXBTZUSD": {"c": ["nan", "0"]}}
        }))
        client = KrakenMarketData(session=session)
        self.assertIsNone(await client.fetch_last_price())

    async def test_http_error_raises(self):
        session = FakeSession(FakeResponse(status=429, text="Too Many Requests"))
        client = KrakenMarketData(session=session)
        with self.assertRaises(DataSourceError) as ctx:
            await client.fetch_last_price()
        self.assertIn("429", str(ctx.exception))

    async def test_shared_session_not_closed(self):
        session = FakeSession(FakeResponse(payload={"error": [], "result": {}}))
        async with KrakenMarketData(session=session) as client:
            await client.fetch_last_price()
        self.assertFalse(session.closed)


if __name__ == "__main__":
    unittest.main()
