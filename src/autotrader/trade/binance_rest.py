"""Binance spot REST API wrapper (httpx, HMAC-SHA256 signed requests)."""

from __future__ import annotations

import hashlib
import hmac
import time
from datetime import datetime, timezone
from urllib.parse import urlencode

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from autotrader.errors import ExchangeError
from autotrader.models.candle import Candle
from autotrader.models.order import AssetBalance, OrderFill
from autotrader.models.ticker import TickerSnapshot

logger = structlog.get_logger()


def _to_ticker(data: dict) -> TickerSnapshot:
    return TickerSnapshot(
        symbol=data["symbol"],
        price=float(data.get("lastPrice", 0)),
        price_change_percent=float(data.get("priceChangePercent", 0)),
        volume=float(data.get("volume", 0)),
        quote_volume=float(data.get("quoteVolume", 0)),
        high=float(data.get("highPrice", 0)),
        low=float(data.get("lowPrice", 0)),
        open_price=float(data.get("openPrice", 0)),
        bid=float(data.get("bidPrice", 0)),
        ask=float(data.get("askPrice", 0)),
    )


def _to_candle(row: list) -> Candle:
    return Candle(
        open_time=datetime.fromtimestamp(row[0] / 1000, tz=timezone.utc),
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[5]),
    )


def step_precision(step_size: str) -> int:
    """Decimal places allowed by a LOT_SIZE step, e.g. '0.00100000' -> 3."""
    return max(0, step_size.find("1") - 1)


class BinanceRestClient:
    """Async wrapper around the Binance spot REST API (testnet by default)."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        base_url: str = "https://testnet.binance.vision/api/v3",
        timeout: float = 20.0,
        ping_timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.api_secret = api_secret
        self.ping_timeout = ping_timeout
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._step_sizes: dict[str, str] = {}
        if not api_key or not api_secret:
            logger.warning("binance_credentials_missing")

    async def close(self) -> None:
        await self._client.aclose()

    def _sign(self, params: dict) -> dict:
        signed = dict(params)
        signed["timestamp"] = int(time.time() * 1000)
        query = urlencode(signed)
        signed["signature"] = hmac.new(
            self.api_secret.encode(), query.encode(), hashlib.sha256
        ).hexdigest()
        return signed

    async def _request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        signed: bool = False,
        timeout: float | None = None,
    ):
        params = params or {}
        if signed:
            params = self._sign(params)
        headers = {"X-MBX-APIKEY": self.api_key}
        kwargs = {"params": params, "headers": headers}
        if timeout is not None:
            kwargs["timeout"] = timeout
        response = await self._client.request(method, path, **kwargs)
        if response.status_code >= 400:
            logger.error(
                "binance_http_error",
                path=path,
                status=response.status_code,
                body=response.text[:200],
            )
            raise ExchangeError(
                f"Binance API error {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response.json()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _get(self, path: str, params: dict | None = None, signed: bool = False):
        """GET with retry on transport errors (timeouts, resets)."""
        return await self._request("GET", path, params, signed)

    # --- Market data ---

    async def test_connection(self) -> bool:
        try:
            await self._request("GET", "/ping", timeout=self.ping_timeout)
            return True
        except Exception as e:
            logger.warning("binance_ping_failed", error=str(e))
            return False

    async def get_ticker(self, symbol: str) -> TickerSnapshot:
        data = await self._get("/ticker/24hr", {"symbol": symbol})
        return _to_ticker(data)

    async def get_all_tickers(self) -> list[TickerSnapshot]:
        data = await self._get("/ticker/24hr")
        return [_to_ticker(t) for t in data]

    async def get_candles(self, symbol: str, interval: str = "5m", limit: int = 100) -> list[Candle]:
        data = await self._get("/klines", {"symbol": symbol, "interval": interval, "limit": limit})
        return [_to_candle(row) for row in data]

    # --- Account ---

    async def get_account_balances(self) -> list[AssetBalance]:
        data = await self._get("/account", signed=True)
        return [
            AssetBalance(asset=b["asset"], free=float(b["free"]), locked=float(b["locked"]))
            for b in data.get("balances", [])
        ]

    async def calculate_quantity(self, symbol: str, notional: float) -> str:
        """Convert a quote notional into a base quantity rounded to the LOT_SIZE step."""
        ticker = await self.get_ticker(symbol)
        if ticker.price <= 0:
            raise ExchangeError(f"No valid price for {symbol}")
        step = await self._get_step_size(symbol)
        return f"{notional / ticker.price:.{step_precision(step)}f}"

    async def _get_step_size(self, symbol: str) -> str:
        if symbol not in self._step_sizes:
            info = await self._get("/exchangeInfo", {"symbol": symbol})
            try:
                filters = info["symbols"][0]["filters"]
                step = next(f["stepSize"] for f in filters if f["filterType"] == "LOT_SIZE")
            except (KeyError, IndexError, StopIteration) as e:
                raise ExchangeError(f"LOT_SIZE filter missing for {symbol}") from e
            self._step_sizes[symbol] = step
        return self._step_sizes[symbol]

    # --- Trading ---

    async def place_market_order(self, symbol: str, side: str, quantity: str) -> OrderFill:
        """Submit a MARKET order. Never retried."""
        data = await self._request(
            "POST",
            "/order",
            {"symbol": symbol, "side": side, "type": "MARKET", "quantity": quantity},
            signed=True,
        )
        fills = data.get("fills") or [{}]
        first = fills[0]
        logger.info("binance_order_placed", symbol=symbol, side=side, order_id=data.get("orderId"))
        return OrderFill(
            order_id=str(data.get("orderId", "")),
            filled_price=float(first.get("price", 0)),
            commission=float(first.get("commission", 0)),
            commission_asset=first.get("commissionAsset", ""),
            executed_qty=float(data.get("executedQty", 0)),
        )
