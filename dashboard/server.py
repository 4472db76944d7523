"""
Dashboard Server
================

FastAPI server exposing the paper trader's running summary.
REST endpoints plus a WebSocket that pushes the summary whenever a
trade closes.
"""

import asyncio
import json
from typing import Optional, Set
from datetime import datetime, timezone

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
import structlog
import uvicorn

from config.settings import settings
from updown_paper.data.kraken_feed import KrakenMarketData
from updown_paper.main import PaperTradingRunner
from updown_paper.paper.engine import PaperTrader
from updown_paper.paper.models import Side

logger = structlog.get_logger()

app = FastAPI(title="UpDown Paper Trader")

# CORS for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ManualEntry(BaseModel):
    """Body of POST /api/signal."""
    side: Side
    market_up: Optional[float] = None
    market_down: Optional[float] = None


class ConnectionManager:
    """Manages WebSocket connections for real-time updates."""

    def __init__(self):
        self.active_connections: Set[WebSocket] = set()
        self.last_broadcast_trades = 0

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.add(websocket)
        await websocket.send_json(summary_message())

    def disconnect(self, websocket: WebSocket):
        self.active_connections.discard(websocket)

    async def broadcast(self, message: dict):
        """Broadcast message to all connected clients."""
        disconnected = set()
        for connection in self.active_connections:
            try:
                await connection.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                disconnected.add(connection)

        self.active_connections -= disconnected


# Global connection manager and the trader behind the dashboard
manager = ConnectionManager()
trader = PaperTrader()
runner: Optional[PaperTradingRunner] = None
_tasks: Set[asyncio.Task] = set()


def summary_message() -> dict:
    return {
        "type": "summary",
        "data": trader.get_summary().to_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


def bot_status() -> dict:
    return {
        "running": bool(runner and runner.running),
        "market": runner.window.slug if runner and runner.window else None,
        "price_to_beat": runner.price_to_beat if runner else None,
        "last_price": runner.last_price if runner else None
    }


async def _watch_trades(bot: PaperTradingRunner):
    """Push the summary after every closed trade while bot runs."""
    while bot.running:
        await asyncio.sleep(1)
        trades = trader.stats.trades
        if trades != manager.last_broadcast_trades:
            manager.last_broadcast_trades = trades
            await manager.broadcast(summary_message())


async def _run_bot(bot: PaperTradingRunner):
    try:
        await bot.run()
    finally:
        await bot.market_data.close()


# WebSocket endpoint
@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await manager.connect(websocket)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                continue
            if isinstance(msg, dict) and msg.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        manager.disconnect(websocket)


# REST API endpoints
@app.get("/api/summary")
async def get_summary():
    """Running paper trading statistics and the open position."""
    return JSONResponse(trader.get_summary().to_dict())


@app.get("/api/status")
async def get_status():
    return JSONResponse({
        "bot_status": bot_status(),
        "connected_clients": len(manager.active_connections)
    })


@app.get("/api/trades")
async def get_trades(limit: int = 50):
    """Most recent closed trades logged by this process."""
    recent = getattr(trader.trade_log, "recent", None)
    trades = recent(limit) if recent else []
    return JSONResponse({"trades": trades})


@app.post("/api/signal")
async def post_signal(entry: ManualEntry):
    """Queue a manual ENTER for the current market window."""
    if not runner or not runner.running:
        return JSONResponse({"success": False, "error": "Bot not running"}, status_code=409)

    event = runner.manual_signal(
        side=entry.side.value,
        market_up=entry.market_up,
        market_down=entry.market_down
    )
    if event is None:
        return JSONResponse({"success": False, "error": "No market window yet"}, status_code=409)

    logger.info("manual_signal_queued", side=event.side, market=event.market_slug)
    return JSONResponse({"success": True, "market": event.market_slug})


@app.post("/api/bot/start")
async def start_bot():
    """Start polling Kraken and feeding the trader."""
    global runner

    if runner and runner.running:
        return JSONResponse({"success": False, "error": "Bot already running"})

    runner = PaperTradingRunner(trader, KrakenMarketData())
    runner.running = True

    for coro in (_run_bot(runner), _watch_trades(runner)):
        task = asyncio.create_task(coro)
        _tasks.add(task)
        task.add_done_callback(_tasks.discard)

    status = bot_status()
    await manager.broadcast({"type": "bot_status", "data": status})
    return JSONResponse({"success": True, "status": status})


@app.post("/api/bot/stop")
async def stop_bot():
    """Stop after the current poll."""
    if runner:
        runner.stop()

    status = bot_status()
    await manager.broadcast({"type": "bot_status", "data": status})
    return JSONResponse({"success": True, "status": status})


def run_dashboard(host: Optional[str] = None, port: Optional[int] = None):
    """Run the dashboard server."""
    uvicorn.run(app, host=host or settings.dashboard_host, port=port or settings.dashboard_port)
