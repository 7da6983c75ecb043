"""
feed.py - Kraken public WebSocket ticker feed (The Observer).
Streams last-trade prices as tick events into the host queue, with
exponential-backoff reconnection and a stale-stream watchdog.
"""

import math
import time
import asyncio
import logging
from typing import Mapping, Optional

import aiohttp
import orjson

logger = logging.getLogger(__name__)

STALE_AFTER_SEC = 20.0


def parse_ticker_message(raw, pair_map: Mapping[str, str],
                         now_ms: Optional[int] = None) -> Optional[dict]:
    """
    Kraken ticker frames are arrays: [channel_id, data, "ticker", pair]
    with the last trade price at data["c"][0]. Event objects (heartbeat,
    subscriptionStatus, systemStatus) and anything malformed yield None.
    """
    try:
        msg = orjson.loads(raw)
    except orjson.JSONDecodeError:
        return None
    if not isinstance(msg, list) or len(msg) < 4:
        return None

    data, pair = msg[1], msg[3]
    if not isinstance(data, dict) or not isinstance(pair, str):
        return None
    last = data.get("c")
    if not isinstance(last, list) or not last:
        return None
    try:
        price = float(last[0])
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price):
        return None

    return {
        "type": "tick",
        "symbol": pair_map.get(pair, pair),
        "price": price,
        "ts": now_ms if now_ms is not None else int(time.time() * 1000),
    }


class KrakenTickerFeed:
    """Single public ticker connection; pushes {"type": "tick", ...} events."""

    def __init__(self, config, event_queue: asyncio.Queue):
        self.cfg = config
        self.event_queue = event_queue
        self.pair_map: dict[str, str] = dict(config.feed_pairs)
        self._base_delay = 1.5
        self._backoff = 1.4
        self._max_reconnect_delay = 15.0
        self._reconnect_delay = self._base_delay
        self._running = True
        self.status = "idle"

    async def stop(self):
        self._running = False

    def _set_status(self, status: str):
        if status != self.status:
            logger.info(f"[WS] Feed {status}")
        self.status = status

    def _next_delay(self) -> float:
        delay = self._reconnect_delay
        self._reconnect_delay = min(delay * self._backoff, self._max_reconnect_delay)
        return delay

    async def run(self):
        """Connect, subscribe and stream until stop(); reconnects forever."""
        while self._running:
            try:
                async with aiohttp.ClientSession() as session:
                    self._set_status("connecting")
                    async with session.ws_connect(
                        self.cfg.feed_url, heartbeat=15
                    ) as ws:
                        self._reconnect_delay = self._base_delay
                        self._set_status("connected")
                        await ws.send_bytes(orjson.dumps({
                            "event": "subscribe",
                            "pair": list(self.pair_map),
                            "subscription": {"name": "ticker"},
                        }))
                        await self._consume(ws)
            except asyncio.CancelledError:
                return
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                self._set_status("error")
                logger.error(f"[WS] Feed error: {e}")

            if self._running:
                delay = self._next_delay()
                logger.info(f"[WS] Reconnecting in {delay:.1f}s...")
                await asyncio.sleep(delay)
        self._set_status("closed")

    async def _consume(self, ws):
        while self._running:
            try:
                msg = await ws.receive(timeout=STALE_AFTER_SEC)
            except asyncio.TimeoutError:
                logger.warning(f"[WS] No messages for {STALE_AFTER_SEC:.0f}s, reconnecting")
                return
            if msg.type == aiohttp.WSMsgType.TEXT:
                tick = parse_ticker_message(msg.data, self.pair_map)
                if tick is not None:
                    await self.event_queue.put(tick)
            elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED,
                              aiohttp.WSMsgType.ERROR):
                logger.warning(f"[WS] Feed stream: {msg.type}")
                return
