"""
main.py - Asyncio entrypoint for the paper trading engine.
Orchestrates: Feed → event queue → dispatcher → PaperTrader → debounced save.

The dispatcher is the only caller of the engine's mutating operations, so
ticks, config patches and resets are applied strictly one at a time.
"""

import asyncio
import contextlib
import logging
import signal
from typing import Mapping, Optional

from .config import EngineConfig
from .engine import PaperTrader
from .feed import KrakenTickerFeed
from .logger_config import setup_logging
from .storage import build_store

logger = logging.getLogger("main")

STATUS_INTERVAL_SEC = 60.0


class PaperTradingSystem:
    """Main orchestrator: wires the feed, the engine and persistence together."""

    def __init__(self, config: EngineConfig, engine: Optional[PaperTrader] = None,
                 with_feed: bool = True):
        self.cfg = config
        self.event_queue: asyncio.Queue = asyncio.Queue(maxsize=10_000)
        self.shutdown_event = asyncio.Event()
        self.engine = engine or PaperTrader(config, build_store(config))
        self.feed = KrakenTickerFeed(config, self.event_queue) if with_feed else None

    async def run(self):
        """Main entry point: starts all tasks, returns after shutdown."""
        logger.info("=" * 60)
        logger.info("  Paper Trading Engine")
        logger.info(f"  Pairs: {list(self.cfg.feed_pairs.values())}")
        logger.info(f"  State: {self.cfg.state_backend}")
        logger.info("=" * 60)

        writer = self.engine.writer
        async with (writer if writer is not None else contextlib.nullcontext()):
            tasks = [
                asyncio.create_task(self._event_dispatcher(), name="dispatcher"),
                asyncio.create_task(self._status_reporter(), name="status"),
            ]
            if self.feed is not None:
                tasks.append(asyncio.create_task(self.feed.run(), name="feed"))

            # Graceful shutdown on SIGINT/SIGTERM
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, self.shutdown_event.set)
                except (NotImplementedError, RuntimeError):
                    pass  # not supported off the main thread / on Windows

            await self.shutdown_event.wait()

            logger.info("Shutting down...")
            if self.feed is not None:
                await self.feed.stop()
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Shutdown complete.")

    def request_shutdown(self):
        self.shutdown_event.set()

    # ─────────────────────────────────────────────────────────────
    # Control surface (funnelled through the queue)
    # ─────────────────────────────────────────────────────────────

    async def submit_tick(self, symbol: str, price: float, ts: Optional[int] = None):
        await self.event_queue.put({"type": "tick", "symbol": symbol,
                                    "price": price, "ts": ts})

    async def update_config(self, patch: Mapping) -> dict:
        return await self._request({"type": "config", "patch": dict(patch)})

    async def hard_reset(self) -> dict:
        return await self._request({"type": "reset"})

    def snapshot(self) -> dict:
        return self.engine.snapshot()

    async def _request(self, event: dict):
        fut = asyncio.get_running_loop().create_future()
        event["future"] = fut
        await self.event_queue.put(event)
        return await fut

    # ─────────────────────────────────────────────────────────────
    # Event Dispatcher (single consumer for all events)
    # ─────────────────────────────────────────────────────────────

    async def _event_dispatcher(self):
        while not self.shutdown_event.is_set():
            try:
                event = await asyncio.wait_for(
                    self.event_queue.get(), timeout=1.0
                )
            except asyncio.TimeoutError:
                continue

            try:
                await self._handle(event)
            except Exception as e:
                logger.exception(f"[DISPATCH] Error handling {event.get('type')!r} event")
                _fail(event, e)

    async def _handle(self, event: dict):
        etype = event.get("type")
        if etype == "tick":
            self.engine.tick(event.get("symbol"), event.get("price"), event.get("ts"))
        elif etype == "config":
            _resolve(event, self.engine.update_config(event.get("patch") or {}))
        elif etype == "reset":
            self.engine.hard_reset()
            # The caller gets its answer only once the wiped state is on disk.
            if self.engine.writer is not None:
                await self.engine.writer.save_now()
            _resolve(event, self.engine.snapshot())
        else:
            logger.warning(f"[DISPATCH] Unknown event type: {etype!r}")

    async def _status_reporter(self):
        while not self.shutdown_event.is_set():
            await asyncio.sleep(STATUS_INTERVAL_SEC)
            snap = self.engine.snapshot()
            logger.info(
                f"[STATUS] equity={snap['equity']:.2f} cash={snap['cash_balance']:.2f} "
                f"trades_today={snap['limits']['trades_today']} "
                f"reason={snap['reason']} ticks={snap['ticks_seen']}"
            )


def _resolve(event: dict, result):
    fut = event.get("future")
    if fut is not None and not fut.done():
        fut.set_result(result)


def _fail(event: dict, exc: Exception):
    fut = event.get("future")
    if fut is not None and not fut.done():
        fut.set_exception(exc)


def main():
    setup_logging()
    config = EngineConfig()
    system = PaperTradingSystem(config)
    asyncio.run(system.run())


if __name__ == "__main__":
    main()
