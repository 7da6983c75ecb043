import asyncio
from unittest.mock import MagicMock

import pytest

from conftest import BASE_TS, feed_rising
from paper_engine.engine import PaperTrader
from paper_engine.main import PaperTradingSystem


def _system(config, store):
    return PaperTradingSystem(config, engine=PaperTrader(config, store), with_feed=False)


def test_dispatcher_serializes_ticks_and_commands(config, store):
    system = _system(config, store)

    async def scenario():
        run = asyncio.create_task(system.run())
        for i in range(5):
            await system.submit_tick("BTCUSDT", 100.0 + i, BASE_TS + i * 1_000)
        cfg = await system.update_config({"risk_fraction": 0.02, "bogus": 1})
        seen_before_reset = system.snapshot()["ticks_seen"]
        snap = await system.hard_reset()
        system.request_shutdown()
        await asyncio.wait_for(run, timeout=5)
        return cfg, seen_before_reset, snap

    cfg, seen_before_reset, snap = asyncio.run(scenario())
    assert cfg["risk_fraction"] == 0.02
    assert "bogus" not in cfg
    assert seen_before_reset == 5
    assert snap["ticks_seen"] == 0
    assert snap["reason"] == "reset"

    doc = store.load()
    assert doc["config"]["risk_fraction"] == 0.02
    assert doc["ledger"]["cash_balance"] == config.start_balance


def test_shutdown_flushes_pending_state(config, store):
    system = _system(config, store)

    async def scenario():
        run = asyncio.create_task(system.run())
        await system.submit_tick("ETHUSDT", 2_000.0, BASE_TS)
        while system.engine.ticks_seen < 1:
            await asyncio.sleep(0.01)
        system.request_shutdown()
        await asyncio.wait_for(run, timeout=5)

    asyncio.run(scenario())
    assert store.load()["limits"]["day_key"] == "2023-11-15"


def test_malformed_events_do_not_stop_dispatcher(config, store):
    system = _system(config, store)

    async def scenario():
        run = asyncio.create_task(system.run())
        await system.event_queue.put({"type": "mystery"})
        await system.submit_tick("BTCUSDT", float("nan"), BASE_TS)
        await system.submit_tick("BTCUSDT", 100.0, BASE_TS)
        cfg = await system.update_config({})
        system.request_shutdown()
        await asyncio.wait_for(run, timeout=5)
        return cfg

    cfg = asyncio.run(scenario())
    assert cfg["risk_fraction"] == 0.01
    assert system.engine.ticks_seen == 1


def test_out_of_range_timestamp_does_not_stop_dispatcher(config, store):
    system = _system(config, store)

    async def scenario():
        run = asyncio.create_task(system.run())
        await system.submit_tick("BTCUSDT", 100.0, 2**62)
        await system.submit_tick("BTCUSDT", 100.5, BASE_TS)
        cfg = await asyncio.wait_for(system.update_config({"risk_fraction": 0.02}), timeout=5)
        system.request_shutdown()
        await asyncio.wait_for(run, timeout=5)
        return cfg

    cfg = asyncio.run(scenario())
    assert cfg["risk_fraction"] == 0.02
    assert system.engine.ticks_seen == 2


def test_failing_command_rejects_caller_and_dispatcher_continues(config, store):
    system = _system(config, store)
    system.engine.update_config = MagicMock(side_effect=RuntimeError("boom"))

    async def scenario():
        run = asyncio.create_task(system.run())
        with pytest.raises(RuntimeError, match="boom"):
            await asyncio.wait_for(system.update_config({"risk_fraction": 0.02}), timeout=5)
        await system.submit_tick("BTCUSDT", 100.0, BASE_TS)
        snap = await asyncio.wait_for(system.hard_reset(), timeout=5)
        system.request_shutdown()
        await asyncio.wait_for(run, timeout=5)
        return snap

    snap = asyncio.run(scenario())
    assert snap["reason"] == "reset"


def test_hard_reset_returns_after_state_is_persisted(config, store):
    engine = PaperTrader(config, store)
    feed_rising(engine, 251)
    assert engine.writer.flush_sync()
    assert store.load()["position"] is not None
    system = PaperTradingSystem(config, engine=engine, with_feed=False)

    async def scenario():
        run = asyncio.create_task(system.run())
        await system.hard_reset()
        doc = store.load()
        system.request_shutdown()
        await asyncio.wait_for(run, timeout=5)
        return doc

    doc = asyncio.run(scenario())
    assert doc["position"] is None
    assert doc["trades"] == []
    assert doc["ledger"]["cash_balance"] == config.start_balance
