import pytest

from paper_engine.config import EngineConfig
from paper_engine.engine import PaperTrader
from paper_engine.storage import FileStateStore

# 2023-11-15 00:00:00 UTC: scenarios stay inside one trading day.
BASE_TS = 1_700_006_400_000


def feed_rising(engine, n, symbol="BTCUSDT", start=100.0, step=0.05,
                ts=BASE_TS, dt=1000):
    """Feed `n` monotonically rising ticks; returns (decisions, next_ts, last_price)."""
    decisions = []
    price = start
    for i in range(n):
        price = start + step * i
        decisions.append(engine.tick(symbol, price, ts + dt * i))
    return decisions, ts + dt * n, price


def feed_until_open(engine, symbol="BTCUSDT", start=100.0, ts=BASE_TS,
                    step=0.05, dt=1000, max_ticks=400):
    """Rising ticks until a position opens; returns the next free timestamp."""
    for i in range(max_ticks):
        engine.tick(symbol, start + step * i, ts + dt * i)
        if engine.state.position is not None:
            return ts + dt * (i + 1)
    raise AssertionError(f"no entry after {max_ticks} ticks: {engine.reason}")


@pytest.fixture
def config(tmp_path):
    return EngineConfig(state_path=str(tmp_path / "state.json"))


@pytest.fixture
def engine(config):
    return PaperTrader(config)


@pytest.fixture
def store(tmp_path):
    return FileStateStore(tmp_path / "state.json")


@pytest.fixture
def warm_engine(engine):
    """Engine holding the first TREND entry on BTCUSDT (opened on tick 251)."""
    feed_rising(engine, 251)
    assert engine.state.position is not None
    return engine
