import numpy as np
import pytest

from paper_engine.config import EngineConfig
from paper_engine.indicators import (
    calc_return_volatility, calc_trend_edge, calc_window_mean,
)
from paper_engine.reasons import SignalReason
from paper_engine.signal_engine import SignalEngine


@pytest.fixture
def signals():
    return SignalEngine(EngineConfig())


def _observe(engine, prices, symbol="BTCUSDT"):
    for p in prices:
        engine.observe(symbol, p)


def test_kernels():
    prices = np.array([100.0, 101.0, 102.0, 103.0, 104.0, 105.0])
    assert calc_window_mean(prices, 0, 2) == pytest.approx(100.5)
    assert calc_window_mean(prices, 3, 3) == 0.0
    # early third = [100, 101], late third = [104, 105]
    assert calc_trend_edge(prices) == pytest.approx((104.5 - 100.5) / 100.5)
    assert calc_return_volatility(np.array([100.0, 100.0, 100.0])) == 0.0
    returns = np.diff(prices) / prices[:-1]
    assert calc_return_volatility(prices) == pytest.approx(float(np.std(returns)))


def test_buffer_is_bounded(signals):
    _observe(signals, [100.0 + i for i in range(100)])
    buf = signals.buffers["BTCUSDT"]
    assert len(buf) == 60
    assert buf[0] == 140.0
    assert buf[-1] == 199.0


def test_collecting_below_min_ticks(signals):
    _observe(signals, [100.0] * 9)
    sig = signals.compute("BTCUSDT", ticks_seen=1_000)
    assert sig.reason == SignalReason.COLLECTING
    assert sig.confidence == 0.0
    assert sig.samples == 9


def test_warmup_reason(signals):
    _observe(signals, [100.0 + 0.05 * i for i in range(60)])
    assert signals.compute("BTCUSDT", ticks_seen=100).reason == SignalReason.WARMUP


def test_flat_prices_trend_unclear(signals):
    _observe(signals, [100.0] * 60)
    sig = signals.compute("BTCUSDT", ticks_seen=1_000)
    assert sig.reason == SignalReason.TREND_UNCLEAR
    assert sig.trend_edge == 0.0
    assert sig.volatility_norm == 0.0


def test_rising_prices_edge_detected(signals):
    _observe(signals, [100.0 + 0.05 * i for i in range(60)])
    sig = signals.compute("BTCUSDT", ticks_seen=1_000)
    assert sig.reason == SignalReason.EDGE_DETECTED
    assert sig.trend_edge > 0.0014
    assert sig.volatility_norm < 0.01
    assert sig.confidence > 0.99


def test_noisy_prices(signals):
    _observe(signals, [100.0 + 0.1 * i + (1.0 if i % 2 else 0.0) for i in range(60)])
    sig = signals.compute("BTCUSDT", ticks_seen=1_000)
    assert sig.reason == SignalReason.TOO_NOISY
    assert sig.volatility_norm == 1.0
    # noise factor bottoms out at 0.3 for vol_norm = 1
    assert sig.confidence == pytest.approx(0.3)


def test_confidence_ramps_with_warmup(signals):
    _observe(signals, [100.0 + 0.05 * i for i in range(60)])
    half = signals.compute("BTCUSDT", ticks_seen=125)
    # 0.55 * 0.5 + 0.55 * 1.0, scaled by a noise factor of ~1
    assert half.confidence == pytest.approx(0.825, abs=5e-3)


def test_symbols_are_isolated(signals):
    _observe(signals, [100.0 + 0.05 * i for i in range(60)], symbol="BTCUSDT")
    _observe(signals, [2_000.0] * 5, symbol="ETHUSDT")
    assert signals.compute("ETHUSDT", 1_000).reason == SignalReason.COLLECTING
    assert signals.compute("BTCUSDT", 1_000).reason == SignalReason.EDGE_DETECTED
    assert set(signals.latest) == {"BTCUSDT", "ETHUSDT"}


def test_reset_clears_buffers(signals):
    _observe(signals, [100.0] * 20)
    signals.compute("BTCUSDT", 0)
    signals.reset()
    assert signals.buffers == {}
    assert signals.latest == {}
