"""
signal_engine.py - The Brain: rolling price buffers + trend/volatility signals.
One bounded buffer per symbol; signals are recomputed from it on every tick
and never stored on their own.
"""

import logging
from collections import deque
from dataclasses import dataclass

import numpy as np

from .indicators import calc_return_volatility, calc_trend_edge, clamp
from .reasons import SignalReason

logger = logging.getLogger(__name__)

# Confidence blend weights (warmup progress / edge strength / noise penalty)
WARMUP_WEIGHT = 0.55
EDGE_WEIGHT = 0.55
NOISE_PENALTY = 0.7
MIN_NOISE_FACTOR = 0.2


@dataclass(frozen=True)
class Signals:
    volatility_norm: float = 0.0
    trend_edge: float = 0.0
    confidence: float = 0.0
    reason: SignalReason = SignalReason.COLLECTING
    samples: int = 0

    def to_dict(self) -> dict:
        return {
            "volatility_norm": self.volatility_norm,
            "trend_edge": self.trend_edge,
            "confidence": self.confidence,
            "reason": self.reason.value,
            "samples": self.samples,
        }


class SignalEngine:
    """
    Maintains per-symbol price buffers and derives Signals from them.
    """

    def __init__(self, config):
        self.cfg = config
        self.buffers: dict[str, deque[float]] = {}
        self.latest: dict[str, Signals] = {}

    def observe(self, symbol: str, price: float):
        buf = self.buffers.get(symbol)
        if buf is None:
            buf = deque(maxlen=self.cfg.buffer_size)
            self.buffers[symbol] = buf
        buf.append(float(price))

    def compute(self, symbol: str, ticks_seen: int) -> Signals:
        """Recompute signals for `symbol`; `ticks_seen` drives warmup progress."""
        cfg = self.cfg
        buf = self.buffers.get(symbol, ())
        n = len(buf)
        if n < cfg.min_signal_ticks:
            sig = Signals(samples=n)
            self.latest[symbol] = sig
            return sig

        prices = np.fromiter(buf, dtype=np.float64, count=n)
        vol = calc_return_volatility(prices)
        vol_norm = clamp(vol / cfg.volatility_ref, 0.0, 1.0)
        edge = calc_trend_edge(prices)

        ticks_factor = clamp(ticks_seen / cfg.warmup_ticks, 0.0, 1.0)
        trend_factor = clamp(abs(edge) / (cfg.min_edge * 2), 0.0, 1.0)
        noise_factor = clamp(1.0 - vol_norm * NOISE_PENALTY, MIN_NOISE_FACTOR, 1.0)
        confidence = clamp(
            ticks_factor * WARMUP_WEIGHT + trend_factor * EDGE_WEIGHT, 0.0, 1.0
        ) * noise_factor

        if ticks_seen < cfg.warmup_ticks:
            reason = SignalReason.WARMUP
        elif abs(edge) < cfg.min_edge:
            reason = SignalReason.TREND_UNCLEAR
        elif vol_norm > cfg.max_volatility:
            reason = SignalReason.TOO_NOISY
        else:
            reason = SignalReason.EDGE_DETECTED

        sig = Signals(
            volatility_norm=float(vol_norm),
            trend_edge=float(edge),
            confidence=float(confidence),
            reason=reason,
            samples=n,
        )
        self.latest[symbol] = sig
        return sig

    def reset(self):
        self.buffers.clear()
        self.latest.clear()
