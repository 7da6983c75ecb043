"""
config.py - Centralized configuration for the paper trading engine.
Uses Pydantic for validation. All values can be overridden via .env
(prefix PAPER_, e.g. PAPER_WARMUP_TICKS=500).
"""

import math
import logging
from typing import Mapping

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class EngineConfig(BaseSettings):
    # ── Wallet ───────────────────────────────────────────────────
    start_balance: float = 100_000.0

    # ── Signal Engine ────────────────────────────────────────────
    buffer_size: int = 60
    min_signal_ticks: int = 10
    warmup_ticks: int = 250
    volatility_ref: float = 0.002    # empirical tick vol
    min_edge: float = 0.0007         # 0.07%
    max_volatility: float = 0.85

    # ── Sizing ───────────────────────────────────────────────────
    risk_fraction: float = 0.01
    min_trade_usd: float = 25.0
    max_trade_usd: float = 1_000.0
    cash_buffer_usd: float = 1.0

    # ── Cost Model ───────────────────────────────────────────────
    fee_rate: float = 0.001          # per side
    spread_bp: float = 6.0
    slippage_bp: float = 8.0
    cost_buffer_multiplier: float = 1.25
    min_expected_net_usd: float = 1.0

    # ── Limits / Circuit Breakers ────────────────────────────────
    cooldown_ms: int = 12_000
    max_trades_per_day: int = 40
    max_drawdown_pct: float = 0.25
    max_daily_loss_pct: float = 0.05
    loss_streak_threshold: int = 2
    loss_streak_cooldown_ms: int = 300_000

    # ── Persistence ──────────────────────────────────────────────
    state_backend: str = "file"      # file | redis
    state_path: str = "/tmp/paper_state.json"
    redis_url: str = "redis://localhost:6379/0"
    redis_key: str = "paper:state"
    save_debounce_ms: int = 500
    trade_log_size: int = 800
    snapshot_trades: int = 200

    # ── Feed ─────────────────────────────────────────────────────
    feed_url: str = "wss://ws.kraken.com"
    feed_pairs: dict[str, str] = {"XBT/USD": "BTCUSDT", "ETH/USD": "ETHUSDT"}

    model_config = SettingsConfigDict(
        env_prefix="PAPER_", env_file=".env", extra="ignore"
    )

    @model_validator(mode="after")
    def _clamp_ranges(self):
        # Runs unattended: out-of-range values are pulled back, never raised.
        for name, (lo, hi) in _BOUNDS.items():
            value = getattr(self, name)
            if not math.isfinite(value):
                value = type(self).model_fields[name].default
                setattr(self, name, value)
            clamped = min(max(value, lo), hi)
            if clamped != value:
                logger.warning(f"[CONFIG] {name}={value} clamped to {clamped}")
                setattr(self, name, type(value)(clamped))
        if self.min_trade_usd > self.max_trade_usd:
            logger.warning(f"[CONFIG] min_trade_usd={self.min_trade_usd} > "
                           f"max_trade_usd={self.max_trade_usd}, lowering floor")
            self.min_trade_usd = self.max_trade_usd
        if self.min_signal_ticks > self.buffer_size:
            self.min_signal_ticks = self.buffer_size
        return self


# Fields that update_config() may touch, with their safe ranges.
PATCH_BOUNDS: dict[str, tuple[float, float]] = {
    "risk_fraction": (0.005, 0.5),
    "min_trade_usd": (1.0, 100_000.0),
    "max_trade_usd": (1.0, 1_000_000.0),
    "fee_rate": (0.0, 0.01),
    "spread_bp": (0.0, 100.0),
    "slippage_bp": (0.0, 100.0),
    "cost_buffer_multiplier": (1.0, 5.0),
    "min_expected_net_usd": (0.0, 1_000.0),
    "min_edge": (0.00001, 0.05),
    "warmup_ticks": (10, 100_000),
    "cooldown_ms": (0, 3_600_000),
    "max_trades_per_day": (1, 1_000),
    "max_drawdown_pct": (0.01, 0.9),
    "max_daily_loss_pct": (0.005, 0.9),
    "loss_streak_threshold": (1, 20),
    "loss_streak_cooldown_ms": (0, 86_400_000),
}

_BOUNDS: dict[str, tuple[float, float]] = {
    **PATCH_BOUNDS,
    "start_balance": (1.0, 1e12),
    "buffer_size": (10, 10_000),
    "min_signal_ticks": (3, 1_000),
    "volatility_ref": (1e-6, 1.0),
    "max_volatility": (0.05, 1.0),
    "cash_buffer_usd": (0.0, 1_000_000.0),
    "save_debounce_ms": (0, 60_000),
    "trade_log_size": (10, 100_000),
    "snapshot_trades": (1, 10_000),
}

_INT_FIELDS = frozenset(
    name for name, info in EngineConfig.model_fields.items()
    if info.annotation is int
)


def sanitize_patch(patch: Mapping) -> dict:
    """Keep whitelisted, finite numeric values only, clamped to range."""
    clean = {}
    if not isinstance(patch, Mapping):
        return clean
    for key, value in patch.items():
        bounds = PATCH_BOUNDS.get(key)
        if bounds is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if not math.isfinite(value):
            continue
        lo, hi = bounds
        value = min(max(value, lo), hi)
        clean[key] = int(value) if key in _INT_FIELDS else float(value)
    return clean


def apply_patch(config: EngineConfig, patch: Mapping) -> EngineConfig:
    """Return a new config with the sanitized patch merged in."""
    clean = sanitize_patch(patch)
    if not clean:
        return config
    merged = {**config.model_dump(), **clean}
    return EngineConfig(**merged)
