"""
strategy.py - Strategy profiles and the selector that maps signals to one.
"""

from typing import NamedTuple, Optional, Sequence

from .signal_engine import Signals


class StrategyProfile(NamedTuple):
    name: str
    take_profit_pct: float
    stop_loss_pct: float
    hold_duration_ms: int
    min_confidence: float
    min_edge_multiplier: float

    def to_dict(self) -> dict:
        return self._asdict()


TREND = StrategyProfile(
    name="Trend",
    take_profit_pct=0.012,
    stop_loss_pct=0.006,
    hold_duration_ms=15 * 60_000,
    min_confidence=0.75,
    min_edge_multiplier=2.0,
)

SCALP = StrategyProfile(
    name="Scalp",
    take_profit_pct=0.006,
    stop_loss_pct=0.004,
    hold_duration_ms=3 * 60_000,
    min_confidence=0.60,
    min_edge_multiplier=1.0,
)

# Most selective first.
PROFILES: tuple[StrategyProfile, ...] = (TREND, SCALP)
PROFILES_BY_NAME = {p.name: p for p in PROFILES}


def qualifies(profile: StrategyProfile, signals: Signals,
              min_edge: float, max_volatility: float = 0.85) -> bool:
    return (signals.confidence >= profile.min_confidence
            and abs(signals.trend_edge) >= min_edge * profile.min_edge_multiplier
            and signals.volatility_norm <= max_volatility)


def select_strategy(
    signals: Signals,
    min_edge: float,
    max_volatility: float = 0.85,
    profiles: Sequence[StrategyProfile] = PROFILES,
) -> Optional[StrategyProfile]:
    """First qualifying profile, or None for "no trade this tick"."""
    for profile in profiles:
        if qualifies(profile, signals, min_edge, max_volatility):
            return profile
    return None


def profile_from_dict(data) -> Optional[StrategyProfile]:
    """Rebuild a persisted profile; unknown shapes fall back to the named built-in."""
    if not isinstance(data, dict):
        return PROFILES_BY_NAME.get(data) if isinstance(data, str) else None
    base = PROFILES_BY_NAME.get(data.get("name"), SCALP)
    try:
        return StrategyProfile(
            name=str(data.get("name", base.name)),
            take_profit_pct=float(data.get("take_profit_pct", base.take_profit_pct)),
            stop_loss_pct=float(data.get("stop_loss_pct", base.stop_loss_pct)),
            hold_duration_ms=int(data.get("hold_duration_ms", base.hold_duration_ms)),
            min_confidence=float(data.get("min_confidence", base.min_confidence)),
            min_edge_multiplier=float(
                data.get("min_edge_multiplier", base.min_edge_multiplier)),
        )
    except (TypeError, ValueError):
        return base
