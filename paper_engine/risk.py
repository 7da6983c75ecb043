"""
risk.py - Entry Gate Pipeline, position sizing & circuit breakers (The Shield).
Gates are evaluated in order and short-circuit: the first failing gate's
reason code is the WAIT reason for this tick.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from .ledger import Ledger, Realized, quote_entry_costs, round_trip_cost
from .position import Position
from .reasons import DAY_SCOPED_HALTS, HaltReason, Reason
from .signal_engine import Signals
from .strategy import PROFILES, StrategyProfile, select_strategy

logger = logging.getLogger(__name__)


def utc_day_key(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


@dataclass
class DailyLimits:
    day_key: str = ""
    trades_today: int = 0
    pnl_today: float = 0.0
    halted: bool = False
    halt_reason: Optional[str] = None
    last_trade_ts: int = 0
    cooldown_until_ts: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


# ─────────────────────────────────────────────────────────────────────
# Position Sizing
# ─────────────────────────────────────────────────────────────────────

def size_notional(cash: float, config) -> float:
    """
    clamp(cash × risk_fraction, min_trade_usd, max_trade_usd), then capped
    so notional + entry costs never eat into the cash buffer.
    """
    desired = max(config.min_trade_usd,
                  min(cash * config.risk_fraction, config.max_trade_usd))
    cost_rate = quote_entry_costs(1.0, config).total
    affordable = (cash - config.cash_buffer_usd) / (1.0 + cost_rate)
    return max(0.0, min(desired, affordable))


def cost_viable_profiles(
    notional: float, config, profiles: Sequence[StrategyProfile] = PROFILES,
) -> list[StrategyProfile]:
    """Profiles whose take-profit structurally clears the round-trip cost."""
    if notional <= 0:
        return []
    rt_cost = round_trip_cost(notional, config)
    viable = []
    for p in profiles:
        tp_gross = notional * p.take_profit_pct
        if (tp_gross >= rt_cost * config.cost_buffer_multiplier
                and tp_gross - rt_cost >= config.min_expected_net_usd):
            viable.append(p)
    return viable


# ─────────────────────────────────────────────────────────────────────
# Entry Gate Pipeline
# ─────────────────────────────────────────────────────────────────────

@dataclass
class EntryContext:
    now: int
    ticks_seen: int
    signals: Signals
    ledger: Ledger
    limits: DailyLimits
    position: Optional[Position]
    config: object
    notional: float = 0.0
    viable: list = field(default_factory=list)
    strategy: Optional[StrategyProfile] = None


@dataclass(frozen=True)
class EntryDecision:
    reason: Reason
    strategy: Optional[StrategyProfile] = None
    notional: float = 0.0

    @property
    def allowed(self) -> bool:
        return self.strategy is not None and self.reason == Reason.ENTERED_LONG


Gate = tuple[Reason, Callable[[EntryContext], bool]]

# Each check returns True when the entry must be BLOCKED.
ENTRY_GATES: tuple[Gate, ...] = (
    (Reason.HALTED, lambda c: c.limits.halted),
    (Reason.POSITION_OPEN, lambda c: c.position is not None),
    (Reason.WARMUP, lambda c: c.ticks_seen < c.config.warmup_ticks),
    (Reason.LOSS_STREAK_COOLDOWN, lambda c: c.now < c.limits.cooldown_until_ts),
    (Reason.COOLDOWN,
     lambda c: c.now - c.limits.last_trade_ts < c.config.cooldown_ms),
    (Reason.MAX_TRADES_TODAY,
     lambda c: c.limits.trades_today >= c.config.max_trades_per_day),
    (Reason.INSUFFICIENT_CASH, lambda c: c.notional < c.config.min_trade_usd),
    (Reason.COST_UNPROFITABLE, lambda c: not c.viable),
    (Reason.NO_STRATEGY, lambda c: c.strategy is None),
)


class RiskManager:
    """
    Stateless over the engine's state: every call receives the limits and
    ledger it acts on. Must be consulted BEFORE every new entry.
    """

    def __init__(self, config):
        self.cfg = config

    def evaluate_entry(self, now: int, ticks_seen: int, signals: Signals,
                       ledger: Ledger, limits: DailyLimits,
                       position: Optional[Position]) -> EntryDecision:
        cfg = self.cfg
        ctx = EntryContext(
            now=now, ticks_seen=ticks_seen, signals=signals, ledger=ledger,
            limits=limits, position=position, config=cfg,
        )
        ctx.notional = size_notional(ledger.cash_balance, cfg)
        ctx.viable = cost_viable_profiles(ctx.notional, cfg)
        ctx.strategy = select_strategy(
            signals, cfg.min_edge, cfg.max_volatility, ctx.viable
        )

        for reason, blocked in ENTRY_GATES:
            if blocked(ctx):
                return EntryDecision(reason=reason, notional=ctx.notional)
        return EntryDecision(
            reason=Reason.ENTERED_LONG, strategy=ctx.strategy, notional=ctx.notional
        )

    def record_entry(self, limits: DailyLimits, now: int):
        limits.trades_today += 1
        limits.last_trade_ts = now

    def record_close(self, limits: DailyLimits, realized: Realized,
                     net_pnl: float, now: int):
        """Daily PnL + arm the loss-streak cooldown once the streak threshold is hit."""
        limits.pnl_today += net_pnl
        if net_pnl < 0 and realized.consecutive_losses >= self.cfg.loss_streak_threshold:
            limits.cooldown_until_ts = now + self.cfg.loss_streak_cooldown_ms
            logger.warning(f"[GATE] Loss streak {realized.consecutive_losses}: "
                           f"cooling down {self.cfg.loss_streak_cooldown_ms / 1000:.0f}s")

    # ─────────────────────────────────────────────────────────────
    # Circuit Breakers
    # ─────────────────────────────────────────────────────────────

    def check_halts(self, limits: DailyLimits, ledger: Ledger,
                    equity: float) -> Optional[HaltReason]:
        """Call after every close. Drawdown halt is sticky; daily-loss halt is day-scoped."""
        if limits.halted and limits.halt_reason == HaltReason.MAX_DRAWDOWN.value:
            return None

        dd = ledger.drawdown(equity)
        if dd >= self.cfg.max_drawdown_pct:
            return self._halt(limits, HaltReason.MAX_DRAWDOWN, f"{dd:.1%}")

        if limits.halted or ledger.starting_balance <= 0:
            return None
        daily_loss = -limits.pnl_today / ledger.starting_balance
        if daily_loss >= self.cfg.max_daily_loss_pct:
            return self._halt(limits, HaltReason.DAILY_LOSS, f"{daily_loss:.1%}")
        return None

    def _halt(self, limits: DailyLimits, reason: HaltReason, detail: str) -> HaltReason:
        limits.halted = True
        limits.halt_reason = reason.value
        logger.critical(f"[CIRCUIT BREAKER] HALTED: {reason.value.upper()}:{detail}")
        return reason

    def roll_day(self, limits: DailyLimits, realized: Realized, ts: int) -> bool:
        """
        Reset day-scoped counters when the tick's UTC day differs from the
        stored one. Returns True if a rollover happened. Idempotent per day.
        """
        key = utc_day_key(ts)
        if key == limits.day_key:
            return False
        previous = limits.day_key
        limits.day_key = key
        limits.trades_today = 0
        limits.pnl_today = 0.0
        realized.consecutive_losses = 0
        if limits.halted and limits.halt_reason in {h.value for h in DAY_SCOPED_HALTS}:
            limits.halted = False
            limits.halt_reason = None
        if previous:
            logger.info(f"[CIRCUIT BREAKER] Daily reset {previous} -> {key}")
        return True
