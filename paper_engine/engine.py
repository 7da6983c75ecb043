"""
engine.py - PaperTrader: the simulated trading/risk engine.
Tick → signals → exit check → entry gates → ledger → debounced save.

Single-writer by contract: tick(), update_config() and hard_reset() must be
called from one logical thread of control (see main.PaperTradingSystem).
"""

import math
import time
import logging
from typing import Mapping, Optional

from .config import EngineConfig, apply_patch
from .ledger import exit_fee, quote_entry_costs
from .position import Position, TradeRecord, exit_reason
from .reasons import Decision, Reason, describe
from .risk import EntryDecision, RiskManager
from .signal_engine import SignalEngine, Signals
from .state import EngineState, state_from_document, to_document
from .storage import DebouncedWriter, StateStore

logger = logging.getLogger(__name__)
trade_logger = logging.getLogger("trades")

# 9999-12-31T23:59:59.999Z, the last instant datetime can represent
MAX_TS_MS = 253_402_300_799_999


def _now_ms() -> int:
    return int(time.time() * 1000)


def _valid_price(price) -> Optional[float]:
    if isinstance(price, bool):
        return None
    try:
        value = float(price)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def _valid_ts(ts) -> int:
    """Epoch ms within what datetime can represent, else the wall clock."""
    if ts is None or isinstance(ts, bool):
        return _now_ms()
    try:
        value = float(ts)
    except (TypeError, ValueError, OverflowError):
        return _now_ms()
    if not math.isfinite(value) or not 0 <= value <= MAX_TS_MS:
        return _now_ms()
    return int(value)


class PaperTrader:
    """Owns the whole engine state; nothing here is module-global."""

    def __init__(self, config: Optional[EngineConfig] = None,
                 store: Optional[StateStore] = None, load: bool = True):
        self.cfg = config or EngineConfig()
        self.store = store
        self.signals = SignalEngine(self.cfg)
        self.risk = RiskManager(self.cfg)
        self.state = EngineState.fresh(self.cfg)
        self.ticks_seen = 0
        self.last_prices: dict[str, float] = {}
        self.decision = Decision.WAIT
        self.reason = Reason.BOOT
        self.writer: Optional[DebouncedWriter] = None
        if store is not None:
            self.writer = DebouncedWriter(
                store, self.to_document, self.cfg.save_debounce_ms
            )
            if load:
                self.load()

    # ─────────────────────────────────────────────────────────────
    # Persistence
    # ─────────────────────────────────────────────────────────────

    def load(self) -> bool:
        """Best-effort restore; missing or corrupt state means a fresh start."""
        if self.store is None:
            return False
        doc = self.store.load()
        if doc is None:
            logger.info("[ENGINE] No prior state, starting fresh")
            return False
        state, persisted_cfg = state_from_document(doc, self.cfg)
        self._set_config(apply_patch(self.cfg, persisted_cfg))
        self.state = state
        pos = state.position
        logger.info(
            f"[ENGINE] Restored cash={state.ledger.cash_balance:.2f} "
            f"trades={len(state.trades)} "
            f"position={pos.symbol if pos else None}"
        )
        return True

    def to_document(self) -> dict:
        return to_document(self.state, self.cfg, _now_ms())

    def _request_save(self, immediate: bool = False):
        if self.writer is not None:
            self.writer.request(immediate=immediate)

    def _set_config(self, config: EngineConfig):
        self.cfg = config
        self.signals.cfg = config
        self.risk.cfg = config

    # ─────────────────────────────────────────────────────────────
    # Tick Pipeline
    # ─────────────────────────────────────────────────────────────

    def tick(self, symbol: str, price: float, ts: Optional[int] = None) -> Optional[Decision]:
        """
        Process one price observation. Malformed prices are dropped without
        touching any state and return None.
        """
        price = _valid_price(price)
        if price is None:
            logger.debug(f"[ENGINE] Dropped malformed tick for {symbol}")
            return None
        ts = _valid_ts(ts)
        symbol = str(symbol)
        st = self.state

        self.risk.roll_day(st.limits, st.ledger.realized, ts)
        self.last_prices[symbol] = price
        self.signals.observe(symbol, price)
        sig = self.signals.compute(symbol, self.ticks_seen)

        if not self._evaluate_exit(symbol, price, ts):
            self._evaluate_entry(symbol, price, ts, sig)

        self.ticks_seen += 1
        self._request_save()
        return self.decision

    def _evaluate_exit(self, symbol: str, price: float, ts: int) -> bool:
        """True when the open position owned this tick (held or closed)."""
        pos = self.state.position
        if pos is None or pos.symbol != symbol:
            return False
        reason = exit_reason(pos, price, ts)
        if reason is None:
            self.decision, self.reason = Decision.WAIT, Reason.HOLDING
            return True
        self._close(pos, price, ts, reason)
        return True

    def _evaluate_entry(self, symbol: str, price: float, ts: int, sig: Signals):
        st = self.state
        decision = self.risk.evaluate_entry(
            now=ts, ticks_seen=self.ticks_seen, signals=sig,
            ledger=st.ledger, limits=st.limits, position=st.position,
        )
        if not decision.allowed:
            self.decision, self.reason = Decision.WAIT, decision.reason
            return
        self._open(symbol, price, ts, decision)

    def _open(self, symbol: str, price: float, ts: int, decision: EntryDecision):
        st = self.state
        strategy = decision.strategy
        notional = decision.notional
        costs = quote_entry_costs(notional, self.cfg)
        st.ledger.reserve(notional, costs)

        qty = notional / price
        st.position = Position(
            symbol=symbol,
            strategy=strategy,
            entry_price=price,
            quantity=qty,
            entry_ts=ts,
            expiry_ts=ts + strategy.hold_duration_ms,
            notional_usd=notional,
            entry_costs=costs.total,
        )
        self.risk.record_entry(st.limits, ts)
        st.trades.append(TradeRecord(
            side="BUY", symbol=symbol, price=price, quantity=qty,
            notional_usd=notional, ts=ts, strategy=strategy.name,
            cost=costs.total,
        ))
        self.decision, self.reason = Decision.BUY, Reason.ENTERED_LONG
        trade_logger.info(
            f"BUY {symbol} {strategy.name} px={price:.2f} qty={qty:.8f} "
            f"notional={notional:.2f} costs={costs.total:.4f} "
            f"cash={st.ledger.cash_balance:.2f}"
        )

    def _close(self, pos: Position, price: float, ts: int, reason: Reason):
        st = self.state
        gross = pos.unrealized_pnl(price)
        fee = exit_fee(pos.quantity * price, self.cfg)
        net = st.ledger.settle(pos.notional_usd, gross, pos.entry_costs, fee)
        st.position = None

        self.risk.record_close(st.limits, st.ledger.realized, net, ts)
        st.trades.append(TradeRecord(
            side="SELL", symbol=pos.symbol, price=price, quantity=pos.quantity,
            notional_usd=pos.quantity * price, ts=ts, strategy=pos.strategy.name,
            gross_pnl=gross, net_pnl=net, exit_fee=fee, exit_reason=reason.value,
        ))
        self.risk.check_halts(st.limits, st.ledger, st.ledger.equity())
        self.decision, self.reason = Decision.SELL, reason
        trade_logger.info(
            f"SELL {pos.symbol} {reason.value} px={price:.2f} gross={gross:.4f} "
            f"net={net:.4f} cash={st.ledger.cash_balance:.2f}"
        )

    # ─────────────────────────────────────────────────────────────
    # Snapshot / Config Surface
    # ─────────────────────────────────────────────────────────────

    def snapshot(self) -> dict:
        """Read-only projection of the engine; never mutates state."""
        st = self.state
        pos = st.position
        reserved = unrealized = 0.0
        if pos is not None:
            reserved = pos.notional_usd
            last = self.last_prices.get(pos.symbol)
            if last is not None:
                unrealized = pos.unrealized_pnl(last)
        equity = st.ledger.equity(reserved, unrealized)
        return {
            "cash_balance": st.ledger.cash_balance,
            "starting_balance": st.ledger.starting_balance,
            "equity": equity,
            "unrealized_pnl": unrealized,
            "drawdown": st.ledger.drawdown(equity),
            "realized": st.ledger.to_dict()["realized"],
            "costs": {**st.ledger.to_dict()["costs"], "total": st.ledger.costs.total},
            "position": pos.to_dict() if pos else None,
            "recent_trades": [t.to_dict() for t in st.trades.recent(self.cfg.snapshot_trades)],
            "signals": {sym: s.to_dict() for sym, s in self.signals.latest.items()},
            "limits": st.limits.to_dict(),
            "config": self.cfg.model_dump(),
            "decision": self.decision.value,
            "reason": self.reason.value,
            "reason_text": describe(self.reason),
            "ticks_seen": self.ticks_seen,
            "last_prices": dict(self.last_prices),
        }

    def update_config(self, patch: Mapping) -> dict:
        """Apply a whitelisted, clamped patch. Unknown keys are ignored."""
        new_cfg = apply_patch(self.cfg, patch)
        if new_cfg is not self.cfg:
            changed = {k: v for k, v in new_cfg.model_dump().items()
                       if self.cfg.model_dump().get(k) != v}
            logger.info(f"[CONFIG] Updated: {changed}")
            self._set_config(new_cfg)
            self._request_save()
        return self.cfg.model_dump()

    def hard_reset(self):
        """Discard all state and persist a fresh default immediately."""
        self.state = EngineState.fresh(self.cfg)
        self.signals.reset()
        self.ticks_seen = 0
        self.last_prices.clear()
        self.decision, self.reason = Decision.WAIT, Reason.RESET
        logger.warning("[ENGINE] Hard reset: paper wallet wiped")
        self._request_save(immediate=True)
