"""
state.py - The engine's single owned state object and its durable document.

Document layout (schema_version 2):
    {schema_version, saved_at, ledger, position | null, limits, trades, config}

Loading never trusts the payload: every field is back-filled from defaults
and coerced to its type. Version 1 documents (camelCase keys: balance,
startBalance, realized.net, costs.feePaid, limits.tradesToday, ...) are
migrated on the way in.
"""

import math
import logging
from dataclasses import dataclass
from typing import Any, Optional

from .ledger import Costs, Ledger, Realized
from .position import Position, TradeLog, TradeRecord
from .risk import DailyLimits
from .strategy import SCALP, profile_from_dict

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2


@dataclass
class EngineState:
    ledger: Ledger
    limits: DailyLimits
    trades: TradeLog
    position: Optional[Position] = None

    @classmethod
    def fresh(cls, config) -> "EngineState":
        return cls(
            ledger=Ledger.fresh(config.start_balance),
            limits=DailyLimits(),
            trades=TradeLog(maxlen=config.trade_log_size),
        )


def to_document(state: EngineState, config, saved_at: int) -> dict:
    return {
        "schema_version": SCHEMA_VERSION,
        "saved_at": saved_at,
        "ledger": state.ledger.to_dict(),
        "position": state.position.to_dict() if state.position else None,
        "limits": state.limits.to_dict(),
        "trades": state.trades.to_list(),
        "config": config.model_dump(),
    }


# ─────────────────────────────────────────────────────────────────────
# Coercion helpers
# ─────────────────────────────────────────────────────────────────────

def to_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    try:
        out = float(value)
    except (TypeError, ValueError):
        return default
    return out if math.isfinite(out) else default


def to_int(value: Any, default: int = 0) -> int:
    out = to_float(value, float(default))
    return int(out)


def _section(doc: dict, key: str) -> dict:
    value = doc.get(key)
    return value if isinstance(value, dict) else {}


def _items(doc: dict, key: str) -> list:
    value = doc.get(key)
    return value if isinstance(value, list) else []


# ─────────────────────────────────────────────────────────────────────
# Parsing (v2)
# ─────────────────────────────────────────────────────────────────────

def _parse_ledger(raw: dict, config) -> Ledger:
    start = to_float(raw.get("starting_balance"), config.start_balance)
    if start <= 0:
        start = config.start_balance
    r = _section(raw, "realized")
    c = _section(raw, "costs")
    d = Realized()
    realized = Realized(
        wins=max(0, to_int(r.get("wins"), d.wins)),
        losses=max(0, to_int(r.get("losses"), d.losses)),
        gross_profit=to_float(r.get("gross_profit"), d.gross_profit),
        gross_loss=to_float(r.get("gross_loss"), d.gross_loss),
        net_pnl=to_float(r.get("net_pnl"), d.net_pnl),
        consecutive_losses=max(0, to_int(r.get("consecutive_losses"), 0)),
    )
    costs = Costs(
        fees_paid=to_float(c.get("fees_paid")),
        slippage_cost=to_float(c.get("slippage_cost")),
        spread_cost=to_float(c.get("spread_cost")),
    )
    return Ledger(
        cash_balance=to_float(raw.get("cash_balance"), start),
        starting_balance=start,
        realized=realized,
        costs=costs,
    )


def _parse_limits(raw: dict) -> DailyLimits:
    halt_reason = raw.get("halt_reason")
    halted = bool(raw.get("halted", False))
    return DailyLimits(
        day_key=str(raw.get("day_key") or ""),
        trades_today=max(0, to_int(raw.get("trades_today"))),
        pnl_today=to_float(raw.get("pnl_today")),
        halted=halted,
        halt_reason=str(halt_reason) if halted and halt_reason else None,
        last_trade_ts=to_int(raw.get("last_trade_ts")),
        cooldown_until_ts=to_int(raw.get("cooldown_until_ts")),
    )


def _parse_position(raw: Any) -> Optional[Position]:
    if not isinstance(raw, dict):
        return None
    symbol = raw.get("symbol")
    entry = to_float(raw.get("entry_price"))
    qty = to_float(raw.get("quantity"))
    notional = to_float(raw.get("notional_usd"), entry * qty)
    if not isinstance(symbol, str) or not symbol or entry <= 0 or qty <= 0:
        logger.warning(f"[STORE] Dropping unparsable position: {raw!r}")
        return None
    strategy = profile_from_dict(raw.get("strategy")) or SCALP
    entry_ts = to_int(raw.get("entry_ts"))
    return Position(
        symbol=symbol,
        strategy=strategy,
        entry_price=entry,
        quantity=qty,
        entry_ts=entry_ts,
        expiry_ts=to_int(raw.get("expiry_ts"), entry_ts + strategy.hold_duration_ms),
        notional_usd=notional,
        entry_costs=max(0.0, to_float(raw.get("entry_costs"))),
    )


def _parse_trade(raw: Any) -> Optional[TradeRecord]:
    if not isinstance(raw, dict) or raw.get("side") not in ("BUY", "SELL"):
        return None
    exit_reason = raw.get("exit_reason")
    return TradeRecord(
        side=raw["side"],
        symbol=str(raw.get("symbol", "")),
        price=to_float(raw.get("price")),
        quantity=to_float(raw.get("quantity")),
        notional_usd=to_float(raw.get("notional_usd")),
        ts=to_int(raw.get("ts")),
        strategy=str(raw.get("strategy", "")),
        cost=to_float(raw.get("cost")),
        gross_pnl=to_float(raw.get("gross_pnl")),
        net_pnl=to_float(raw.get("net_pnl")),
        exit_fee=to_float(raw.get("exit_fee")),
        exit_reason=str(exit_reason) if exit_reason else None,
    )


# ─────────────────────────────────────────────────────────────────────
# Migration (v1 → v2)
# ─────────────────────────────────────────────────────────────────────

def _migrate_v1(doc: dict) -> dict:
    realized = _section(doc, "realized")
    costs = _section(doc, "costs")
    limits = _section(doc, "limits")
    halt_reason = limits.get("haltReason")
    if isinstance(halt_reason, str) and halt_reason.startswith("max_drawdown"):
        halt_reason = "max_drawdown"

    cash = to_float(doc.get("balance"), to_float(doc.get("startBalance")))
    position = None
    pos = doc.get("position")
    if (isinstance(pos, dict) and isinstance(pos.get("symbol"), str)
            and to_float(pos.get("entry")) > 0 and to_float(pos.get("qty")) > 0):
        position = {
            "symbol": pos.get("symbol"),
            "entry_price": pos.get("entry"),
            "quantity": pos.get("qty"),
            "entry_ts": pos.get("entryTs"),
            "notional_usd": pos.get("entryNotionalUsd"),
            "entry_costs": pos.get("entryCosts"),
        }
        # v1 never reserved the notional out of cash.
        cash -= to_float(pos.get("entryNotionalUsd"))

    trades = []
    for t in _items(doc, "trades"):
        if not isinstance(t, dict):
            continue
        trades.append({
            "side": t.get("type"),
            "symbol": t.get("symbol"),
            "price": t.get("price"),
            "quantity": t.get("qty"),
            "notional_usd": t.get("usd"),
            "ts": t.get("time"),
            "cost": t.get("cost"),
            "gross_pnl": t.get("gross"),
            "net_pnl": t.get("profit"),
            "exit_fee": t.get("fees"),
            "exit_reason": t.get("note") if t.get("type") == "SELL" else None,
        })

    return {
        "schema_version": SCHEMA_VERSION,
        "ledger": {
            "cash_balance": cash,
            "starting_balance": doc.get("startBalance"),
            "realized": {
                "wins": realized.get("wins"),
                "losses": realized.get("losses"),
                "gross_profit": realized.get("grossProfit"),
                "gross_loss": realized.get("grossLoss"),
                "net_pnl": realized.get("net"),
            },
            "costs": {
                "fees_paid": costs.get("feePaid"),
                "slippage_cost": costs.get("slippageCost"),
                "spread_cost": costs.get("spreadCost"),
            },
        },
        "position": position,
        "limits": {
            "day_key": limits.get("dayKey"),
            "trades_today": limits.get("tradesToday"),
            "halted": limits.get("halted"),
            "halt_reason": halt_reason,
            "last_trade_ts": limits.get("lastTradeTs"),
        },
        "trades": trades,
        "config": {},
    }


def schema_version(doc: dict) -> int:
    if "schema_version" in doc:
        return to_int(doc.get("schema_version"), SCHEMA_VERSION)
    return 1 if "balance" in doc or "startBalance" in doc else SCHEMA_VERSION


def state_from_document(doc: Any, config) -> tuple[EngineState, dict]:
    """
    Build EngineState from a loaded payload, back-filling missing fields.
    Returns (state, persisted_config): the caller decides which config
    fields to honour.
    """
    if not isinstance(doc, dict):
        return EngineState.fresh(config), {}
    if schema_version(doc) < 2:
        logger.info("[STORE] Migrating v1 state document")
        doc = _migrate_v1(doc)

    trades = TradeLog(maxlen=config.trade_log_size)
    for raw in _items(doc, "trades"):
        record = _parse_trade(raw)
        if record is not None:
            trades.append(record)

    state = EngineState(
        ledger=_parse_ledger(_section(doc, "ledger"), config),
        limits=_parse_limits(_section(doc, "limits")),
        trades=trades,
        position=_parse_position(doc.get("position")),
    )
    return state, _section(doc, "config")
