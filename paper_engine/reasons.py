"""
reasons.py - Closed decision/reason vocabulary.
Codes drive control flow and persistence; the text table is presentation only.
"""

from enum import Enum


class Decision(str, Enum):
    WAIT = "WAIT"
    BUY = "BUY"
    SELL = "SELL"


class SignalReason(str, Enum):
    COLLECTING = "collecting_more_data"
    WARMUP = "warmup"
    TREND_UNCLEAR = "trend_unclear"
    TOO_NOISY = "too_noisy"
    EDGE_DETECTED = "edge_detected"


class Reason(str, Enum):
    BOOT = "boot"
    # Entry gates, in pipeline order
    HALTED = "halted"
    POSITION_OPEN = "position_open"
    WARMUP = "warmup"
    LOSS_STREAK_COOLDOWN = "loss_streak_cooldown"
    COOLDOWN = "cooldown"
    MAX_TRADES_TODAY = "max_trades_today"
    INSUFFICIENT_CASH = "insufficient_cash"
    COST_UNPROFITABLE = "cost_unprofitable"
    NO_STRATEGY = "no_strategy"
    # Outcomes
    ENTERED_LONG = "entered_long"
    HOLDING = "holding"
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    EXPIRY = "expiry"
    RESET = "reset"


class HaltReason(str, Enum):
    MAX_DRAWDOWN = "max_drawdown"
    DAILY_LOSS = "daily_loss"


# Halts that a new UTC day clears. MAX_DRAWDOWN needs hard_reset().
DAY_SCOPED_HALTS = frozenset({HaltReason.DAILY_LOSS})


REASON_TEXT = {
    Reason.BOOT: "Engine booted, waiting for prices",
    Reason.HALTED: "Trading halted by a safety stop",
    Reason.POSITION_OPEN: "Managing the open position",
    Reason.WARMUP: "Warming up: collecting enough ticks",
    Reason.LOSS_STREAK_COOLDOWN: "Cooling down after a losing streak",
    Reason.COOLDOWN: "Waiting between trades",
    Reason.MAX_TRADES_TODAY: "Daily trade limit reached",
    Reason.INSUFFICIENT_CASH: "Not enough cash for a minimum-size trade",
    Reason.COST_UNPROFITABLE: "Profit target cannot cover fees, spread and slippage",
    Reason.NO_STRATEGY: "No strategy profile matches current signals",
    Reason.ENTERED_LONG: "Entered a long position",
    Reason.HOLDING: "Holding: no exit condition met",
    Reason.TAKE_PROFIT: "Take-profit hit",
    Reason.STOP_LOSS: "Stop-loss hit",
    Reason.EXPIRY: "Position held for its full duration",
    Reason.RESET: "Paper wallet reset",
}

SIGNAL_TEXT = {
    SignalReason.COLLECTING: "Collecting more data",
    SignalReason.WARMUP: "Warming up",
    SignalReason.TREND_UNCLEAR: "Trend unclear",
    SignalReason.TOO_NOISY: "Market too noisy",
    SignalReason.EDGE_DETECTED: "Trend edge detected",
}


def describe(reason) -> str:
    """Human-readable text for a Reason/SignalReason (or its raw value)."""
    for enum_cls, table in ((Reason, REASON_TEXT), (SignalReason, SIGNAL_TEXT)):
        try:
            return table[enum_cls(reason)]
        except (ValueError, KeyError):
            continue
    return str(reason)
