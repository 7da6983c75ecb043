"""
position.py - Position lifecycle: the single open position, exit rules
and the bounded append-only trade log.
"""

import logging
from collections import deque
from dataclasses import dataclass, asdict
from typing import Iterable, Optional

from .reasons import Reason
from .strategy import StrategyProfile

logger = logging.getLogger(__name__)


@dataclass
class Position:
    symbol: str
    strategy: StrategyProfile
    entry_price: float
    quantity: float
    entry_ts: int
    expiry_ts: int
    notional_usd: float
    entry_costs: float
    side: str = "LONG"

    def change_pct(self, price: float) -> float:
        return (price - self.entry_price) / self.entry_price

    def unrealized_pnl(self, price: float) -> float:
        return (price - self.entry_price) * self.quantity

    def to_dict(self) -> dict:
        d = asdict(self)
        d["strategy"] = self.strategy.to_dict()
        return d


def exit_reason(position: Position, price: float, now: int) -> Optional[Reason]:
    """
    Exit rule, deterministic priority: take-profit, stop-loss, expiry.
    Callers must only pass prices for position.symbol.
    """
    change = position.change_pct(price)
    if change >= position.strategy.take_profit_pct:
        return Reason.TAKE_PROFIT
    if change <= -position.strategy.stop_loss_pct:
        return Reason.STOP_LOSS
    if now >= position.expiry_ts:
        return Reason.EXPIRY
    return None


# ─────────────────────────────────────────────────────────────────────
# Trade Log
# ─────────────────────────────────────────────────────────────────────

@dataclass
class TradeRecord:
    side: str                  # BUY / SELL
    symbol: str
    price: float
    quantity: float
    notional_usd: float
    ts: int
    strategy: str
    cost: float = 0.0          # BUY: entry costs
    gross_pnl: float = 0.0     # SELL only
    net_pnl: float = 0.0       # SELL only
    exit_fee: float = 0.0      # SELL only
    exit_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class TradeLog:
    """Append-only, bounded: the oldest records fall off once full."""

    def __init__(self, maxlen: int = 800, records: Iterable[TradeRecord] = ()):
        self._records: deque[TradeRecord] = deque(records, maxlen=maxlen)

    def append(self, record: TradeRecord):
        self._records.append(record)

    def recent(self, n: int) -> list[TradeRecord]:
        if n <= 0:
            return []
        return list(self._records)[-n:]

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self):
        return iter(self._records)

    def to_list(self) -> list[dict]:
        return [r.to_dict() for r in self._records]
