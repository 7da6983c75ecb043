"""
ledger.py - Accounting Ledger: cash, realized win/loss totals, transaction costs.
The only place cash_balance is mutated.
"""

import logging
from dataclasses import dataclass, field, asdict

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# Cost Model
# ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EntryCosts:
    fee: float
    spread: float
    slippage: float

    @property
    def total(self) -> float:
        return self.fee + self.spread + self.slippage


def quote_entry_costs(notional: float, config) -> EntryCosts:
    """Fee + half-spread crossing + slippage paid when opening `notional`."""
    return EntryCosts(
        fee=notional * config.fee_rate,
        spread=notional * config.spread_bp / 10_000,
        slippage=notional * config.slippage_bp / 10_000,
    )


def exit_fee(exit_notional: float, config) -> float:
    return exit_notional * config.fee_rate


def round_trip_cost(notional: float, config) -> float:
    """Entry fee + spread + slippage + exit fee, all on the same notional."""
    return quote_entry_costs(notional, config).total + exit_fee(notional, config)


# ─────────────────────────────────────────────────────────────────────
# Ledger
# ─────────────────────────────────────────────────────────────────────

@dataclass
class Realized:
    wins: int = 0
    losses: int = 0
    gross_profit: float = 0.0
    gross_loss: float = 0.0        # negative
    net_pnl: float = 0.0
    consecutive_losses: int = 0


@dataclass
class Costs:
    fees_paid: float = 0.0
    slippage_cost: float = 0.0
    spread_cost: float = 0.0

    @property
    def total(self) -> float:
        return self.fees_paid + self.slippage_cost + self.spread_cost


@dataclass
class Ledger:
    cash_balance: float
    starting_balance: float
    realized: Realized = field(default_factory=Realized)
    costs: Costs = field(default_factory=Costs)

    @classmethod
    def fresh(cls, starting_balance: float) -> "Ledger":
        return cls(cash_balance=starting_balance, starting_balance=starting_balance)

    def reserve(self, notional: float, costs: EntryCosts):
        """Open: reserve the notional and pay entry costs out of cash."""
        self.costs.fees_paid += costs.fee
        self.costs.spread_cost += costs.spread
        self.costs.slippage_cost += costs.slippage
        self.cash_balance -= notional + costs.total

    def settle(self, notional: float, gross_pnl: float,
               entry_costs: float, fee: float) -> float:
        """
        Close: release the reserved notional plus sale proceeds net of the
        exit fee. Returns net PnL of the round trip (entry costs included).
        """
        net = gross_pnl - entry_costs - fee
        self.costs.fees_paid += fee
        self.cash_balance += notional + gross_pnl - fee

        r = self.realized
        r.net_pnl += net
        if net >= 0:
            r.wins += 1
            r.gross_profit += net
            r.consecutive_losses = 0
        else:
            r.losses += 1
            r.gross_loss += net
            r.consecutive_losses += 1
        logger.debug(f"[LEDGER] settle net={net:.4f} cash={self.cash_balance:.2f}")
        return net

    def equity(self, reserved: float = 0.0, unrealized: float = 0.0) -> float:
        return self.cash_balance + reserved + unrealized

    def drawdown(self, equity: float) -> float:
        if self.starting_balance <= 0:
            return 0.0
        return (self.starting_balance - equity) / self.starting_balance

    def to_dict(self) -> dict:
        return asdict(self)
