import pytest

from conftest import BASE_TS
from paper_engine.config import EngineConfig
from paper_engine.ledger import Ledger
from paper_engine.position import Position, TradeRecord
from paper_engine.risk import DailyLimits
from paper_engine.state import (
    SCHEMA_VERSION, EngineState, schema_version, state_from_document, to_document,
)
from paper_engine.strategy import SCALP, TREND


@pytest.fixture
def cfg():
    return EngineConfig(start_balance=50_000.0, trade_log_size=10)


def _state(cfg):
    state = EngineState.fresh(cfg)
    state.ledger.cash_balance = 48_997.6
    state.ledger.realized.wins = 3
    state.ledger.realized.net_pnl = 12.5
    state.ledger.costs.fees_paid = 4.2
    state.limits = DailyLimits(day_key="2023-11-15", trades_today=4,
                               last_trade_ts=BASE_TS, cooldown_until_ts=BASE_TS + 5)
    state.position = Position(
        symbol="ETHUSDT", strategy=TREND, entry_price=2_000.0, quantity=0.5,
        entry_ts=BASE_TS, expiry_ts=BASE_TS + TREND.hold_duration_ms,
        notional_usd=1_000.0, entry_costs=2.4,
    )
    state.trades.append(TradeRecord(
        side="BUY", symbol="ETHUSDT", price=2_000.0, quantity=0.5,
        notional_usd=1_000.0, ts=BASE_TS, strategy="Trend", cost=2.4,
    ))
    return state


def test_document_restores_state(cfg):
    state = _state(cfg)
    doc = to_document(state, cfg, saved_at=BASE_TS)
    assert doc["schema_version"] == SCHEMA_VERSION
    assert doc["config"]["start_balance"] == 50_000.0

    restored, persisted_cfg = state_from_document(doc, cfg)
    assert restored.ledger == state.ledger
    assert restored.limits == state.limits
    assert restored.position == state.position
    assert list(restored.trades) == list(state.trades)
    assert persisted_cfg["trade_log_size"] == 10


def test_missing_fields_are_back_filled(cfg):
    restored, persisted_cfg = state_from_document({"schema_version": 2}, cfg)
    assert restored.ledger == Ledger.fresh(50_000.0)
    assert restored.limits == DailyLimits()
    assert restored.position is None
    assert len(restored.trades) == 0
    assert persisted_cfg == {}


def test_garbage_values_are_coerced(cfg):
    doc = {
        "schema_version": 2,
        "ledger": {"cash_balance": "lots", "starting_balance": -5,
                   "realized": {"wins": "x", "losses": -3, "net_pnl": None}},
        "limits": {"trades_today": "7", "halted": True, "halt_reason": "max_drawdown"},
        "trades": "not a list",
        "config": ["nope"],
    }
    restored, persisted_cfg = state_from_document(doc, cfg)
    assert restored.ledger.starting_balance == 50_000.0
    assert restored.ledger.cash_balance == 50_000.0
    assert restored.ledger.realized.wins == 0
    assert restored.ledger.realized.losses == 0
    assert restored.limits.trades_today == 7
    assert restored.limits.halted
    assert restored.limits.halt_reason == "max_drawdown"
    assert persisted_cfg == {}


def test_unparsable_position_is_dropped(cfg):
    doc = {"schema_version": 2,
           "position": {"symbol": "BTCUSDT", "entry_price": 0, "quantity": 1}}
    restored, _ = state_from_document(doc, cfg)
    assert restored.position is None


def test_trade_log_is_bounded_on_load(cfg):
    trades = [{"side": "BUY", "symbol": "BTCUSDT", "price": 1, "quantity": 1,
               "notional_usd": 1, "ts": i} for i in range(25)]
    trades.append({"side": "HOLD"})
    restored, _ = state_from_document({"schema_version": 2, "trades": trades}, cfg)
    assert len(restored.trades) == 10
    assert [t.ts for t in restored.trades] == list(range(15, 25))


def test_non_dict_payload_gives_fresh_state(cfg):
    restored, persisted_cfg = state_from_document([1, 2, 3], cfg)
    assert restored.ledger.cash_balance == 50_000.0
    assert persisted_cfg == {}


def test_v1_document_is_migrated(cfg):
    legacy = {
        "balance": 99_000.0,
        "startBalance": 100_000.0,
        "realized": {"wins": 2, "losses": 1, "grossProfit": 8.0,
                     "grossLoss": -3.0, "net": 5.0},
        "costs": {"feePaid": 2.5, "slippageCost": 0.8, "spreadCost": 0.6},
        "limits": {"dayKey": "2024-01-01", "tradesToday": 3, "halted": True,
                   "haltReason": "max_drawdown:26.0%", "lastTradeTs": 1_704_067_200_000},
        "position": {"symbol": "BTCUSDT", "entry": 50_000.0, "qty": 0.02,
                     "entryTs": 1_704_067_200_000, "entryNotionalUsd": 1_000.0,
                     "entryCosts": 2.4},
        "trades": [
            {"time": 1_704_067_200_000, "symbol": "BTCUSDT", "type": "BUY",
             "price": 50_000.0, "qty": 0.02, "usd": 1_000.0, "cost": 2.4},
            {"time": 1_704_067_100_000, "symbol": "ETHUSDT", "type": "SELL",
             "price": 2_000.0, "qty": 0.5, "usd": 1_000.0, "profit": 5.0,
             "gross": 8.0, "fees": 1.0, "note": "take_profit"},
        ],
    }
    assert schema_version(legacy) == 1

    restored, persisted_cfg = state_from_document(legacy, cfg)
    ledger = restored.ledger
    assert ledger.starting_balance == 100_000.0
    assert ledger.cash_balance == pytest.approx(98_000.0)
    assert ledger.realized.wins == 2
    assert ledger.realized.net_pnl == 5.0
    assert ledger.costs.fees_paid == 2.5

    limits = restored.limits
    assert limits.day_key == "2024-01-01"
    assert limits.trades_today == 3
    assert limits.halt_reason == "max_drawdown"

    pos = restored.position
    assert pos.symbol == "BTCUSDT"
    assert pos.notional_usd == 1_000.0
    assert pos.strategy == SCALP
    assert pos.expiry_ts == 1_704_067_200_000 + SCALP.hold_duration_ms

    buy, sell = list(restored.trades)
    assert buy.side == "BUY" and buy.cost == 2.4
    assert sell.exit_reason == "take_profit"
    assert sell.net_pnl == 5.0
    assert persisted_cfg == {}


def test_v1_invalid_position_keeps_cash(cfg):
    legacy = {"balance": 1_000.0, "startBalance": 1_000.0,
              "position": {"symbol": "BTCUSDT", "entry": 0, "entryNotionalUsd": 500}}
    restored, _ = state_from_document(legacy, cfg)
    assert restored.position is None
    assert restored.ledger.cash_balance == 1_000.0
