"""
Performance ledger tests: P&L, rolling risk metrics, projections and persistence.
"""
from datetime import datetime, timedelta

import pytest

from persona_trader.agents.schemas import PortfolioSnapshot, TradeAction, TradeOutcome
from persona_trader.analytics.performance import (
    LeaderboardMetric,
    PerformanceLedger,
    Timeframe,
    compute_risk_metrics,
)
from persona_trader.analytics.store import InMemoryLedgerStore, JsonlLedgerStore
from persona_trader.config import PnLConvention
from persona_trader.errors import PersistenceError

from fakes import FixedClock, make_decision


T0 = datetime(2025, 3, 3, 15, 30)
SNAPSHOT = PortfolioSnapshot(total_value=100_000, buying_power=80_000)


class FlakyStore(InMemoryLedgerStore):
    """Fails the first N appends."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def append(self, agent_id, events):
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise PersistenceError(agent_id, "disk full")
        super().append(agent_id, events)


def ledger(clock=None, **kwargs) -> PerformanceLedger:
    return PerformanceLedger(clock=clock or FixedClock(T0), **kwargs)


def executed_at(price: float, fees: float = 0.0) -> TradeOutcome:
    return TradeOutcome(executed=True, execution_price=price, execution_time=T0 + timedelta(minutes=5), fees=fees)


def record_trade(book: PerformanceLedger, agent_id: str, entry: float, exit_: float,
                 action: TradeAction = TradeAction.BUY, qty: int = 10, fees: float = 0.0) -> str:
    decision = make_decision(action=action, quantity=qty, reference_price=entry, agent_id=agent_id)
    decision_id = book.record_decision(agent_id, decision, SNAPSHOT)
    assert book.update_outcome(agent_id, decision_id, executed_at(exit_, fees))
    return decision_id


class TestTradePerformance:
    """Per-trade P&L."""

    def test_buy_profit(self):
        """BUY 10 @ $100, filled at $110 with $1 fees -> P&L 99, return 9.9%."""
        book = ledger()
        decision_id = record_trade(book, "agent-a", entry=100.0, exit_=110.0, fees=1.0)

        record = book.get_record("agent-a")
        perf = record.find_decision(decision_id).performance
        assert perf.profit_loss == pytest.approx(99.0)
        assert perf.return_percentage == pytest.approx(9.9)
        assert perf.risk == pytest.approx(9.9)
        assert perf.invested_amount == pytest.approx(1_000.0)
        assert perf.holding_period_seconds == 300.0
        assert record.successful_trades == 1
        assert record.total_return == pytest.approx(99.0)

    def test_uniform_sell_convention(self):
        """UNIFORM applies (exit - entry) to a SELL as well."""
        book = ledger(pnl_convention=PnLConvention.UNIFORM)
        decision_id = record_trade(book, "agent-a", entry=100.0, exit_=90.0, action=TradeAction.SELL)
        perf = book.get_record("agent-a").find_decision(decision_id).performance
        assert perf.profit_loss == pytest.approx(-100.0)

    def test_directional_sell_convention(self):
        """DIRECTIONAL flips the price leg for a SELL."""
        book = ledger(pnl_convention=PnLConvention.DIRECTIONAL)
        decision_id = record_trade(book, "agent-a", entry=100.0, exit_=90.0, action=TradeAction.SELL, fees=2.0)
        perf = book.get_record("agent-a").find_decision(decision_id).performance
        assert perf.profit_loss == pytest.approx(98.0)

    def test_zero_invested_amount(self):
        """A zero-quantity record yields a 0% return instead of dividing by zero."""
        book = ledger()
        decision_id = record_trade(book, "agent-a", entry=100.0, exit_=110.0, qty=0)
        perf = book.get_record("agent-a").find_decision(decision_id).performance
        assert perf.return_percentage == 0.0
        assert perf.risk == 0.0


class TestOutcomeUpdates:
    """Outcome idempotence and unknown ids."""

    def test_not_executed_changes_no_counters(self):
        """executed=False stores the outcome and leaves counters untouched."""
        book = ledger()
        decision_id = book.record_decision("agent-a", make_decision(agent_id="agent-a"), SNAPSHOT)
        before = book.get_record("agent-a")

        assert book.update_outcome("agent-a", decision_id, TradeOutcome(executed=False, error="shadow"))

        after = book.get_record("agent-a")
        assert after.successful_trades == before.successful_trades == 0
        assert after.failed_trades == 0
        assert after.total_return == 0.0
        assert after.risk_metrics == before.risk_metrics
        assert after.find_decision(decision_id).performance is None

    def test_second_outcome_rejected(self):
        """An outcome can be attached only once."""
        book = ledger()
        decision_id = record_trade(book, "agent-a", entry=100.0, exit_=110.0)
        assert book.update_outcome("agent-a", decision_id, executed_at(50.0)) is False
        assert book.get_record("agent-a").total_return == pytest.approx(100.0)

    def test_unknown_decision(self):
        """Unknown agent or decision ids return False."""
        book = ledger()
        assert book.update_outcome("ghost", "nope", executed_at(1.0)) is False
        book.record_decision("agent-a", make_decision(agent_id="agent-a"), SNAPSHOT)
        assert book.update_outcome("agent-a", "nope", executed_at(1.0)) is False

    def test_decision_id_format(self):
        """Record ids carry the agent id and a millisecond timestamp."""
        book = ledger()
        decision_id = book.record_decision("agent-a", make_decision(agent_id="agent-a"), SNAPSHOT)
        agent, millis, suffix = decision_id.rsplit("_", 2)
        assert agent == "agent-a"
        assert millis.isdigit()
        assert len(suffix) == 9

    def test_reads_return_copies(self):
        """Mutating a returned record does not change the ledger."""
        book = ledger()
        book.record_decision("agent-a", make_decision(agent_id="agent-a"), SNAPSHOT)
        copy = book.get_record("agent-a")
        copy.decisions.clear()
        assert len(book.get_record("agent-a").decisions) == 1


class TestRiskMetrics:
    """Rolling metrics over executed trades."""

    def test_zero_variance_sharpe(self):
        """Identical returns give volatility 0 and Sharpe 0."""
        metrics = compute_risk_metrics([5.0, 5.0, 5.0])
        assert metrics.volatility == 0.0
        assert metrics.sharpe_ratio == 0.0
        assert metrics.win_rate == 100.0

    def test_sharpe_uses_population_std(self):
        """Sharpe = (mean - rf) / population std."""
        metrics = compute_risk_metrics([10.0, 0.0], risk_free_rate=2.0)
        assert metrics.volatility == pytest.approx(5.0)
        assert metrics.sharpe_ratio == pytest.approx((5.0 - 2.0) / 5.0)

    def test_max_drawdown_over_cumulative_returns(self):
        """Peak 10 then trough -5 gives a drawdown of 15."""
        metrics = compute_risk_metrics([10.0, -5.0, -10.0, 3.0])
        assert metrics.max_drawdown == pytest.approx(15.0)

    def test_drawdown_peak_starts_at_zero(self):
        """An initial loss counts as drawdown from 0."""
        assert compute_risk_metrics([-4.0]).max_drawdown == pytest.approx(4.0)

    def test_empty(self):
        """No trades -> all zeros."""
        metrics = compute_risk_metrics([])
        assert (metrics.sharpe_ratio, metrics.max_drawdown, metrics.volatility, metrics.win_rate) == (0, 0, 0, 0)

    def test_win_rate_bounds(self):
        """Win rate stays in [0, 100] and counts only profitable trades."""
        book = ledger()
        record_trade(book, "agent-a", 100.0, 110.0)
        record_trade(book, "agent-a", 100.0, 90.0)
        record_trade(book, "agent-a", 100.0, 100.0)
        record_trade(book, "agent-a", 100.0, 120.0)
        metrics = book.get_record("agent-a").risk_metrics
        assert 0.0 <= metrics.win_rate <= 100.0
        assert metrics.win_rate == pytest.approx(50.0)


class TestProjections:
    """Timeframe views, comparative summary and leaderboard."""

    def test_timeframe_filters_old_decisions(self):
        """7d view excludes a trade recorded ten days earlier."""
        clock = FixedClock(T0)
        book = ledger(clock=clock)
        record_trade(book, "agent-a", 100.0, 110.0)
        clock.now = T0 + timedelta(days=10)
        record_trade(book, "agent-a", 100.0, 95.0)

        week = book.get_agent_performance("agent-a", Timeframe.SEVEN_DAYS)
        everything = book.get_agent_performance("agent-a", Timeframe.ALL)

        assert week.summary.total_decisions == 1
        assert week.summary.total_return == pytest.approx(-50.0)
        assert everything.summary.total_decisions == 2
        assert everything.summary.total_return == pytest.approx(50.0)
        assert len(week.daily_performance) == 8

    def test_unknown_agent_performance(self):
        """Agents without records have no performance."""
        assert ledger().get_agent_performance("nobody") is None

    def test_comparative_sorted_by_return(self):
        """Comparative view lists agents by total return, best first."""
        book = ledger()
        record_trade(book, "agent-a", 100.0, 101.0)
        record_trade(book, "agent-b", 100.0, 150.0)
        book.record_decision("agent-c", make_decision(agent_id="agent-c", action=TradeAction.HOLD), SNAPSHOT)

        comparative = book.get_comparative_performance()

        assert [e.agent_id for e in comparative.agents] == ["agent-b", "agent-a", "agent-c"]
        assert comparative.summary.total_agents == 3
        assert comparative.summary.total_decisions == 3
        assert comparative.summary.total_trades == 2
        assert comparative.timeframe == Timeframe.THIRTY_DAYS

    def test_leaderboard_by_decisions(self):
        """Leaderboard ranks by the requested metric starting at 1."""
        book = ledger()
        record_trade(book, "agent-a", 100.0, 150.0)
        for _ in range(3):
            book.record_decision("agent-b", make_decision(agent_id="agent-b"), SNAPSHOT)

        board = book.get_leaderboard(LeaderboardMetric.TOTAL_DECISIONS)

        assert [(e.rank, e.agent_id) for e in board.leaderboard] == [(1, "agent-b"), (2, "agent-a")]

    def test_leaderboard_unknown_metric_falls_back(self):
        """Unknown metrics rank by total return."""
        book = ledger()
        record_trade(book, "agent-a", 100.0, 90.0)
        record_trade(book, "agent-b", 100.0, 110.0)
        board = book.get_leaderboard("vibes")
        assert board.metric == LeaderboardMetric.TOTAL_RETURN
        assert board.leaderboard[0].agent_id == "agent-b"


class TestPersistence:
    """Event log persistence and recovery."""

    def test_failed_write_retried(self):
        """A failed append keeps the event queued; the next mutation flushes both."""
        store = FlakyStore(failures=1)
        book = ledger(store=store)

        book.record_decision("agent-a", make_decision(agent_id="agent-a"), SNAPSHOT)
        assert book.pending_events("agent-a") == 1
        assert store.load_all() == {}

        book.record_decision("agent-a", make_decision(agent_id="agent-a"), SNAPSHOT)
        assert book.pending_events("agent-a") == 0
        assert len(store.load_all()["agent-a"]) == 2

    def test_jsonl_replay(self, tmp_path):
        """A fresh ledger rebuilds state from the JSONL event log."""
        store = JsonlLedgerStore(str(tmp_path / "ledger"))
        book = ledger(store=store)
        decision_id = record_trade(book, "agent-a", 100.0, 110.0, fees=1.0)
        book.record_decision("agent-a", make_decision(agent_id="agent-a"), SNAPSHOT)
        book.observe_portfolio("agent-a", 120_000)

        restored = ledger(store=JsonlLedgerStore(str(tmp_path / "ledger")))
        assert restored.load() == 1

        record = restored.get_record("agent-a")
        assert record.total_decisions == 2
        assert record.successful_trades == 1
        assert record.total_return == pytest.approx(99.0)
        assert record.find_decision(decision_id).performance.return_percentage == pytest.approx(9.9)
        assert restored.high_water_mark("agent-a") == 120_000

    def test_replayed_duplicate_decision_counted_once(self, tmp_path):
        """A decision event written twice by a retried batch is applied once."""
        store = JsonlLedgerStore(str(tmp_path / "ledger"))
        book = ledger(store=store)
        decision_id = record_trade(book, "agent-a", 100.0, 110.0)

        path = tmp_path / "ledger" / "agent-a.jsonl"
        lines = path.read_text().splitlines(keepends=True)
        with open(path, "a") as f:
            f.writelines(lines)

        restored = ledger(store=JsonlLedgerStore(str(tmp_path / "ledger")))
        restored.load()
        record = restored.get_record("agent-a")
        assert record.total_decisions == 1
        assert len(record.decisions) == 1
        assert record.successful_trades == 1
        assert record.total_return == pytest.approx(100.0)
        assert record.find_decision(decision_id).outcome.executed is True
        assert sum(b.decisions for b in record.daily_performance.values()) == 1

    def test_high_water_mark_only_rises(self):
        """observe_portfolio keeps the maximum value seen."""
        book = ledger()
        assert book.observe_portfolio("agent-a", 100_000) == 100_000
        assert book.observe_portfolio("agent-a", 90_000) == 100_000
        assert book.observe_portfolio("agent-a", 105_000) == 105_000
        assert book.high_water_mark("agent-a") == 105_000
