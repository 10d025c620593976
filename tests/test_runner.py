import asyncio
import threading
import time
from datetime import datetime

import pytest

from derivbots import runner as runner_module
from derivbots.billing import OpenEntitlements, StaticEntitlements
from derivbots.config import BotConfiguration, Settings
from derivbots.errors import (
    AlreadyRunningError, AuthorizationError, NotEntitledError, TransportError, UnknownStrategyError,
)
from derivbots.journal import TradeJournal
from derivbots.publisher import BotSnapshot, TradeRecord
from derivbots.runner import BotRunner, backoff
from derivbots.store import KeyValueStore

CONFIG = BotConfiguration(initial_stake=1, take_profit=10, stop_loss=5, martingale_multiplier=2)

WIN = BotSnapshot(
    current_stake=1.0, total_profit=10.0, total_trades=1, win_rate="100.00",
    consecutive_losses=0, running_time="00:00:03",
    trade_history=(TradeRecord(datetime(2026, 3, 1), 1.0, "win", 10.0, "EVEN"),),
    progress_to_target="100.00", progress_in_range="100.00",
)


class FakeSession:
    def __init__(self, outcome, on_update):
        self.outcome = outcome
        self.on_update = on_update
        self.entered = threading.Event()
        self.engine = None
        self._stopped = None

    def stop(self):
        self._stopped.set()

    async def run(self):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        if self.outcome == "drop_after_trading":
            self.engine = object()
            raise TransportError("dropped mid-run")
        if self.outcome in ("wait", "linger"):
            self._stopped = asyncio.Event()
            self.entered.set()
            await self._stopped.wait()
            if self.outcome == "linger":
                # slow shutdown, like flushing the writer
                await asyncio.sleep(0.3)
            return "user"
        self.on_update(WIN)
        return self.outcome


class SessionFactory:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.created = []

    def __call__(self, settings, bot_id, config, on_update=None):
        outcome = self.outcomes.pop(0) if self.outcomes else "take_profit"
        session = FakeSession(outcome, on_update)
        self.created.append(session)
        return session


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(runner_module, "backoff", lambda attempt: 0)


@pytest.fixture
def store(tmp_path):
    return KeyValueStore(str(tmp_path / "store.json"))


def make_runner(store, factory, gate=None, journal=None, reconnect=True):
    return BotRunner(Settings(reconnect=reconnect), store, gate or OpenEntitlements(),
                     journal=journal, session_factory=factory)


def test_backoff_grows_and_caps():
    assert [backoff(n) for n in (1, 2, 5, 12, 30)] == [5, 10, 25, 60, 60]


def test_run_to_take_profit(store, tmp_path):
    journal = TradeJournal(str(tmp_path / "journal.csv"))
    runner = make_runner(store, SessionFactory("take_profit"), journal=journal)
    runner.start("evenbot", CONFIG, "alice")
    runner.join(5)

    status = runner.status()
    assert status["running"] is False
    assert status["stopReason"] == "take_profit"
    assert status["totalProfit"] == 10.0
    assert store.running_bot() is None
    assert store.load_config("evenbot") == CONFIG.to_dict()
    assert journal.summary()["trades"] == 1


def test_transport_failure_reconnects(store):
    factory = SessionFactory(TransportError("dropped"), "stop_loss")
    runner = make_runner(store, factory)
    runner.start("evenbot", CONFIG)
    runner.join(5)
    assert len(factory.created) == 2
    assert runner.stop_reason == "stop_loss"


def test_no_reconnect_when_disabled(store):
    factory = SessionFactory(ConnectionError("reset"), "take_profit")
    runner = make_runner(store, factory, reconnect=False)
    runner.start("evenbot", CONFIG)
    runner.join(5)
    assert len(factory.created) == 1
    assert runner.stop_reason == "transport"
    assert runner.status()["error"] == "reset"


def test_refused_run_is_not_retried(store):
    factory = SessionFactory(AuthorizationError("InvalidToken"))
    runner = make_runner(store, factory)
    runner.start("evenbot", CONFIG)
    runner.join(5)
    assert len(factory.created) == 1
    assert runner.stop_reason == "refused"


def test_stop_is_marshalled_onto_bot_loop(store):
    factory = SessionFactory("wait")
    runner = make_runner(store, factory)
    runner.start("evenbot", CONFIG)
    assert _wait_for(lambda: factory.created and factory.created[0].entered.is_set())
    assert store.running_bot() == "evenbot"

    with pytest.raises(AlreadyRunningError):
        runner.start("oddbot", CONFIG)

    assert runner.stop() is True
    runner.join(5)
    assert runner.stop_reason == "user"
    assert runner.stop() is False
    assert store.running_bot() is None


def test_restart_while_previous_run_winds_down(store):
    factory = SessionFactory("linger", "wait")
    runner = make_runner(store, factory)
    runner.start("evenbot", CONFIG)
    assert _wait_for(lambda: factory.created and factory.created[0].entered.is_set())
    first = runner._thread

    assert runner.stop() is True
    runner.start("oddbot", CONFIG)
    assert _wait_for(lambda: len(factory.created) == 2 and factory.created[1].entered.is_set())
    first.join(5)
    assert not first.is_alive()

    status = runner.status()
    assert status["running"] is True
    assert status["bot"] == "oddbot"
    assert store.running_bot() == "oddbot"

    assert runner.stop() is True
    runner.join(5)
    assert runner.stop_reason == "user"
    assert store.running_bot() is None


def test_backoff_restarts_after_a_session_that_traded(store, monkeypatch):
    waits = []
    monkeypatch.setattr(runner_module, "backoff", lambda attempt: waits.append(attempt) or 0)

    runner = make_runner(store, SessionFactory("drop_after_trading", "drop_after_trading", "take_profit"))
    runner.start("evenbot", CONFIG)
    runner.join(5)
    assert waits == [1, 1]

    waits.clear()
    runner = make_runner(store, SessionFactory(TransportError("a"), TransportError("b"), "take_profit"))
    runner.start("evenbot", CONFIG)
    runner.join(5)
    assert waits == [1, 2]
    assert runner.stop_reason == "take_profit"


def test_gate_and_unknown_bot_checked_before_start(store):
    runner = make_runner(store, SessionFactory(), gate=StaticEntitlements())
    with pytest.raises(NotEntitledError):
        runner.start("evenbot", CONFIG, "mallory")
    with pytest.raises(UnknownStrategyError):
        runner.start("moonbot", CONFIG, "mallory")
    assert runner.active is False


def test_resume_restarts_saved_bot(store):
    store.save_config("oddbot", CONFIG.to_dict())
    store.save_running("oddbot")
    factory = SessionFactory("take_profit")
    runner = make_runner(store, factory)
    assert runner.resume() is True
    runner.join(5)
    assert runner.bot_id == "oddbot"
    assert len(factory.created) == 1


def test_resume_with_broken_config_clears_state(store):
    store.save_config("oddbot", {"initialStake": "-1"})
    store.save_running("oddbot")
    runner = make_runner(store, SessionFactory())
    assert runner.resume() is False
    assert store.running_bot() is None


def test_resume_without_saved_state(store):
    assert make_runner(store, SessionFactory()).resume() is False


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False
