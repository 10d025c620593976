import json

import pytest

from derivbots.config import BotConfiguration
from derivbots.errors import TransportError
from derivbots.registry import create_bot
from derivbots.signals import TickWindow


class FakeTransport:
    def __init__(self, ready=True):
        self.sent = []
        self.is_ready = ready
        self.fail = False

    def send(self, payload):
        if self.fail:
            raise TransportError("socket gone")
        self.sent.append(payload)

    def of(self, key):
        return [p for p in self.sent if key in p]


class _Handle:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    def __init__(self):
        self.pending = []

    def call_later(self, delay, callback):
        handle = _Handle(delay, callback)
        self.pending.append(handle)
        return handle

    @property
    def live(self):
        return [h for h in self.pending if not h.cancelled]

    def fire(self):
        due = self.live
        self.pending = []
        for handle in due:
            handle.callback()
        return len(due)


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def tick_msg(quote, symbol="R_10", pip_size=None):
    tick = {"symbol": symbol, "quote": quote, "epoch": 1700000000}
    if pip_size is not None:
        tick["pip_size"] = pip_size
    return json.dumps({"msg_type": "tick", "tick": tick})


def proposal_msg(proposal_id, ask_price):
    return json.dumps({"msg_type": "proposal", "proposal": {"id": proposal_id, "ask_price": ask_price}})


def buy_msg(contract_id, buy_price=1.0):
    return json.dumps({"msg_type": "buy", "buy": {"contract_id": contract_id, "buy_price": buy_price}})


def sold_msg(contract_id, profit):
    return json.dumps({
        "msg_type": "proposal_open_contract",
        "proposal_open_contract": {
            "contract_id": contract_id,
            "is_sold": 1,
            "profit": profit,
            "status": "won" if profit > 0 else "lost",
        },
    })


def error_msg(code, msg_type="proposal", message="rejected"):
    return json.dumps({"msg_type": msg_type, "error": {"code": code, "message": message}})


def window_of(values, size=None):
    """Build a window from a most-recent-first list."""
    window = TickWindow(size or max(len(values), 1))
    for value in reversed(values):
        window.push(value)
    return window


def trade(engine, scheduler, profit, contract_id):
    """Drive one full proposal -> buy -> settlement cycle."""
    if engine.phase.value == "awaiting_signal":
        scheduler.fire()
    engine.handle_message(proposal_msg(f"p-{contract_id}", engine.risk.current_stake))
    engine.handle_message(buy_msg(contract_id))
    engine.handle_message(sold_msg(contract_id, profit))


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return BotConfiguration(initial_stake=1, take_profit=10, stop_loss=5, martingale_multiplier=2)


@pytest.fixture
def make_engine(transport, scheduler, clock, config):
    def factory(bot_id="evenbot", cfg=None, **kwargs):
        return create_bot(bot_id, transport, cfg or config, scheduler, clock=clock, **kwargs)
    return factory
