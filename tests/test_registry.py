import pytest

from derivbots import registry
from derivbots.engine import RunState, TradeEngine
from derivbots.errors import ConfigurationError, UnknownStrategyError

from conftest import FakeTransport, ManualScheduler

ALL_BOTS = [
    "DIFFERbot", "evenbot", "evenoddbot", "higherlowerbot", "notouchbot", "oddbot",
    "overbot", "overunderbot", "risefallbot", "touchbot", "underbot",
]


def test_catalogue():
    assert registry.available() == sorted(ALL_BOTS)


@pytest.mark.parametrize("bot_id", ALL_BOTS)
def test_every_bot_builds_idle(bot_id, config):
    engine = registry.create_bot(bot_id, FakeTransport(), config, ManualScheduler())
    assert isinstance(engine, TradeEngine)
    assert engine.run_state is RunState.IDLE
    assert not engine.is_running
    for name in ("start", "stop", "handle_message", "set_update_callback"):
        assert callable(getattr(engine, name))


def test_unknown_bot_fails_fast(config):
    with pytest.raises(UnknownStrategyError):
        registry.create_bot("moonbot", FakeTransport(), config, ManualScheduler())


def test_bad_configuration_fails_at_construction():
    with pytest.raises(ConfigurationError):
        registry.create_bot("evenbot", FakeTransport(), {"initialStake": "1"}, ManualScheduler())


def test_mapping_configuration_is_parsed():
    engine = registry.create_bot("evenbot", FakeTransport(), {
        "initialStake": "1.5", "takeProfit": "10", "stopLoss": "5", "martingaleMultiplier": "2",
    }, ManualScheduler())
    assert engine.risk.current_stake == 1.5


def test_only_evenodd_escalates(config):
    evenodd = registry.create_bot("evenoddbot", FakeTransport(), config, ManualScheduler())
    even = registry.create_bot("evenbot", FakeTransport(), config, ManualScheduler())
    assert evenodd.risk.escalation is not None
    assert evenodd.risk.escalation.increment == 0.1
    assert even.risk.escalation is None


def test_profiles_carry_market_constants():
    touch = registry.get_profile("touchbot")
    assert (touch.symbol, touch.window_size, touch.duration, touch.retry_delay) == ("R_100", 15, 5, 0.1)
    assert registry.get_profile("overunderbot").symbol == "R_50"
