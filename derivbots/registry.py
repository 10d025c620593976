"""Bot catalogue: strategy id -> profile -> engine instance."""
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

from .config import BotConfiguration
from .engine import TradeEngine
from .errors import UnknownStrategyError
from .signals import (
    DifferStrategy, FixedStrategy, HigherLowerStrategy, OverUnderStrategy,
    ParityStrategy, RiseFallStrategy, SignalStrategy, TrendVoteStrategy,
)

FORGET_DEFAULT = ("ticks", "proposal", "proposal_open_contract")


@dataclass(frozen=True)
class StrategyProfile:
    bot_id: str
    name: str
    symbol: str
    strategy: Callable[..., SignalStrategy] = field(repr=False)
    window_size: int = 10
    duration: int = 1
    duration_unit: str = "t"
    retry_delay: float = 1.0       # seconds before re-asking a silent strategy
    cooldown: float = 1.0          # seconds between a settlement and the next attempt
    escalation_threshold: Optional[int] = None
    escalation_increment: float = 0.0
    forget: Tuple[str, ...] = FORGET_DEFAULT
    description: str = ""


PROFILES = {p.bot_id: p for p in (
    StrategyProfile(
        "evenbot", "Even Bot", "R_10",
        lambda **kw: FixedStrategy("DIGITEVEN", label="EVEN"),
        description="Always trades even digits",
    ),
    StrategyProfile(
        "oddbot", "Odd Bot", "R_10",
        lambda **kw: FixedStrategy("DIGITODD", label="ODD"),
        description="Always trades odd digits",
    ),
    StrategyProfile(
        "overbot", "High Risk Over Bot", "R_10",
        lambda **kw: FixedStrategy("DIGITOVER", barrier=4),
        description="Digits over 4",
    ),
    StrategyProfile(
        "underbot", "High Risk Under Bot", "R_100",
        lambda **kw: FixedStrategy("DIGITUNDER", barrier=5),
        description="Digits under 5",
    ),
    StrategyProfile(
        "evenoddbot", "Even Odd Bot", "R_75",
        lambda **kw: ParityStrategy(trend_cutoff=0.3, flip_after=2),
        escalation_threshold=2, escalation_increment=0.1,
        description="Even/odd bias with streak-driven side switching",
    ),
    StrategyProfile(
        "overunderbot", "Over Under Bot", "R_50",
        lambda **kw: OverUnderStrategy(barriers=(3, 4, 5, 6), confidence=0.6),
        description="Strongest over/under barrier from digit frequencies",
    ),
    StrategyProfile(
        "DIFFERbot", "DIFFER Bot", "R_25",
        lambda seed=None, **kw: DifferStrategy(seed=seed),
        description="Digit differs from the coldest recent digit",
    ),
    StrategyProfile(
        "touchbot", "Touch Bot", "R_100",
        lambda **kw: TrendVoteStrategy("ONETOUCH", "+0.63", "-0.63"),
        window_size=15, duration=5, retry_delay=0.1,
        description="Multi-indicator trend votes into one-touch barriers",
    ),
    StrategyProfile(
        "notouchbot", "No Touch Bot", "R_100",
        lambda **kw: TrendVoteStrategy("NOTOUCH", "-0.63", "+0.63"),
        window_size=15, duration=5, retry_delay=0.1,
        description="Trend votes into a no-touch barrier against the move",
    ),
    StrategyProfile(
        "higherlowerbot", "Higher Lower Bot", "R_10",
        lambda **kw: HigherLowerStrategy(),
        duration=5,
        description="SMA crossover with momentum confirmation",
    ),
    StrategyProfile(
        "risefallbot", "Rise Fall Bot", "1HZ10V",
        lambda **kw: RiseFallStrategy(),
        duration=3, cooldown=3.0,
        description="Latest price against the window mean",
    ),
)}


def available() -> list:
    return sorted(PROFILES)


def get_profile(bot_id: str) -> StrategyProfile:
    try:
        return PROFILES[bot_id]
    except KeyError:
        raise UnknownStrategyError(f"unknown bot {bot_id!r}") from None


def create_bot(bot_id: str, transport, config, scheduler, currency: str = "USD",
               seed=None, **engine_kwargs) -> TradeEngine:
    """Build a fully wired engine; unknown ids and bad configs raise before anything is built."""
    profile = get_profile(bot_id)
    if not isinstance(config, BotConfiguration):
        config = BotConfiguration.from_mapping(config)
    strategy = profile.strategy(seed=seed)
    return TradeEngine(transport, config, profile, strategy, scheduler,
                       currency=currency, **engine_kwargs)
