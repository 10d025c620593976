"""Signal strategies: one decision rule per bot over a rolling tick window."""
import logging
import random
from collections import deque
from dataclasses import dataclass
from typing import Optional

from . import indicators

log = logging.getLogger("derivbots.signals")


@dataclass(frozen=True)
class Signal:
    contract_type: str
    barrier: Optional[str] = None
    label: Optional[str] = None

    @property
    def tag(self) -> str:
        return self.label or self.contract_type


@dataclass(frozen=True)
class TradeContext:
    consecutive_losses: int = 0


class TickWindow:
    """Bounded, most-recent-first buffer of observed values."""

    def __init__(self, size: int):
        if size <= 0:
            raise ValueError("window size must be positive")
        self.size = size
        self._values: deque = deque(maxlen=size)

    def push(self, value):
        self._values.appendleft(value)

    def values(self) -> list:
        return list(self._values)

    def latest(self):
        return self._values[0] if self._values else None

    def clear(self):
        self._values.clear()

    def __len__(self):
        return len(self._values)

    def __iter__(self):
        return iter(self._values)


class SignalStrategy:
    """Base decision rule.

    ``source`` says whether the window holds last digits or raw prices.
    ``decide`` returns ``None`` when there is nothing to trade yet.
    """

    source = "digit"
    min_history = 0

    def observe(self, tick) -> object:
        return tick.digit if self.source == "digit" else tick.quote

    def decide(self, window: TickWindow, context: TradeContext) -> Optional[Signal]:
        raise NotImplementedError

    def reset(self):
        pass


class FixedStrategy(SignalStrategy):
    def __init__(self, contract_type: str, barrier=None, label=None):
        self.signal = Signal(contract_type, str(barrier) if barrier is not None else None, label)

    def decide(self, window, context):
        return self.signal


class ParityStrategy(SignalStrategy):
    """Even/odd bias with a streak-driven side override.

    A strong bias (trend strength above ``trend_cutoff``) is faded; a weak one
    follows the last ``recent`` digits contrarily. Once a side has been
    traded, a clean streak keeps it and ``flip_after`` losses flip it.
    """

    def __init__(self, trend_cutoff=0.3, flip_after=2, recent=5, min_history=5):
        self.trend_cutoff = trend_cutoff
        self.flip_after = flip_after
        self.recent = recent
        self.min_history = min_history
        self.last_even: Optional[bool] = None

    def reset(self):
        self.last_even = None

    def decide(self, window, context):
        digits = window.values()
        if len(digits) < self.min_history:
            return None

        even_count = sum(1 for d in digits if d % 2 == 0)
        even_prob = even_count / len(digits)
        trend_strength = abs(even_prob - 0.5) * 2

        if trend_strength > self.trend_cutoff:
            trade_even = even_prob <= 0.5
        else:
            recent = digits[:self.recent]
            recent_even = sum(1 for d in recent if d % 2 == 0) / len(recent)
            trade_even = recent_even < 0.5

        if self.last_even is not None:
            if context.consecutive_losses == 0:
                trade_even = self.last_even
            elif context.consecutive_losses >= self.flip_after:
                trade_even = not self.last_even

        self.last_even = trade_even
        if trade_even:
            return Signal("DIGITEVEN", label="EVEN")
        return Signal("DIGITODD", label="ODD")


class OverUnderStrategy(SignalStrategy):
    """Pick the most likely over/under barrier from digit frequencies."""

    def __init__(self, barriers=(3, 4, 5, 6), confidence=0.6, min_history=10,
                 default_type="DIGITOVER", default_barrier=4):
        self.barriers = tuple(barriers)
        self.confidence = confidence
        self.min_history = min_history
        self.default = (default_type, default_barrier)
        self.current = self.default

    def reset(self):
        self.current = self.default

    def probabilities(self, digits):
        counts = [0] * 10
        for d in digits:
            counts[d] += 1
        total = len(digits)
        candidates = []
        for barrier in self.barriers:
            under = sum(counts[:barrier]) / total
            candidates.append(("DIGITUNDER", barrier, under))
        # over is scored as the complement of under at the same barrier
        for barrier in self.barriers:
            under = sum(counts[:barrier]) / total
            candidates.append(("DIGITOVER", barrier, 1 - under))
        return candidates

    def decide(self, window, context):
        digits = window.values()
        if len(digits) < self.min_history:
            return None
        candidates = self.probabilities(digits)
        # stable sort keeps the first listed candidate on ties
        contract_type, barrier, prob = sorted(candidates, key=lambda c: c[2], reverse=True)[0]
        if prob > self.confidence:
            self.current = (contract_type, barrier)
        contract_type, barrier = self.current
        return Signal(contract_type, str(barrier))


class DifferStrategy(SignalStrategy):
    """Bet the next digit differs from the coldest digit in the window.

    The RNG only breaks ties and covers short windows; pass ``seed`` for
    reproducible runs.
    """

    def __init__(self, min_history=10, seed=None, rng=None):
        self.min_history = min_history
        self.rng = rng or random.Random(seed)

    def decide(self, window, context):
        digits = window.values()
        last = digits[0] if digits else None
        choices = [d for d in range(10) if d != last]
        if len(digits) >= self.min_history:
            counts = {d: 0 for d in choices}
            for d in digits:
                if d in counts:
                    counts[d] += 1
            coldest = min(counts.values())
            choices = [d for d, n in counts.items() if n == coldest]
        return Signal("DIGITDIFF", str(self.rng.choice(choices)))


class TrendVoteStrategy(SignalStrategy):
    """Multi-indicator trend voting over prices.

    Each indicator casts an up or down vote; a side needs ``quorum`` votes
    and the short-window volatility must reach ``volatility_floor``.
    """

    source = "price"

    def __init__(self, contract_type="ONETOUCH", up_barrier="+0.63", down_barrier="-0.63",
                 window=15, short=5, medium=10, long=15, rsi_period=5, quorum=4,
                 volatility_floor=0.001, momentum_cutoff=0.1, change_cutoff=0.002):
        self.contract_type = contract_type
        self.up_barrier = up_barrier
        self.down_barrier = down_barrier
        self.min_history = window
        self.periods = (short, medium, long)
        self.rsi_period = rsi_period
        self.quorum = quorum
        self.volatility_floor = volatility_floor
        self.momentum_cutoff = momentum_cutoff
        self.change_cutoff = change_cutoff

    def votes(self, prices):
        short, medium, long = (indicators.sma(prices, p) for p in self.periods)
        rsi = indicators.rsi(prices, self.rsi_period)
        if short is None or medium is None or long is None or rsi is None:
            return None
        trend = indicators.trend(prices)
        momentum = indicators.momentum(prices)

        up = down = 0
        if short > medium > long:
            up += 1
        if short < medium < long:
            down += 1
        if rsi > 60:
            up += 1
        if rsi < 40:
            down += 1
        if trend > 0:
            up += 1
        if trend < 0:
            down += 1
        if momentum > self.momentum_cutoff:
            up += 1
        if momentum < -self.momentum_cutoff:
            down += 1
        if abs(prices[0] - prices[1]) > self.change_cutoff:
            if prices[0] > prices[1]:
                up += 1
            elif prices[0] < prices[1]:
                down += 1
        return up, down

    def decide(self, window, context):
        prices = window.values()[:self.min_history]
        if len(prices) < self.min_history:
            return None
        tally = self.votes(prices)
        if tally is None:
            return None
        up, down = tally
        vol = indicators.volatility(prices[:5])
        log.debug("votes up=%d down=%d volatility=%.5f", up, down, vol)
        if vol < self.volatility_floor:
            return None
        if up >= self.quorum:
            return Signal(self.contract_type, self.up_barrier, label=f"{self.contract_type} UP")
        if down >= self.quorum:
            return Signal(self.contract_type, self.down_barrier, label=f"{self.contract_type} DOWN")
        return None


class HigherLowerStrategy(SignalStrategy):
    """Short/long SMA crossover confirmed by momentum, only in calm markets."""

    source = "price"

    def __init__(self, short=5, long=10, max_volatility=0.5, up_barrier="+0.1", down_barrier="-0.1"):
        self.short = short
        self.long = long
        self.min_history = long
        self.max_volatility = max_volatility
        self.up_barrier = up_barrier
        self.down_barrier = down_barrier

    def decide(self, window, context):
        prices = window.values()
        if len(prices) < self.min_history:
            return None
        short_ma = indicators.sma(prices, self.short)
        long_ma = indicators.sma(prices, self.long)
        move = prices[0] - prices[self.short]

        if short_ma > long_ma and move > 0:
            signal = Signal("CALL", self.up_barrier, label="HIGHER")
        elif short_ma < long_ma and move < 0:
            signal = Signal("PUT", self.down_barrier, label="LOWER")
        else:
            return None

        if indicators.volatility(prices[:self.long]) < self.max_volatility:
            return signal
        return None


class RiseFallStrategy(SignalStrategy):
    """Latest price against the window mean."""

    source = "price"

    def __init__(self, min_history=10):
        self.min_history = min_history

    def decide(self, window, context):
        prices = window.values()
        if len(prices) < self.min_history:
            return None
        mean = indicators.sma(prices, len(prices))
        if prices[0] > mean:
            return Signal("CALL", label="RISE")
        if prices[0] < mean:
            return Signal("PUT", label="FALL")
        return None
