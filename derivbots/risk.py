"""Stake sizing, P/L bookkeeping and stop conditions."""
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .config import BotConfiguration, round2
from .publisher import TradeRecord

log = logging.getLogger("derivbots.risk")

HISTORY_LIMIT = 50


@dataclass(frozen=True)
class TradeOutcome:
    stake: float
    profit: float
    win: bool
    label: Optional[str] = None


@dataclass(frozen=True)
class Escalation:
    """Extra multiplier once the loss streak passes ``threshold``."""

    threshold: int
    increment: float


class RiskController:
    def __init__(self, config: BotConfiguration, escalation: Optional[Escalation] = None, clock=datetime.now):
        self.config = config
        self.escalation = escalation
        self.clock = clock
        self.history: deque = deque(maxlen=HISTORY_LIMIT)
        self.reset()

    def reset(self):
        self.current_stake = round2(self.config.initial_stake)
        self.total_profit = 0.0
        self.total_trades = 0
        self.wins = 0
        self.consecutive_losses = 0
        self.history.clear()

    def multiplier(self) -> float:
        m = self.config.martingale_multiplier
        if self.escalation and self.consecutive_losses > self.escalation.threshold:
            m += self.escalation.increment
        return m

    def settle(self, outcome: TradeOutcome) -> TradeRecord:
        if outcome.win:
            self.wins += 1
            self.consecutive_losses = 0
            self.current_stake = round2(self.config.initial_stake)
        else:
            self.consecutive_losses += 1
            self.current_stake = round2(self.current_stake * self.multiplier())

        self.total_trades += 1
        self.total_profit = round2(self.total_profit + outcome.profit)

        record = TradeRecord(
            time=self.clock(),
            stake=round2(outcome.stake),
            result="win" if outcome.win else "loss",
            profit=round2(outcome.profit),
            type=outcome.label,
        )
        self.history.appendleft(record)
        log.info("%s %+.2f | stake next %.2f | total %+.2f | streak %d",
                 record.result.upper(), record.profit, self.current_stake,
                 self.total_profit, self.consecutive_losses)
        return record

    @property
    def take_profit_hit(self) -> bool:
        return self.total_profit >= self.config.take_profit

    @property
    def stop_loss_hit(self) -> bool:
        return self.total_profit <= -self.config.stop_loss

    def stop_reason(self) -> Optional[str]:
        if self.take_profit_hit:
            return "take_profit"
        if self.stop_loss_hit:
            return "stop_loss"
        return None

    def summary(self) -> str:
        rate = self.wins / self.total_trades if self.total_trades else 0.0
        return (
            f"W:{self.wins} L:{self.total_trades - self.wins} "
            f"WR:{rate:.1%} P&L:${self.total_profit:+.2f} "
            f"Stake:${self.current_stake:.2f} Streak:{self.consecutive_losses}"
        )
