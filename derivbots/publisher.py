import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Callable, Optional, Tuple

from .config import round2

log = logging.getLogger("derivbots.publisher")


@dataclass(frozen=True)
class TradeRecord:
    time: datetime
    stake: float
    result: str            # "win" / "loss"
    profit: float
    type: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["time"] = self.time.isoformat(timespec="seconds")
        return data


@dataclass(frozen=True)
class BotSnapshot:
    current_stake: float
    total_profit: float
    total_trades: int
    win_rate: str
    consecutive_losses: int
    running_time: str
    trade_history: Tuple[TradeRecord, ...]
    progress_to_target: str
    progress_in_range: str

    def to_dict(self) -> dict:
        return {
            "currentStake": self.current_stake,
            "totalProfit": self.total_profit,
            "totalTrades": self.total_trades,
            "winRate": self.win_rate,
            "consecutiveLosses": self.consecutive_losses,
            "runningTime": self.running_time,
            "tradeHistory": [t.to_dict() for t in self.trade_history],
            "progressToTarget": self.progress_to_target,
            "progressInRange": self.progress_in_range,
        }


EMPTY_SNAPSHOT = BotSnapshot(0.0, 0.0, 0, "0.00", 0, "00:00:00", (), "0.00", "0.00")


def format_running_time(seconds) -> str:
    if seconds is None or seconds < 0:
        return "00:00:00"
    seconds = int(seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def percent(value) -> str:
    return f"{round2(value):.2f}"


def win_rate(wins: int, total: int) -> str:
    if total == 0:
        return percent(0)
    return percent(wins / total * 100)


def progress_to_target(total_profit, take_profit) -> str:
    """Profit as a share of the take-profit target."""
    return percent(total_profit / take_profit * 100)


def progress_in_range(total_profit, take_profit, stop_loss) -> str:
    """Position inside the stop-loss..take-profit band, 0 at the stop, 100 at the target."""
    return percent((total_profit + stop_loss) / (take_profit + stop_loss) * 100)


class UpdatePublisher:
    """Single-slot observer: the last registered callback wins."""

    def __init__(self):
        self._callback: Optional[Callable[[BotSnapshot], None]] = None

    def set_callback(self, callback: Optional[Callable[[BotSnapshot], None]]):
        self._callback = callback

    def publish(self, snapshot: BotSnapshot):
        if self._callback is None:
            return
        try:
            self._callback(snapshot)
        except Exception:
            log.exception("update callback failed")
