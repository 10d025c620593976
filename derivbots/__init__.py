from .config import BotConfiguration, Settings
from .engine import Phase, RunState, TradeEngine
from .registry import available, create_bot

__version__ = "0.1.0"

__all__ = [
    "BotConfiguration",
    "Settings",
    "Phase",
    "RunState",
    "TradeEngine",
    "available",
    "create_bot",
]
