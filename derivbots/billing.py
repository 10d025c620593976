"""Capability gate consulted before a bot is built. The engine never calls it."""
import json
import logging
from dataclasses import dataclass
from typing import Optional

log = logging.getLogger("derivbots.billing")


@dataclass(frozen=True)
class Tier:
    weekly_price: float
    monthly_price: float

    def to_dict(self) -> dict:
        return {"weeklyPrice": self.weekly_price, "monthlyPrice": self.monthly_price}


FREE_TIER = Tier(0.0, 0.0)


class OpenEntitlements:
    """Everyone may run every bot."""

    def is_entitled(self, strategy_id: str, user_id: Optional[str]) -> bool:
        return True

    def get_tier(self, strategy_id: str) -> Tier:
        return FREE_TIER


class StaticEntitlements:
    def __init__(self, tiers=None, grants=None):
        self.tiers = dict(tiers or {})
        self.grants = {user: set(bots) for user, bots in (grants or {}).items()}

    @classmethod
    def from_file(cls, path: str) -> "StaticEntitlements":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        tiers = {
            bot: Tier(float(t.get("weekly", 0)), float(t.get("monthly", 0)))
            for bot, t in data.get("tiers", {}).items()
        }
        return cls(tiers, data.get("grants", {}))

    def is_entitled(self, strategy_id: str, user_id: Optional[str]) -> bool:
        if not user_id:
            return False
        bots = self.grants.get(user_id, ())
        return "*" in bots or strategy_id in bots

    def get_tier(self, strategy_id: str) -> Tier:
        return self.tiers.get(strategy_id, FREE_TIER)


def load_gate(path: str):
    if not path:
        return OpenEntitlements()
    log.info("loading entitlements from %s", path)
    return StaticEntitlements.from_file(path)
