import math
import os
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from .errors import ConfigurationError

DEFAULT_WS_URL = "wss://ws.binaryws.com/websockets/v3?app_id={app_id}"

# Values offered to a user who never saved a configuration for a bot
DEFAULT_CONFIG = {
    "initialStake": "1",
    "takeProfit": "100",
    "stopLoss": "50",
    "martingaleMultiplier": "2",
}

_FIELDS = (
    ("initial_stake", "initialStake"),
    ("take_profit", "takeProfit"),
    ("stop_loss", "stopLoss"),
    ("martingale_multiplier", "martingaleMultiplier"),
)


def round2(value) -> float:
    """Round half-up to cents. Every money mutation goes through here."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _parse_number(field, raw) -> float:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise ConfigurationError(field, "is required")
    if isinstance(raw, bool):
        raise ConfigurationError(field, f"must be numeric, got {raw!r}")
    try:
        value = float(Decimal(str(raw).strip()))
    except (InvalidOperation, ValueError):
        raise ConfigurationError(field, f"must be numeric, got {raw!r}") from None
    if not math.isfinite(value):
        raise ConfigurationError(field, f"must be finite, got {raw!r}")
    return value


@dataclass(frozen=True)
class BotConfiguration:
    initial_stake: float
    take_profit: float
    stop_loss: float
    martingale_multiplier: float

    def __post_init__(self):
        for attr, key in _FIELDS:
            value = getattr(self, attr)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ConfigurationError(key, f"must be numeric, got {value!r}")
        if self.initial_stake <= 0:
            raise ConfigurationError("initialStake", "must be positive")
        if self.take_profit <= 0:
            raise ConfigurationError("takeProfit", "must be positive")
        if self.stop_loss <= 0:
            raise ConfigurationError("stopLoss", "must be positive")
        if self.martingale_multiplier < 1:
            raise ConfigurationError("martingaleMultiplier", "must be at least 1")

    @classmethod
    def from_mapping(cls, data) -> "BotConfiguration":
        """Build from form-style input: camelCase or snake_case keys, text or numbers."""
        if not isinstance(data, dict):
            raise ConfigurationError("config", "must be an object")
        values = {}
        for attr, key in _FIELDS:
            raw = data.get(key, data.get(attr))
            values[attr] = _parse_number(key, raw)
        return cls(**values)

    def to_dict(self) -> dict:
        return {key: getattr(self, attr) for attr, key in _FIELDS}


@dataclass(frozen=True)
class Settings:
    api_token: str = ""
    app_id: str = "1089"
    ws_url: str = DEFAULT_WS_URL
    currency: str = "USD"
    store_path: str = "bot_store.json"
    journal_path: str = "trade_journal.csv"
    entitlements_path: str = ""
    reconnect: bool = True
    log_level: str = "INFO"
    port: int = 10000

    @property
    def endpoint(self) -> str:
        return self.ws_url.format(app_id=self.app_id)

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        env = os.environ if environ is None else environ
        try:
            port = int(env.get("PORT", "10000"))
        except ValueError:
            raise ConfigurationError("PORT", f"must be an integer, got {env.get('PORT')!r}") from None
        return cls(
            api_token=env.get("DERIV_API_TOKEN", ""),
            app_id=env.get("DERIV_APP_ID", "1089"),
            ws_url=env.get("DERIV_WS_URL", DEFAULT_WS_URL),
            currency=env.get("DERIV_CURRENCY", "USD"),
            store_path=env.get("BOT_STORE_PATH", "bot_store.json"),
            journal_path=env.get("BOT_JOURNAL_PATH", "trade_journal.csv"),
            entitlements_path=env.get("BOT_ENTITLEMENTS_PATH", ""),
            reconnect=env.get("BOT_RECONNECT", "1").strip().lower() not in ("0", "false", "no", "off"),
            log_level=env.get("LOG_LEVEL", "INFO"),
            port=port,
        )
