"""Typed inbound events and outbound commands for the Deriv websocket API.

Inbound payloads are decoded once at the boundary into a closed set of
event classes, so the engine matches on types instead of ``msg_type``
strings.
"""
import json
from dataclasses import dataclass
from typing import Optional, Union

from .errors import MalformedMessage


@dataclass(frozen=True)
class Tick:
    symbol: str
    quote: float
    pip_size: Optional[int] = None
    epoch: Optional[int] = None

    @property
    def digit(self) -> int:
        return last_digit(self.quote, self.pip_size)


@dataclass(frozen=True)
class ProposalOffer:
    proposal_id: str
    ask_price: float


@dataclass(frozen=True)
class BuyConfirmation:
    contract_id: int
    buy_price: Optional[float] = None


@dataclass(frozen=True)
class ContractUpdate:
    contract_id: Optional[int]
    is_sold: bool
    profit: Optional[float]
    status: Optional[str] = None


@dataclass(frozen=True)
class Ping:
    pass


@dataclass(frozen=True)
class ErrorEvent:
    code: str
    message: str
    echo_type: Optional[str] = None


@dataclass(frozen=True)
class Other:
    msg_type: Optional[str]
    data: dict


Event = Union[Tick, ProposalOffer, BuyConfirmation, ContractUpdate, Ping, ErrorEvent, Other]

VALIDATION_CODES = frozenset({
    "InputValidationFailed",
    "ContractCreationFailure",
    "InvalidOfferings",
    "OfferingsValidationError",
})

BALANCE_CODES = frozenset({"InsufficientBalance"})
RATE_LIMIT_CODES = frozenset({"RateLimit"})

AUTHORIZATION_CODES = frozenset({"AuthorizationRequired", "InvalidToken", "InvalidAppID"})


def is_validation_error(code: str) -> bool:
    return code in VALIDATION_CODES or code.endswith("ValidationError")


def is_authorization_error(code: str) -> bool:
    return code in AUTHORIZATION_CODES


def is_balance_error(code: str) -> bool:
    return code in BALANCE_CODES


def is_rate_limit(code: str) -> bool:
    return code in RATE_LIMIT_CODES


def last_digit(quote, pip_size=None) -> int:
    if pip_size is not None:
        text = f"{float(quote):.{int(pip_size)}f}"
    else:
        text = str(quote)
    return int(text[-1])


def _number(value, what):
    try:
        return float(value)
    except (TypeError, ValueError):
        raise MalformedMessage(f"{what} is not numeric: {value!r}") from None


def _section(data, key):
    body = data.get(key)
    if not isinstance(body, dict):
        raise MalformedMessage(f"{key} message without a {key} object")
    return body


def decode(raw) -> Event:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise MalformedMessage(f"invalid JSON: {e}") from None
    else:
        data = raw
    if not isinstance(data, dict):
        raise MalformedMessage(f"expected an object, got {type(data).__name__}")

    msg_type = data.get("msg_type")

    if data.get("error"):
        err = data["error"]
        if not isinstance(err, dict):
            raise MalformedMessage("error field is not an object")
        return ErrorEvent(
            code=str(err.get("code", "UnknownError")),
            message=str(err.get("message", "")),
            echo_type=msg_type,
        )

    if msg_type == "ping":
        return Ping()

    if msg_type == "tick":
        tick = _section(data, "tick")
        if tick.get("quote") is None:
            raise MalformedMessage("tick without quote")
        pip_size = tick.get("pip_size")
        return Tick(
            symbol=str(tick.get("symbol", "")),
            quote=_number(tick["quote"], "tick quote"),
            pip_size=int(pip_size) if pip_size is not None else None,
            epoch=tick.get("epoch"),
        )

    if msg_type == "proposal":
        proposal = _section(data, "proposal")
        if not proposal.get("id"):
            raise MalformedMessage("proposal without id")
        return ProposalOffer(
            proposal_id=str(proposal["id"]),
            ask_price=_number(proposal.get("ask_price"), "ask_price"),
        )

    if msg_type == "buy":
        buy = _section(data, "buy")
        if buy.get("contract_id") is None:
            raise MalformedMessage("buy without contract_id")
        price = buy.get("buy_price")
        return BuyConfirmation(
            contract_id=buy["contract_id"],
            buy_price=_number(price, "buy_price") if price is not None else None,
        )

    if msg_type == "proposal_open_contract":
        contract = data.get("proposal_open_contract")
        if not isinstance(contract, dict):
            raise MalformedMessage("proposal_open_contract without contract object")
        is_sold = bool(contract.get("is_sold"))
        profit = contract.get("profit")
        if is_sold and profit is None:
            raise MalformedMessage("sold contract without profit")
        return ContractUpdate(
            contract_id=contract.get("contract_id"),
            is_sold=is_sold,
            profit=_number(profit, "profit") if profit is not None else None,
            status=contract.get("status"),
        )

    return Other(msg_type=msg_type, data=data)


# --- outbound commands ---

def subscribe_ticks(symbol: str) -> dict:
    return {"ticks": symbol, "subscribe": 1}


def subscribe_contracts() -> dict:
    return {"proposal_open_contract": 1, "subscribe": 1}


def proposal(stake, contract_type, symbol, duration, duration_unit="t", currency="USD", barrier=None) -> dict:
    request = {
        "proposal": 1,
        "amount": stake,
        "basis": "stake",
        "contract_type": contract_type,
        "currency": currency,
        "duration": duration,
        "duration_unit": duration_unit,
        "symbol": symbol,
    }
    if barrier is not None:
        request["barrier"] = str(barrier)
    return request


def buy(proposal_id: str, price) -> dict:
    return {"buy": proposal_id, "price": price}


def forget_all(streams) -> dict:
    return {"forget_all": list(streams)}


def pong() -> dict:
    return {"pong": 1}


def authorize(token: str) -> dict:
    return {"authorize": token}


def balance() -> dict:
    return {"balance": 1}
