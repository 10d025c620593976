import json

import pytest

from derivbots import messages
from derivbots.errors import MalformedMessage
from derivbots.messages import (
    BuyConfirmation, ContractUpdate, ErrorEvent, Other, Ping, ProposalOffer, Tick,
)


def test_decode_tick():
    event = messages.decode({"msg_type": "tick", "tick": {"symbol": "R_50", "quote": "123.4", "pip_size": 2}})
    assert event == Tick(symbol="R_50", quote=123.4, pip_size=2, epoch=None)
    assert event.digit == 0


def test_last_digit_without_pip_size():
    assert messages.last_digit(987.65) == 5
    assert messages.last_digit(12) == 2


def test_decode_proposal_buy_and_settlement():
    assert messages.decode(json.dumps({"msg_type": "proposal", "proposal": {"id": "x1", "ask_price": 1}})) \
        == ProposalOffer("x1", 1.0)
    assert messages.decode({"msg_type": "buy", "buy": {"contract_id": 9, "buy_price": "1.5"}}) \
        == BuyConfirmation(9, 1.5)
    update = messages.decode(b'{"msg_type": "proposal_open_contract", "proposal_open_contract": '
                             b'{"contract_id": 9, "is_sold": 1, "profit": "-1.00", "status": "lost"}}')
    assert update == ContractUpdate(9, True, -1.0, "lost")


def test_open_contract_update_without_profit_is_fine_until_sold():
    update = messages.decode({"msg_type": "proposal_open_contract", "proposal_open_contract": {"contract_id": 1}})
    assert update.is_sold is False
    with pytest.raises(MalformedMessage):
        messages.decode({"msg_type": "proposal_open_contract",
                         "proposal_open_contract": {"contract_id": 1, "is_sold": 1}})


def test_error_wins_over_msg_type():
    event = messages.decode({"msg_type": "buy", "error": {"code": "ContractBuyValidationError", "message": "no"}})
    assert event == ErrorEvent("ContractBuyValidationError", "no", "buy")


def test_ping_and_other():
    assert messages.decode({"msg_type": "ping", "ping": "pong"}) == Ping()
    other = messages.decode({"msg_type": "balance", "balance": {"balance": 10}})
    assert isinstance(other, Other) and other.msg_type == "balance"


@pytest.mark.parametrize("raw", [
    "{oops",
    "[]",
    {"msg_type": "tick", "tick": {"symbol": "R_10"}},
    {"msg_type": "tick", "tick": {"quote": "abc"}},
    {"msg_type": "proposal", "proposal": {"ask_price": 1}},
    {"msg_type": "buy", "buy": {}},
    {"msg_type": "proposal_open_contract"},
    {"msg_type": "buy", "error": "boom"},
])
def test_malformed_payloads(raw):
    with pytest.raises(MalformedMessage):
        messages.decode(raw)


def test_error_classification():
    assert messages.is_validation_error("ContractBuyValidationError")
    assert messages.is_validation_error("InputValidationFailed")
    assert not messages.is_validation_error("MarketIsClosed")
    assert not messages.is_validation_error("InsufficientBalance")
    assert not messages.is_validation_error("RateLimit")
    assert messages.is_balance_error("InsufficientBalance")
    assert messages.is_rate_limit("RateLimit")
    assert messages.is_authorization_error("InvalidToken")


def test_proposal_command():
    command = messages.proposal(2.5, "DIGITOVER", "R_50", 1, barrier=4)
    assert command == {
        "proposal": 1, "amount": 2.5, "basis": "stake", "contract_type": "DIGITOVER",
        "currency": "USD", "duration": 1, "duration_unit": "t", "symbol": "R_50", "barrier": "4",
    }
    assert "barrier" not in messages.proposal(1, "CALL", "R_10", 5)


def test_other_commands():
    assert messages.buy("p", 1.5) == {"buy": "p", "price": 1.5}
    assert messages.forget_all(("ticks",)) == {"forget_all": ["ticks"]}
    assert messages.pong() == {"pong": 1}
    assert messages.subscribe_ticks("R_75") == {"ticks": "R_75", "subscribe": 1}
