"""Trade lifecycle state machine shared by every bot.

One engine instance owns one transport while running and walks the cycle
signal -> proposal -> buy -> settlement, with at most one trade in flight.
All entry points are event handlers or timer callbacks; none of them raise.
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from . import messages
from .config import BotConfiguration
from .errors import MalformedMessage
from .messages import (
    BuyConfirmation, ContractUpdate, ErrorEvent, Ping, ProposalOffer, Tick,
)
from .publisher import (
    BotSnapshot, UpdatePublisher, format_running_time, progress_in_range,
    progress_to_target, win_rate,
)
from .risk import Escalation, RiskController, TradeOutcome
from .signals import Signal, SignalStrategy, TickWindow, TradeContext

log = logging.getLogger("derivbots.engine")

RATE_LIMIT_BACKOFF = 10.0


class RunState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class Phase(Enum):
    IDLE = "idle"
    SUBSCRIBING = "subscribing"
    AWAITING_SIGNAL = "awaiting_signal"
    AWAITING_QUOTE = "awaiting_quote"
    AWAITING_FILL = "awaiting_fill"
    AWAITING_SETTLEMENT = "awaiting_settlement"
    STOPPED = "stopped"


@dataclass(frozen=True)
class OpenContract:
    contract_id: object
    stake: float
    label: Optional[str] = None
    buy_price: Optional[float] = None


class TradeEngine:
    def __init__(self, transport, config: BotConfiguration, profile, strategy: SignalStrategy,
                 scheduler, currency: str = "USD", clock=time.monotonic):
        if not isinstance(config, BotConfiguration):
            config = BotConfiguration.from_mapping(config)
        self.transport = transport
        self.config = config
        self.profile = profile
        self.strategy = strategy
        self.scheduler = scheduler
        self.currency = currency
        self.clock = clock

        escalation = None
        if profile.escalation_threshold is not None:
            escalation = Escalation(profile.escalation_threshold, profile.escalation_increment)
        self.risk = RiskController(config, escalation)
        self.window = TickWindow(profile.window_size)
        self.publisher = UpdatePublisher()

        self.run_state = RunState.IDLE
        self.phase = Phase.IDLE
        self.open_contract: Optional[OpenContract] = None
        self.pending_signal: Optional[Signal] = None
        self.stop_reason: Optional[str] = None
        self._stake_in_flight = 0.0
        self._armed = False
        self._timer = None
        self._started_at = None
        self._stopped_at = None
        self._on_stop: Optional[Callable[[str], None]] = None

    # --- public surface ---

    @property
    def is_running(self) -> bool:
        return self.run_state is RunState.RUNNING

    @property
    def bot_id(self) -> str:
        return self.profile.bot_id

    def set_update_callback(self, callback):
        self.publisher.set_callback(callback)

    def set_stop_callback(self, callback: Optional[Callable[[str], None]]):
        self._on_stop = callback

    def start(self) -> bool:
        if self.is_running:
            return True
        if not getattr(self.transport, "is_ready", False):
            log.warning("[%s] transport not ready, staying idle", self.bot_id)
            return False

        self.risk.reset()
        self.window.clear()
        self.strategy.reset()
        self.open_contract = None
        self.pending_signal = None
        self.stop_reason = None
        self._started_at = self.clock()
        self._stopped_at = None

        self.phase = Phase.SUBSCRIBING
        try:
            self.transport.send(messages.subscribe_ticks(self.profile.symbol))
            self.transport.send(messages.subscribe_contracts())
        except Exception as e:
            log.error("[%s] subscription failed: %s", self.bot_id, e)
            self.phase = Phase.IDLE
            return False

        self.run_state = RunState.RUNNING
        self.phase = Phase.AWAITING_SIGNAL
        self._armed = True
        log.info("[%s] started on %s | stake %.2f | TP %.2f | SL %.2f | x%.2f",
                 self.bot_id, self.profile.symbol, self.config.initial_stake,
                 self.config.take_profit, self.config.stop_loss,
                 self.config.martingale_multiplier)
        self._attempt()
        return True

    def stop(self, reason: str = "user"):
        if self.run_state is RunState.STOPPED:
            return
        was_running = self.is_running
        self.run_state = RunState.STOPPED
        self.phase = Phase.STOPPED
        self.stop_reason = reason
        self._stopped_at = self.clock()
        self._cancel_timer()
        self._armed = False
        self.open_contract = None
        self.pending_signal = None
        if not was_running:
            return

        if reason != "transport":
            try:
                self.transport.send(messages.forget_all(self.profile.forget))
            except Exception as e:
                log.warning("[%s] unsubscribe failed: %s", self.bot_id, e)
        log.info("[%s] stopped (%s) | %s", self.bot_id, reason, self.risk.summary())
        if self._on_stop is not None:
            try:
                self._on_stop(reason)
            except Exception:
                log.exception("[%s] stop callback failed", self.bot_id)

    def on_transport_closed(self, error=None):
        if self.run_state is RunState.STOPPED:
            return
        log.error("[%s] transport lost: %s", self.bot_id, error or "connection closed")
        self.stop("transport")

    def handle_message(self, raw):
        try:
            event = messages.decode(raw)
        except MalformedMessage as e:
            log.warning("[%s] dropping malformed message: %s", self.bot_id, e)
            return
        self.handle_event(event)

    def handle_event(self, event):
        try:
            if isinstance(event, Tick):
                self._on_tick(event)
            elif isinstance(event, ProposalOffer):
                self._on_proposal(event)
            elif isinstance(event, BuyConfirmation):
                self._on_buy(event)
            elif isinstance(event, ContractUpdate):
                self._on_contract(event)
            elif isinstance(event, ErrorEvent):
                self._on_error(event)
            elif isinstance(event, Ping):
                self._send(messages.pong())
        except Exception:
            log.exception("[%s] error handling %s", self.bot_id, type(event).__name__)

    def snapshot(self) -> BotSnapshot:
        risk = self.risk
        return BotSnapshot(
            current_stake=risk.current_stake,
            total_profit=risk.total_profit,
            total_trades=risk.total_trades,
            win_rate=win_rate(risk.wins, risk.total_trades),
            consecutive_losses=risk.consecutive_losses,
            running_time=self.running_time(),
            trade_history=tuple(risk.history),
            progress_to_target=progress_to_target(risk.total_profit, self.config.take_profit),
            progress_in_range=progress_in_range(risk.total_profit, self.config.take_profit,
                                                self.config.stop_loss),
        )

    def running_time(self) -> str:
        if self._started_at is None:
            return "00:00:00"
        end = self._stopped_at if self._stopped_at is not None else self.clock()
        return format_running_time(end - self._started_at)

    # --- event handlers ---

    def _on_tick(self, tick: Tick):
        if not self.is_running:
            return
        if tick.symbol and tick.symbol != self.profile.symbol:
            return
        value = self.strategy.observe(tick)
        self.window.push(value)
        log.debug("[%s] tick %s -> %s", self.bot_id, tick.quote, value)
        if self.phase is Phase.AWAITING_SIGNAL and self._armed:
            self._attempt()

    def _on_proposal(self, offer: ProposalOffer):
        if not self.is_running or self.phase is not Phase.AWAITING_QUOTE or self.open_contract:
            log.debug("[%s] ignoring proposal %s in %s", self.bot_id, offer.proposal_id, self.phase.value)
            return
        log.info("[%s] buying %s at %.2f", self.bot_id, offer.proposal_id, offer.ask_price)
        self.phase = Phase.AWAITING_FILL
        self._send(messages.buy(offer.proposal_id, offer.ask_price))

    def _on_buy(self, confirmation: BuyConfirmation):
        if not self.is_running or self.phase is not Phase.AWAITING_FILL:
            log.debug("[%s] ignoring buy %s in %s", self.bot_id, confirmation.contract_id, self.phase.value)
            return
        label = self.pending_signal.tag if self.pending_signal else None
        self.open_contract = OpenContract(
            contract_id=confirmation.contract_id,
            stake=self._stake_in_flight,
            label=label,
            buy_price=confirmation.buy_price,
        )
        self.phase = Phase.AWAITING_SETTLEMENT
        log.info("[%s] contract %s open", self.bot_id, confirmation.contract_id)

    def _on_contract(self, update: ContractUpdate):
        if not update.is_sold:
            return
        contract = self.open_contract
        if not self.is_running or contract is None:
            log.debug("[%s] ignoring settlement of %s", self.bot_id, update.contract_id)
            return
        if update.contract_id is not None and update.contract_id != contract.contract_id:
            log.debug("[%s] settlement for foreign contract %s", self.bot_id, update.contract_id)
            return
        self._settle(contract, update.profit)

    def _on_error(self, error: ErrorEvent):
        if messages.is_authorization_error(error.code):
            log.error("[%s] %s: %s", self.bot_id, error.code, error.message)
            self.stop("authorization")
            return

        in_flight = self.phase in (Phase.AWAITING_QUOTE, Phase.AWAITING_FILL)
        if not (self.is_running and in_flight and error.echo_type in (None, "proposal", "buy")):
            log.warning("[%s] API error %s (%s): %s", self.bot_id, error.code,
                        error.echo_type, error.message)
            return

        if messages.is_balance_error(error.code):
            log.error("[%s] %s: %s", self.bot_id, error.code, error.message)
            self.stop("balance")
            return

        if messages.is_rate_limit(error.code):
            log.warning("[%s] rate limited, backing off %ss", self.bot_id, RATE_LIMIT_BACKOFF)
            self._recover(max(RATE_LIMIT_BACKOFF, self.profile.retry_delay))
            return

        if messages.is_validation_error(error.code):
            log.warning("[%s] %s rejected: %s", self.bot_id, error.echo_type or "request", error.message)
            self._recover(self.profile.retry_delay)
            return

        log.error("[%s] %s failed with %s: %s", self.bot_id, error.echo_type or "request",
                  error.code, error.message)
        self.stop("error")

    # --- lifecycle internals ---

    def _recover(self, delay):
        self.open_contract = None
        self.pending_signal = None
        self.phase = Phase.AWAITING_SIGNAL
        self._armed = False
        self._schedule(delay)

    def _settle(self, contract: OpenContract, profit: float):
        outcome = TradeOutcome(stake=contract.stake, profit=profit, win=profit > 0, label=contract.label)
        self.risk.settle(outcome)
        self.open_contract = None
        self.pending_signal = None
        self.publisher.publish(self.snapshot())

        reason = self.risk.stop_reason()
        if reason is not None:
            self.stop(reason)
            return
        self.phase = Phase.AWAITING_SIGNAL
        self._armed = False
        self._schedule(self.profile.cooldown)

    def _attempt(self):
        self._cancel_timer()
        if not self.is_running or self.phase is not Phase.AWAITING_SIGNAL:
            return
        context = TradeContext(consecutive_losses=self.risk.consecutive_losses)
        try:
            signal = self.strategy.decide(self.window, context)
        except Exception:
            log.exception("[%s] strategy failed", self.bot_id)
            signal = None
        if signal is None:
            self._schedule(self.profile.retry_delay, arm=True)
            return

        self.pending_signal = signal
        self._stake_in_flight = self.risk.current_stake
        self.phase = Phase.AWAITING_QUOTE
        log.info("[%s] %s barrier=%s stake=%.2f", self.bot_id, signal.contract_type,
                 signal.barrier, self._stake_in_flight)
        self._send(messages.proposal(
            stake=self._stake_in_flight,
            contract_type=signal.contract_type,
            symbol=self.profile.symbol,
            duration=self.profile.duration,
            duration_unit=self.profile.duration_unit,
            currency=self.currency,
            barrier=signal.barrier,
        ))

    def _send(self, payload):
        try:
            self.transport.send(payload)
        except Exception as e:
            self.on_transport_closed(e)

    def _schedule(self, delay, arm=False):
        self._cancel_timer()
        self._armed = self._armed or arm
        self._timer = self.scheduler.call_later(delay, self._on_timer)

    def _on_timer(self):
        self._timer = None
        if not self.is_running:
            return
        self._armed = True
        self._attempt()

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
