"""Background host for a bot session.

Flask serves on the main thread; the bot gets its own thread and event
loop. Calls from other threads are marshalled onto that loop.
"""
import asyncio
import functools
import logging
import threading

from websockets.exceptions import WebSocketException

from . import registry
from .config import BotConfiguration
from .errors import (
    AlreadyRunningError, AuthorizationError, InsufficientBalanceError,
    NotEntitledError, TransportError,
)
from .publisher import EMPTY_SNAPSHOT
from .session import BotSession

log = logging.getLogger("derivbots.runner")

CONNECTION_ERRORS = (
    WebSocketException,
    ConnectionError,
    OSError,
    asyncio.TimeoutError,
    TransportError,
)


def backoff(attempt: int) -> int:
    return min(60, attempt * 5)


class BotRunner:
    def __init__(self, settings, store, gate, journal=None, session_factory=BotSession):
        self.settings = settings
        self.store = store
        self.gate = gate
        self.journal = journal
        self.session_factory = session_factory

        self._lock = threading.Lock()
        self._wake = threading.Event()
        self._thread = None
        self._loop = None
        self._session = None
        # Bumped by every start; a bot thread only touches shared state while its number is current
        self._generation = 0

        self.active = False
        self.bot_id = None
        self.config = None
        self.snapshot = EMPTY_SNAPSHOT
        self.stop_reason = None
        self.last_error = None

    def start(self, bot_id: str, config: BotConfiguration, user_id=None):
        profile = registry.get_profile(bot_id)
        if not self.gate.is_entitled(bot_id, user_id):
            raise NotEntitledError(f"user {user_id!r} is not entitled to {bot_id}")
        with self._lock:
            if self.active:
                raise AlreadyRunningError(f"{self.bot_id} is already running")
            self._generation += 1
            self.active = True
            self.bot_id = profile.bot_id
            self.config = config
            self.snapshot = EMPTY_SNAPSHOT
            self.stop_reason = None
            self.last_error = None
            self._wake = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._generation, profile.bot_id, config, self._wake),
                name=f"bot-{bot_id}",
                daemon=True,
            )
            self.store.save_config(bot_id, config.to_dict())
            self.store.save_running(bot_id)
            thread = self._thread

        log.info("starting %s", bot_id)
        thread.start()

    def stop(self) -> bool:
        with self._lock:
            if not self.active:
                return False
            self.active = False
            self._wake.set()
            loop, session = self._loop, self._session
            self.store.clear_running()
        if loop is not None and session is not None and loop.is_running():
            loop.call_soon_threadsafe(session.stop)
        log.info("stop requested for %s", self.bot_id)
        return True

    def resume(self, user_id=None) -> bool:
        """Restart the bot that was running when the process last exited."""
        bot_id = self.store.running_bot()
        if not bot_id:
            return False
        saved = self.store.load_config(bot_id)
        try:
            config = BotConfiguration.from_mapping(saved or {})
            self.start(bot_id, config, user_id)
        except Exception as e:
            log.warning("could not resume %s: %s", bot_id, e)
            self.store.clear_running()
            return False
        return True

    def join(self, timeout=None):
        if self._thread is not None:
            self._thread.join(timeout)

    def status(self) -> dict:
        data = self.snapshot.to_dict()
        data.update({
            "running": self.active,
            "bot": self.bot_id,
            "stopReason": self.stop_reason,
            "error": self.last_error,
        })
        return data

    # --- bot thread ---

    def _is_live(self, generation) -> bool:
        return self.active and generation == self._generation

    def _run(self, generation, bot_id, config, wake):
        attempts = 0
        reason = None
        error = None
        on_update = functools.partial(self._on_update, generation, bot_id)
        while self._is_live(generation):
            session = self.session_factory(self.settings, bot_id, config, on_update=on_update)
            try:
                reason = asyncio.run(self._drive(generation, session))
            except (AuthorizationError, InsufficientBalanceError) as e:
                log.error("run refused: %s", e)
                error = str(e)
                reason = "refused"
                break
            except CONNECTION_ERRORS as e:
                log.error("connection error: %s", e)
                error = str(e)
                reason = "transport"
            except Exception as e:
                log.exception("unexpected error in bot loop")
                error = str(e)
                reason = "error"
                break
            finally:
                with self._lock:
                    if self._session is session:
                        self._loop = None
                        self._session = None

            if reason != "transport" or not self.settings.reconnect or not self._is_live(generation):
                break
            # a session that got past the handshake starts the backoff over
            if getattr(session, "engine", None) is not None:
                attempts = 0
            attempts += 1
            wait = backoff(attempts)
            log.warning("reconnecting in %ss (attempt %d)", wait, attempts)
            wake.wait(wait)

        with self._lock:
            if generation != self._generation:
                log.info("superseded run of %s finished (%s)", bot_id, reason)
                return
            self.active = False
            self.stop_reason = reason
            self.last_error = error
            self.store.clear_running()
        log.info("bot loop finished (%s)", reason)

    async def _drive(self, generation, session):
        with self._lock:
            if not self._is_live(generation):
                return "user"
            self._loop = asyncio.get_running_loop()
            self._session = session
        return await session.run()

    def _on_update(self, generation, bot_id, snapshot):
        if generation != self._generation:
            return
        self.snapshot = snapshot
        if self.journal is not None and snapshot.trade_history:
            profile = registry.get_profile(bot_id)
            self.journal.append(bot_id, profile.symbol, snapshot.trade_history[0], snapshot.total_profit)
