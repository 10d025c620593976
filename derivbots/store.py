import json
import logging
import os
import tempfile
import threading

log = logging.getLogger("derivbots.store")

RUNNING_KEY = "bot_running_state"


def config_key(bot_id: str) -> str:
    return f"bot_config_{bot_id}"


class KeyValueStore:
    """JSON file backed key-value storage for per-bot defaults and run state."""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            log.warning("store %s unreadable, starting empty: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict):
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp = tempfile.mkstemp(dir=directory, prefix=".store-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def get(self, key: str, default=None):
        with self._lock:
            return self._read().get(key, default)

    def set(self, key: str, value):
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key: str):
        with self._lock:
            data = self._read()
            if data.pop(key, None) is not None:
                self._write(data)

    # --- typed helpers ---

    def load_config(self, bot_id: str, default=None):
        return self.get(config_key(bot_id), default)

    def save_config(self, bot_id: str, config: dict):
        self.set(config_key(bot_id), config)

    def save_running(self, bot_id: str):
        self.set(RUNNING_KEY, {"isRunning": True, "botType": bot_id})

    def clear_running(self):
        self.delete(RUNNING_KEY)

    def running_bot(self):
        state = self.get(RUNNING_KEY)
        if isinstance(state, dict) and state.get("isRunning"):
            return state.get("botType")
        return None
