class AsyncioScheduler:
    """Retry timers on an asyncio loop. Handles expose ``cancel()``."""

    def __init__(self, loop):
        self.loop = loop

    def call_later(self, delay: float, callback):
        return self.loop.call_later(delay, callback)
