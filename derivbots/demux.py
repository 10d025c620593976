import logging

from . import messages
from .errors import MalformedMessage
from .messages import Ping

log = logging.getLogger("derivbots.demux")


class Demultiplexer:
    """Routes decoded inbound events to one engine, answering pings on the way."""

    def __init__(self, transport, engine, on_other=None):
        self.transport = transport
        self.engine = engine
        self.on_other = on_other

    def dispatch(self, raw):
        try:
            event = messages.decode(raw)
        except MalformedMessage as e:
            log.warning("dropping malformed message: %s", e)
            return None

        if isinstance(event, Ping):
            try:
                self.transport.send(messages.pong())
            except Exception as e:
                log.warning("pong failed: %s", e)
            return event

        if isinstance(event, messages.Other):
            if self.on_other is not None:
                self.on_other(event)
            return event

        self.engine.handle_event(event)
        return event
