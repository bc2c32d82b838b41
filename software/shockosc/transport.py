"""Game-client OSC transport built on python-osc.

Sends go out through a ``SimpleUDPClient``; receives go through a blocking
server that handles one datagram per :meth:`OscTransport.receive_once` call so
the session's receive loop owns the pacing (and can notice a stop request
between datagrams).
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Protocol, Sequence

from pythonosc import dispatcher, osc_server, udp_client

logger = logging.getLogger(__name__)

AVATAR_PARAMS = "/avatar/parameters/"
SHOCKOSC_PARAMS = AVATAR_PARAMS + "ShockOsc/"
AVATAR_CHANGE = "/avatar/change"
CHATBOX_INPUT = "/chatbox/input"
VOICE_INPUT = "/input/Voice"

MessageHandler = Callable[[str, Sequence[Any]], None]


class Transport(Protocol):
    def open(self, handler: MessageHandler) -> None:
        ...

    def receive_once(self) -> None:
        ...

    def send(self, address: str, value: Any) -> None:
        ...

    def send_chatbox(self, text: str) -> None:
        ...

    def close(self) -> None:
        ...


class OscTransport:
    """Send/receive primitive towards the game client."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        send_port: int = 9000,
        receive_port: int = 9001,
        *,
        bind_address: str = "127.0.0.1",
        receive_timeout: float = 0.5,
    ):
        self.host = host
        self.send_port = send_port
        self.receive_port = receive_port
        self.bind_address = bind_address
        self.receive_timeout = receive_timeout
        self._client = udp_client.SimpleUDPClient(host, send_port)
        self._server: Optional[osc_server.BlockingOSCUDPServer] = None

    def open(self, handler: MessageHandler) -> None:
        disp = dispatcher.Dispatcher()
        disp.set_default_handler(lambda address, *args: handler(address, args))
        self._server = osc_server.BlockingOSCUDPServer((self.bind_address, self.receive_port), disp)
        self._server.timeout = self.receive_timeout
        # port 0 binds an ephemeral port; remember the real one
        self.receive_port = self._server.server_address[1]
        logger.info("OSC listening on %s:%d, sending to %s:%d", self.bind_address, self.receive_port, self.host, self.send_port)

    @property
    def listening_port(self) -> int:
        return self.receive_port

    def receive_once(self) -> None:
        """Block until one datagram is handled or the receive timeout passes."""

        if self._server is None:
            raise RuntimeError("OscTransport.open() must be called before receiving")
        self._server.handle_request()

    def send(self, address: str, value: Any) -> None:
        self._client.send_message(address, value)

    def send_chatbox(self, text: str) -> None:
        self._client.send_message(CHATBOX_INPUT, [text, True])

    def close(self) -> None:
        if self._server is not None:
            self._server.server_close()
            self._server = None
