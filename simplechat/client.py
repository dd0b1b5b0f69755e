from __future__ import annotations

import enum
import logging
import signal
import threading
import time
from typing import TYPE_CHECKING, Callable

from .codec import message_fits
from .commands import MESSAGE_TOO_LONG, ClientCommandHandler
from .constants import D_LOGIN
from .transport import ClientHandler, ConnectionClient, FaultKind
from .util import normalize_login_id

if TYPE_CHECKING:
    from .console import ChatDisplay


class ClientState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ChatClient:
    """
    Client side of a chat session.

    Holds the login id, performs the ``#login`` handshake whenever a
    connection comes up, and routes console input either to the command
    handler or to the server. Termination is signalled through an event
    rather than by exiting the process; see :meth:`wait`.
    """

    def __init__(
        self,
        login_id: str,
        host: str,
        port: int,
        ui: ChatDisplay,
        *,
        connection_factory: Callable[[str, int, ClientHandler], ConnectionClient] = ConnectionClient,
    ) -> None:
        normalized = normalize_login_id(login_id)
        if normalized is None:
            raise ValueError(f"invalid login id: {login_id!r}")

        self.login_id = normalized
        self.ui = ui
        self.log = logging.getLogger("simplechat.client")

        self._state = ClientState.DISCONNECTED
        self._state_lock = threading.RLock()
        # Set while a close we asked for is in flight, so the closed
        # callback does not treat it as the server going away.
        self._local_close = False
        self._terminated = threading.Event()

        self.command_handler = ClientCommandHandler(self)
        self.connection = connection_factory(host, port, self)

        self.open_connection()

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self.connection.is_open

    @property
    def terminated(self) -> bool:
        return self._terminated.is_set()

    @property
    def host(self) -> str:
        return self.connection.host

    @host.setter
    def host(self, value: str) -> None:
        self.connection.host = value

    @property
    def port(self) -> int:
        return self.connection.port

    @port.setter
    def port(self, value: int) -> None:
        self.connection.port = int(value)

    def open_connection(self) -> None:
        """Connect to the server; the login handshake follows. Raises OSError."""
        with self._state_lock:
            self._state = ClientState.CONNECTING
        try:
            self.connection.open()
        except OSError:
            with self._state_lock:
                self._state = ClientState.DISCONNECTED
            raise

    def close_connection(self) -> None:
        with self._state_lock:
            self._local_close = True
            self._state = ClientState.DISCONNECTED
        self.connection.close()

    def send_to_server(self, text: str) -> None:
        self.connection.send(text)

    def handle_operator_input(self, text: str) -> None:
        """Handle a line typed on the client console."""
        try:
            if self.command_handler.handle(text):
                return
            if not message_fits(text):
                self.ui.display(MESSAGE_TOO_LONG)
                return
            self.send_to_server(text)
        except OSError as e:
            self.log.warning("Send failed host=%s port=%s: %s", self.host, self.port, e)
            self.ui.display("Could not send message to server.  Terminating client.")
            self.quit()

    def quit(self) -> None:
        """Close the connection, then signal termination."""
        try:
            self.close_connection()
        except OSError:
            self.log.debug("Close failed during quit", exc_info=True)
        self._terminated.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the client has terminated; False if ``timeout`` ran out."""
        return self._terminated.wait(timeout)

    def run_forever(self) -> None:
        signal.signal(signal.SIGINT, lambda *_: self.quit())
        signal.signal(signal.SIGTERM, lambda *_: self.quit())

        while not self._terminated.is_set():
            time.sleep(0.25)

    # Transport callbacks

    def connection_established(self) -> None:
        with self._state_lock:
            self._state = ClientState.CONNECTED
            # The previous channel's reader may still be winding down; by now
            # its events are ignored, so the flag can be cleared.
            self._local_close = False
        self.log.info("Connected as login_id=%r", self.login_id)
        try:
            # No space between directive and id; the server accepts both forms.
            self.send_to_server(D_LOGIN + self.login_id)
        except OSError as e:
            self.log.warning("Login handshake failed: %s", e)
            self.ui.display("Unable to send loginID to the server, please try again")

    def connection_closed(self) -> None:
        with self._state_lock:
            self._state = ClientState.DISCONNECTED
            local = self._local_close
        self.ui.display("Connection closed")
        if not local:
            self.log.info("Server closed the connection")
            self._terminated.set()

    def connection_faulted(self, kind: FaultKind, exc: BaseException) -> None:
        self.log.warning("Connection fault kind=%s err=%s", kind.value, exc)
        self.ui.display("The server has shut down.")
        self.quit()

    def message_received(self, text: str) -> None:
        self.ui.display(text)
