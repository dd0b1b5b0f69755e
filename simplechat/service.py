from __future__ import annotations

import logging
import signal
import threading
import time
from typing import TYPE_CHECKING

from .codec import message_fits
from .commands import MESSAGE_TOO_LONG, ServerCommandHandler
from .config import ServerRuntimeConfig
from .constants import SERVER_MESSAGE_PREFIX
from .session import SessionManager
from .transport import ClientConnection, ConnectionServer, FaultKind

if TYPE_CHECKING:
    from .console import ChatDisplay


class ChatService:
    """The chat server: transport callbacks, operator input and shutdown."""

    def __init__(self, config: ServerRuntimeConfig, ui: ChatDisplay) -> None:
        self.config = config
        self.ui = ui
        self.log = logging.getLogger("simplechat.server")

        # Login assignment runs on per-connection threads; guard it with a
        # single re-entrant lock.
        self._state_lock = threading.RLock()

        self._shutdown = threading.Event()

        # Session manager for the login protocol and broadcast
        self.session_manager = SessionManager(self)

        # Command handler for operator directives
        self.command_handler = ServerCommandHandler(self)

        self.transport = ConnectionServer(
            config.port,
            self,
            host=config.host,
            poll_interval_s=config.accept_poll_interval_s,
        )

    @property
    def port(self) -> int:
        return self.transport.port

    @port.setter
    def port(self, value: int) -> None:
        self.transport.port = value

    @property
    def is_listening(self) -> bool:
        return self.transport.is_listening

    @property
    def is_shut_down(self) -> bool:
        return self._shutdown.is_set()

    def listen(self) -> None:
        """Start accepting clients. Raises OSError if the port cannot be bound."""
        self.transport.listen()

    def stop_listening(self) -> None:
        self.transport.stop_accepting()

    def close(self) -> None:
        """Stop listening and disconnect every client."""
        self.transport.close_all()

    def quit(self) -> None:
        stats = self.session_manager.get_stats()
        self.log.info(
            "Shutting down clients_total=%s clients_identified=%s",
            stats["total"],
            stats["identified"],
        )
        try:
            self.close()
        except OSError:
            self.log.warning("Error while closing during shutdown", exc_info=True)
        self._shutdown.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until shutdown; returns False if ``timeout`` ran out first."""
        return self._shutdown.wait(timeout)

    def run_forever(self) -> None:
        if not self.is_listening:
            self.listen()

        signal.signal(signal.SIGINT, lambda *_: self.quit())
        signal.signal(signal.SIGTERM, lambda *_: self.quit())

        while not self._shutdown.is_set():
            time.sleep(0.25)

    def handle_operator_input(self, text: str) -> None:
        """Handle a line typed on the server console."""
        if self.command_handler.handle(text):
            return

        message = SERVER_MESSAGE_PREFIX + text
        if not message_fits(message):
            self.ui.display(MESSAGE_TOO_LONG)
            return

        self.ui.display(message)
        self.session_manager.broadcast(message)

    # Transport callbacks

    def message_received(self, conn: ClientConnection, text: str) -> None:
        self.session_manager.handle_message(conn, text)

    def connection_accepted(self, conn: ClientConnection) -> None:
        self.session_manager.on_connection_accepted(conn)

    def connection_closed(self, conn: ClientConnection) -> None:
        self.session_manager.on_connection_closed(conn)

    def connection_faulted(
        self, conn: ClientConnection, kind: FaultKind, exc: BaseException
    ) -> None:
        self.session_manager.on_connection_faulted(conn, kind, exc)

    def listening_started(self) -> None:
        self.ui.display(
            f"Server listening for connections on port {self.transport.bound_port}"
        )

    def listening_stopped(self) -> None:
        self.ui.display("Server has stopped listening for connections.")

    def server_closed(self) -> None:
        self.ui.display("The server has shut down.")

    def listening_faulted(self, exc: BaseException) -> None:
        self.log.error("Accept loop failed: %s", exc)
        self.ui.display("ERROR - Could not listen for clients!")
