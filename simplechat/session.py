from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING

from .commands import NETWORK_DIRECTIVES, Directive, DirectiveKind, parse_line
from .constants import LOGGED_ON_SUFFIX
from .transport import ClientConnection, FaultKind
from .util import normalize_login_id

if TYPE_CHECKING:
    from .service import ChatService


class SessionState(enum.Enum):
    UNIDENTIFIED = "unidentified"
    IDENTIFIED = "identified"
    CLOSED = "closed"


def session_state(conn: ClientConnection) -> SessionState:
    if not conn.is_open:
        return SessionState.CLOSED
    if conn.login_id is None:
        return SessionState.UNIDENTIFIED
    return SessionState.IDENTIFIED


class SessionManager:
    """
    Enforces the login protocol on the server.

    This class is responsible for:
    - Assigning each connection its login id, once
    - Closing connections that try to log in twice
    - Formatting and broadcasting chat from identified connections
    - Reporting connection lifecycle events to the operator

    The login id lives on the connection record, so there is no per-session
    table to keep in sync with the transport.
    """

    def __init__(self, service: ChatService) -> None:
        self.service = service
        self.log = logging.getLogger("simplechat.session")

    def handle_message(self, conn: ClientConnection, text: str) -> None:
        """Handle one message received from a client connection."""
        self.service.ui.display(f"Message received: {text} from {conn.login_id}")

        parsed = parse_line(text, NETWORK_DIRECTIVES)
        if isinstance(parsed, Directive) and parsed.kind is DirectiveKind.LOGIN:
            self.handle_login(conn, parsed.arg)
            return

        login_id = conn.login_id
        if login_id is None:
            self.log.info(
                "Dropping message from unidentified conn_id=%s", conn.conn_id
            )
            self.service.ui.display(
                f"Ignoring message from a client that has not logged in: {text}"
            )
            return

        self.broadcast(f"{login_id}: {text}")

    def handle_login(self, conn: ClientConnection, login_id: str | None) -> bool:
        """
        Process a ``#login`` from a client.

        Returns True if the connection is now identified by this call. A
        connection that is already identified is closed. An id that is
        missing or fails :func:`normalize_login_id` leaves the connection
        unidentified.
        """
        requested = login_id
        login_id = normalize_login_id(login_id)

        with self.service._state_lock:
            already = conn.login_id is not None
            if not already and login_id:
                conn.login_id = login_id

        if already:
            self.log.warning(
                "Duplicate login conn_id=%s login_id=%r attempted=%r",
                conn.conn_id,
                conn.login_id,
                requested,
            )
            self.service.ui.display(
                "Error, client already logged in, terminating connection..."
            )
            try:
                conn.close()
            except OSError:
                self.log.warning("Close failed conn_id=%s", conn.conn_id, exc_info=True)
                self.service.ui.display(
                    "Unable to close connection while client misentered #login"
                )
            return False

        if not login_id:
            self.log.info(
                "Login without a usable id conn_id=%s requested=%r",
                conn.conn_id,
                requested,
            )
            self.service.ui.display("A client tried to log in without a login ID")
            return False

        self.log.info("Logged in conn_id=%s login_id=%r", conn.conn_id, login_id)
        announcement = f"{login_id}{LOGGED_ON_SUFFIX}"
        self.service.ui.display(announcement)
        self.broadcast(announcement)
        return True

    def broadcast(self, text: str) -> int:
        """Send a line to every open connection, the sender included."""
        delivered = self.service.transport.broadcast(text)
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("Broadcast recipients=%s text=%r", delivered, text)
        return delivered

    def on_connection_accepted(self, conn: ClientConnection) -> None:
        self.service.ui.display("A new client has connected to the server.")

    def on_connection_closed(self, conn: ClientConnection) -> None:
        self.service.ui.display(f"Client '{conn.login_id}' has disconnected.")

    def on_connection_faulted(
        self, conn: ClientConnection, kind: FaultKind, exc: BaseException
    ) -> None:
        # A reset from the peer is just how some clients hang up.
        if kind is FaultKind.PEER_RESET:
            self.on_connection_closed(conn)
            return

        self.log.warning(
            "Connection error conn_id=%s login_id=%r kind=%s err=%s",
            conn.conn_id,
            conn.login_id,
            kind.value,
            exc,
        )
        self.service.ui.display(f"Connection error from '{conn.login_id}': {exc}")

    def get_stats(self) -> dict[str, int]:
        """Count open connections by session state."""
        conns = self.service.transport.connections()
        identified = sum(
            1 for c in conns if session_state(c) is SessionState.IDENTIFIED
        )
        return {"total": len(conns), "identified": identified}
