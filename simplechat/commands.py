"""Directive parsing and the console command handlers for server and client."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .constants import (
    D_CLOSE,
    D_GETHOST,
    D_GETPORT,
    D_LOGIN,
    D_LOGOFF,
    D_QUIT,
    D_SETHOST,
    D_SETPORT,
    D_START,
    D_STOP,
    DIRECTIVE_PREFIX,
    PORT_MAX,
    PORT_MIN,
)

if TYPE_CHECKING:
    from .client import ChatClient
    from .service import ChatService


INVALID_COMMAND = "You have entered an invalid command, please try again"
MESSAGE_TOO_LONG = "Message too long, not sent."


class DirectiveError(ValueError):
    """A directive was recognized but its argument is unusable."""


class DirectiveKind(enum.Enum):
    QUIT = D_QUIT
    LOGOFF = D_LOGOFF
    CLOSE = D_CLOSE
    STOP = D_STOP
    SETHOST = D_SETHOST
    SETPORT = D_SETPORT
    LOGIN = D_LOGIN
    GETHOST = D_GETHOST
    GETPORT = D_GETPORT
    START = D_START
    UNKNOWN = ""


@dataclass(frozen=True)
class Directive:
    kind: DirectiveKind
    arg: str | int | None = None
    raw: str = ""


# Directives that take no argument and must match the whole line.
_EXACT: dict[str, DirectiveKind] = {
    D_QUIT: DirectiveKind.QUIT,
    D_LOGOFF: DirectiveKind.LOGOFF,
    D_CLOSE: DirectiveKind.CLOSE,
    D_STOP: DirectiveKind.STOP,
}

# Directives matched by prefix, longest first so no entry can shadow another.
_PREFIXED: tuple[tuple[str, DirectiveKind], ...] = tuple(
    sorted(
        (
            (D_SETHOST, DirectiveKind.SETHOST),
            (D_SETPORT, DirectiveKind.SETPORT),
            (D_LOGIN, DirectiveKind.LOGIN),
            (D_GETHOST, DirectiveKind.GETHOST),
            (D_GETPORT, DirectiveKind.GETPORT),
            (D_START, DirectiveKind.START),
        ),
        key=lambda item: -len(item[0]),
    )
)

SERVER_DIRECTIVES = frozenset(
    {
        DirectiveKind.QUIT,
        DirectiveKind.STOP,
        DirectiveKind.CLOSE,
        DirectiveKind.SETPORT,
        DirectiveKind.GETPORT,
        DirectiveKind.START,
    }
)

CLIENT_DIRECTIVES = frozenset(
    {
        DirectiveKind.QUIT,
        DirectiveKind.LOGOFF,
        DirectiveKind.SETHOST,
        DirectiveKind.SETPORT,
        DirectiveKind.LOGIN,
        DirectiveKind.GETHOST,
        DirectiveKind.GETPORT,
    }
)

# What the server looks for in text arriving from clients.
NETWORK_DIRECTIVES = frozenset({DirectiveKind.LOGIN})


def is_directive(line: str) -> bool:
    return line.startswith(DIRECTIVE_PREFIX)


def extract_argument(line: str, word: str) -> str | None:
    """Strip a directive word from a line and return what is left.

    Every ``"<word> "`` in the line is removed, then a leading ``<word>`` that
    had no space after it. ``#login alice`` and ``#loginalice`` both yield
    ``alice``. Note that a later ``"<word> "`` inside the argument is removed
    too.
    """
    s = line.replace(word + " ", "")
    if s.startswith(word):
        s = s[len(word) :]
    return s or None


def parse_port(value: str | None) -> int:
    if value is None:
        raise DirectiveError("A port number is required")
    try:
        port = int(value)
    except ValueError:
        raise DirectiveError(f"Invalid port number: {value}") from None
    if port < PORT_MIN or port > PORT_MAX:
        raise DirectiveError(f"Port number out of range: {value}")
    return port


def _match(line: str) -> tuple[DirectiveKind, str | None]:
    kind = _EXACT.get(line)
    if kind is not None:
        return kind, None

    for word, kind in _PREFIXED:
        if line.startswith(word):
            return kind, extract_argument(line, word)

    return DirectiveKind.UNKNOWN, None


def parse_line(
    line: str, accepted: frozenset[DirectiveKind] | None = None
) -> str | Directive:
    """Classify one line of input.

    Chat text comes back unchanged as a ``str``. A ``#`` line becomes a
    :class:`Directive`; a directive not in ``accepted`` is ``UNKNOWN``.
    Raises :class:`DirectiveError` if ``#setport`` or ``#sethost`` carries an
    unusable argument.
    """
    if not is_directive(line):
        return line

    kind, arg = _match(line)
    if accepted is not None and kind not in accepted:
        return Directive(DirectiveKind.UNKNOWN, raw=line)

    if kind is DirectiveKind.SETPORT:
        return Directive(kind, parse_port(arg), raw=line)

    if kind is DirectiveKind.SETHOST:
        host = arg.strip() if arg is not None else ""
        if not host:
            raise DirectiveError("A host name is required")
        return Directive(kind, host, raw=line)

    return Directive(kind, arg, raw=line)


class ServerCommandHandler:
    """Handles directives typed on the server console."""

    def __init__(self, service: ChatService) -> None:
        self.service = service
        self.log = logging.getLogger("simplechat.commands")

    def handle(self, text: str) -> bool:
        """Run a console directive.

        Returns False for plain text so the caller can broadcast it.
        """
        try:
            parsed = parse_line(text, SERVER_DIRECTIVES)
        except DirectiveError as e:
            self.log.debug("Rejected server directive %r: %s", text, e)
            self.service.ui.display(str(e))
            return True

        if isinstance(parsed, str):
            return False

        kind = parsed.kind
        self.log.debug("Server directive %s arg=%r", kind.name, parsed.arg)

        if kind is DirectiveKind.QUIT:
            self.service.quit()

        elif kind is DirectiveKind.STOP:
            self.service.stop_listening()

        elif kind is DirectiveKind.CLOSE:
            try:
                self.service.close()
            except OSError:
                self.log.warning("Close failed", exc_info=True)
                self.service.ui.display(
                    "Unable to close connection to clients and stop server, please try again"
                )

        elif kind is DirectiveKind.SETPORT:
            # Accepted while listening too; it applies to the next #start.
            self.service.port = parsed.arg
            self.service.ui.display(f"The port number has been set to {parsed.arg}")

        elif kind is DirectiveKind.START:
            try:
                self.service.listen()
            except OSError as e:
                self.log.warning("Listen failed port=%s: %s", self.service.port, e)
                self.service.ui.display(
                    "Unable to start listening for new clients, please try again"
                )

        elif kind is DirectiveKind.GETPORT:
            self.service.ui.display(
                f"The port number for this server is {self.service.port}"
            )

        else:
            self.log.debug("Unknown server directive %r", parsed.raw)
            self.service.ui.display(INVALID_COMMAND)

        return True


class ClientCommandHandler:
    """Handles directives typed on the client console.

    Send failures are left to propagate so the client can treat them as fatal.
    """

    def __init__(self, client: ChatClient) -> None:
        self.client = client
        self.log = logging.getLogger("simplechat.commands")

    def handle(self, text: str) -> bool:
        try:
            parsed = parse_line(text, CLIENT_DIRECTIVES)
        except DirectiveError as e:
            self.log.debug("Rejected client directive %r: %s", text, e)
            self.client.ui.display(str(e))
            return True

        if isinstance(parsed, str):
            return False

        kind = parsed.kind
        client = self.client
        self.log.debug("Client directive %s arg=%r", kind.name, parsed.arg)

        if kind is DirectiveKind.QUIT:
            client.quit()

        elif kind is DirectiveKind.LOGOFF:
            try:
                client.close_connection()
            except OSError:
                self.log.warning("Logoff failed", exc_info=True)
                client.ui.display(
                    "Unable to close connection, please check network configuration again"
                )

        elif kind is DirectiveKind.SETHOST:
            if client.is_connected:
                client.ui.display(
                    "Cannot change the host while connected, please #logoff first"
                )
            else:
                client.host = parsed.arg
                client.ui.display(f"The host name has been set to {parsed.arg}")

        elif kind is DirectiveKind.SETPORT:
            if client.is_connected:
                client.ui.display(
                    "Cannot change the port while connected, please #logoff first"
                )
            else:
                client.port = parsed.arg
                client.ui.display(f"The port number has been set to {parsed.arg}")

        elif kind is DirectiveKind.LOGIN:
            if not client.is_connected:
                try:
                    client.open_connection()
                except OSError as e:
                    self.log.info(
                        "Reconnect failed host=%s port=%s: %s", client.host, client.port, e
                    )
                    client.ui.display("Unable to connect to server, please try again")
            else:
                # Already connected: pass the bare directive on to the server.
                client.send_to_server(D_LOGIN)

        elif kind is DirectiveKind.GETHOST:
            client.ui.display(f"The host name is {client.host}")

        elif kind is DirectiveKind.GETPORT:
            client.ui.display(f"The port number for this server is {client.port}")

        else:
            self.log.debug("Unknown client directive %r", parsed.raw)
            client.ui.display(INVALID_COMMAND)

        return True
