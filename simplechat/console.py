"""Terminal front ends for the chat server and client."""

from __future__ import annotations

import logging
import sys
import threading
from typing import Callable, Protocol, TextIO

from .client import ChatClient
from .config import ClientRuntimeConfig, ServerRuntimeConfig
from .constants import DISPLAY_PREFIX
from .service import ChatService

log = logging.getLogger("simplechat.console")


class ChatDisplay(Protocol):
    def display(self, message: str) -> None: ...


class _Console:
    def __init__(self, stdin: TextIO | None, stdout: TextIO | None, prefix: str) -> None:
        self.stdin = stdin if stdin is not None else sys.stdin
        self.stdout = stdout if stdout is not None else sys.stdout
        self.prefix = prefix
        self._out_lock = threading.Lock()

    def display(self, message: str) -> None:
        with self._out_lock:
            print(f"{self.prefix}{message}", file=self.stdout, flush=True)

    def _read_lines(self, handle: Callable[[str], None], done: Callable[[], bool]) -> None:
        while not done():
            try:
                line = self.stdin.readline()
                if not line:
                    raise EOFError("end of console input")
            except (EOFError, OSError, ValueError) as e:
                log.debug("Console input ended: %s", e)
                self.display("Unexpected error while reading from console!")
                return
            handle(line.rstrip("\r\n"))

    def _start_reader(self, target: Callable[[], None]) -> threading.Thread:
        t = threading.Thread(
            target=target,
            name="simplechat-console",
            daemon=True,
        )
        t.start()
        return t


class ServerConsole(_Console):
    """Server UI: shows events with a ``> `` prefix and feeds typed lines to the service."""

    def __init__(
        self,
        config: ServerRuntimeConfig,
        *,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        super().__init__(stdin, stdout, DISPLAY_PREFIX)
        self.service = ChatService(config, self)

    def accept(self) -> None:
        """Read console lines until input ends or the server shuts down."""
        self._read_lines(self.service.handle_operator_input, lambda: self.service.is_shut_down)

    def run(self) -> int:
        try:
            self.service.listen()
        except OSError as e:
            log.error("Could not listen port=%s: %s", self.service.port, e)
            self.display("ERROR - Could not listen for clients!")
            return 1

        self._start_reader(self.accept)
        self.service.run_forever()
        return 0


class ClientConsole(_Console):
    """Client UI: prints what the server sends and feeds typed lines to the client."""

    def __init__(
        self,
        login_id: str,
        config: ClientRuntimeConfig,
        *,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        super().__init__(stdin, stdout, DISPLAY_PREFIX)
        # Raises ValueError for a bad login id and OSError if the server is unreachable.
        self.client = ChatClient(login_id, config.host, config.port, self)

    def accept(self) -> None:
        self._read_lines(self.client.handle_operator_input, lambda: self.client.terminated)

    def run(self) -> int:
        self._start_reader(self.accept)
        self.client.run_forever()
        return 0
