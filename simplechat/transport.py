"""TCP connection framework for simplechat.

One thread per connection reads framed messages and delivers them, along with
lifecycle events, to a handler object. The server side also runs an accept
loop. Handlers are plain objects implementing :class:`ServerHandler` or
:class:`ClientHandler`.
"""

from __future__ import annotations

import enum
import itertools
import logging
import socket
import threading
from typing import Any, Callable, Protocol

from .codec import FrameError, pack_frame, read_frame
from .constants import MAX_FRAME_BYTES, MAX_MESSAGE_BYTES


class ConnectionClosedError(OSError):
    """Raised when sending on a connection that is no longer open."""


class FaultKind(enum.Enum):
    PEER_RESET = "peer_reset"
    MALFORMED = "malformed"
    IO = "io"


def classify_fault(exc: BaseException) -> FaultKind:
    if isinstance(exc, (ConnectionResetError, ConnectionAbortedError, BrokenPipeError)):
        return FaultKind.PEER_RESET
    if isinstance(exc, FrameError):
        return FaultKind.MALFORMED
    return FaultKind.IO


class ServerHandler(Protocol):
    def message_received(self, conn: ClientConnection, text: str) -> None: ...

    def connection_accepted(self, conn: ClientConnection) -> None: ...

    def connection_closed(self, conn: ClientConnection) -> None: ...

    def connection_faulted(
        self, conn: ClientConnection, kind: FaultKind, exc: BaseException
    ) -> None: ...

    def listening_started(self) -> None: ...

    def listening_stopped(self) -> None: ...

    def server_closed(self) -> None: ...

    def listening_faulted(self, exc: BaseException) -> None: ...


class ClientHandler(Protocol):
    def connection_established(self) -> None: ...

    def connection_closed(self) -> None: ...

    def connection_faulted(self, kind: FaultKind, exc: BaseException) -> None: ...

    def message_received(self, text: str) -> None: ...


def _notify(log: logging.Logger, fn: Callable[..., Any], *args: Any) -> None:
    try:
        fn(*args)
    except Exception:
        log.exception("Handler %s failed", getattr(fn, "__name__", fn))


class _FramedSocket:
    """A connected socket carrying framed text messages.

    ``close()`` is idempotent and may be called from any thread; it shuts the
    socket down, which wakes up the thread blocked in ``read_loop()``.
    """

    def __init__(
        self,
        sock: socket.socket,
        log: logging.Logger,
        max_frame_bytes: int = MAX_FRAME_BYTES,
    ) -> None:
        self.log = log
        self._sock = sock
        self._rfile = sock.makefile("rb")
        self._write_lock = threading.Lock()
        self._close_lock = threading.Lock()
        self._closed = False
        self._max_frame_bytes = max_frame_bytes

    @property
    def is_open(self) -> bool:
        return not self._closed

    def send(self, text: str) -> None:
        self.send_frame(pack_frame(text))

    def send_frame(self, frame: bytes) -> None:
        if self._closed:
            raise ConnectionClosedError("connection is closed")
        with self._write_lock:
            try:
                self._sock.sendall(frame)
            except OSError as e:
                if self._closed:
                    raise ConnectionClosedError("connection is closed") from e
                raise

    def close(self) -> bool:
        """Close the socket. Returns False if it was already closed."""
        with self._close_lock:
            if self._closed:
                return False
            self._closed = True

        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Peer already gone.
            pass
        self._sock.close()
        return True

    def read_loop(
        self, on_message: Callable[[str], None]
    ) -> tuple[FaultKind | None, BaseException | None]:
        """Deliver messages until the stream ends.

        Returns ``(None, None)`` for an orderly close (end of stream, or a
        local ``close()``), otherwise the fault kind and the exception.
        """
        try:
            while True:
                try:
                    text = read_frame(self._rfile, self._max_frame_bytes)
                except EOFError:
                    return None, None
                _notify(self.log, on_message, text)
        except (OSError, FrameError) as e:
            if self._closed:
                return None, None
            return classify_fault(e), e
        finally:
            self.close()
            try:
                self._rfile.close()
            except OSError:
                pass


_conn_ids = itertools.count(1)


class ClientConnection(_FramedSocket):
    """Server-side record of one connected client.

    The record carries the client's login id; it is owned by the
    :class:`ConnectionServer` and dropped when the connection ends.
    """

    def __init__(self, sock: socket.socket, address: Any, log: logging.Logger) -> None:
        # Client frames must leave room for the "<id>: " prefix on rebroadcast.
        super().__init__(sock, log, MAX_MESSAGE_BYTES)
        self.conn_id = next(_conn_ids)
        self.address = address
        self._login_id: str | None = None

    @property
    def login_id(self) -> str | None:
        return self._login_id

    @login_id.setter
    def login_id(self, value: str) -> None:
        if self._login_id is not None:
            raise ValueError("login id already assigned")
        self._login_id = value

    def __repr__(self) -> str:
        return f"<ClientConnection id={self.conn_id} login_id={self._login_id!r} addr={self.address!r}>"


class ConnectionServer:
    def __init__(
        self,
        port: int,
        handler: ServerHandler,
        *,
        host: str = "",
        poll_interval_s: float = 0.5,
    ) -> None:
        self.log = logging.getLogger("simplechat.transport")
        self.handler = handler
        self.host = host
        self._port = int(port)
        self._poll_interval_s = float(poll_interval_s)

        self._listen_lock = threading.Lock()
        self._listen_sock: socket.socket | None = None
        self._accept_thread: threading.Thread | None = None
        self._accept_stop: threading.Event | None = None
        self._bound_port: int | None = None

        # Guards the open-connection set. Broadcast fan-out and removal of a
        # finished connection both run under it.
        self._conn_lock = threading.RLock()
        self._connections: dict[int, ClientConnection] = {}

    @property
    def port(self) -> int:
        return self._port

    @port.setter
    def port(self, value: int) -> None:
        self._port = int(value)

    @property
    def bound_port(self) -> int | None:
        """Port of the current listening socket (differs from ``port`` when it is 0)."""
        return self._bound_port

    @property
    def is_listening(self) -> bool:
        return self._listen_sock is not None

    def connections(self) -> list[ClientConnection]:
        with self._conn_lock:
            return list(self._connections.values())

    def listen(self) -> None:
        """Start accepting connections. Does nothing if already listening."""
        with self._listen_lock:
            if self._listen_sock is not None:
                return

            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                sock.bind((self.host, self._port))
                sock.listen()
            except OSError:
                sock.close()
                raise
            sock.settimeout(self._poll_interval_s)

            stop = threading.Event()
            self._listen_sock = sock
            self._accept_stop = stop
            self._bound_port = sock.getsockname()[1]
            self._accept_thread = threading.Thread(
                target=self._accept_loop,
                args=(sock, stop),
                name="simplechat-accept",
                daemon=True,
            )
            self._accept_thread.start()

        self.log.info("Listening host=%r port=%s", self.host, self._bound_port)
        _notify(self.log, self.handler.listening_started)

    def stop_accepting(self) -> bool:
        """Stop accepting new connections; open connections are untouched.

        Returns False if the server was not listening.
        """
        with self._listen_lock:
            sock = self._listen_sock
            thread = self._accept_thread
            stop = self._accept_stop
            if sock is None:
                return False
            self._listen_sock = None
            self._accept_thread = None
            self._accept_stop = None

        if stop is not None:
            stop.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        sock.close()

        self.log.info("Stopped listening port=%s", self._bound_port)
        _notify(self.log, self.handler.listening_stopped)
        return True

    def close_all(self) -> None:
        """Stop accepting and close every open connection."""
        self.stop_accepting()

        for conn in self.connections():
            conn.close()

        _notify(self.log, self.handler.server_closed)

    def broadcast(self, text: str) -> int:
        """Send ``text`` to every open connection.

        A failed recipient is logged and skipped. Returns the number of
        connections the message was written to.
        """
        frame = pack_frame(text)
        delivered = 0
        with self._conn_lock:
            for conn in self._connections.values():
                try:
                    conn.send_frame(frame)
                    delivered += 1
                except OSError as e:
                    self.log.warning(
                        "Broadcast failed conn_id=%s login_id=%r err=%s",
                        conn.conn_id,
                        conn.login_id,
                        e,
                    )
        return delivered

    def _accept_loop(self, sock: socket.socket, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                client_sock, addr = sock.accept()
            except TimeoutError:
                continue
            except OSError as e:
                if stop.is_set():
                    break
                self.log.error("Accept failed port=%s: %s", self._bound_port, e)
                _notify(self.log, self.handler.listening_faulted, e)
                self.stop_accepting()
                break

            client_sock.settimeout(None)
            self._add_connection(client_sock, addr)

    def _add_connection(self, client_sock: socket.socket, addr: Any) -> None:
        conn = ClientConnection(client_sock, addr, self.log)
        with self._conn_lock:
            self._connections[conn.conn_id] = conn

        self.log.info("Connection accepted conn_id=%s addr=%s", conn.conn_id, addr)
        _notify(self.log, self.handler.connection_accepted, conn)

        threading.Thread(
            target=self._serve,
            args=(conn,),
            name=f"simplechat-conn-{conn.conn_id}",
            daemon=True,
        ).start()

    def _serve(self, conn: ClientConnection) -> None:
        kind, exc = conn.read_loop(
            lambda text: self.handler.message_received(conn, text)
        )

        with self._conn_lock:
            self._connections.pop(conn.conn_id, None)

        if kind is None:
            self.log.info(
                "Connection closed conn_id=%s login_id=%r", conn.conn_id, conn.login_id
            )
            _notify(self.log, self.handler.connection_closed, conn)
        else:
            self.log.info(
                "Connection fault conn_id=%s login_id=%r kind=%s err=%s",
                conn.conn_id,
                conn.login_id,
                kind.value,
                exc,
            )
            _notify(self.log, self.handler.connection_faulted, conn, kind, exc)


class ConnectionClient:
    """Client end of a chat connection; may be closed and opened again."""

    def __init__(self, host: str, port: int, handler: ClientHandler) -> None:
        self.log = logging.getLogger("simplechat.transport")
        self.handler = handler
        self.host = host
        self.port = int(port)
        self._open_lock = threading.Lock()
        self._channel: _FramedSocket | None = None

    @property
    def is_open(self) -> bool:
        channel = self._channel
        return channel is not None and channel.is_open

    def open(self) -> None:
        """Connect to ``host:port``. Raises OSError if that fails."""
        with self._open_lock:
            if self.is_open:
                return
            sock = socket.create_connection((self.host, self.port))
            channel = _FramedSocket(sock, self.log)
            self._channel = channel

        self.log.info("Connected host=%s port=%s", self.host, self.port)
        threading.Thread(
            target=self._serve,
            args=(channel,),
            name="simplechat-client-reader",
            daemon=True,
        ).start()
        _notify(self.log, self.handler.connection_established)

    def close(self) -> None:
        channel = self._channel
        if channel is not None:
            channel.close()

    def send(self, text: str) -> None:
        channel = self._channel
        if channel is None:
            raise ConnectionClosedError("not connected")
        channel.send(text)

    def _serve(self, channel: _FramedSocket) -> None:
        kind, exc = channel.read_loop(self.handler.message_received)

        if channel is not self._channel:
            # A newer connection replaced this one; its events are the ones that count.
            self.log.debug("Ignoring end of superseded connection")
            return

        if kind is None:
            self.log.info("Connection closed host=%s port=%s", self.host, self.port)
            _notify(self.log, self.handler.connection_closed)
        else:
            self.log.info(
                "Connection fault host=%s port=%s kind=%s err=%s",
                self.host,
                self.port,
                kind.value,
                exc,
            )
            _notify(self.log, self.handler.connection_faulted, kind, exc)
