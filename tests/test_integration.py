import socket
import struct

import pytest

from simplechat.client import ChatClient
from simplechat.codec import pack_frame
from simplechat.config import ServerRuntimeConfig
from simplechat.constants import MAX_MESSAGE_BYTES
from simplechat.service import ChatService


@pytest.fixture
def server(make_display):
    ui = make_display()
    cfg = ServerRuntimeConfig(host="127.0.0.1", port=0, accept_poll_interval_s=0.05)
    svc = ChatService(cfg, ui)
    svc.listen()
    yield svc, ui
    svc.quit()


@pytest.fixture
def connect(server, make_display, wait_for):
    svc, server_ui = server
    clients: list[ChatClient] = []

    def _connect(login_id: str):
        ui = make_display()
        client = ChatClient(login_id, "127.0.0.1", svc.transport.bound_port, ui)
        clients.append(client)
        assert wait_for(lambda: f"{login_id} has logged on." in ui.messages)
        return client, ui

    yield _connect

    for c in clients:
        c.quit()


def test_two_clients_chat(server, connect, wait_for) -> None:
    svc, server_ui = server

    alice, alice_ui = connect("alice")
    assert "A new client has connected to the server." in server_ui.messages
    assert "alice has logged on." in server_ui.messages

    bob, bob_ui = connect("bob")
    assert wait_for(lambda: "bob has logged on." in alice_ui.messages)

    alice.handle_operator_input("hi")

    assert wait_for(lambda: "alice: hi" in alice_ui.messages)
    assert wait_for(lambda: "alice: hi" in bob_ui.messages)
    assert "Message received: hi from alice" in server_ui.messages
    assert alice_ui.count("alice has logged on.") == 1


def test_duplicate_login_closes_only_offender(server, connect, wait_for) -> None:
    svc, server_ui = server
    alice, alice_ui = connect("alice")
    bob, bob_ui = connect("bob")

    alice.handle_operator_input("#login")

    assert alice.wait(5.0)
    assert wait_for(
        lambda: "Error, client already logged in, terminating connection..."
        in server_ui.messages
    )
    assert wait_for(lambda: "Client 'alice' has disconnected." in server_ui.messages)
    assert "Connection closed" in alice_ui.messages

    bob.handle_operator_input("still here")
    assert wait_for(lambda: "bob: still here" in bob_ui.messages)
    assert sum(m.endswith(" has logged on.") for m in server_ui.messages) == 2


def test_stop_keeps_existing_connections(server, connect, wait_for) -> None:
    svc, server_ui = server
    alice, alice_ui = connect("alice")
    bob, bob_ui = connect("bob")
    port = svc.transport.bound_port

    svc.handle_operator_input("#stop")
    assert not svc.is_listening
    assert "Server has stopped listening for connections." in server_ui.messages

    alice.handle_operator_input("after stop")
    assert wait_for(lambda: "alice: after stop" in bob_ui.messages)

    with pytest.raises(OSError):
        socket.create_connection(("127.0.0.1", port), timeout=2.0).close()


def test_operator_message_is_broadcast(server, connect, wait_for) -> None:
    svc, server_ui = server
    alice, alice_ui = connect("alice")

    svc.handle_operator_input("maintenance at noon")

    assert wait_for(lambda: "SERVER MESSAGE> maintenance at noon" in alice_ui.messages)
    assert "SERVER MESSAGE> maintenance at noon" in server_ui.messages


def test_unknown_server_directive_sends_nothing(server, connect, wait_for) -> None:
    svc, server_ui = server
    alice, alice_ui = connect("alice")
    seen = len(alice_ui.messages)

    svc.handle_operator_input("#frobnicate")
    svc.handle_operator_input("marker")

    assert wait_for(lambda: "SERVER MESSAGE> marker" in alice_ui.messages)
    assert alice_ui.messages[seen:] == ["SERVER MESSAGE> marker"]
    assert "You have entered an invalid command, please try again" in server_ui.messages


def test_unidentified_connection_is_ignored(server, connect, wait_for) -> None:
    svc, server_ui = server
    alice, alice_ui = connect("alice")
    seen = len(alice_ui.messages)

    with socket.create_connection(("127.0.0.1", svc.transport.bound_port)) as raw:
        raw.sendall(pack_frame("hello?"))
        assert wait_for(
            lambda: "Ignoring message from a client that has not logged in: hello?"
            in server_ui.messages
        )

    svc.handle_operator_input("marker")
    assert wait_for(lambda: "SERVER MESSAGE> marker" in alice_ui.messages)
    assert alice_ui.messages[seen:] == ["SERVER MESSAGE> marker"]


def test_malformed_frame_is_reported(server, wait_for) -> None:
    svc, server_ui = server

    with socket.create_connection(("127.0.0.1", svc.transport.bound_port)) as raw:
        raw.sendall(struct.pack(">I", 0xFFFFFFFF))
        assert wait_for(
            lambda: any(m.startswith("Connection error from 'None'") for m in server_ui.messages)
        )

    assert wait_for(lambda: svc.transport.connections() == [])


def test_logoff_and_login_again(server, connect, wait_for) -> None:
    svc, server_ui = server
    alice, alice_ui = connect("alice")

    alice.handle_operator_input("#logoff")
    assert wait_for(lambda: "Client 'alice' has disconnected." in server_ui.messages)
    assert wait_for(lambda: "Connection closed" in alice_ui.messages)
    assert not alice.terminated

    alice.handle_operator_input("#login")
    assert wait_for(lambda: alice_ui.count("alice has logged on.") == 2)
    assert not alice.terminated


def test_close_disconnects_clients(server, connect, wait_for) -> None:
    svc, server_ui = server
    alice, alice_ui = connect("alice")

    svc.handle_operator_input("#close")

    assert alice.wait(5.0)
    assert "The server has shut down." in server_ui.messages
    assert not svc.is_listening
    assert not svc.is_shut_down


def test_quit_shuts_the_server_down(server) -> None:
    svc, server_ui = server
    svc.handle_operator_input("#quit")
    assert svc.wait(1.0)
    assert not svc.is_listening


def test_setport_then_getport(server) -> None:
    svc, server_ui = server
    svc.handle_operator_input("#setport 6000")
    svc.handle_operator_input("#getport")
    assert server_ui.messages[-1] == "The port number for this server is 6000"


def test_longest_chat_line_reaches_everyone(server, connect, wait_for) -> None:
    svc, server_ui = server
    alice, alice_ui = connect("alice")
    bob, bob_ui = connect("bob")
    # CBOR adds a 3-byte header to strings of this length.
    text = "z" * (MAX_MESSAGE_BYTES - 3)

    alice.handle_operator_input(text)

    assert wait_for(lambda: f"alice: {text}" in bob_ui.messages)
    assert wait_for(lambda: f"alice: {text}" in alice_ui.messages)
    assert not alice.terminated


def test_oversized_client_frame_is_rejected(server, connect, wait_for) -> None:
    svc, server_ui = server
    alice, alice_ui = connect("alice")
    seen = len(alice_ui.messages)

    with socket.create_connection(("127.0.0.1", svc.transport.bound_port)) as raw:
        raw.sendall(pack_frame("#loginmallory"))
        assert wait_for(lambda: "mallory has logged on." in alice_ui.messages)
        raw.sendall(pack_frame("z" * (MAX_MESSAGE_BYTES + 100)))
        assert wait_for(
            lambda: any(
                m.startswith("Connection error from 'mallory'") for m in server_ui.messages
            )
        )

    svc.handle_operator_input("marker")
    assert wait_for(lambda: "SERVER MESSAGE> marker" in alice_ui.messages)
    assert alice_ui.messages[seen:] == ["mallory has logged on.", "SERVER MESSAGE> marker"]
