"""Motor del canal de control contra un servidor con guion."""

import socket
import time

import pytest

from ftpsclient.core.connection import ConnectionState, ControlConnectionManager
from ftpsclient.core.constants import FtpCmd
from ftpsclient.core.errors import (
    CommandResponseTimeoutError, ConnectionClosedError, ConnectionOpenError,
    OperationCancelledError, ProtocolError,
)
from ftpsclient.core.events import CLIENT_REQUEST, CONNECTION_CLOSED, SERVER_RESPONSE, EventHooks
from ftpsclient.core.request import Request
from ftpsclient.core.transfer import CancellationToken


def _connect(server, **kwargs) -> ControlConnectionManager:
    values = dict(command_timeout=2, settle_interval=0.05)
    values.update(kwargs)
    conn = ControlConnectionManager("127.0.0.1", server.port, **values)
    conn.connect()
    return conn


def _wait_until(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_connect_waits_for_banner(scripted_server):
    server = scripted_server()
    conn = _connect(server)
    assert conn.state is ConnectionState.OPEN
    assert conn.is_connected
    assert conn.last_response.code == 220
    conn.close()
    assert conn.state is ConnectionState.CLOSED
    assert server.wait_for_command("QUIT")


def test_connect_refused():
    probe = socket.socket()
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    conn = ControlConnectionManager("127.0.0.1", port, timeout=1)
    with pytest.raises(ConnectionOpenError):
        conn.connect()
    assert conn.state is ConnectionState.CLOSED


def test_connect_twice_fails(scripted_server):
    conn = _connect(scripted_server())
    with pytest.raises(ConnectionOpenError):
        conn.connect()
    conn.close()


def test_multi_line_reply(scripted_server):
    server = scripted_server({"HELP": "214-The following commands:\r\n USER PASS\r\n214 Help OK."})
    conn = _connect(server)
    response = conn.send_request(Request(FtpCmd.HELP))
    assert response.code == 214
    assert response.text == "Help OK."
    assert len(conn.last_response_list) == 3
    conn.close()


def test_continuation_lines_do_not_end_the_wait(scripted_server):
    server = scripted_server({"STAT": "211-status\r\n211-more status\r\n211 End of status"})
    conn = _connect(server)
    assert conn.send_request(Request(FtpCmd.STAT)).text == "End of status"
    conn.close()


def test_unexpected_code_is_skipped(scripted_server):
    server = scripted_server({"CWD": "150 not for you\r\n250 Directory changed."})
    conn = _connect(server)
    assert conn.send_request(Request(FtpCmd.CWD, "pub")).code == 250
    conn.close()


def test_unhappy_code_raises(scripted_server):
    server = scripted_server({"DELE": "550 No such file."})
    conn = _connect(server)
    with pytest.raises(ProtocolError) as info:
        conn.send_request(Request(FtpCmd.DELE, "missing"))
    assert info.value.response.code == 550
    assert "550" in str(info.value)
    assert conn.is_connected
    conn.close()


def test_response_timeout(scripted_server):
    server = scripted_server({"NOOP": None})
    conn = _connect(server, command_timeout=0.3)
    with pytest.raises(CommandResponseTimeoutError):
        conn.send_request(Request(FtpCmd.NOOP))
    conn.close()


def test_free_form_command_collects_replies(scripted_server):
    server = scripted_server({"SITE": "200-who\r\n200 done"})
    conn = _connect(server, settle_interval=0.3)
    response = conn.send_request(Request(FtpCmd.CUSTOM, "SITE WHO"))
    assert response.code == 200
    assert [r.text for r in conn.last_response_list] == ["who", "done"]
    assert server.commands[-1] == "SITE WHO"
    conn.close()


def test_stale_replies_are_discarded(scripted_server):
    server = scripted_server()
    conn = _connect(server)
    server.push("200 stale reply")
    time.sleep(0.2)
    response = conn.send_request(Request(FtpCmd.PWD))
    assert response.code == 257
    conn.close()


def test_service_not_available_closes_connection(scripted_server):
    server = scripted_server({"NOOP": "421 Service not available, closing."})
    events = EventHooks()
    closed = []
    events.register_handler(CONNECTION_CLOSED, lambda: closed.append(True))
    conn = _connect(server, events=events)
    with pytest.raises(ProtocolError):
        conn.send_request(Request(FtpCmd.NOOP))
    assert _wait_until(lambda: conn.state is ConnectionState.CLOSED)
    assert closed
    with pytest.raises(ConnectionClosedError):
        conn.send_request(Request(FtpCmd.NOOP))


def test_send_on_closed_connection():
    conn = ControlConnectionManager("127.0.0.1", 21)
    with pytest.raises(ConnectionClosedError):
        conn.send_request(Request(FtpCmd.NOOP))


def test_cancelled_token_stops_commands(scripted_server):
    conn = _connect(scripted_server())
    conn.cancel_token = CancellationToken()
    conn.cancel_token.cancel()
    with pytest.raises(OperationCancelledError):
        conn.send_request(Request(FtpCmd.NOOP))
    conn.close(send_quit=False)


def test_events_are_fired(scripted_server):
    events = EventHooks()
    requests, responses = [], []
    events.register_handler(CLIENT_REQUEST, requests.append)
    events.register_handler(SERVER_RESPONSE, responses.append)
    conn = _connect(scripted_server(), events=events)
    conn.send_request(Request(FtpCmd.NOOP))
    conn.close()
    assert [r.command for r in requests] == [FtpCmd.NOOP, FtpCmd.QUIT]
    assert [r.code for r in responses][:2] == [220, 200]


def test_register_unknown_event():
    with pytest.raises(ValueError):
        EventHooks().register_handler("no-such-event", print)
