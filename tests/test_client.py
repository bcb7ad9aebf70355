"""Pruebas de integracion de FtpsClient contra un servidor pyftpdlib real."""

import calendar
import io
import os
import threading
from datetime import datetime

import pytest

from fake_server import PASSWORD, USER, fast_settings
from ftpsclient import (
    BusyError, ConnectionClosedError, ConnectionOpenError, DataTransferError, FeatureNotSupportedError,
    FileAction, FtpsClient, LoginError, ListingMethod, OperationCancelledError, TransferMode, TransferType,
)
from ftpsclient.core.connection import ConnectionState
from ftpsclient.core.events import CLIENT_REQUEST, CONNECTION_CLOSED, TRANSFER_COMPLETE, TRANSFER_PROGRESS

HELLO = b"hello"


@pytest.fixture(autouse=True)
def hello_file(ftp_root):
    path = ftp_root / "hello.txt"
    path.write_bytes(HELLO)
    return path


@pytest.fixture
def big_file(ftp_root):
    path = ftp_root / "big.bin"
    path.write_bytes(os.urandom(1024 * 1024))
    return path


def _record_commands(client):
    commands = []
    client.register_handler(CLIENT_REQUEST, lambda request: commands.append(request.command))
    return commands


# ----------------- session -----------------
def test_open_negotiates_session(client):
    assert client.is_connected
    assert client.connection_state is ConnectionState.OPEN
    assert not client.is_busy
    assert client.encoding == "utf-8"
    assert client.features.contains("MLST")
    assert client.features.contains("REST", "STREAM")
    assert client.current_directory == "/"


def test_wrong_password(ftp_server):
    c = FtpsClient("127.0.0.1", ftp_server.address[1], settings=fast_settings())
    with pytest.raises(LoginError):
        c.open(USER, "wrong")
    assert not c.is_connected


def test_open_twice_is_rejected(client):
    with pytest.raises(ConnectionOpenError):
        client.open(USER, PASSWORD)


def test_operations_need_an_open_connection(ftp_server):
    c = FtpsClient("127.0.0.1", ftp_server.address[1], settings=fast_settings())
    with pytest.raises(ConnectionClosedError):
        c.get_working_directory()


def test_close_fires_connection_closed(ftp_server):
    c = FtpsClient("127.0.0.1", ftp_server.address[1], settings=fast_settings())
    closed = []
    c.register_handler(CONNECTION_CLOSED, lambda: closed.append(True))
    c.open(USER, PASSWORD)
    c.close()
    assert closed == [True]
    assert c.connection_state is ConnectionState.CLOSED


def test_change_user_and_reopen(client):
    client.change_user(USER, PASSWORD)
    assert client.is_connected
    client.reopen()
    assert client.is_connected
    assert client.get_working_directory() == "/"


def test_context_manager_closes(ftp_server):
    with FtpsClient("127.0.0.1", ftp_server.address[1], settings=fast_settings()) as c:
        c.open(USER, PASSWORD)
        assert c.is_connected
    assert not c.is_connected


# ----------------- navigation -----------------
def test_directories(client, ftp_root):
    client.make_directory("sub")
    assert (ftp_root / "sub").is_dir()
    client.change_directory("sub")
    assert client.current_directory == "/sub"
    client.change_directory_up()
    assert client.current_directory == "/"
    client.delete_directory("sub")
    assert not (ftp_root / "sub").exists()


def test_change_directory_multi_path(client, ftp_root):
    (ftp_root / "a" / "b").mkdir(parents=True)
    commands = _record_commands(client)
    client.change_directory_multi_path("/a/b")
    assert client.current_directory == "/a/b"
    assert commands.count("CWD") == 3


def test_change_directory_rejects_empty_path(client):
    with pytest.raises(ValueError):
        client.change_directory("")


# ----------------- simple commands -----------------
def test_rename_and_delete(client, ftp_root):
    client.rename("hello.txt", "renamed.txt")
    assert (ftp_root / "renamed.txt").read_bytes() == HELLO
    client.delete_file("renamed.txt")
    assert not (ftp_root / "renamed.txt").exists()


def test_informational_commands(client):
    client.no_operation()
    assert client.get_system_type() == "UNIX Type: L8"
    assert "214" in client.get_help()
    assert "211" in client.get_status()
    client.allocate_storage(1024)
    assert "UTF8" in client.get_features()


def test_quote(ftp_server):
    c = FtpsClient("127.0.0.1", ftp_server.address[1], settings=fast_settings(settle_interval=0.3))
    c.open(USER, PASSWORD)
    try:
        assert "UNIX Type: L8" in c.quote("syst")
        assert "hello.txt" in c.quote("NLST")
        assert "500" in c.quote("FOO bar")
        with pytest.raises(ValueError):
            c.quote("PASV")
        with pytest.raises(ValueError):
            c.quote("  ")
    finally:
        c.close()


def test_transfer_type_is_sent(client):
    commands = _record_commands(client)
    client.transfer_type = TransferType.ASCII
    assert client.transfer_type is TransferType.ASCII
    assert client.last_response.code == 200
    client.transfer_type = TransferType.BINARY
    assert commands == ["TYPE", "TYPE"]


def test_compression_needs_mode_z(client):
    with pytest.raises(FeatureNotSupportedError):
        client.is_compression_enabled = True
    assert not client.is_compression_enabled


# ----------------- metadata -----------------
def test_file_size(client):
    assert client.get_file_size("hello.txt") == len(HELLO)
    assert client.try_get_file_size("missing.txt") is None


def test_file_datetime(client, hello_file):
    stamp = calendar.timegm((2024, 1, 15, 10, 30, 0))
    os.utime(hello_file, (stamp, stamp))
    assert client.get_file_datetime("hello.txt") == datetime(2024, 1, 15, 10, 30, 0)


def test_file_info_uses_mlst(client):
    item = client.get_file_info("hello.txt")
    assert item.name == "/hello.txt"
    assert item.size == len(HELLO)
    assert item.is_file


def test_exists(client, ftp_root):
    (ftp_root / "a" / "b").mkdir(parents=True)
    assert client.exists("hello.txt")
    assert client.exists("/hello.txt")
    assert client.exists("/a/b")
    assert not client.exists("nothing.txt")
    assert not client.exists("/missing/x")


# ----------------- listing -----------------
def test_dir_list_uses_mlsd_over_epsv(client, ftp_root):
    (ftp_root / "sub").mkdir()
    commands = _record_commands(client)
    items = client.get_dir_list()
    assert "EPSV" in commands and "MLSD" in commands
    assert items.find("hello.txt").size == len(HELLO)
    assert items.find("hello.txt").full_path == "/hello.txt"
    assert items.find("sub").is_directory


def test_dir_list_as_text_and_names(client):
    assert "hello.txt" in client.get_dir_list_as_text()
    assert client.get_name_list().split() == ["hello.txt"]


def test_list_listing_method(client):
    client.listing_method = ListingMethod.LIST_AL
    items = client.get_dir_list()
    assert items.find("hello.txt").size == len(HELLO)


def test_dir_list_deep(client, ftp_root):
    (ftp_root / "a" / "b").mkdir(parents=True)
    (ftp_root / "a" / "one.txt").write_bytes(b"1")
    (ftp_root / "a" / "b" / "deep.txt").write_bytes(b"22")
    items = client.get_dir_list_deep("/")
    paths = {item.full_path for item in items}
    assert {"/hello.txt", "/a", "/a/one.txt", "/a/b", "/a/b/deep.txt"} <= paths
    assert items.find("deep.txt").size == 2


# ----------------- transfers -----------------
def test_put_and_get_round_trip(client, ftp_root, tmp_path):
    payload = os.urandom(50000)
    local = tmp_path / "upload.bin"
    local.write_bytes(payload)
    client.put_file(local, "data.bin")
    assert (ftp_root / "data.bin").read_bytes() == payload

    target = tmp_path / "download.bin"
    client.get_file("data.bin", target)
    assert target.read_bytes() == payload


def test_get_into_stream(client):
    buffer = io.BytesIO()
    client.get_file("hello.txt", buffer)
    assert buffer.getvalue() == HELLO


def test_create_new_refuses_existing_remote(client, ftp_root):
    with pytest.raises(DataTransferError):
        client.put_file(io.BytesIO(b"other"), "hello.txt", FileAction.CREATE_NEW)
    assert (ftp_root / "hello.txt").read_bytes() == HELLO


def test_create_new_local_file_exists(client, tmp_path):
    target = tmp_path / "exists.txt"
    target.write_bytes(b"keep")
    with pytest.raises(DataTransferError):
        client.get_file("hello.txt", target, FileAction.CREATE_NEW)
    assert target.read_bytes() == b"keep"


def test_append_upload(client, ftp_root):
    commands = _record_commands(client)
    client.put_file(io.BytesIO(b" world"), "hello.txt", FileAction.CREATE_OR_APPEND)
    assert "APPE" in commands
    assert (ftp_root / "hello.txt").read_bytes() == b"hello world"


def test_resume_download(client, ftp_root, tmp_path):
    payload = os.urandom(20000)
    (ftp_root / "partial.bin").write_bytes(payload)
    target = tmp_path / "partial.bin"
    target.write_bytes(payload[:7000])
    commands = _record_commands(client)
    client.get_file("partial.bin", target, FileAction.RESUME)
    assert target.read_bytes() == payload
    assert "REST" in commands


def test_resume_download_of_complete_file_is_skipped(client, tmp_path):
    target = tmp_path / "hello.txt"
    target.write_bytes(HELLO)
    commands = _record_commands(client)
    client.get_file("hello.txt", target, FileAction.RESUME)
    assert "RETR" not in commands


def test_resume_upload(client, ftp_root):
    payload = b"0123456789" * 1000
    (ftp_root / "up.bin").write_bytes(payload[:3000])
    client.put_file(io.BytesIO(payload), "up.bin", FileAction.RESUME)
    assert (ftp_root / "up.bin").read_bytes() == payload


def test_put_file_unique(client, ftp_root):
    name = client.put_file_unique(io.BytesIO(b"unique"))
    assert (ftp_root / name).read_bytes() == b"unique"


def test_move_file(client, ftp_root):
    client.move_file("hello.txt", "moved.txt")
    assert (ftp_root / "moved.txt").read_bytes() == HELLO
    assert not (ftp_root / "hello.txt").exists()


def test_active_mode_transfer(ftp_server, ftp_root):
    settings = fast_settings(transfer_mode=TransferMode.ACTIVE, active_port_min=50200, active_port_max=50250)
    c = FtpsClient("127.0.0.1", ftp_server.address[1], settings=settings)
    c.open(USER, PASSWORD)
    try:
        commands = _record_commands(c)
        buffer = io.BytesIO()
        c.get_file("hello.txt", buffer)
        assert buffer.getvalue() == HELLO
        assert "PORT" in commands or "EPRT" in commands
        c.put_file(io.BytesIO(b"active"), "active.txt")
        assert (ftp_root / "active.txt").read_bytes() == b"active"
    finally:
        c.close()


def test_progress_events(client, big_file):
    progress, complete = [], []
    client.register_handler(TRANSFER_PROGRESS, progress.append)
    client.register_handler(TRANSFER_COMPLETE, complete.append)
    client.get_file("big.bin", io.BytesIO())
    assert progress[-1].percent_complete == 100
    assert progress[-1].total_bytes_transferred == 1024 * 1024
    assert progress[-1].transfer_size == 1024 * 1024
    percents = [p.percent_complete for p in progress]
    assert percents == sorted(set(percents))
    assert complete[-1].total_bytes_transferred == 1024 * 1024


def test_settings_are_guarded_during_operations(client):
    errors = []

    def on_progress(progress):
        for name, value in (("transfer_mode", TransferMode.ACTIVE), ("host", "elsewhere")):
            try:
                setattr(client, name, value)
            except (BusyError, ConnectionOpenError) as e:
                errors.append(type(e))

    client.register_handler(TRANSFER_PROGRESS, on_progress)
    client.get_file("hello.txt", io.BytesIO())
    assert BusyError in errors
    assert ConnectionOpenError in errors
    assert client.transfer_mode is TransferMode.PASSIVE
    # idle again: the same setting is accepted
    client.transfer_mode = TransferMode.PASSIVE


def test_cancel_abandons_the_connection(client, big_file):
    commands = _record_commands(client)
    marks = []

    def on_progress(progress):
        if not marks:
            marks.append(len(commands))
            client.cancel_async()

    client.register_handler(TRANSFER_PROGRESS, on_progress)
    with pytest.raises(OperationCancelledError):
        client.get_file("big.bin", io.BytesIO())
    assert not client.is_connected
    assert len(commands) == marks[0]


def test_async_operations(client, big_file):
    entered, release = threading.Event(), threading.Event()

    def on_progress(progress):
        entered.set()
        release.wait(5)

    client.register_handler(TRANSFER_PROGRESS, on_progress)
    buffer = io.BytesIO()
    future = client.get_file_async("big.bin", buffer)
    assert entered.wait(5)
    assert client.is_busy
    with pytest.raises(BusyError):
        client.get_dir_list_async()
    release.set()
    future.result(10)
    assert len(buffer.getvalue()) == 1024 * 1024

    client.unregister_handler(TRANSFER_PROGRESS, on_progress)
    listing = client.get_dir_list_async().result(10)
    assert listing.contains("big.bin")


def test_fxp_needs_open_destination(client, ftp_server):
    destination = FtpsClient("127.0.0.1", ftp_server.address[1], settings=fast_settings())
    with pytest.raises(ConnectionClosedError):
        client.fxp_copy("hello.txt", destination)


def test_resume_or_create(client, ftp_root, tmp_path):
    client.put_file(io.BytesIO(b"fresh"), "new.txt", FileAction.RESUME_OR_CREATE)
    assert (ftp_root / "new.txt").read_bytes() == b"fresh"

    target = tmp_path / "fresh.txt"
    client.get_file("hello.txt", target, FileAction.RESUME_OR_CREATE)
    assert target.read_bytes() == HELLO


def test_abort_without_transfer(client):
    client.abort()
    assert client.is_connected
