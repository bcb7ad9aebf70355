import pytest

from ftpsclient import (
    ClientSettings, FtpsClient, HashingAlgorithm, ListingMethod, NetworkVersion, TransferMode,
)
from ftpsclient.core.security import SecurityProtocol


def test_defaults():
    settings = ClientSettings()
    assert settings.port == 21
    assert settings.transfer_mode is TransferMode.PASSIVE
    assert settings.listing_method is ListingMethod.AUTOMATIC
    assert settings.hashing_algorithm is HashingAlgorithm.NONE
    assert (settings.active_port_min, settings.active_port_max) == (50000, 50080)


@pytest.mark.parametrize("name, guard", [
    ("host", "closed"),
    ("security_protocol", "closed"),
    ("transfer_mode", "idle"),
    ("max_download_speed", "idle"),
    ("nothing", None),
])
def test_guard_for(name, guard):
    assert ClientSettings.guard_for(name) == guard


def test_port_range_is_validated():
    with pytest.raises(ValueError):
        ClientSettings(active_port_min=60000, active_port_max=50000)


def test_from_env():
    settings = ClientSettings.from_env(environ={
        "FTPS_HOST": "ftp.example.com",
        "FTPS_SECURITY": "tls12-implicit",
        "FTPS_MODE": "ACTIVE",
        "FTPS_NETWORK": "ipv6",
        "FTPS_TIMEOUT": "7.5",
        "FTPS_HASH": "sha256",
        "FTPS_ALWAYS_ACCEPT": "yes",
    })
    assert settings.host == "ftp.example.com"
    assert settings.security_protocol is SecurityProtocol.TLS12_IMPLICIT
    assert settings.port == 990
    assert settings.transfer_mode is TransferMode.ACTIVE
    assert settings.network_version is NetworkVersion.IPV6
    assert settings.tcp_timeout == settings.command_timeout == settings.transfer_timeout == 7.5
    assert settings.hashing_algorithm is HashingAlgorithm.SHA256
    assert settings.always_accept_server_certificate
    assert not settings.is_compression_enabled


def test_from_env_explicit_port_wins():
    settings = ClientSettings.from_env(prefix="X_", environ={"X_SECURITY": "tls12-implicit", "X_PORT": "2990"})
    assert settings.port == 2990


def test_client_uses_implicit_port():
    client = FtpsClient("ftp.example.com", security_protocol=SecurityProtocol.TLS12_IMPLICIT)
    assert client.port == 990
    assert FtpsClient("ftp.example.com").port == 21
    assert FtpsClient("ftp.example.com", 2121).port == 2121


def test_client_copies_settings():
    settings = ClientSettings(host="ftp.example.com")
    client = FtpsClient(settings=settings)
    client.transfer_mode = TransferMode.ACTIVE
    assert settings.transfer_mode is TransferMode.PASSIVE
    assert client.settings.transfer_mode is TransferMode.ACTIVE
    assert client.host == "ftp.example.com"


def test_settings_change_freely_while_closed():
    client = FtpsClient("ftp.example.com")
    client.host = "other.example.com"
    client.port = 2121
    assert (client.host, client.port) == ("other.example.com", 2121)


def test_open_requires_host():
    with pytest.raises(ValueError):
        FtpsClient().open("user", "secret")
