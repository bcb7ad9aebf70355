"""
Configuracion de la sesion FTP/FTPS.

ClientSettings agrupa todas las opciones con sus valores por defecto. Cada
campo declara en ``metadata["guard"]`` cuando puede cambiarse:
    - "closed": solo con la conexion cerrada (host, puerto, TLS, tiempos...)
    - "idle": con la conexion abierta pero sin ninguna operacion en curso
"""

import enum
import os
from dataclasses import dataclass, field, fields
from typing import Optional

from .core.constants import (
    DEFAULT_ACTIVE_PORT_MAX, DEFAULT_ACTIVE_PORT_MIN, DEFAULT_CLIENT_NAME,
    DEFAULT_COMMAND_TIMEOUT, DEFAULT_FXP_TIMEOUT, DEFAULT_IMPLICIT_PORT, DEFAULT_PORT,
    DEFAULT_SETTLE_INTERVAL, DEFAULT_TCP_BUFFER_SIZE, DEFAULT_TCP_TIMEOUT, DEFAULT_TRANSFER_TIMEOUT,
)
from .core.hashing import HashingAlgorithm
from .core.security import SecurityProtocol


class TransferMode(enum.Enum):
    ACTIVE = "active"
    PASSIVE = "passive"


class NetworkVersion(enum.Enum):
    IPV4 = "ipv4"
    IPV6 = "ipv6"


class TransferType(enum.Enum):
    BINARY = "I"
    ASCII = "A"
    UNKNOWN = "?"


class ListingMethod(enum.Enum):
    LIST = "list"
    LIST_AL = "list-al"
    MLSX = "mlsx"
    AUTOMATIC = "automatic"


class FileAction(enum.Enum):
    CREATE = "create"
    CREATE_NEW = "create-new"
    CREATE_OR_APPEND = "create-or-append"
    RESUME = "resume"
    RESUME_OR_CREATE = "resume-or-create"


def _closed(default, **kwargs):
    return field(default=default, metadata={"guard": "closed"}, **kwargs)


def _idle(default, **kwargs):
    return field(default=default, metadata={"guard": "idle"}, **kwargs)


@dataclass
class ClientSettings:
    host: str = _closed("")
    port: int = _closed(DEFAULT_PORT)
    security_protocol: SecurityProtocol = _closed(SecurityProtocol.NONE)
    network_version: NetworkVersion = _closed(NetworkVersion.IPV4)
    tcp_buffer_size: int = _closed(DEFAULT_TCP_BUFFER_SIZE)
    tcp_timeout: float = _closed(DEFAULT_TCP_TIMEOUT)
    command_timeout: float = _closed(DEFAULT_COMMAND_TIMEOUT)
    transfer_timeout: float = _closed(DEFAULT_TRANSFER_TIMEOUT)
    always_accept_server_certificate: bool = _closed(False)
    send_prot_p_for_implicit: bool = _closed(True)
    client_cert_file: Optional[str] = _closed(None)
    client_key_file: Optional[str] = _closed(None)
    ca_file: Optional[str] = _closed(None)
    client_name: str = _closed(DEFAULT_CLIENT_NAME)
    settle_interval: float = _closed(DEFAULT_SETTLE_INTERVAL)

    transfer_mode: TransferMode = _idle(TransferMode.PASSIVE)
    transfer_type: TransferType = _idle(TransferType.BINARY)
    listing_method: ListingMethod = _idle(ListingMethod.AUTOMATIC)
    fxp_timeout: float = _idle(DEFAULT_FXP_TIMEOUT)
    active_port_min: int = _idle(DEFAULT_ACTIVE_PORT_MIN)
    active_port_max: int = _idle(DEFAULT_ACTIVE_PORT_MAX)
    client_address: Optional[str] = _idle(None)
    # KB/s, 0 = unlimited
    max_upload_speed: int = _idle(0)
    max_download_speed: int = _idle(0)
    hashing_algorithm: HashingAlgorithm = _idle(HashingAlgorithm.NONE)
    is_compression_enabled: bool = _idle(False)

    def __post_init__(self):
        if self.active_port_min > self.active_port_max:
            raise ValueError("active_port_min must not exceed active_port_max")

    @staticmethod
    def guard_for(name: str) -> Optional[str]:
        for f in fields(ClientSettings):
            if f.name == name:
                return f.metadata.get("guard")
        return None

    @classmethod
    def from_env(cls, prefix: str = "FTPS_", environ=None) -> "ClientSettings":
        """
        Construye la configuracion a partir de variables de entorno, p. ej.
        FTPS_HOST, FTPS_PORT, FTPS_SECURITY=tls12-explicit, FTPS_MODE=active,
        FTPS_NETWORK=ipv6, FTPS_TIMEOUT=15, FTPS_ALWAYS_ACCEPT=1.
        """
        env = os.environ if environ is None else environ

        def get(name, default=None):
            return env.get(prefix + name, default)

        settings = cls()
        if get("HOST"):
            settings.host = get("HOST")
        if get("SECURITY"):
            settings.security_protocol = SecurityProtocol(get("SECURITY").lower())
            if settings.security_protocol.is_implicit:
                settings.port = DEFAULT_IMPLICIT_PORT
        if get("PORT"):
            settings.port = int(get("PORT"))
        if get("NETWORK"):
            settings.network_version = NetworkVersion(get("NETWORK").lower())
        if get("MODE"):
            settings.transfer_mode = TransferMode(get("MODE").lower())
        if get("LISTING"):
            settings.listing_method = ListingMethod(get("LISTING").lower())
        if get("HASH"):
            settings.hashing_algorithm = HashingAlgorithm(get("HASH").lower())
        if get("TIMEOUT"):
            timeout = float(get("TIMEOUT"))
            settings.tcp_timeout = settings.command_timeout = settings.transfer_timeout = timeout
        if get("BUFFER_SIZE"):
            settings.tcp_buffer_size = int(get("BUFFER_SIZE"))
        if get("CLIENT_ADDRESS"):
            settings.client_address = get("CLIENT_ADDRESS")
        if get("CA_FILE"):
            settings.ca_file = get("CA_FILE")
        if get("MAX_UPLOAD_SPEED"):
            settings.max_upload_speed = int(get("MAX_UPLOAD_SPEED"))
        if get("MAX_DOWNLOAD_SPEED"):
            settings.max_download_speed = int(get("MAX_DOWNLOAD_SPEED"))
        settings.always_accept_server_certificate = _truthy(get("ALWAYS_ACCEPT", "0"))
        settings.is_compression_enabled = _truthy(get("COMPRESSION", "0"))
        return settings


def _truthy(value: str) -> bool:
    return value.lower() in ('1', 'true', 'yes')
