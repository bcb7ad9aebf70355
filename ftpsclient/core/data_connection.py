import errno
import ipaddress
import logging
import socket
import ssl
import threading
from typing import Optional

from ..config import NetworkVersion, TransferMode
from .constants import FtpCmd, ResponseCode
from .errors import DataConnectionError, DataConnectionTimeoutError, FtpsError
from .features import FeatureCollection
from .parser import Parser
from .request import Request

logger = logging.getLogger(__name__)


class SocketStream:
    """Adaptador read/write sobre el socket de datos."""

    def __init__(self, sock: socket.socket):
        self.sock = sock

    def read(self, size: int) -> bytes:
        return self.sock.recv(size)

    def write(self, data: bytes) -> int:
        self.sock.sendall(data)
        return len(data)

    def close(self) -> None:
        self.sock.close()


class ActivePortRange:
    """Puertos locales para modo activo, recorridos en circulo."""

    def __init__(self, minimum: int, maximum: int):
        if minimum > maximum:
            raise ValueError("minimum port must not exceed maximum port")
        self.minimum = minimum
        self.maximum = maximum
        self._current = None
        self._lock = threading.Lock()

    def next_port(self) -> int:
        with self._lock:
            if self._current is None or not (self.minimum <= self._current < self.maximum):
                self._current = self.minimum
            else:
                self._current += 1
            return self._current

    def __len__(self) -> int:
        return self.maximum - self.minimum + 1


class DataConnectionManager:
    """
    Maneja la conexión de datos del cliente FTP, en modo pasivo o activo.

    Uso tipico por transferencia:
        1. open(): PASV/EPSV y conexion saliente, o listener local y PORT/EPRT.
        2. el llamador envia REST (opcional) y el comando de transferencia.
        3. get_stream(): espera la conexion entrante (activo) y aplica TLS.
        4. close(): cierra socket de datos y listener.
    """

    def __init__(self, control, features: Optional[FeatureCollection] = None,
                 transfer_mode: TransferMode = TransferMode.PASSIVE,
                 network_version: NetworkVersion = NetworkVersion.IPV4,
                 port_range: Optional[ActivePortRange] = None,
                 client_address: Optional[str] = None,
                 transfer_timeout: float = 30.0, secure_channel=None, proxy=None):
        self.control = control
        self.features = features or FeatureCollection()
        self.transfer_mode = transfer_mode
        self.network_version = network_version
        self.port_range = port_range or ActivePortRange(50000, 50080)
        self.client_address = client_address
        self.transfer_timeout = transfer_timeout
        self.secure_channel = secure_channel
        self.proxy = proxy
        self.parser = Parser()

        self.ip: Optional[str] = None
        self.port: Optional[int] = None
        self.data_socket: Optional[socket.socket] = None
        self._listener: Optional[socket.socket] = None
        self._accepted = threading.Event()
        self._accept_error: Optional[OSError] = None
        self._stream: Optional[SocketStream] = None

    # --------------- Métodos Públicos --------------------------
    def open(self) -> None:
        if self.transfer_mode is TransferMode.ACTIVE:
            self._open_active()
        else:
            self._open_passive()

    def get_stream(self) -> SocketStream:
        """Devuelve el flujo de datos listo para transferir (con TLS si procede)."""
        if self._stream is not None:
            return self._stream
        if self.transfer_mode is TransferMode.ACTIVE:
            self._wait_for_peer()
        if self.data_socket is None:
            raise DataConnectionError("data connection is not open", self.control.last_response)
        if self.secure_channel is not None:
            self.data_socket = self.secure_channel.wrap(
                self.data_socket, self.control.host, session=self.control.ssl_session)
        self._stream = SocketStream(self.data_socket)
        return self._stream

    def close(self, unwrap: bool = False) -> None:
        """
        Cierra la conexión de datos. Con ``unwrap`` se envia close_notify TLS
        antes de cerrar (necesario tras una subida en algunos servidores).
        """
        if self.data_socket is not None:
            if unwrap and isinstance(self.data_socket, ssl.SSLSocket):
                try:
                    self.data_socket.unwrap()
                except (OSError, ValueError) as e:
                    logger.debug("TLS unwrap of data socket failed: %s", e)
            self.data_socket.close()
            self.data_socket = None
            logger.debug("[DATA] Disconnected from %s:%s", self.ip, self.port)
        if self._listener is not None:
            self._listener.close()
            self._listener = None
        self._stream = None

    # ---------------- Métodos Internos ----------------
    def _use_epsv(self) -> bool:
        if self.network_version is NetworkVersion.IPV6:
            return True
        return (len(self.features) > 0
                and self.features.contains(FtpCmd.EPSV)
                and not self.features.contains(FtpCmd.PASV))

    def _open_passive(self):
        if self._use_epsv():
            response = self.control.send_request(Request(FtpCmd.EPSV))
            self.ip, self.port = self.parser.parse_epsv_response(response.text, self.control.host)
        else:
            response = self.control.send_request(Request(FtpCmd.PASV))
            self.ip, self.port = self.parser.parse_pasv_response(response.text)

        try:
            if self.proxy is not None:
                sock = self.proxy.create_connection(self.ip, self.port, self.transfer_timeout)
            else:
                sock = socket.create_connection((self.ip, self.port), timeout=self.transfer_timeout)
        except OSError as e:
            logger.error("✗ Failed to open data connection to %s:%s - %s", self.ip, self.port, e)
            raise DataConnectionError(
                f"Failed to open data connection to {self.ip}:{self.port} - {e}",
                self.control.last_response) from e
        sock.settimeout(self.transfer_timeout)
        self.data_socket = sock
        logger.debug("[DATA] Connected to %s:%s", self.ip, self.port)

    def _local_address(self) -> str:
        address = self.client_address or self.control.local_address
        version = ipaddress.ip_address(address.split('%', 1)[0]).version
        expected = 6 if self.network_version is NetworkVersion.IPV6 else 4
        if version != expected:
            raise DataConnectionError(
                f"client address {address} does not match network version {self.network_version.value}")
        return address

    def _open_active(self):
        address = self._local_address()
        family = socket.AF_INET6 if self.network_version is NetworkVersion.IPV6 else socket.AF_INET
        self._listener = self._bind_listener(family, address)
        self.ip, self.port = address, self._listener.getsockname()[1]

        self._accepted.clear()
        self._accept_error = None
        threading.Thread(target=self._accept, name="ftps-data-accept", daemon=True).start()

        if self.network_version is NetworkVersion.IPV6:
            request = Request(FtpCmd.EPRT, self.parser.build_eprt_argument(self.ip, self.port))
        else:
            request = Request(FtpCmd.PORT, self.parser.build_port_argument(self.ip, self.port))
        try:
            self.control.send_request(request)
        except FtpsError:
            self.close()
            raise

    def _bind_listener(self, family, address: str) -> socket.socket:
        last_error = None
        for _ in range(len(self.port_range)):
            port = self.port_range.next_port()
            listener = socket.socket(family, socket.SOCK_STREAM)
            try:
                listener.bind((address.split('%', 1)[0], port))
                listener.listen(1)
            except OSError as e:
                listener.close()
                if e.errno != errno.EADDRINUSE:
                    raise DataConnectionError(f"Failed to listen on {address}:{port} - {e}") from e
                last_error = e
                continue
            listener.settimeout(self.transfer_timeout)
            logger.debug("[DATA] Listening on %s:%s", address, port)
            return listener
        raise DataConnectionError(
            f"No free port in {self.port_range.minimum}-{self.port_range.maximum}") from last_error

    def _accept(self):
        listener = self._listener
        try:
            conn, peer = listener.accept()
            conn.settimeout(self.transfer_timeout)
            self.data_socket = conn
            logger.debug("[DATA] Accepted connection from %s:%s", peer[0], peer[1])
        except OSError as e:
            self._accept_error = e
        finally:
            self._accepted.set()

    def _wait_for_peer(self):
        completed = self._accepted.wait(self.transfer_timeout)
        if completed and self.data_socket is not None:
            return
        self.close()
        last = self.control.last_response
        if last is not None and last.code == ResponseCode.CANNOT_OPEN_DATA_CONNECTION:
            raise DataConnectionError("The server could not open the data connection.", last)
        raise DataConnectionTimeoutError(
            f"The server did not connect within {self.transfer_timeout}s.", last)
