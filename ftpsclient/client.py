"""
FtpsClient: session facade of the FTP/FTPS client.

Composes the protocol engine, the data channel, the secure channel, the
transfer engine and the listing parsers into login, navigation, transfer and
listing operations.
"""

import contextlib
import copy
import io
import logging
import os
import re
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import BinaryIO, Optional, Union

from .config import (
    ClientSettings, FileAction, ListingMethod, TransferType,
)
from .core.connection import ConnectionState, ControlConnectionManager
from .core.constants import (
    DEFAULT_IMPLICIT_PORT, DEFAULT_PORT, HAPPY_CODES, FtpCmd, ResponseCode,
)
from .core.data_connection import ActivePortRange, DataConnectionManager
from .core.errors import (
    BusyError, CommandNotSupportedError, ConnectionClosedError, ConnectionOpenError,
    DataCompressionError, DataTransferError, FeatureNotSupportedError, FtpsError,
    HashingError, HashingInvalidAlgorithmError, HashingServerBusyError, ItemParsingError,
    LoginError, OperationCancelledError, ProtocolError,
)
from .core.events import TRANSFER_PROGRESS, EventHooks
from .core.features import FeatureCollection
from .core.hashing import HashingAlgorithm, compute_hash, hash_matches
from .core.parser import Parser, Response
from .core.request import Request
from .core.security import CertificateValidator, SecureChannel, SecurityProtocol
from .core.transfer import CancellationToken, TransferEngine, ZlibReader, ZlibWriter
from .listing.item import Item, ItemCollection
from .listing.list_parser import ListItemParser
from .listing.mlsx_parser import MlsxItemParser

logger = logging.getLogger(__name__)
transfer_log = logging.getLogger("ftpsclient.transfer")

_COMPLETION_CODES = (ResponseCode.CLOSING_DATA, ResponseCode.REQUESTED_FILE_ACTION_OK)

# commands that need a data channel managed by the client itself
_QUOTE_REFUSED = {FtpCmd.PASV, FtpCmd.RETR, FtpCmd.STOR, FtpCmd.STOU, FtpCmd.EPRT, FtpCmd.EPSV}
_QUOTE_LISTINGS = {FtpCmd.LIST, FtpCmd.NLST, FtpCmd.MLSD}

_PWD_PATH = re.compile(r'"((?:[^"]|"")*)"')

LocalTarget = Union[str, os.PathLike, BinaryIO]


class _Setting:
    """Expone un campo de ClientSettings aplicando su guarda de mutacion."""

    def __set_name__(self, owner, name):
        self.name = name

    def __get__(self, obj, objtype=None):
        if obj is None:
            return self
        return getattr(obj._settings, self.name)

    def __set__(self, obj, value):
        obj._check_mutable(self.name)
        setattr(obj._settings, self.name, value)


class FtpsClient:
    """
    Cliente FTP/FTPS.

    Campos principales (ver ClientSettings):
        - host, port, security_protocol, network_version: solo modificables
          con la conexion cerrada.
        - transfer_mode, transfer_type, listing_method, max_upload_speed,
          max_download_speed, hashing_algorithm, is_compression_enabled:
          modificables mientras no haya una operacion en curso.
        - item_parser: parser de listados alternativo (``parse_line``).
        - validate_server_certificate: hook de decision de certificados.
        - events: callbacks por evento (register_handler).

    Métodos públicos (resumen):
        - open / reopen / change_user / close
        - change_directory / change_directory_multi_path / change_directory_up /
          get_working_directory
        - get_file / put_file / put_file_unique / move_file / fxp_copy
        - get_dir_list / get_dir_list_deep / get_dir_list_as_text /
          get_name_list / get_file_info / exists
        - get_hash / set_hash_option / compute_hash
        - *_async + cancel_async
    """

    host = _Setting()
    port = _Setting()
    security_protocol = _Setting()
    network_version = _Setting()
    tcp_buffer_size = _Setting()
    tcp_timeout = _Setting()
    command_timeout = _Setting()
    transfer_timeout = _Setting()
    always_accept_server_certificate = _Setting()
    send_prot_p_for_implicit = _Setting()
    client_cert_file = _Setting()
    client_key_file = _Setting()
    ca_file = _Setting()
    client_name = _Setting()
    transfer_mode = _Setting()
    listing_method = _Setting()
    fxp_timeout = _Setting()
    active_port_min = _Setting()
    active_port_max = _Setting()
    client_address = _Setting()
    max_upload_speed = _Setting()
    max_download_speed = _Setting()
    hashing_algorithm = _Setting()

    def __init__(self, host: str = "", port: Optional[int] = None,
                 security_protocol: SecurityProtocol = SecurityProtocol.NONE,
                 settings: Optional[ClientSettings] = None, proxy=None):
        self._settings = copy.copy(settings) if settings is not None else ClientSettings()
        if host:
            self._settings.host = host
        if security_protocol is not SecurityProtocol.NONE:
            self._settings.security_protocol = security_protocol
        if port is not None:
            self._settings.port = port
        elif self._settings.security_protocol.is_implicit and self._settings.port == DEFAULT_PORT:
            self._settings.port = DEFAULT_IMPLICIT_PORT

        self.proxy = proxy
        self.events = EventHooks()
        self.item_parser = None
        self.validate_server_certificate = None
        self.parser = Parser()

        self._conn: Optional[ControlConnectionManager] = None
        self._validator = CertificateValidator()
        self._secure: Optional[SecureChannel] = None
        self._encoding = "utf-8"
        self._features: Optional[FeatureCollection] = None
        self._features_lock = threading.Lock()
        self._current_directory: Optional[str] = None
        self._port_range: Optional[ActivePortRange] = None
        self._cancel = CancellationToken()
        self._busy_lock = threading.RLock()
        self._busy_depth = 0
        self._async_lock = threading.Lock()
        self._async_future: Optional[Future] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._user: Optional[str] = None
        self._password: Optional[str] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ----------------- state -----------------
    @property
    def settings(self) -> ClientSettings:
        return copy.copy(self._settings)

    @property
    def is_connected(self) -> bool:
        return self._conn is not None and self._conn.is_connected

    @property
    def connection_state(self) -> ConnectionState:
        return self._conn.state if self._conn is not None else ConnectionState.CLOSED

    @property
    def is_busy(self) -> bool:
        with self._busy_lock:
            if self._busy_depth > 0:
                return True
        future = self._async_future
        return future is not None and not future.done()

    @property
    def last_response(self) -> Optional[Response]:
        return self._conn.last_response if self._conn is not None else None

    @property
    def last_response_list(self):
        return self._conn.last_response_list if self._conn is not None else None

    @property
    def encoding(self) -> str:
        return self._encoding

    @property
    def transfer_type(self) -> TransferType:
        return self._settings.transfer_type

    @transfer_type.setter
    def transfer_type(self, value: TransferType) -> None:
        self._check_mutable("transfer_type")
        if self.is_connected:
            with self._operation():
                self._set_transfer_type(value)
        self._settings.transfer_type = value

    @property
    def is_compression_enabled(self) -> bool:
        return self._settings.is_compression_enabled

    @is_compression_enabled.setter
    def is_compression_enabled(self, value: bool) -> None:
        self._check_mutable("is_compression_enabled")
        if self.is_connected and value != self._settings.is_compression_enabled:
            with self._operation():
                if value:
                    self._enable_compression()
                else:
                    self._disable_compression()
        self._settings.is_compression_enabled = value

    @property
    def current_directory(self) -> Optional[str]:
        if self._current_directory is None and self.is_connected:
            self._current_directory = self.get_working_directory()
        return self._current_directory

    def register_handler(self, event: str, callback) -> None:
        self.events.register_handler(event, callback)

    def unregister_handler(self, event: str, callback) -> None:
        self.events.unregister_handler(event, callback)

    # ----------------- connection -----------------
    def open(self, user: str, password: str) -> None:
        """Conecta, negocia TLS si procede e inicia sesion."""
        if self.is_connected:
            raise ConnectionOpenError("The connection is already open.")
        if not self.host:
            raise ValueError("host must be set before opening the connection")

        self._user, self._password = user, password
        self._cancel.reset()
        self._features = None
        self._current_directory = None
        self._encoding = "utf-8"
        self._conn = self._create_connection()

        protocol = self.security_protocol
        wrap = None
        if protocol.is_secure:
            self._secure = self._create_secure_channel()
            if protocol.is_implicit:
                wrap = lambda sock: self._secure.wrap(sock, self.host)
        else:
            self._secure = None

        self._conn.connect(wrap=wrap, wait_for_banner=True)
        try:
            with self._operation():
                if protocol.is_explicit:
                    self._negotiate_explicit_tls()
                elif protocol.is_implicit and self.send_prot_p_for_implicit:
                    self._send(FtpCmd.PBSZ, "0")
                    self._send(FtpCmd.PROT, "P")
                self._login(user, password)
                self._after_login()
        except OperationCancelledError:
            raise
        except FtpsError:
            self._conn.close(send_quit=False)
            raise
        logger.info("✓ Logged in to %s:%s as %s", self.host, self.port, user)

    def reopen(self) -> None:
        if self._user is None:
            raise ConnectionClosedError("The connection was never opened.")
        self.close()
        self.open(self._user, self._password)

    def change_user(self, user: str, password: str) -> None:
        self.close()
        self.open(user, password)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close(send_quit=True)
        self._current_directory = None
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    # ----------------- features -----------------
    @property
    def features(self) -> FeatureCollection:
        with self._features_lock:
            if self._features is None:
                self._features = self._fetch_features()
            return self._features

    def get_features(self) -> str:
        """Texto crudo de la respuesta FEAT."""
        with self._operation():
            self._send(FtpCmd.FEAT)
            return self._conn.last_response_list.raw_text

    def set_options(self, option: str) -> str:
        with self._operation():
            return self._send(FtpCmd.OPTS, option).text

    def set_utf8_on(self) -> None:
        with self._operation():
            self._require_feature("UTF8")
            self._send(FtpCmd.OPTS, "UTF8", "ON")
            self._set_encoding("utf-8")

    def set_utf8_off(self) -> None:
        with self._operation():
            self._require_feature("UTF8")
            self._send(FtpCmd.OPTS, "UTF8", "OFF")
            self._set_encoding("latin-1")

    # ----------------- navigation -----------------
    def change_directory(self, path: str) -> None:
        if not path:
            raise ValueError("path must not be empty")
        with self._operation():
            self._send(FtpCmd.CWD, path.replace("\\", "/"))
            self._current_directory = self.get_working_directory()

    def change_directory_multi_path(self, path: str) -> None:
        """Cambia de directorio un segmento cada vez (servidores sin rutas compuestas)."""
        if not path:
            raise ValueError("path must not be empty")
        path = path.replace("\\", "/")
        with self._operation():
            if path.startswith("/"):
                self._send(FtpCmd.CWD, "/")
            for segment in path.split("/"):
                if segment:
                    self._send(FtpCmd.CWD, segment)
            self._current_directory = self.get_working_directory()

    def change_directory_up(self) -> None:
        with self._operation():
            self._send(FtpCmd.CDUP)
            self._current_directory = self.get_working_directory()

    def get_working_directory(self) -> str:
        with self._operation():
            response = self._send(FtpCmd.PWD)
        match = _PWD_PATH.search(response.text)
        if match is None:
            raise ProtocolError("PWD reply does not contain a quoted path.", response)
        self._current_directory = match.group(1).replace('""', '"')
        return self._current_directory

    # ----------------- simple commands -----------------
    def make_directory(self, path: str) -> None:
        with self._operation():
            self._send(FtpCmd.MKD, path)

    def delete_directory(self, path: str) -> None:
        with self._operation():
            self._send(FtpCmd.RMD, path)

    def delete_file(self, path: str) -> None:
        with self._operation():
            self._send(FtpCmd.DELE, path)

    def rename(self, from_path: str, to_path: str) -> None:
        with self._operation():
            self._send(FtpCmd.RNFR, from_path)
            self._send(FtpCmd.RNTO, to_path)

    def abort(self) -> None:
        with self._operation():
            self._send(FtpCmd.ABOR)

    def no_operation(self) -> None:
        with self._operation():
            self._send(FtpCmd.NOOP)

    def get_help(self) -> str:
        with self._operation():
            self._send(FtpCmd.HELP)
            return self._conn.last_response_list.raw_text

    def get_status(self, path: Optional[str] = None) -> str:
        with self._operation():
            self._send(FtpCmd.STAT, path)
            return self._conn.last_response_list.raw_text

    def get_system_type(self) -> str:
        with self._operation():
            return self._send(FtpCmd.SYST).text

    def allocate_storage(self, size: int) -> None:
        with self._operation():
            self._send(FtpCmd.ALLO, size)

    def site(self, argument: str) -> str:
        with self._operation():
            return self._send(FtpCmd.SITE, argument).text

    def change_mode(self, path: str, mode: Union[int, str]) -> None:
        """SITE CHMOD; un entero se interpreta como bits de modo (0o755 -> "755")."""
        octal = format(mode, "o") if isinstance(mode, int) else str(mode)
        with self._operation():
            response = self._send(FtpCmd.SITE, "CHMOD", octal, path)
        if response.code == ResponseCode.COMMAND_SUPERFLUOUS:
            raise CommandNotSupportedError("The server does not support SITE CHMOD.", response)

    def quote(self, command: str) -> str:
        """Envia un comando arbitrario y devuelve el texto crudo de la respuesta."""
        command = command.strip()
        if not command:
            raise ValueError("command must not be empty")
        verb, _, argument = command.partition(" ")
        verb = verb.upper()
        if verb in _QUOTE_REFUSED:
            raise ValueError(f"{verb} cannot be sent with quote(); use the transfer methods instead")

        with self._operation():
            if verb in _QUOTE_LISTINGS:
                return self._transfer_text(Request(verb, argument.strip(), encoding=self._encoding))
            if verb in HAPPY_CODES and verb != FtpCmd.CUSTOM:
                request = Request(verb, argument.strip(), encoding=self._encoding)
            else:
                request = Request(FtpCmd.CUSTOM, command, encoding=self._encoding)
            self._conn.send_request(request)
            return self._conn.last_response_list.raw_text

    # ----------------- metadata -----------------
    def get_file_datetime(self, path: str, adjust_to_local: bool = False) -> datetime:
        with self._operation():
            self._require_feature(FtpCmd.MDTM)
            response = self._send(FtpCmd.MDTM, path)
        try:
            stamp = datetime.strptime(response.text.strip()[:14], "%Y%m%d%H%M%S")
        except ValueError as e:
            raise ProtocolError("MDTM reply is not a timestamp.", response) from e
        if adjust_to_local:
            return stamp.replace(tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
        return stamp

    def set_modified_datetime(self, path: str, when: datetime) -> None:
        with self._operation():
            self._require_feature(FtpCmd.MFMT)
            self._send(FtpCmd.MFMT, _utc_stamp(when), path)

    def set_created_datetime(self, path: str, when: datetime) -> None:
        with self._operation():
            self._require_feature(FtpCmd.MFCT)
            self._send(FtpCmd.MFCT, _utc_stamp(when), path)

    def get_file_size(self, path: str) -> int:
        with self._operation():
            if self.features.contains(FtpCmd.SIZE):
                response = self._send(FtpCmd.SIZE, path)
                try:
                    return int(response.text.split()[0])
                except (ValueError, IndexError) as e:
                    raise ProtocolError("SIZE reply is not a number.", response) from e
            return self.get_file_info(path).size

    def try_get_file_size(self, path: str) -> Optional[int]:
        try:
            return self.get_file_size(path)
        except (ProtocolError, ItemParsingError) as e:
            logger.debug("Size of %s unavailable: %s", path, e)
            return None

    def exists(self, path: str) -> bool:
        path = path.replace("\\", "/").rstrip("/")
        directory, _, name = path.rpartition("/")
        if not name:
            raise ValueError("path must name a file or directory")
        if path.startswith("/") and not directory:
            directory = "/"
        try:
            items = self.get_dir_list(directory or None)
        except ProtocolError as e:
            logger.debug("Listing %s failed while checking existence: %s", directory, e)
            return False
        return items.contains(name)

    def get_file_info(self, path: str) -> Item:
        with self._operation():
            if self._resolve_listing_method() is ListingMethod.MLSX and self.features.contains(FtpCmd.MLST):
                try:
                    return self._mlst(path)
                except (ProtocolError, ItemParsingError) as e:
                    if self.listing_method is not ListingMethod.AUTOMATIC:
                        raise
                    logger.info("MLST %s failed, falling back to LIST: %s", path, e)

            text = self._transfer_text(Request(FtpCmd.LIST, path, encoding=self._encoding))
            parser = self.item_parser or ListItemParser()
            for line in text.splitlines():
                if line.strip():
                    item = parser.parse_line(line)
                    if item is not None:
                        return item
            raise ProtocolError(f"No listing information returned for {path}.", self.last_response)

    # ----------------- listing -----------------
    def get_dir_list(self, path: Optional[str] = None) -> ItemCollection:
        with self._operation():
            request, parser = self._listing_request(path)
            text = self._transfer_text(request)
            return ItemCollection.parse(path or self.current_directory, text, parser)

    def get_dir_list_as_text(self, path: Optional[str] = None) -> str:
        with self._operation():
            request, _ = self._listing_request(path)
            return self._transfer_text(request)

    def get_name_list(self, path: Optional[str] = None) -> str:
        with self._operation():
            return self._transfer_text(Request(FtpCmd.NLST, path, encoding=self._encoding))

    def get_dir_list_deep(self, path: Optional[str] = None) -> ItemCollection:
        """Listado recursivo; cada subdirectorio se lista por su ruta completa."""
        with self._operation():
            result = ItemCollection()
            self._collect_deep(path or self.current_directory, result)
            return result

    # ----------------- transfers -----------------
    def get_file(self, remote_path: str, local: LocalTarget,
                 action: FileAction = FileAction.CREATE, restart: bool = False) -> None:
        """
        Descarga ``remote_path``.

        ``local`` puede ser una ruta (se aplica ``action``) o un flujo binario
        abierto; con un flujo, ``restart=True`` reanuda desde su posicion final.
        """
        with self._operation():
            if isinstance(local, (str, os.PathLike)):
                self._get_file_to_path(remote_path, os.fspath(local), action)
            else:
                offset = 0
                if restart:
                    self._require_feature(FtpCmd.REST, "STREAM")
                    offset = local.seek(0, io.SEEK_END)
                self._download(remote_path, local, offset)

    def put_file(self, local: LocalTarget, remote_path: str,
                 action: FileAction = FileAction.CREATE) -> None:
        with self._operation():
            if isinstance(local, (str, os.PathLike)):
                with open(local, "rb") as stream:
                    self._put(stream, remote_path, action)
            else:
                self._put(local, remote_path, action)

    def put_file_unique(self, local: LocalTarget) -> str:
        """Sube con un nombre unico generado y lo devuelve."""
        name = uuid.uuid4().hex
        self.put_file(local, name, FileAction.CREATE)
        return name

    def move_file(self, from_path: str, to_path: str) -> None:
        with self._operation():
            buffer = io.BytesIO()
            self.get_file(from_path, buffer)
            buffer.seek(0)
            self.put_file(buffer, to_path, FileAction.CREATE)
            self.delete_file(from_path)

    def fxp_copy(self, file_name: str, destination: "FtpsClient") -> None:
        """
        Copia servidor a servidor: PASV en el destino, PORT en el origen con
        la tupla del destino, RETR en el origen y STOR en el destino.
        """
        if not destination.is_connected:
            raise ConnectionClosedError("The destination connection is closed.")
        with self._operation(), destination._operation():
            transfer_log.info("action=fxp_copy; status=TransferBegin; file=%s", file_name)
            reply = destination._send(FtpCmd.PASV)
            self._send(FtpCmd.PORT, self.parser.parse_pasv_tuple(reply.text))
            source_reply = self._send(FtpCmd.RETR, file_name)
            dest_reply = destination._send(FtpCmd.STOR, file_name)
            if dest_reply.code not in _COMPLETION_CODES:
                destination._conn.wait_for_happy_codes(self.fxp_timeout, *_COMPLETION_CODES)
            if source_reply.code not in _COMPLETION_CODES:
                self._conn.wait_for_happy_codes(self.fxp_timeout, *_COMPLETION_CODES)
            transfer_log.info("action=fxp_copy; status=TransferSuccess; file=%s", file_name)

    # ----------------- integrity -----------------
    @staticmethod
    def compute_hash(algorithm: HashingAlgorithm, stream: BinaryIO, position: int = 0) -> str:
        return compute_hash(algorithm, stream, position)

    def get_hash(self, algorithm: HashingAlgorithm, path: str, start: int = 0, end: int = 0) -> str:
        """
        Pide al servidor el hash de ``path`` (o del rango start-end).

        Usa HASH (y RANG para rangos) cuando FEAT lo anuncia para el
        algoritmo; si no, o si HASH falla, el comando X* equivalente.
        """
        if algorithm is HashingAlgorithm.NONE:
            raise ValueError("a hashing algorithm is required")
        partial = start > 0 or end > 0
        with self._operation():
            features = self.features
            use_hash = (features.contains(FtpCmd.HASH, algorithm.hash_name)
                        and (not partial or features.contains(FtpCmd.RANG)))
            if use_hash:
                try:
                    return self._server_hash(algorithm, path, start, end, partial)
                except HashingError as e:
                    if isinstance(e, (HashingInvalidAlgorithmError, HashingServerBusyError)):
                        raise
                    logger.info("HASH failed for %s, retrying with %s: %s",
                                path, algorithm.legacy_command, e)
            return self._legacy_hash(algorithm, path, start, end, partial)

    def set_hash_option(self, algorithm: HashingAlgorithm) -> None:
        if algorithm is HashingAlgorithm.NONE:
            raise ValueError("a hashing algorithm is required")
        with self._operation():
            self._require_feature(FtpCmd.HASH)
            try:
                self._send(FtpCmd.OPTS, FtpCmd.HASH, algorithm.hash_name)
            except ProtocolError as e:
                raise _hashing_error(e) from e
            self._reset_features()
            feature = self.features.find(FtpCmd.HASH)
            default = feature.default_argument if feature is not None else None
            if default is None or default.name.upper() != algorithm.hash_name:
                raise HashingError(f"The server did not select {algorithm.hash_name}.", self.last_response)

    # ----------------- async -----------------
    def open_async(self, user: str, password: str) -> Future:
        return self._submit(self.open, user, password)

    def get_dir_list_async(self, path: Optional[str] = None) -> Future:
        return self._submit(self.get_dir_list, path)

    def get_dir_list_deep_async(self, path: Optional[str] = None) -> Future:
        return self._submit(self.get_dir_list_deep, path)

    def get_file_async(self, remote_path: str, local: LocalTarget,
                       action: FileAction = FileAction.CREATE) -> Future:
        return self._submit(self.get_file, remote_path, local, action)

    def put_file_async(self, local: LocalTarget, remote_path: str,
                       action: FileAction = FileAction.CREATE) -> Future:
        return self._submit(self.put_file, local, remote_path, action)

    def fxp_copy_async(self, file_name: str, destination: "FtpsClient") -> Future:
        return self._submit(self.fxp_copy, file_name, destination)

    def cancel_async(self) -> None:
        """Pide la cancelacion cooperativa de la operacion en curso."""
        logger.info("Cancellation requested")
        self._cancel.cancel()

    # ---------------- Métodos Internos ----------------
    def _check_mutable(self, name: str) -> None:
        guard = ClientSettings.guard_for(name)
        if guard == "closed" and self.is_connected:
            raise ConnectionOpenError(f"{name} cannot be changed while the connection is open.")
        if guard == "idle" and self.is_busy:
            raise BusyError(f"{name} cannot be changed while an operation is in progress.")

    @contextlib.contextmanager
    def _operation(self):
        if not self.is_connected:
            raise ConnectionClosedError("The connection is closed. Call open() first.", self.last_response)
        with self._busy_lock:
            self._busy_depth += 1
            if self._busy_depth == 1:
                self._conn.set_state(ConnectionState.BUSY)
        try:
            yield
        except OperationCancelledError:
            self._abandon_connection()
            raise
        finally:
            with self._busy_lock:
                self._busy_depth -= 1
                if self._busy_depth == 0 and self._conn.state is ConnectionState.BUSY:
                    self._conn.set_state(ConnectionState.OPEN)

    def _abandon_connection(self) -> None:
        if self._conn is not None and self._conn.state is not ConnectionState.CLOSED:
            logger.warning("Operation cancelled; closing the control connection to %s", self.host)
            self._conn.close(send_quit=False)

    def _submit(self, fn, *args) -> Future:
        with self._async_lock:
            if self._async_future is not None and not self._async_future.done():
                raise BusyError("An asynchronous operation is already in progress.")
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ftps-async")
            self._async_future = self._executor.submit(fn, *args)
            return self._async_future

    def _create_connection(self) -> ControlConnectionManager:
        conn = ControlConnectionManager(
            self.host, self.port, timeout=self.tcp_timeout, command_timeout=self.command_timeout,
            buffer_size=self.tcp_buffer_size, proxy=self.proxy, encoding=self._encoding,
            events=self.events, settle_interval=self._settings.settle_interval)
        conn.cancel_token = self._cancel
        return conn

    def _create_secure_channel(self) -> SecureChannel:
        self._validator.always_accept = self.always_accept_server_certificate
        self._validator.hook = self.validate_server_certificate
        if self._validator.ca_file != self.ca_file:
            self._validator = CertificateValidator(
                self.always_accept_server_certificate, self.validate_server_certificate, self.ca_file)
        return SecureChannel(self.security_protocol, self._validator,
                             self.client_cert_file, self.client_key_file)

    def _negotiate_explicit_tls(self) -> None:
        self._send(FtpCmd.AUTH, self.security_protocol.auth_mechanism)
        self._conn.upgrade_to_tls(lambda sock: self._secure.wrap(sock, self.host))
        self._send(FtpCmd.PBSZ, "0")
        self._send(FtpCmd.PROT, "P")

    def _login(self, user: str, password: str) -> None:
        try:
            response = self._send(FtpCmd.USER, user)
            if response.code != ResponseCode.USER_LOGGED_IN:
                self._send(FtpCmd.PASS, password)
        except ProtocolError as e:
            raise LoginError(f"Login as {user!r} failed.", e.response) from e

    def _after_login(self) -> None:
        features = self.features
        if features.contains(FtpCmd.CLNT):
            try:
                self._send(FtpCmd.CLNT, self.client_name)
            except ProtocolError as e:
                logger.warning("CLNT rejected: %s", e)

        try:
            self._send(FtpCmd.OPTS, "UTF8", "ON")
            self._set_encoding("utf-8")
        except ProtocolError as e:
            if not features.contains("UTF8"):
                logger.warning("UTF-8 not available, falling back to latin-1: %s", e)
                self._set_encoding("latin-1")

        try:
            self._set_transfer_type(self.transfer_type)
        except ProtocolError as e:
            logger.warning("TYPE %s rejected: %s", self.transfer_type.value, e)
            self._settings.transfer_type = TransferType.UNKNOWN

        if self.is_compression_enabled:
            try:
                self._enable_compression()
            except (ProtocolError, DataCompressionError) as e:
                logger.warning("MODE Z unavailable, compression disabled: %s", e)
                self._settings.is_compression_enabled = False

    def _set_encoding(self, encoding: str) -> None:
        self._encoding = encoding
        self._conn.encoding = encoding

    def _set_transfer_type(self, value: TransferType) -> None:
        if value is TransferType.UNKNOWN:
            raise ValueError("cannot select an unknown transfer type")
        self._send(FtpCmd.TYPE, value.value)

    def _enable_compression(self) -> None:
        if not self.features.contains(FtpCmd.MODE, "Z"):
            raise FeatureNotSupportedError("The server does not support MODE Z.", self.last_response)
        try:
            self._send(FtpCmd.MODE, "Z")
        except ProtocolError as e:
            raise DataCompressionError("The server refused MODE Z.", e.response) from e

    def _disable_compression(self) -> None:
        self._send(FtpCmd.MODE, "S")

    def _send(self, command: str, *arguments) -> Response:
        return self._conn.send_request(Request(command, *arguments, encoding=self._encoding))

    def _fetch_features(self) -> FeatureCollection:
        try:
            self._send(FtpCmd.FEAT)
            return FeatureCollection.parse(self._conn.last_response_list.raw_text)
        except ProtocolError as e:
            logger.warning("FEAT unavailable: %s", e)
            return FeatureCollection()

    def _reset_features(self) -> None:
        with self._features_lock:
            self._features = None

    def _require_feature(self, name: str, argument: Optional[str] = None) -> None:
        if not self.features.contains(name, argument):
            wanted = f"{name} {argument}" if argument else name
            raise FeatureNotSupportedError(f"The server does not support {wanted}.", self.last_response)

    def _resolve_listing_method(self) -> ListingMethod:
        method = self.listing_method
        if method is ListingMethod.AUTOMATIC:
            return ListingMethod.MLSX if self.features.contains(FtpCmd.MLST) else ListingMethod.LIST_AL
        return method

    def _listing_request(self, path: Optional[str]):
        method = self._resolve_listing_method()
        if method is ListingMethod.MLSX:
            request, parser = Request(FtpCmd.MLSD, path, encoding=self._encoding), MlsxItemParser()
        elif method is ListingMethod.LIST_AL:
            request, parser = Request(FtpCmd.LIST, "-al", path, encoding=self._encoding), ListItemParser()
        else:
            request, parser = Request(FtpCmd.LIST, path, encoding=self._encoding), ListItemParser()
        return request, self.item_parser or parser

    def _mlst(self, path: str) -> Item:
        self._send(FtpCmd.MLST, path)
        lines = self._conn.last_response_list
        if len(lines) != 3:
            raise ProtocolError(f"MLST returned {len(lines)} lines, expected 3.", self.last_response)
        # the fact line is indented by one space
        raw = lines[1].raw
        return MlsxItemParser().parse_line(raw[1:] if raw.startswith(" ") else raw)

    def _collect_deep(self, path: str, result: ItemCollection) -> None:
        self._cancel.raise_if_cancelled()
        items = self.get_dir_list(path)
        result.merge(items)
        for item in items:
            if item.is_directory:
                self._collect_deep(item.full_path, result)

    def _data_connection(self) -> DataConnectionManager:
        if (self._port_range is None
                or (self._port_range.minimum, self._port_range.maximum)
                != (self.active_port_min, self.active_port_max)):
            self._port_range = ActivePortRange(self.active_port_min, self.active_port_max)
        return DataConnectionManager(
            self._conn, self.features, self.transfer_mode, self.network_version,
            self._port_range, self.client_address, self.transfer_timeout,
            secure_channel=self._secure, proxy=self.proxy)

    def _transfer(self, request: Request, stream, upload: bool, restart: int = 0,
                  transfer_size: Optional[int] = None) -> None:
        """Abre el canal de datos, envia el comando y bombea los bytes."""
        data = self._data_connection()
        data.open()
        try:
            if restart > 0:
                self._send(FtpCmd.REST, restart)
                stream.seek(restart)
            reply = self._conn.send_request(request)
            data_stream = data.get_stream()
            engine = TransferEngine(self.tcp_buffer_size, self.events)
            if upload:
                sink = ZlibWriter(data_stream) if self.is_compression_enabled else data_stream
                engine.pump(stream, sink, transfer_size, self.max_upload_speed * 1024, self._cancel)
                if isinstance(sink, ZlibWriter):
                    sink.finish()
            else:
                source = ZlibReader(data_stream, self.tcp_buffer_size) if self.is_compression_enabled else data_stream
                engine.pump(source, stream, transfer_size, self.max_download_speed * 1024, self._cancel)
        except BaseException:
            data.close()
            raise
        data.close(unwrap=upload)
        if reply is None or reply.code not in _COMPLETION_CODES:
            self._conn.wait_for_happy_codes(self.transfer_timeout, *_COMPLETION_CODES)

    def _transfer_text(self, request: Request) -> str:
        buffer = io.BytesIO()
        self._transfer(request, buffer, upload=False)
        return buffer.getvalue().decode(self._encoding, errors="replace")

    def _get_file_to_path(self, remote_path: str, local_path: str, action: FileAction) -> None:
        local_size = os.path.getsize(local_path) if os.path.exists(local_path) else 0
        if action is FileAction.RESUME_OR_CREATE:
            action = FileAction.RESUME if local_size > 0 else FileAction.CREATE

        offset = 0
        if action is FileAction.RESUME:
            self._require_feature(FtpCmd.REST, "STREAM")
            if local_size == self.get_file_size(remote_path):
                logger.info("%s is already complete, nothing to resume", local_path)
                return
            offset = local_size
            mode = "r+b" if local_size else "w+b"
        elif action is FileAction.CREATE_NEW:
            mode = "x+b"
        elif action is FileAction.CREATE_OR_APPEND:
            mode = "a+b"
        else:
            mode = "w+b"

        try:
            stream = open(local_path, mode)
        except OSError as e:
            raise DataTransferError(f"Cannot open {local_path}: {e}") from e
        with stream:
            if action is FileAction.CREATE_OR_APPEND:
                stream.seek(0, io.SEEK_END)
            self._download(remote_path, stream, offset)

    def _download(self, remote_path: str, stream, restart: int = 0) -> None:
        hash_from = stream.tell() if restart == 0 else restart
        size = None
        if self.events.has_handlers(TRANSFER_PROGRESS):
            size = self.try_get_file_size(remote_path)
            if size is not None:
                size = max(size - restart, 0)

        transfer_log.info("action=get_file; status=TransferBegin; remote=%s; restart=%d", remote_path, restart)
        try:
            self._transfer(Request(FtpCmd.RETR, remote_path, encoding=self._encoding),
                           stream, upload=False, restart=restart, transfer_size=size)
            if self.hashing_algorithm is not HashingAlgorithm.NONE:
                self._verify_integrity(remote_path, stream, hash_from, restart)
        except FtpsError as e:
            transfer_log.info("action=get_file; status=Error; remote=%s; error=%s", remote_path, e)
            raise
        transfer_log.info("action=get_file; status=TransferSuccess; remote=%s", remote_path)

    def _put(self, stream, remote_path: str, action: FileAction) -> None:
        transfer_log.info("action=put_file; status=TransferBegin; remote=%s; mode=%s", remote_path, action.value)
        try:
            self._upload(stream, remote_path, action)
        except OperationCancelledError:
            raise
        except (DataTransferError, HashingError) as e:
            transfer_log.info("action=put_file; status=Error; remote=%s; error=%s", remote_path, e)
            raise
        except FtpsError as e:
            transfer_log.info("action=put_file; status=Error; remote=%s; error=%s", remote_path, e)
            raise DataTransferError(f"Upload of {remote_path} failed: {e.message}", e.response) from e
        transfer_log.info("action=put_file; status=TransferSuccess; remote=%s", remote_path)

    def _upload(self, stream, remote_path: str, action: FileAction) -> None:
        if action is FileAction.RESUME_OR_CREATE:
            action = FileAction.RESUME if self.exists(remote_path) else FileAction.CREATE

        command, restart = FtpCmd.STOR, 0
        if action is FileAction.CREATE_NEW:
            if self.exists(remote_path):
                raise DataTransferError(f"{remote_path} already exists on the server.", self.last_response)
        elif action is FileAction.CREATE_OR_APPEND:
            command = FtpCmd.APPE
        elif action is FileAction.RESUME:
            self._require_feature(FtpCmd.REST, "STREAM")
            remote_size = self.get_file_size(remote_path)
            local_size = _stream_length(stream)
            if local_size == remote_size:
                logger.info("%s is already complete, nothing to resume", remote_path)
                return
            restart = remote_size

        start = stream.tell() if restart == 0 else restart
        length = _stream_length(stream)
        size = max(length - start, 0) if length is not None else None
        if restart == 0 and start:
            stream.seek(start)

        self._transfer(Request(command, remote_path, encoding=self._encoding),
                       stream, upload=True, restart=restart, transfer_size=size)
        if self.hashing_algorithm is not HashingAlgorithm.NONE and command == FtpCmd.STOR:
            self._verify_integrity(remote_path, stream, start, restart)

    def _verify_integrity(self, remote_path: str, stream, hash_from: int, restart: int) -> None:
        algorithm = self.hashing_algorithm
        try:
            local_hash = compute_hash(algorithm, stream, hash_from)
        except (OSError, ValueError) as e:
            raise HashingError(f"Cannot hash the local data for {remote_path}: {e}") from e
        end = _stream_length(stream) if restart else 0
        server_text = self.get_hash(algorithm, remote_path, restart, end or 0)
        if not hash_matches(local_hash, server_text):
            raise HashingError(
                f"Integrity check failed for {remote_path}: local {algorithm.hash_name} "
                f"{local_hash} not found in server reply.", self.last_response)
        logger.debug("Integrity check passed for %s (%s)", remote_path, algorithm.hash_name)

    def _server_hash(self, algorithm, path, start, end, partial) -> str:
        feature = self.features.find(FtpCmd.HASH)
        default = feature.default_argument if feature is not None else None
        if default is None or default.name.upper() != algorithm.hash_name:
            self.set_hash_option(algorithm)
        try:
            if partial:
                self._send(FtpCmd.RANG, start, end)
            return self._send(FtpCmd.HASH, path).text
        except ProtocolError as e:
            raise _hashing_error(e) from e

    def _legacy_hash(self, algorithm, path, start, end, partial) -> str:
        arguments = (path, start, end) if partial else (path,)
        try:
            return self._send(algorithm.legacy_command, *arguments).text
        except ProtocolError as e:
            raise _hashing_error(e) from e


def _hashing_error(error: ProtocolError) -> HashingError:
    code = error.response.code if error.response is not None else None
    if code == ResponseCode.SYNTAX_ERROR_IN_PARAMETERS:
        return HashingInvalidAlgorithmError("The server does not accept this hashing algorithm.", error.response)
    if code == ResponseCode.REQUESTED_FILE_ACTION_NOT_TAKEN:
        return HashingServerBusyError("The server is busy computing another hash.", error.response)
    return HashingError(f"Hash request failed: {error.message}", error.response)


def _stream_length(stream) -> Optional[int]:
    try:
        position = stream.tell()
        length = stream.seek(0, io.SEEK_END)
        stream.seek(position)
        return length
    except (OSError, ValueError, AttributeError):
        return None


def _utc_stamp(when: datetime) -> str:
    if when.tzinfo is not None:
        when = when.astimezone(timezone.utc)
    return when.strftime("%Y%m%d%H%M%S")
