import enum
import logging
import socket
import threading
import time
from typing import Callable, Optional

from .constants import (
    DEFAULT_COMMAND_TIMEOUT, DEFAULT_SETTLE_INTERVAL, DEFAULT_TCP_BUFFER_SIZE,
    DEFAULT_TCP_TIMEOUT, RESPONSE_POLL_INTERVAL, UNHAPPY_CODES, FtpCmd, ResponseCode,
)
from .errors import (
    CommandResponseTimeoutError, ConnectionBrokenError, ConnectionClosedError,
    ConnectionOpenError, FtpsError, ProtocolError,
)
from .events import CLIENT_REQUEST, CONNECTION_CLOSED, SERVER_RESPONSE, EventHooks
from .parser import Response, ResponseList
from .request import Request
from .response_channel import ResponseChannel, ResponseQueue

logger = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"
    BUSY = "busy"


class ControlConnectionManager:
    """
    Motor de protocolo sobre la conexion de control.

    Abre el socket (directo o a traves de un proxy), arranca el ResponseChannel
    y correlaciona cada Request con su respuesta terminal. Solo hay un
    comando en vuelo a la vez: las escrituras se serializan con ``_write_lock``
    y la espera de la respuesta terminal ocurre dentro de ese mismo lock.

    Campos principales:
        - host / port: destino de la conexion de control.
        - socket: socket actual (TLS una vez negociado).
        - stream_lock: protege lecturas/escrituras del socket; el lector lo
          toma por cada recv y upgrade_to_tls lo mantiene durante el handshake.
        - last_response / last_response_list: resultado del ultimo ciclo.
        - cancel_token: token de cancelacion consultado entre esperas.

    Métodos públicos:
        - connect(wrap=None, wait_for_banner=True) -> None
        - upgrade_to_tls(wrap) -> None
        - send_request(request) -> Optional[Response]
        - wait_for_happy_codes(timeout, *codes) -> Response
        - close(send_quit=True) -> None
    """

    def __init__(self, host: str, port: int = 21, timeout: float = DEFAULT_TCP_TIMEOUT,
                 command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
                 buffer_size: int = DEFAULT_TCP_BUFFER_SIZE, proxy=None,
                 encoding: str = "utf-8", events: Optional[EventHooks] = None,
                 settle_interval: float = DEFAULT_SETTLE_INTERVAL):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.command_timeout = command_timeout
        self.buffer_size = buffer_size
        self.proxy = proxy
        self.encoding = encoding
        self.events = events or EventHooks()
        self.settle_interval = settle_interval
        self.cancel_token = None

        self.socket: Optional[socket.socket] = None
        self.stream_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._state_lock = threading.RLock()
        self._last_lock = threading.Lock()
        self._state = ConnectionState.CLOSED
        self._queue = ResponseQueue()
        self._channel: Optional[ResponseChannel] = None
        self._last_response: Optional[Response] = None
        self._last_response_list = ResponseList()

    # ----------------- state -----------------
    @property
    def state(self) -> ConnectionState:
        with self._state_lock:
            return self._state

    def set_state(self, state: ConnectionState) -> None:
        with self._state_lock:
            self._state = state

    @property
    def is_connected(self) -> bool:
        with self._state_lock:
            if self._state in (ConnectionState.CLOSED, ConnectionState.OPENING):
                return False
        return self.socket is not None and self._channel is not None and self._channel.is_alive

    @property
    def last_response(self) -> Optional[Response]:
        with self._last_lock:
            return self._last_response

    @property
    def last_response_list(self) -> ResponseList:
        with self._last_lock:
            return self._last_response_list

    @property
    def local_address(self) -> str:
        if self.socket is None:
            raise ConnectionClosedError("control connection is closed")
        return self.socket.getsockname()[0]

    @property
    def ssl_session(self):
        return getattr(self.socket, "session", None)

    # ----------------- lifecycle -----------------
    def connect(self, wrap: Optional[Callable] = None, wait_for_banner: bool = True) -> None:
        """
        Abre la conexion de control.

        ``wrap`` envuelve el socket recien conectado antes de arrancar el lector
        (TLS implicito). Con ``wait_for_banner`` se espera el 220 del servidor.
        """
        with self._state_lock:
            if self._state is not ConnectionState.CLOSED:
                raise ConnectionOpenError("The connection is already open.")
            self._state = ConnectionState.OPENING

        try:
            logger.info("Connecting to %s:%s (timeout=%ss)", self.host, self.port, self.timeout)
            sock = self._open_socket()
            if wrap is not None:
                try:
                    sock = wrap(sock)
                except Exception:
                    sock.close()
                    raise
            self.socket = sock
            self._queue = ResponseQueue()
            self._channel = ResponseChannel(self, self._queue, self.buffer_size,
                                            on_response=self._on_response,
                                            on_closed=self._on_channel_closed)
            self._channel.start()
            if wait_for_banner:
                self.wait_for_happy_codes(self.command_timeout, ResponseCode.SERVICE_READY)
        except FtpsError:
            self._shutdown(notify=False)
            raise
        except OSError as e:
            self._shutdown(notify=False)
            logger.error("✗ Failed to connect to %s:%s - %s", self.host, self.port, e)
            raise ConnectionOpenError(f"Failed to connect to {self.host}:{self.port} - {e}") from e

        self.set_state(ConnectionState.OPEN)
        logger.info("✓ Connected to %s:%s", self.host, self.port)

    def upgrade_to_tls(self, wrap: Callable) -> None:
        """Sustituye el socket de control por su version TLS sin que el lector lo toque."""
        with self.stream_lock:
            if self.socket is None:
                raise ConnectionClosedError("control connection is closed")
            self.socket = wrap(self.socket)

    def close(self, send_quit: bool = True) -> None:
        if self.socket is None and self.state is ConnectionState.CLOSED:
            return
        if send_quit and self.is_connected:
            try:
                self.send_request(Request(FtpCmd.QUIT, encoding=self.encoding))
            except FtpsError as e:
                logger.debug("QUIT failed while closing: %s", e)
        logger.info("Closing connection to %s:%s", self.host, self.port)
        self._shutdown(notify=True)

    def close_socket(self) -> None:
        """Cierra el socket sin detener el lector (usado por el propio lector)."""
        sock = self.socket
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        sock.close()

    # ----------------- commands -----------------
    def send_request(self, request: Request) -> Optional[Response]:
        if not self.is_connected:
            raise ConnectionClosedError("The connection is closed.", self.last_response)
        self._check_cancelled()

        with self._write_lock:
            stale = self._queue.drain()
            if stale:
                logger.debug("Discarding %d stale responses", len(stale))

            self.events.fire(CLIENT_REQUEST, request)
            logger.debug("→ SEND: %s", request)
            try:
                with self.stream_lock:
                    self.socket.sendall(request.to_bytes())
            except (OSError, AttributeError) as e:
                raise ConnectionBrokenError(f"Failed to send {request.command}: {e}",
                                            self.last_response) from e

            if request.has_happy_codes:
                return self.wait_for_happy_codes(self.command_timeout, *request.happy_codes)

            if request.command != FtpCmd.QUIT:
                time.sleep(self.settle_interval)
            drained = ResponseList(self._queue.drain())
            self._store(drained.last, drained)
            return drained.last

    def wait_for_happy_codes(self, timeout: float, *codes) -> Response:
        """
        Consume respuestas hasta la primera terminal.

        Codigo infeliz -> ProtocolError; codigo aceptado (o ninguno pedido) ->
        exito; cualquier otro codigo se ignora y se sigue esperando.
        """
        seen = ResponseList()
        while True:
            response = self._next_response(timeout)
            seen.append(response)
            if not response.is_terminal:
                continue
            if response.code in UNHAPPY_CODES:
                self._store(response, seen)
                raise ProtocolError(f"Server replied {response.code}: {response.text}", response)
            if not codes or response.code in codes:
                self._store(response, seen)
                return response

    def drain(self) -> list[Response]:
        return self._queue.drain()

    # ---------------- Métodos Internos ----------------
    def _open_socket(self) -> socket.socket:
        if self.proxy is not None:
            sock = self.proxy.create_connection(self.host, self.port, self.timeout)
        else:
            sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        sock.settimeout(self.timeout)
        return sock

    def _next_response(self, timeout: float) -> Response:
        deadline = time.monotonic() + timeout
        while True:
            self._check_cancelled()
            response = self._queue.get(RESPONSE_POLL_INTERVAL)
            if response is not None:
                return response
            if self._channel is None or not self._channel.is_alive:
                response = self._queue.get(0)
                if response is not None:
                    return response
                raise ConnectionClosedError("Control connection closed while waiting for a reply.",
                                            self.last_response)
            if time.monotonic() >= deadline:
                raise CommandResponseTimeoutError(
                    f"Timed out after {timeout}s waiting for a server reply.", self.last_response)

    def _check_cancelled(self) -> None:
        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled()

    def _store(self, response: Optional[Response], responses: ResponseList) -> None:
        with self._last_lock:
            self._last_response = response
            self._last_response_list = responses

    def _on_response(self, response: Response) -> None:
        self.events.fire(SERVER_RESPONSE, response)

    def _on_channel_closed(self) -> None:
        logger.info("Control connection to %s:%s lost", self.host, self.port)
        with self._state_lock:
            self._state = ConnectionState.CLOSED
        self.close_socket()
        self.socket = None
        self.events.fire(CONNECTION_CLOSED)

    def _shutdown(self, notify: bool) -> None:
        channel, self._channel = self._channel, None
        if channel is not None:
            channel.stop()
        self.close_socket()
        self.socket = None
        with self._state_lock:
            was_open = self._state is not ConnectionState.CLOSED
            self._state = ConnectionState.CLOSED
        if notify and was_open:
            logger.info("✓ Disconnected from %s:%s", self.host, self.port)
            self.events.fire(CONNECTION_CLOSED)
