import logging
import queue
import select
import ssl
import threading
from typing import Callable, Optional

from .constants import RESPONSE_POLL_INTERVAL, ResponseCode
from .parser import Response

logger = logging.getLogger(__name__)


class ResponseQueue:
    """FIFO thread-safe de respuestas; el orden de llegada se conserva."""

    def __init__(self):
        self._queue: "queue.Queue[Response]" = queue.Queue()

    def put(self, response: Response) -> None:
        self._queue.put(response)

    def get(self, timeout: float) -> Optional[Response]:
        """Devuelve la siguiente respuesta o None si no llega nada a tiempo."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[Response]:
        drained = []
        while True:
            try:
                drained.append(self._queue.get_nowait())
            except queue.Empty:
                return drained

    def __len__(self) -> int:
        return self._queue.qsize()


class ResponseChannel:
    """
    Hilo lector del canal de control.

    Lee los bytes disponibles del socket de control, los acumula hasta ver un
    fin de linea y publica cada linea como un Response en la cola, en orden.
    Un 421 hace que el propio canal cierre el socket de control. Al cerrarse
    el socket (EOF o error de lectura) el bucle termina y se llama a
    ``on_closed``.

    El objeto ``connection`` debe exponer:
        - socket: socket actual (se relee en cada vuelta, puede cambiar al
          negociar TLS)
        - stream_lock: lock que protege lecturas/escrituras del socket
        - encoding: codificacion del texto de control
        - close_socket(): cierra el socket de control
    """

    def __init__(self, connection, response_queue: ResponseQueue, buffer_size: int = 8192,
                 on_response: Optional[Callable[[Response], None]] = None,
                 on_closed: Optional[Callable[[], None]] = None,
                 poll_interval: float = RESPONSE_POLL_INTERVAL):
        self._conn = connection
        self._queue = response_queue
        self._buffer_size = buffer_size
        self._on_response = on_response
        self._on_closed = on_closed
        self._poll_interval = poll_interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="ftps-response-channel", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ---------------- Métodos Internos ----------------
    def _run(self):
        pending = b""
        try:
            while not self._stop.is_set():
                sock = self._conn.socket
                if sock is None:
                    break
                if not self._wait_readable(sock):
                    continue

                with self._conn.stream_lock:
                    # the socket may have been swapped by a TLS upgrade
                    if sock is not self._conn.socket:
                        continue
                    data = self._recv_nowait(sock)
                if data is None:
                    continue

                if not data:
                    logger.info("Control connection closed by peer")
                    break

                pending += data
                *lines, pending = pending.split(b"\n")
                if self._publish(lines):
                    logger.warning("Server signalled 421; closing control connection")
                    self._conn.close_socket()
                    break
        except (OSError, ValueError) as e:
            if not self._stop.is_set():
                logger.warning("Response channel stopped on read failure: %s", e)
        finally:
            if not self._stop.is_set() and self._on_closed is not None:
                self._on_closed()

    def _wait_readable(self, sock) -> bool:
        if isinstance(sock, ssl.SSLSocket) and sock.pending():
            return True
        try:
            readable, _, _ = select.select([sock], [], [], self._poll_interval)
        except (OSError, ValueError):
            # a TLS upgrade detaches the old socket; wait for it to finish
            with self._conn.stream_lock:
                if sock is not self._conn.socket:
                    return False
            raise
        return bool(readable)

    def _recv_nowait(self, sock) -> Optional[bytes]:
        """
        Lee sin bloquear; None si no hay datos de aplicacion todavia.

        Se llama con stream_lock tomado, asi que nadie mas usa el socket
        mientras cambia a modo no bloqueante. Un registro TLS sin datos
        (p.ej. NewSessionTicket de TLS 1.3) deja el socket "legible" pero
        recv no tendria nada que devolver.
        """
        timeout = sock.gettimeout()
        sock.setblocking(False)
        try:
            return sock.recv(self._buffer_size)
        except (ssl.SSLWantReadError, ssl.SSLWantWriteError, BlockingIOError):
            return None
        finally:
            sock.settimeout(timeout)

    def _publish(self, lines: list[bytes]) -> bool:
        closing = False
        for line in lines:
            text = line.rstrip(b"\r").decode(self._conn.encoding, errors="replace")
            if not text.strip():
                continue
            response = Response.parse(text)
            logger.debug("← RECV: %s", response.raw)
            self._queue.put(response)
            if self._on_response is not None:
                try:
                    self._on_response(response)
                except Exception:
                    logger.exception("server_response handler failed")
            if response.code == ResponseCode.SERVICE_NOT_AVAILABLE:
                closing = True
        return closing
