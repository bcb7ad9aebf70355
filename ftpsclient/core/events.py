import logging
import threading

logger = logging.getLogger(__name__)

SERVER_RESPONSE = "server_response"
CLIENT_REQUEST = "client_request"
TRANSFER_PROGRESS = "transfer_progress"
TRANSFER_COMPLETE = "transfer_complete"
CONNECTION_CLOSED = "connection_closed"

EVENT_TYPES = (SERVER_RESPONSE, CLIENT_REQUEST, TRANSFER_PROGRESS, TRANSFER_COMPLETE, CONNECTION_CLOSED)


class EventHooks:
    """Listas de callbacks por tipo de evento, compartidas por todo el cliente."""

    def __init__(self):
        self._handlers: dict[str, list] = {name: [] for name in EVENT_TYPES}
        self._lock = threading.Lock()

    def register_handler(self, event: str, callback) -> None:
        if event not in self._handlers:
            raise ValueError(f"unknown event {event!r}")
        with self._lock:
            self._handlers[event].append(callback)

    def unregister_handler(self, event: str, callback) -> None:
        with self._lock:
            if callback in self._handlers.get(event, []):
                self._handlers[event].remove(callback)

    def has_handlers(self, event: str) -> bool:
        with self._lock:
            return bool(self._handlers.get(event))

    def fire(self, event: str, *args) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event, []))
        for handler in handlers:
            handler(*args)
