import ipaddress
import logging
from dataclasses import dataclass
from typing import Iterator, Optional

from .errors import ProtocolError

logger = logging.getLogger(__name__)

RESPONSE_TYPES = {
    '1': 'preliminary',
    '2': 'success',
    '3': 'missing_info',
    '4': 'error',
    '5': 'error'
}


@dataclass(frozen=True)
class Response:
    """Una linea de respuesta del servidor: codigo, texto y linea cruda."""

    code: Optional[int]
    text: str
    raw: str
    is_continuation: bool = False

    @classmethod
    def parse(cls, line: str) -> "Response":
        raw = line.rstrip("\r\n")
        head = raw[:3]
        if len(head) == 3 and head.isdigit():
            code = int(head)
            text = raw[4:].strip() if len(raw) > 3 else ""
        else:
            code = None
            text = raw.strip()
        is_continuation = len(raw) > 3 and raw[3] == '-'
        return cls(code, text, raw, is_continuation)

    @property
    def is_terminal(self) -> bool:
        return self.code is not None and not self.is_continuation

    @property
    def type(self) -> str:
        if self.code is None:
            return 'unknown'
        return RESPONSE_TYPES.get(str(self.code)[0], 'unknown')

    def __str__(self) -> str:
        return self.raw


class ResponseList:
    """Respuestas recibidas durante un ciclo de comando, en orden de llegada."""

    def __init__(self, responses=None):
        self._items: list[Response] = list(responses or [])

    def append(self, response: Response) -> None:
        self._items.append(response)

    def extend(self, responses) -> None:
        self._items.extend(responses)

    @property
    def raw_text(self) -> str:
        return "\r\n".join(r.raw for r in self._items)

    @property
    def text(self) -> str:
        return "\r\n".join(r.text for r in self._items)

    @property
    def last(self) -> Optional[Response]:
        return self._items[-1] if self._items else None

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index) -> Response:
        return self._items[index]

    def __iter__(self) -> Iterator[Response]:
        return iter(self._items)

    def __repr__(self) -> str:
        return f"ResponseList({self._items!r})"


class Parser:
    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def parse_data(self, data: str) -> list[Response]:
        """Convierte un bloque de texto en respuestas, una por linea no vacia."""
        responses = []
        for line in data.replace("\r", "\n").split("\n"):
            if not line.strip():
                continue
            response = Response.parse(line)
            logger.debug("Parsed response: code=%s, type=%s, message=%s",
                         response.code, response.type, response.text[:50])
            responses.append(response)
        return responses

    def parse_pasv_response(self, message: str) -> tuple[str, int]:
        """Parses the PASV response to extract IP and port."""
        try:
            parts = _parenthesized(message).split(',')
            if len(parts) != 6:
                raise ValueError(f"expected 6 fields, got {len(parts)}")
            ip = '.'.join(p.strip() for p in parts[:4])
            port = (int(parts[4]) << 8) + int(parts[5])
            logger.debug("PASV parsed: %s:%s", ip, port)
            return ip, port
        except (ValueError, IndexError) as e:
            logger.error("Failed to parse PASV response: %s", message)
            raise ProtocolError(f"Invalid PASV response format: {message}") from e

    def parse_epsv_response(self, message: str, default_host: str) -> tuple[str, int]:
        """Parses ``(|proto|addr|port|)``; an empty address means the control host."""
        try:
            fields = _parenthesized(message).split('|')
            if len(fields) < 4:
                raise ValueError(f"expected at least 4 fields, got {len(fields)}")
            host = fields[2].strip() or default_host
            port = int(fields[3])
            logger.debug("EPSV parsed: %s:%s", host, port)
            return host, port
        except (ValueError, IndexError) as e:
            logger.error("Failed to parse EPSV response: %s", message)
            raise ProtocolError(f"Invalid EPSV response format: {message}") from e

    def parse_pasv_tuple(self, message: str) -> str:
        """Returns the raw ``h1,h2,h3,h4,p1,p2`` tuple, as relayed by FXP."""
        try:
            return _parenthesized(message)
        except ValueError as e:
            raise ProtocolError(f"Invalid PASV response format: {message}") from e

    @staticmethod
    def build_port_argument(ip: str, port: int) -> str:
        return "%s,%d,%d" % (ip.replace('.', ','), port // 256, port % 256)

    @staticmethod
    def build_eprt_argument(ip: str, port: int) -> str:
        address = ip.split('%', 1)[0]
        version = 2 if ipaddress.ip_address(address).version == 6 else 1
        return "|%d|%s|%d|" % (version, address, port)


def _parenthesized(message: str) -> str:
    start = message.index('(') + 1
    end = message.index(')', start)
    return message[start:end]
