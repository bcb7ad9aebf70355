"""
Contrato del proveedor de conexiones proxy.

El cliente no implementa ningun protocolo de proxy (SOCKS, HTTP CONNECT...);
solo necesita un objeto que devuelva un socket ya conectado al destino.
"""

import abc
import socket
from typing import Optional

from .core.errors import ProxyError

__all__ = ["ProxyClient", "ProxyError"]


class ProxyClient(abc.ABC):
    @abc.abstractmethod
    def create_connection(self, host: str, port: int,
                          timeout: Optional[float] = None) -> socket.socket:
        """
        Devuelve un socket de flujo conectado a ``host:port`` a traves del
        proxy, o lanza ProxyError.
        """
