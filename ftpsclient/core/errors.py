"""
Jerarquia de excepciones del cliente.

Todas las excepciones derivan de FtpsError y llevan, cuando existe, la
ultima respuesta del servidor (``response``) para facilitar el diagnostico.
"""


class FtpsError(Exception):
    """Base de todos los errores del cliente FTP/FTPS."""

    def __init__(self, message: str = "", response=None):
        super().__init__(message)
        self.message = message
        self.response = response

    def __str__(self) -> str:
        if self.response is not None and self.response.raw:
            return f"{self.message} (server reply: {self.response.raw})"
        return self.message


# ----------------- connection -----------------
class ConnectionClosedError(FtpsError):
    """The control connection is not open."""


class ConnectionBrokenError(FtpsError):
    """The control connection dropped while a command was in flight."""


class ConnectionOpenError(FtpsError):
    """Opening the connection failed, or it is already open."""


class ProxyError(ConnectionOpenError):
    """The proxy provider could not reach the destination."""


# ----------------- protocol -----------------
class ProtocolError(FtpsError):
    """Unhappy terminal code, malformed reply or unexpected reply shape."""


class CommandNotSupportedError(ProtocolError):
    pass


class FeatureNotSupportedError(ProtocolError):
    """The server did not advertise the feature in its FEAT reply."""


class FeatureParsingError(ProtocolError):
    pass


# ----------------- timeouts -----------------
class CommandResponseTimeoutError(FtpsError):
    pass


class DataConnectionTimeoutError(FtpsError):
    pass


# ----------------- data channel -----------------
class DataConnectionError(FtpsError):
    pass


class DataTransferError(FtpsError):
    pass


class DataCompressionError(DataTransferError):
    pass


# ----------------- integrity -----------------
class HashingError(FtpsError):
    pass


class HashingInvalidAlgorithmError(HashingError):
    pass


class HashingServerBusyError(HashingError):
    pass


# ----------------- state / auth -----------------
class BusyError(FtpsError):
    """The session is busy or in a state that forbids the request."""


class LoginError(FtpsError):
    pass


class AuthenticationError(FtpsError):
    pass


class SecureConnectionError(AuthenticationError):
    pass


class CertificateValidationError(AuthenticationError):
    pass


# ----------------- misc -----------------
class OperationCancelledError(FtpsError):
    pass


class ItemParsingError(FtpsError):
    pass
