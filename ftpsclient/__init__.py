"""
FTP/FTPS client.
Includes the session facade, its settings, the error hierarchy and the listing model.
"""

from .client import FtpsClient
from .config import (
    ClientSettings, FileAction, ListingMethod, NetworkVersion, TransferMode, TransferType,
)
from .core.errors import (
    AuthenticationError, BusyError, CertificateValidationError, CommandNotSupportedError,
    CommandResponseTimeoutError, ConnectionBrokenError, ConnectionClosedError,
    ConnectionOpenError, DataCompressionError, DataConnectionError, DataConnectionTimeoutError,
    DataTransferError, FeatureNotSupportedError, FeatureParsingError, FtpsError, HashingError,
    HashingInvalidAlgorithmError, HashingServerBusyError, ItemParsingError, LoginError,
    OperationCancelledError, ProtocolError, ProxyError, SecureConnectionError,
)
from .core.events import (
    CLIENT_REQUEST, CONNECTION_CLOSED, SERVER_RESPONSE, TRANSFER_COMPLETE, TRANSFER_PROGRESS,
)
from .core.hashing import HashingAlgorithm
from .core.security import SecurityProtocol, ServerCertificate, SslPolicyErrors
from .core.transfer import TransferComplete, TransferProgress
from .listing.item import Item, ItemCollection, ItemType, MlsxPerm
from .proxy import ProxyClient

__version__ = "0.1.0"

__all__ = [
    "FtpsClient",
    "ClientSettings",
    "FileAction",
    "ListingMethod",
    "NetworkVersion",
    "TransferMode",
    "TransferType",
    "HashingAlgorithm",
    "SecurityProtocol",
    "ServerCertificate",
    "SslPolicyErrors",
    "TransferProgress",
    "TransferComplete",
    "Item",
    "ItemCollection",
    "ItemType",
    "MlsxPerm",
    "ProxyClient",
    "SERVER_RESPONSE",
    "CLIENT_REQUEST",
    "TRANSFER_PROGRESS",
    "TRANSFER_COMPLETE",
    "CONNECTION_CLOSED",
    "FtpsError",
    "ConnectionClosedError",
    "ConnectionBrokenError",
    "ConnectionOpenError",
    "ProxyError",
    "ProtocolError",
    "CommandNotSupportedError",
    "FeatureNotSupportedError",
    "FeatureParsingError",
    "CommandResponseTimeoutError",
    "DataConnectionTimeoutError",
    "DataConnectionError",
    "DataTransferError",
    "DataCompressionError",
    "HashingError",
    "HashingInvalidAlgorithmError",
    "HashingServerBusyError",
    "BusyError",
    "LoginError",
    "AuthenticationError",
    "SecureConnectionError",
    "CertificateValidationError",
    "OperationCancelledError",
    "ItemParsingError",
]
