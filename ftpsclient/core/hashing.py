import enum
import hashlib
import zlib
from typing import BinaryIO

from .constants import FtpCmd


class HashingAlgorithm(enum.Enum):
    NONE = "none"
    CRC32 = "crc32"
    MD5 = "md5"
    SHA1 = "sha1"
    SHA256 = "sha256"
    SHA512 = "sha512"

    @property
    def hash_name(self) -> str:
        """Nombre usado por HASH / OPTS HASH."""
        return _HASH_NAMES[self]

    @property
    def legacy_command(self) -> str:
        """Comando X* equivalente (XCRC, XMD5, ...)."""
        return _LEGACY_COMMANDS[self]


_HASH_NAMES = {
    HashingAlgorithm.NONE: "",
    HashingAlgorithm.CRC32: "CRC-32",
    HashingAlgorithm.MD5: "MD5",
    HashingAlgorithm.SHA1: "SHA-1",
    HashingAlgorithm.SHA256: "SHA-256",
    HashingAlgorithm.SHA512: "SHA-512",
}

_LEGACY_COMMANDS = {
    HashingAlgorithm.NONE: "",
    HashingAlgorithm.CRC32: FtpCmd.XCRC,
    HashingAlgorithm.MD5: FtpCmd.XMD5,
    HashingAlgorithm.SHA1: FtpCmd.XSHA1,
    HashingAlgorithm.SHA256: FtpCmd.XSHA256,
    HashingAlgorithm.SHA512: FtpCmd.XSHA512,
}


class Crc32:
    """CRC-32 incremental con la interfaz de hashlib."""

    name = "crc32"

    def __init__(self, data: bytes = b""):
        self._value = zlib.crc32(data)

    def update(self, data: bytes) -> None:
        self._value = zlib.crc32(data, self._value)

    def digest(self) -> bytes:
        return (self._value & 0xFFFFFFFF).to_bytes(4, "big")

    def hexdigest(self) -> str:
        return format(self._value & 0xFFFFFFFF, "08x")


def new_hasher(algorithm: HashingAlgorithm):
    if algorithm is HashingAlgorithm.CRC32:
        return Crc32()
    if algorithm is HashingAlgorithm.NONE:
        raise ValueError("no hashing algorithm selected")
    return hashlib.new(algorithm.value)


def compute_hash(algorithm: HashingAlgorithm, stream: BinaryIO, position: int = 0,
                 chunk_size: int = 8192) -> str:
    """Hash hexadecimal (minusculas) de ``stream`` desde ``position`` hasta el final."""
    hasher = new_hasher(algorithm)
    stream.seek(position)
    while chunk := stream.read(chunk_size):
        hasher.update(chunk)
    return hasher.hexdigest()


def hash_matches(local_hash: str, server_text: str) -> bool:
    return local_hash.lower() in server_text.lower()
