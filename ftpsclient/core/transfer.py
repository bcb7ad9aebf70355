"""
Transfer engine: the byte pump between a local stream and a data channel.

The pump reads fixed-size chunks, tracks throughput, fires progress and
completion events, throttles to a configured rate and honours cooperative
cancellation between chunks. MODE Z streams are provided as thin wrappers
around the data stream.
"""

import logging
import threading
import time
import zlib
from dataclasses import dataclass
from typing import Optional

from .constants import DEFAULT_TCP_BUFFER_SIZE
from .errors import DataCompressionError, DataTransferError, OperationCancelledError
from .events import TRANSFER_COMPLETE, TRANSFER_PROGRESS, EventHooks

logger = logging.getLogger(__name__)

# header bytes written ahead of the raw deflate stream, and skipped when reading
ZLIB_HEADER = b"\x78\xda"


class CancellationToken:
    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def reset(self) -> None:
        self._event.clear()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("The operation was cancelled.")


@dataclass(frozen=True)
class TransferProgress:
    bytes_transferred: int
    total_bytes_transferred: int
    transfer_size: Optional[int]
    bytes_per_second: float
    elapsed: float
    percent_complete: int

    @property
    def kilobytes_per_second(self) -> float:
        return self.bytes_per_second / 1024

    @property
    def megabytes_per_second(self) -> float:
        return self.bytes_per_second / 1024 ** 2

    @property
    def gigabytes_per_second(self) -> float:
        return self.bytes_per_second / 1024 ** 3

    @property
    def bytes_remaining(self) -> Optional[int]:
        if self.transfer_size is None:
            return None
        return max(self.transfer_size - self.total_bytes_transferred, 0)

    @property
    def time_remaining(self) -> Optional[float]:
        """Segundos restantes estimados, o None si no se conoce el tamaño."""
        remaining = self.bytes_remaining
        if remaining is None or self.bytes_per_second <= 0:
            return None
        return remaining / self.bytes_per_second


@dataclass(frozen=True)
class TransferComplete:
    total_bytes_transferred: int
    bytes_per_second: float
    elapsed: float

    @property
    def kilobytes_per_second(self) -> float:
        return self.bytes_per_second / 1024


class ZlibReader:
    """Lee un flujo MODE Z: descarta los dos bytes de cabecera e infla en crudo."""

    def __init__(self, stream, chunk_size: int = DEFAULT_TCP_BUFFER_SIZE):
        self._stream = stream
        self._chunk_size = chunk_size
        self._inflater = zlib.decompressobj(-zlib.MAX_WBITS)
        self._header_skipped = False
        self._eof = False

    def read(self, size: int = -1) -> bytes:
        if not self._header_skipped:
            self._skip_header()
        while not self._eof:
            chunk = self._stream.read(self._chunk_size)
            try:
                if not chunk:
                    self._eof = True
                    return self._inflater.flush()
                data = self._inflater.decompress(chunk)
            except zlib.error as e:
                raise DataCompressionError(f"Corrupt MODE Z stream: {e}") from e
            if data:
                return data
        return b""

    def close(self) -> None:
        self._stream.close()

    def _skip_header(self):
        skipped = b""
        while len(skipped) < len(ZLIB_HEADER):
            chunk = self._stream.read(len(ZLIB_HEADER) - len(skipped))
            if not chunk:
                break
            skipped += chunk
        self._header_skipped = True


class ZlibWriter:
    """Escribe un flujo MODE Z: cabecera 0x78 0xDA seguida de deflate crudo."""

    def __init__(self, stream, level: int = zlib.Z_BEST_COMPRESSION):
        self._stream = stream
        self._deflater = zlib.compressobj(level, zlib.DEFLATED, -zlib.MAX_WBITS)
        self._header_written = False

    def write(self, data: bytes) -> int:
        if not self._header_written:
            self._stream.write(ZLIB_HEADER)
            self._header_written = True
        compressed = self._deflater.compress(data)
        if compressed:
            self._stream.write(compressed)
        return len(data)

    def finish(self) -> None:
        if not self._header_written:
            self._stream.write(ZLIB_HEADER)
            self._header_written = True
        self._stream.write(self._deflater.flush())

    def close(self) -> None:
        self.finish()
        self._stream.close()


class TransferEngine:
    """
    Bomba de bytes entre un origen y un destino con ``read``/``write``.

    ``clock`` y ``sleep`` se pueden sustituir (p. ej. un reloj simulado en
    pruebas de limitacion de velocidad).
    """

    def __init__(self, buffer_size: int = DEFAULT_TCP_BUFFER_SIZE,
                 events: Optional[EventHooks] = None, clock=time.monotonic, sleep=time.sleep):
        self.buffer_size = buffer_size
        self.events = events or EventHooks()
        self._clock = clock
        self._sleep = sleep

    def pump(self, source, sink, transfer_size: Optional[int] = None,
             max_bytes_per_second: int = 0,
             cancel_token: Optional[CancellationToken] = None) -> TransferComplete:
        total = 0
        last_percent = -1
        start = self._clock()

        while True:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            try:
                chunk = source.read(self.buffer_size)
                if not chunk:
                    break
                sink.write(chunk)
            except OSError as e:
                raise DataTransferError(f"Data transfer failed after {total} bytes: {e}") from e

            total += len(chunk)
            elapsed = self._clock() - start
            rate = _rate(total, elapsed)

            percent = int(total / transfer_size * 100) if transfer_size else 0
            if not transfer_size or percent != last_percent:
                last_percent = percent
                self.events.fire(TRANSFER_PROGRESS, TransferProgress(
                    len(chunk), total, transfer_size, rate, elapsed, percent))

            if max_bytes_per_second > 0 and rate > max_bytes_per_second:
                delay = total / max_bytes_per_second - elapsed
                if delay > 0:
                    self._sleep(delay)

        elapsed = self._clock() - start
        complete = TransferComplete(total, _rate(total, elapsed), elapsed)
        logger.debug("Transferred %d bytes in %.3fs", total, elapsed)
        self.events.fire(TRANSFER_COMPLETE, complete)
        return complete


def _rate(total: int, elapsed: float) -> float:
    return float(total) if elapsed < 1.0 else total / elapsed
