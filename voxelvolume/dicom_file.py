"""Byte-level reading of DICOM files."""

from __future__ import annotations

import logging
import os
import re
import sys
from pathlib import Path
from typing import BinaryIO

logger = logging.getLogger(__name__)

_FLOAT_PREFIX = re.compile(rb"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_INT_PREFIX = re.compile(rb"\s*([+-]?\d+)")


def _byteorder(swap: bool) -> str:
    """Byte order of a native read, swapped when ``swap`` is set."""
    if not swap:
        return sys.byteorder
    return "little" if sys.byteorder == "big" else "big"


def _c_string(data) -> bytes:
    return bytes(data).split(b"\0", 1)[0]


def _parse_float(data) -> float:
    match = _FLOAT_PREFIX.match(_c_string(data))
    return float(match.group(1)) if match else 0.0


def _parse_int(data) -> int:
    match = _INT_PREFIX.match(_c_string(data))
    return int(match.group(1)) if match else 0


def _to_int(data: bytes, width: int, swap: bool, signed: bool) -> int:
    return int.from_bytes(bytes(data[:width]).ljust(width, b"\0"), _byteorder(swap), signed=signed)


def return_as_unsigned_short(data, big_endian: bool) -> int:
    """Interpret the first two bytes of ``data`` as an unsigned short.

    ``big_endian`` is the swap flag as held by :attr:`DicomFile.platform_is_big_endian`.
    """
    return _to_int(data, 2, big_endian, signed=False)


def return_as_signed_short(data, big_endian: bool) -> int:
    """Interpret the first two bytes of ``data`` as a signed short."""
    return _to_int(data, 2, big_endian, signed=True)


def return_as_float(data, big_endian: bool) -> float:
    """Parse the leading decimal number of a textual value; 0.0 when there is none."""
    if data is None:
        return 0.0
    return _parse_float(data)


class DicomFile:
    """A DICOM file opened for reading with endian-aware integer reads.

    Integers are read in native order and swapped when
    ``platform_is_big_endian`` is set, so on any host the default reads are
    little-endian; flipping the flag switches to big-endian reads.
    """

    def __init__(self) -> None:
        self.platform_is_big_endian: bool = sys.byteorder == "big"
        self._handle: BinaryIO | None = None

    @property
    def platform_endian(self) -> str:
        return "BigEndian" if self.platform_is_big_endian else "LittleEndian"

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    @property
    def _stream(self) -> BinaryIO:
        if self._handle is None:
            raise ValueError("no file is open")
        return self._handle

    def __enter__(self) -> DicomFile:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def open(self, filename: str | os.PathLike) -> None:
        """Open ``filename`` for binary reading, closing any file already open."""
        self.close()
        self._handle = Path(filename).open("rb")

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def tell(self) -> int:
        return self._stream.tell()

    def skip_to_pos(self, position: int) -> None:
        self._stream.seek(position, os.SEEK_SET)

    def size(self) -> int:
        """Size of the file in bytes; the read position is left unchanged."""
        stream = self._stream
        current = stream.tell()
        end = stream.seek(0, os.SEEK_END)
        stream.seek(current, os.SEEK_SET)
        return end

    def skip(self, increment: int) -> None:
        self._stream.seek(increment, os.SEEK_CUR)

    def skip_to_start(self) -> None:
        self._stream.seek(0, os.SEEK_SET)

    def read(self, nbytes: int) -> bytes:
        """Read up to ``nbytes`` bytes; fewer come back at the end of the file."""
        return self._stream.read(max(nbytes, 0))

    def read_double_byte(self) -> int:
        return _to_int(self.read(2), 2, self.platform_is_big_endian, signed=False)

    def read_double_byte_as_little_endian(self) -> int:
        return _to_int(self.read(2), 2, self.platform_is_big_endian, signed=False)

    def read_quad_byte(self) -> int:
        return _to_int(self.read(4), 4, self.platform_is_big_endian, signed=True)

    def read_n_bytes(self, length: int) -> int:
        """Read a 1, 2 or 4 byte integer; other lengths read nothing and give -1."""
        if length == 1:
            return _to_int(self.read(1), 1, False, signed=True)
        if length == 2:
            return self.read_double_byte()
        if length == 4:
            return self.read_quad_byte()
        logger.error("Unable to read %d bytes", length)
        return -1

    def read_ascii_float(self, length: int) -> float:
        value = _parse_float(self.read(length))
        logger.debug("Read ASCII float: %s", value)
        return value

    def read_ascii_int(self, length: int) -> int:
        value = _parse_int(self.read(length))
        logger.debug("Read ASCII int: %s", value)
        return value

    def read_ascii_char_array(self, length: int) -> bytes | None:
        """Read ``length`` raw bytes; None when ``length`` is not positive."""
        if length <= 0:
            return None
        return self.read(length)