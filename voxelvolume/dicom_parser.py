"""Walking the records of a DICOM file and dispatching them to tag callbacks."""

from __future__ import annotations

import enum
import logging
import os
from typing import Callable, Iterable, Optional

import numpy as np

from voxelvolume.dicom_file import DicomFile

logger = logging.getLogger(__name__)

_DICOM_MAGIC = b"DICM"
_OPTIONAL_SKIP = 128
_PIXEL_DATA = (0x7FE0, 0x0010)
_TRANSFER_SYNTAX = (0x0002, 0x0010)

_EXPLICIT_BIG_ENDIAN = b"1.2.840.10008.1.2.2"
_GE_PRIVATE_IMPLICIT_BIG_ENDIAN = b"1.2.840.113619.5.2"


def _vr(code: str) -> int:
    """Value of a two-letter VR code as read from the file in little-endian order."""
    return ord(code[0]) | (ord(code[1]) << 8)


class VRType(enum.IntEnum):
    """DICOM value representations, valued as their two letters read little-endian."""

    UNKNOWN = 0
    OB = _vr("OB")
    AW = _vr("AW")
    AE = _vr("AE")
    AS = _vr("AS")
    CS = _vr("CS")
    UI = _vr("UI")
    DA = _vr("DA")
    DS = _vr("DS")
    DT = _vr("DT")
    IS = _vr("IS")
    LO = _vr("LO")
    LT = _vr("LT")
    OW = _vr("OW")
    PN = _vr("PN")
    ST = _vr("ST")
    TM = _vr("TM")
    UN = _vr("UN")
    UT = _vr("UT")
    SQ = _vr("SQ")
    SH = _vr("SH")
    FL = _vr("FL")
    SL = _vr("SL")
    AT = _vr("AT")
    UL = _vr("UL")
    US = _vr("US")
    SS = _vr("SS")
    FD = _vr("FD")


# Representations whose length field is two bytes long.
_SHORT_LENGTH = frozenset(
    {
        VRType.AW, VRType.AE, VRType.AS, VRType.CS, VRType.UI, VRType.DA,
        VRType.DS, VRType.DT, VRType.IS, VRType.LO, VRType.LT, VRType.PN,
        VRType.ST, VRType.TM, VRType.UT, VRType.SH, VRType.FL, VRType.SL,
        VRType.AT, VRType.UL, VRType.US, VRType.SS, VRType.FD,
    }
)
# Representations with two reserved bytes followed by a four byte length.
_LONG_LENGTH = frozenset({VRType.OB, VRType.OW, VRType.UN, VRType.SQ})

_SWAP_2 = frozenset({VRType.OW, VRType.US, VRType.SS})
_SWAP_4 = frozenset({VRType.SL, VRType.UL})

Callback = Callable[["DicomParser", int, int, VRType, Optional[bytes], int], None]


def _c_string(data: bytes | None) -> bytes:
    if data is None:
        return b""
    return bytes(data).split(b"\0", 1)[0]


def _swap(data: bytes, width: int) -> bytes:
    """Reverse the byte order of every whole ``width``-byte word in ``data``."""
    whole = len(data) // width * width
    if whole == 0:
        return data
    words = np.frombuffer(data, dtype=f"u{width}", count=whole // width)
    return words.byteswap().tobytes() + data[whole:]


def format_tag(group: int, element: int, vr_type: int, data: bytes | None, length: int) -> str:
    """One-line description of a record, as written to a parser dump."""
    low = vr_type & 0xFF
    high = (vr_type >> 8) & 0xFF
    if low == 0 and high == 0:
        low = high = ord("?")
    if (group, element) == _PIXEL_DATA:
        text = "Image data not printed."
    elif data is None:
        text = "nullptr"
    else:
        text = _c_string(data).decode("latin-1")
    return f"(0x{group:04x},0x{element:04x})  {chr(low)}{chr(high)} [{length} bytes] {text}"


class DicomParser:
    """Reads the records of one DICOM file at a time and calls the callbacks
    registered for their (group, element) tags.

    A callback is called as ``callback(parser, group, element, vr_type, data, length)``
    where ``data`` is the raw value, or None for an empty one.
    """

    def __init__(self) -> None:
        self.file_name: str = ""
        self.data_file: DicomFile | None = None
        self.toggle_byte_swap_image_data: bool = False
        self._callbacks: dict[tuple[int, int], tuple[VRType, list[Callback]]] = {}
        self._records: list[tuple[int, int, VRType]] = []

    def __enter__(self) -> DicomParser:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close_file()

    def open_file(self, filename: str | os.PathLike) -> None:
        """Open ``filename``, closing any file opened before.

        Raises OSError when the file cannot be opened.
        """
        self.close_file()
        data_file = DicomFile()
        data_file.open(filename)
        self.data_file = data_file
        self.file_name = os.fspath(filename)

    def close_file(self) -> None:
        if self.data_file is not None:
            self.data_file.close()
            self.data_file = None

    def is_dicom_file(self) -> bool:
        """Whether the open file looks like DICOM.

        The magic number is looked for at the start and after the 128 byte
        preamble; failing both, a file starting with group 0x0002 or 0x0008 is
        accepted and left positioned at its start.
        """
        data_file = self.data_file
        if data_file is None or not data_file.is_open:
            return False
        data_file.skip_to_start()
        if data_file.read(4) == _DICOM_MAGIC:
            return True
        data_file.skip(_OPTIONAL_SKIP - 4)
        if data_file.read(4) == _DICOM_MAGIC:
            return True
        data_file.skip_to_start()
        group = data_file.read_double_byte()
        data_file.skip_to_start()
        if group in (0x0002, 0x0008):
            logger.warning(
                "No DICOM magic number found, but file appears to be DICOM. "
                "Proceeding without caution."
            )
            return True
        return False

    def read_header(self) -> bool:
        """Read every record of the open file, calling the registered callbacks.

        Returns False when no DICOM file is open.
        """
        if not self.is_dicom_file():
            return False
        data_file = self.data_file
        assert data_file is not None

        entry = self._callbacks.get(_TRANSFER_SYNTAX)
        if entry is None or self._transfer_syntax_callback not in entry[1]:
            self.add_tag_callback(*_TRANSFER_SYNTAX, VRType.UI, self._transfer_syntax_callback)

        self.toggle_byte_swap_image_data = False
        self._records = []
        file_size = data_file.size()
        while True:
            self._records.append(self._read_next_record(data_file))
            position = data_file.tell()
            if not 0 <= position < file_size:
                break
        return True

    def add_tag_callback(
        self, group: int, element: int, datatype: VRType, callback: Callback
    ) -> None:
        """Call ``callback`` for every record with this tag.

        ``datatype`` is used for records whose representation is implicit.
        """
        entry = self._callbacks.get((group, element))
        if entry is None:
            self._callbacks[(group, element)] = (VRType(datatype), [callback])
        else:
            entry[1].append(callback)

    def add_tag_callbacks(
        self, group: int, element: int, datatype: VRType, callbacks: Iterable[Callback]
    ) -> None:
        """Register several callbacks for one tag."""
        entry = self._callbacks.get((group, element))
        if entry is None:
            self._callbacks[(group, element)] = (VRType(datatype), list(callbacks))
        else:
            entry[1].extend(callbacks)

    def add_callback_to_all_tags(self, callback: Callback) -> None:
        """Add ``callback`` to every tag that already has callbacks."""
        for _, callbacks in self._callbacks.values():
            callbacks.append(callback)

    def clear_callbacks(self) -> None:
        self._callbacks.clear()

    def records(self) -> list[tuple[int, int, VRType]]:
        """(group, element, representation) of each record read by the last header read."""
        return list(self._records)

    def _representation(self, data_file: DicomFile, representation: int) -> tuple[int, VRType]:
        if representation in _SHORT_LENGTH:
            return data_file.read_double_byte(), VRType(representation)
        if representation in _LONG_LENGTH:
            data_file.read_double_byte()
            return data_file.read_quad_byte(), VRType(representation)
        # Implicit record: those two bytes were the start of the length.
        data_file.skip(-2)
        return data_file.read_quad_byte(), VRType.UNKNOWN

    def _read_next_record(self, data_file: DicomFile) -> tuple[int, int, VRType]:
        group = data_file.read_double_byte()
        element = data_file.read_double_byte()
        representation = data_file.read_double_byte_as_little_endian()
        length, vr_type = self._representation(data_file, representation)

        entry = self._callbacks.get((group, element))
        if entry is None:
            # Negative lengths must not move the file pointer backwards.
            if length > 0:
                data_file.skip(length)
            logger.debug("%s", format_tag(group, element, vr_type, b"Unread.", length))
            return group, element, vr_type

        registered_type, callbacks = entry
        data = data_file.read_ascii_char_array(length)
        callback_type = vr_type if vr_type != VRType.UNKNOWN else registered_type
        logger.debug("%s", format_tag(group, element, callback_type, data, length))
        data = self._byte_swapped(data_file, group, element, callback_type, data)
        for callback in list(callbacks):
            callback(self, group, element, callback_type, data, length)
        return group, element, vr_type

    def _byte_swapped(
        self,
        data_file: DicomFile,
        group: int,
        element: int,
        callback_type: VRType,
        data: bytes | None,
    ) -> bytes | None:
        if data is None:
            return None
        big_endian = data_file.platform_is_big_endian
        if (group, element) == _PIXEL_DATA:
            if (self.toggle_byte_swap_image_data != big_endian) and callback_type == VRType.OW:
                return _swap(data, 2)
            return data
        if big_endian:
            if callback_type in _SWAP_2:
                return _swap(data, 2)
            if callback_type in _SWAP_4:
                return _swap(data, 4)
        return data

    def _transfer_syntax_callback(
        self,
        parser: DicomParser,
        group: int,
        element: int,
        vr_type: VRType,
        data: bytes | None,
        length: int,
    ) -> None:
        uid = _c_string(data)
        self.toggle_byte_swap_image_data = uid in (
            _EXPLICIT_BIG_ENDIAN,
            _GE_PRIVATE_IMPLICIT_BIG_ENDIAN,
        )