"""Collecting image geometry, pixel data and series membership while a DICOM file is parsed."""

from __future__ import annotations

import re
from dataclasses import dataclass

import numpy as np

from voxelvolume.dicom_file import return_as_float, return_as_unsigned_short
from voxelvolume.dicom_parser import DicomParser, VRType
from voxelvolume.dicom_series import OrderingElements, SeriesIndex

_FLOAT = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_INT = re.compile(r"\s*([+-]?\d+)")

_EXPLICIT_BIG_ENDIAN = "1.2.840.10008.1.2.2"
_DEFAULT_ORIENTATION = (1.0, 0.0, 0.0, 0.0, 1.0, 0.0)


def _text(data: bytes | None) -> str:
    if data is None:
        return ""
    return bytes(data).split(b"\0", 1)[0].decode("latin-1")


def _atoi(data: bytes | None) -> int:
    match = _INT.match(_text(data))
    return int(match.group(1)) if match else 0


def _atof(data: bytes | None) -> float:
    match = _FLOAT.match(_text(data))
    return float(match.group(1)) if match else 0.0


def _scan_floats(data: bytes | None, count: int) -> list[float]:
    """Read up to ``count`` backslash-separated numbers, stopping at the first mismatch."""
    text = _text(data)
    values: list[float] = []
    position = 0
    for index in range(count):
        match = _FLOAT.match(text, position)
        if match is None:
            break
        values.append(float(match.group(1)))
        position = match.end()
        if index < count - 1:
            if text[position : position + 1] != "\\":
                break
            position += 1
    return values


def _samples(raw: bytes, dtype: str, count: int) -> np.ndarray:
    kind = np.dtype(dtype)
    available = min(count, len(raw) // kind.itemsize)
    return np.frombuffer(raw, dtype=kind, count=available)


@dataclass
class ImageData:
    """Pixel data of the last slice read, after rescaling."""

    data: bytes = b""
    vr_type: VRType = VRType.UNKNOWN

    @property
    def length(self) -> int:
        """Size of the pixel data in bytes."""
        return len(self.data)


class DicomAppHelper:
    """Registers tag callbacks on a :class:`DicomParser` and keeps what they deliver."""

    def __init__(self) -> None:
        self.bits_allocated: int = 8
        self.byte_swap_data: bool = False
        self.pixel_spacing: list[float] = [1.0, 1.0, 1.0]
        self.dimensions: list[int] = [0, 0]
        self.photometric_interpretation: str = ""
        self.transfer_syntax_uid: str = ""
        self.rescale_offset: float = 0.0
        self.rescale_slope: float = 1.0
        self.patient_name: str = ""
        self.study_uid: str = ""
        self.study_id: str = ""
        self.gantry_angle: float = 0.0
        self.width: int = 0
        self.height: int = 0
        self.pixel_representation: int = 0
        self.slice_number: int = 0
        self.image_position_patient: tuple[float, ...] = (0.0, 0.0, 0.0)
        self.image_orientation_patient: tuple[float, ...] = _DEFAULT_ORIENTATION
        self.series = SeriesIndex()
        self._image = ImageData()

    @property
    def number_of_components(self) -> int:
        """Samples per pixel: three for RGB images, otherwise one."""
        return 3 if self.photometric_interpretation.strip() == "RGB" else 1

    def register_callbacks(self, parser: DicomParser) -> None:
        """Register the header callbacks on ``parser``."""
        if parser is None:
            raise ValueError("Null parser!")
        add = parser.add_tag_callback
        add(0x0020, 0x000E, VRType.UI, self._series_uid)
        add(0x0020, 0x0013, VRType.IS, self._slice_number)
        add(0x0020, 0x1041, VRType.CS, self._slice_location)
        add(0x0020, 0x0032, VRType.SH, self._image_position)
        add(0x0020, 0x0037, VRType.SH, self._image_orientation)
        add(0x0002, 0x0010, VRType.UI, self._transfer_syntax)
        add(0x0028, 0x0100, VRType.US, self._bits_allocated)
        add(0x0028, 0x0030, VRType.FL, self._pixel_spacing)
        add(0x0018, 0x0050, VRType.FL, self._pixel_spacing)
        add(0x0028, 0x0011, VRType.US, self._width)
        add(0x0028, 0x0010, VRType.US, self._height)
        add(0x0028, 0x0103, VRType.US, self._pixel_representation)
        add(0x0028, 0x0004, VRType.CS, self._photometric_interpretation)
        add(0x0028, 0x1052, VRType.CS, self._rescale_offset)
        add(0x0028, 0x1053, VRType.FL, self._rescale_slope)
        add(0x0010, 0x0010, VRType.PN, self._patient_name)
        add(0x0020, 0x000D, VRType.UI, self._study_uid)
        add(0x0020, 0x0010, VRType.SH, self._study_id)
        add(0x0018, 0x1120, VRType.FL, self._gantry_angle)

    def register_pixel_data_callback(self, parser: DicomParser) -> None:
        """Register the callback that reads and rescales the pixel data."""
        parser.add_tag_callback(0x7FE0, 0x0010, VRType.OW, self._pixel_data)

    def image_data(self) -> ImageData:
        """Pixel data of the last slice read."""
        return self._image

    def rescaled_image_data_is_float(self) -> bool:
        """Whether slope or offset is fractional, so rescaled data needs floats."""
        slope_part = abs(float(int(self.rescale_slope)) - self.rescale_slope)
        offset_part = abs(float(int(self.rescale_offset)) - self.rescale_offset)
        return slope_part > 0.0 or offset_part > 0.0

    def rescaled_image_data_is_signed(self) -> bool:
        """Whether rescaled data can hold negative values."""
        return (
            self.rescale_slope < 0.0
            or self.pixel_representation == 1
            or self.rescale_offset < 0.0
        )

    def slice_number_pairs(
        self, ascending: bool = True, series_uid: str | None = None
    ) -> list[tuple[int, str]]:
        """(slice number, file) pairs of a series; the first series by default."""
        return self.series.slice_number_pairs(series_uid, ascending)

    def slice_location_pairs(
        self, ascending: bool = True, series_uid: str | None = None
    ) -> list[tuple[float, str]]:
        """(slice location, file) pairs of a series; the first series by default."""
        return self.series.slice_location_pairs(series_uid, ascending)

    def image_position_pairs(
        self, ascending: bool = True, series_uid: str | None = None
    ) -> list[tuple[float, str]]:
        """(position along the slice normal, file) pairs of a series."""
        return self.series.image_position_pairs(series_uid, ascending)

    def series_uids(self) -> list[str]:
        return self.series.series_uids()

    def output_series(self) -> None:
        """Print every series with its files and slice numbers."""
        print(self.series.describe(), end="")

    def clear(self) -> None:
        """Forget all series and slice ordering data."""
        self.series.clear()

    # Callbacks -------------------------------------------------------------

    def _ordering(self, parser: DicomParser) -> OrderingElements:
        return self.series.ordering(parser.file_name)

    def _big_endian(self, parser: DicomParser) -> bool:
        return parser.data_file is not None and parser.data_file.platform_is_big_endian

    def _series_uid(self, parser, group, element, vr_type, data, length) -> None:
        self.series.add_file(_text(data), parser.file_name)

    def _slice_number(self, parser, group, element, vr_type, data, length) -> None:
        number = _atoi(data) if data is not None else 0
        self._ordering(parser).slice_number = number
        self.slice_number = number

    def _slice_location(self, parser, group, element, vr_type, data, length) -> None:
        ordering = self._ordering(parser)
        if data is not None:
            ordering.slice_location = _atof(data)

    def _image_position(self, parser, group, element, vr_type, data, length) -> None:
        ordering = self._ordering(parser)
        if data is None:
            position = (0.0, 0.0, 0.0)
        else:
            values = _scan_floats(data, 3)
            position = tuple(values) + tuple(ordering.image_position_patient[len(values) :])
        ordering.image_position_patient = position
        self.image_position_patient = position

    def _image_orientation(self, parser, group, element, vr_type, data, length) -> None:
        ordering = self._ordering(parser)
        if data is None:
            orientation = _DEFAULT_ORIENTATION
        else:
            values = _scan_floats(data, 6)
            orientation = tuple(values) + tuple(
                ordering.image_orientation_patient[len(values) :]
            )
        ordering.image_orientation_patient = orientation
        self.image_orientation_patient = orientation

    def _transfer_syntax(self, parser, group, element, vr_type, data, length) -> None:
        uid = _text(data)
        if uid == _EXPLICIT_BIG_ENDIAN:
            self.byte_swap_data = True
            parser.add_tag_callback(0x0800, 0x0000, VRType.UNKNOWN, self._toggle_swap_bytes)
        self.transfer_syntax_uid = uid

    def _toggle_swap_bytes(self, parser, group, element, vr_type, data, length) -> None:
        data_file = parser.data_file
        data_file.platform_is_big_endian = not data_file.platform_is_big_endian
        # The +4 is a guess at the length of the previous field.
        data_file.skip_to_pos(data_file.tell() - length + 4)

    def _bits_allocated(self, parser, group, element, vr_type, data, length) -> None:
        self.bits_allocated = return_as_unsigned_short(data or b"", self._big_endian(parser))

    def _pixel_spacing(self, parser, group, element, vr_type, data, length) -> None:
        if (group, element) == (0x0028, 0x0030):
            values = _scan_floats(data, 2) if data is not None else []
            if len(values) == 2:
                self.pixel_spacing[0], self.pixel_spacing[1] = values
            else:
                self.pixel_spacing[0] = self.pixel_spacing[1] = 0.0
        elif (group, element) == (0x0018, 0x0050):
            self.pixel_spacing[2] = return_as_float(data, self._big_endian(parser))

    def _width(self, parser, group, element, vr_type, data, length) -> None:
        self.width = return_as_unsigned_short(data or b"", self._big_endian(parser))
        self.dimensions[0] = self.width

    def _height(self, parser, group, element, vr_type, data, length) -> None:
        self.height = return_as_unsigned_short(data or b"", self._big_endian(parser))
        self.dimensions[1] = self.height

    def _pixel_representation(self, parser, group, element, vr_type, data, length) -> None:
        self.pixel_representation = return_as_unsigned_short(
            data or b"", self._big_endian(parser)
        )

    def _photometric_interpretation(self, parser, group, element, vr_type, data, length) -> None:
        self.photometric_interpretation = _text(data)

    def _rescale_offset(self, parser, group, element, vr_type, data, length) -> None:
        self.rescale_offset = return_as_float(data, self._big_endian(parser))

    def _rescale_slope(self, parser, group, element, vr_type, data, length) -> None:
        self.rescale_slope = return_as_float(data, self._big_endian(parser))

    def _patient_name(self, parser, group, element, vr_type, data, length) -> None:
        self.patient_name = _text(data)

    def _study_uid(self, parser, group, element, vr_type, data, length) -> None:
        self.study_uid = _text(data)

    def _study_id(self, parser, group, element, vr_type, data, length) -> None:
        self.study_id = _text(data)

    def _gantry_angle(self, parser, group, element, vr_type, data, length) -> None:
        self.gantry_angle = (
            return_as_float(data, self._big_endian(parser)) if data is not None else 0.0
        )

    def _pixel_data(self, parser, group, element, vr_type, data, length) -> None:
        count = self.dimensions[0] * self.dimensions[1] * self.number_of_components
        count = max(min(count, length), 0)
        raw = bytes(data) if data is not None else b""
        sample_width = int(self.bits_allocated / 8.0)
        slope = float(self.rescale_slope)
        offset = float(self.rescale_offset)

        if self.rescaled_image_data_is_float():
            out = np.zeros(count, dtype=np.float32)
            if sample_width in (1, 2):
                source = _samples(raw, "u1" if sample_width == 1 else "u2", count)
                out[: source.size] = slope * source.astype(np.float64) + offset
            self._image = ImageData(out.tobytes(), VRType.FL)
        elif sample_width == 1:
            source = _samples(raw, "u1", count)
            out = np.zeros(count, dtype=np.int8)
            scaled = np.trunc(slope * source.astype(np.float64) + offset)
            out[: source.size] = scaled.astype(np.int64).astype(np.int8)
            self._image = ImageData(out.tobytes(), VRType.OB)
        elif sample_width == 2:
            source = _samples(raw, "i2", count)
            out = np.zeros(count, dtype=np.int16)
            scaled = np.trunc(slope * source.astype(np.float64) + offset)
            out[: source.size] = scaled.astype(np.int64).astype(np.int16)
            self._image = ImageData(out.tobytes(), VRType.OW)