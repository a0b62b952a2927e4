import struct

import numpy as np
import pytest

from voxelvolume.dicom_app_helper import DicomAppHelper, ImageData
from voxelvolume.dicom_parser import DicomParser, VRType

_LONG = {"OB", "OW", "UN", "SQ"}


def _even(value: bytes) -> bytes:
    return value + b"\0" if len(value) % 2 else value


def _record(group: int, element: int, vr: str, value: bytes) -> bytes:
    value = _even(value)
    if vr in _LONG:
        head = struct.pack("<HH2sHI", group, element, vr.encode(), 0, len(value))
    else:
        head = struct.pack("<HH2sH", group, element, vr.encode(), len(value))
    return head + value


def _write(path, records) -> str:
    path.write_bytes(b"\0" * 128 + b"DICM" + b"".join(records))
    return str(path)


def _parse(*paths):
    parser = DicomParser()
    helper = DicomAppHelper()
    helper.register_callbacks(parser)
    helper.register_pixel_data_callback(parser)
    for path in paths:
        parser.open_file(path)
        assert parser.read_header()
        parser.close_file()
    return helper


def _slice(tmp_path, name, *, number=b"7", width=4, height=2, bits=16, pixels=None,
           extra=(), series=b"1.2.3"):
    if pixels is None:
        pixels = np.arange(width * height, dtype="<i2").tobytes()
    records = [
        _record(0x0010, 0x0010, "PN", b"Doe^John"),
        _record(0x0020, 0x000E, "UI", series),
        _record(0x0020, 0x0013, "IS", number),
        _record(0x0028, 0x0010, "US", struct.pack("<H", height)),
        _record(0x0028, 0x0011, "US", struct.pack("<H", width)),
        _record(0x0028, 0x0100, "US", struct.pack("<H", bits)),
        *extra,
        _record(0x7FE0, 0x0010, "OW" if bits == 16 else "OB", pixels),
    ]
    return _write(tmp_path / name, records)


def test_header_values_are_collected(tmp_path):
    path = _slice(
        tmp_path,
        "a.dcm",
        extra=(_record(0x0028, 0x0030, "DS", b"0.5\\0.25"),),
    )
    helper = _parse(path)
    assert helper.width == 4
    assert helper.height == 2
    assert helper.dimensions == [4, 2]
    assert helper.bits_allocated == 16
    assert helper.pixel_spacing[:2] == [0.5, 0.25]
    assert helper.slice_number == 7
    assert helper.patient_name == "Doe^John"
    assert helper.series_uids() == ["1.2.3"]
    assert helper.slice_number_pairs() == [(7, path)]


def test_identity_rescale_keeps_short_pixels(tmp_path):
    values = np.array([0, 1, -5, 300, 7, 8, 9, 10], dtype="<i2")
    path = _slice(tmp_path, "a.dcm", pixels=values.tobytes())
    image = _parse(path).image_data()
    assert image.vr_type == VRType.OW
    assert image.length == values.nbytes
    assert np.frombuffer(image.data, dtype=np.int16).tolist() == values.tolist()


def test_integer_rescale_produces_signed_shorts(tmp_path):
    values = np.array([0, 1, 500], dtype="<i2")
    path = _slice(
        tmp_path,
        "a.dcm",
        width=3,
        height=1,
        pixels=values.tobytes(),
        extra=(
            _record(0x0028, 0x1052, "DS", b"-1000"),
            _record(0x0028, 0x1053, "DS", b"2"),
        ),
    )
    helper = _parse(path)
    assert not helper.rescaled_image_data_is_float()
    assert helper.rescaled_image_data_is_signed()
    image = helper.image_data()
    assert image.vr_type == VRType.OW
    result = np.frombuffer(image.data, dtype=np.int16).tolist()
    assert result == [2 * v - 1000 for v in values.tolist()]


def test_fractional_slope_produces_floats(tmp_path):
    values = np.array([2, 4, 6, 8], dtype="<u2")
    path = _slice(
        tmp_path,
        "a.dcm",
        width=2,
        height=2,
        pixels=values.tobytes(),
        extra=(_record(0x0028, 0x1053, "DS", b"0.5"),),
    )
    helper = _parse(path)
    assert helper.rescaled_image_data_is_float()
    image = helper.image_data()
    assert image.vr_type == VRType.FL
    assert np.frombuffer(image.data, dtype=np.float32).tolist() == [
        v / 2 for v in values.tolist()
    ]


def test_eight_bit_pixels(tmp_path):
    values = bytes([1, 2, 3, 4])
    path = _slice(tmp_path, "a.dcm", width=2, height=2, bits=8, pixels=values)
    image = _parse(path).image_data()
    assert image.vr_type == VRType.OB
    assert image.data == values


def test_pixel_representation_makes_data_signed(tmp_path):
    path = _slice(
        tmp_path, "a.dcm", extra=(_record(0x0028, 0x0103, "US", struct.pack("<H", 1)),)
    )
    helper = _parse(path)
    assert helper.pixel_representation == 1
    assert helper.rescaled_image_data_is_signed()


def test_unsigned_by_default():
    helper = DicomAppHelper()
    assert not helper.rescaled_image_data_is_signed()
    assert not helper.rescaled_image_data_is_float()
    assert helper.image_data() == ImageData()


def test_malformed_pixel_spacing_resets_to_zero(tmp_path):
    path = _slice(tmp_path, "a.dcm", extra=(_record(0x0028, 0x0030, "DS", b"abc"),))
    assert _parse(path).pixel_spacing[:2] == [0.0, 0.0]


def test_big_endian_transfer_syntax_is_recorded(tmp_path):
    uid = b"1.2.840.10008.1.2.2"
    path = _write(tmp_path / "a.dcm", [_record(0x0002, 0x0010, "UI", uid)])
    helper = _parse(path)
    assert helper.byte_swap_data
    assert helper.transfer_syntax_uid == uid.decode()


def test_little_endian_transfer_syntax_does_not_swap(tmp_path):
    uid = b"1.2.840.10008.1.2.1"
    path = _write(tmp_path / "a.dcm", [_record(0x0002, 0x0010, "UI", uid)])
    helper = _parse(path)
    assert not helper.byte_swap_data
    assert helper.transfer_syntax_uid == uid.decode()


def test_slices_of_a_series_are_ordered(tmp_path):
    first = _slice(tmp_path, "a.dcm", number=b"3",
                   extra=(_record(0x0020, 0x1041, "DS", b"4.5"),))
    second = _slice(tmp_path, "b.dcm", number=b"1",
                    extra=(_record(0x0020, 0x1041, "DS", b"1.5"),))
    helper = _parse(first, second)
    assert helper.slice_number_pairs() == [(1, second), (3, first)]
    assert helper.slice_number_pairs(ascending=False) == [(3, first), (1, second)]
    assert helper.slice_location_pairs() == [(1.5, second), (4.5, first)]
    assert helper.slice_number_pairs(series_uid="9.9") == []


def test_image_position_along_normal(tmp_path):
    path = _slice(
        tmp_path,
        "a.dcm",
        extra=(
            _record(0x0020, 0x0032, "DS", b"0\\0\\5"),
            _record(0x0020, 0x0037, "DS", b"1\\0\\0\\0\\1\\0"),
        ),
    )
    helper = _parse(path)
    assert helper.image_position_patient == (0.0, 0.0, 5.0)
    assert helper.image_orientation_patient == (1.0, 0.0, 0.0, 0.0, 1.0, 0.0)
    assert helper.image_position_pairs() == [(5.0, path)]


def test_output_series_lists_files(tmp_path, capsys):
    path = _slice(tmp_path, "a.dcm")
    _parse(path).output_series()
    out = capsys.readouterr().out
    assert "SERIES: 1.2.3" in out
    assert f"\t{path} [7]" in out


def test_clear_forgets_series(tmp_path):
    helper = _parse(_slice(tmp_path, "a.dcm"))
    helper.clear()
    assert helper.series_uids() == []
    assert helper.slice_number_pairs() == []


def test_register_callbacks_requires_parser():
    with pytest.raises(ValueError):
        DicomAppHelper().register_callbacks(None)