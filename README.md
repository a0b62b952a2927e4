# voxelvolume

A small DICOM reader. It walks the records of a DICOM file, calls the
callbacks you register for particular (group, element) tags, collects the
common image tags and the rescaled pixel data of a slice, and orders the
slice files of a series.

## Installation

```
pip install voxelvolume
```

## Modules

- `voxelvolume.dicom_file`: `DicomFile` opens a file for binary reading and
  reads 2- and 4-byte integers, ASCII numbers and raw byte runs. Integer reads
  are swapped when `platform_is_big_endian` is set. The helpers
  `return_as_unsigned_short`, `return_as_signed_short` and `return_as_float`
  interpret a tag value.
- `voxelvolume.dicom_parser`: `DicomParser` reads every record of an open
  file and dispatches it to the registered callbacks. `VRType` lists the value
  representations. `format_tag` gives a one-line description of a record.
- `voxelvolume.dicom_app_helper`: `DicomAppHelper` registers callbacks for
  series UID, slice number and location, image position and orientation,
  transfer syntax, bits allocated, pixel spacing, width, height, pixel
  representation, photometric interpretation, rescale slope and offset,
  patient name, study UID and ID and gantry angle, and, on request, for pixel
  data. `ImageData` holds the rescaled pixel data of the last slice read.
- `voxelvolume.dicom_series`: `SeriesIndex` groups files by series UID and
  keeps an `OrderingElements` record for each file.
  `transfer_syntax_description` names a transfer syntax UID.

## Reading one slice

```python
from voxelvolume.dicom_app_helper import DicomAppHelper
from voxelvolume.dicom_parser import DicomParser

parser = DicomParser()
helper = DicomAppHelper()
helper.register_callbacks(parser)
helper.register_pixel_data_callback(parser)

with parser:
    parser.open_file("scans/ct/slice001.dcm")  # raises OSError if it cannot be opened
    if parser.read_header():                   # False when the file is not DICOM
        print(helper.dimensions, helper.pixel_spacing, helper.slice_number)
        image = helper.image_data()
        print(image.vr_type, image.length)
```

The pixel data is rescaled with the slope and offset from the header. It is
stored as 32-bit floats (`VRType.FL`) when the slope or offset has a
fractional part. Otherwise it is stored as signed 8-bit (`VRType.OB`) or
signed 16-bit (`VRType.OW`) samples, depending on bits allocated. The bytes
are in native order.

## Ordering a series

Read each file of a series with the same parser and helper. Then ask for the
files in order:

```python
for path in paths:
    parser.open_file(path)
    parser.read_header()
parser.close_file()

print(helper.series_uids())
for number, name in helper.slice_number_pairs(ascending=True):
    print(number, name)
```

`slice_location_pairs` and `image_position_pairs` sort the files by slice
location, or by image position projected onto the slice normal. Without a
`series_uid` the pairs come from the first series in sorted order.
`output_series` prints every series with its files and slice numbers, and
`clear` forgets them.

## Your own callbacks

A callback is called as `callback(parser, group, element, vr_type, data, length)`.
Here `data` is the raw value, or None when the value is empty:

```python
from voxelvolume.dicom_parser import VRType

def modality(parser, group, element, vr_type, data, length):
    print("modality:", data)

parser.add_tag_callback(0x0008, 0x0060, VRType.SH, modality)
```

After `read_header`, `records()` lists the (group, element, representation)
of every record read.

## What this package does not do

- It does not assemble slices into a 3D volume.
- It does not normalize or convert voxel values.
- It does not read MetaImage (`.mhd`) files.
- It has no command-line program.
- It does not decode compressed (for example JPEG) pixel data. The pixel bytes
  are taken as they stand in the file.

## Running the tests

```
pip install -e ".[test]"
pytest
```