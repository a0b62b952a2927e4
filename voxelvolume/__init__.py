"""DICOM file reading: record parsing with tag callbacks, rescaled pixel data and series ordering."""

__version__ = "0.1.0"