"""Grouping DICOM slice files into series and ordering the slices of a series."""

from __future__ import annotations

from dataclasses import dataclass, field

_TRANSFER_SYNTAX_DESCRIPTIONS = {
    "1.2.840.10008.1.2": "Implicit VR, Little Endian",
    "1.2.840.10008.1.2.4.70": "Lossless JPEG",
    "1.2.840.10008.1.2.4.50": "Lossy JPEG 8 bit",
    "1.2.840.10008.1.2.4.51": "Lossy JPEG 16 bit.",
    "1.2.840.10008.1.2.1": "Explicit VR, Little Endian.",
    "1.2.840.10008.1.2.2": "Explicit VR, Big Endian.",
    "1.2.840.113619.5.2": "GE Private, Implicit VR, Big Endian Image Data.",
}


def transfer_syntax_description(uid: str) -> str:
    """Human-readable name of a transfer syntax UID; "Unknown." when not recognised."""
    return _TRANSFER_SYNTAX_DESCRIPTIONS.get(uid, "Unknown.")


@dataclass
class OrderingElements:
    """Per-file values that a slice can be ordered by within its series."""

    slice_number: int = -1
    slice_location: float = 0.0
    image_position_patient: tuple[float, float, float] = (0.0, 0.0, 0.0)
    image_orientation_patient: tuple[float, float, float, float, float, float] = (
        1.0,
        0.0,
        0.0,
        0.0,
        1.0,
        0.0,
    )

    def position_along_normal(self) -> float:
        """Image position projected onto the normal of the slice plane."""
        r0, r1, r2, c0, c1, c2 = self.image_orientation_patient
        normal = (
            r1 * c2 - r2 * c1,
            r2 * c0 - r0 * c2,
            r0 * c1 - r1 * c0,
        )
        return sum(n * p for n, p in zip(normal, self.image_position_patient))


@dataclass
class SeriesIndex:
    """Files grouped by series UID, with the ordering values of each file."""

    _series: dict[str, list[str]] = field(default_factory=dict)
    _ordering: dict[str, OrderingElements] = field(default_factory=dict)

    def add_file(self, series_uid: str, filename: str) -> None:
        """Record that ``filename`` belongs to the series ``series_uid``."""
        self._series.setdefault(series_uid, []).append(filename)

    def ordering(self, filename: str) -> OrderingElements:
        """Ordering values of ``filename``, created with defaults on first use."""
        return self._ordering.setdefault(filename, OrderingElements())

    def series_uids(self) -> list[str]:
        """Known series UIDs in sorted order."""
        return sorted(self._series)

    def _files(self, series_uid: str | None) -> list[str]:
        if series_uid is None:
            uids = self.series_uids()
            if not uids:
                return []
            series_uid = uids[0]
        return list(self._series.get(series_uid, ()))

    def _pairs(self, series_uid, ascending, key):
        pairs = [
            (key(self._ordering[name]), name)
            for name in self._files(series_uid)
            if name in self._ordering
        ]
        return sorted(pairs, key=lambda pair: pair[0], reverse=not ascending)

    def slice_number_pairs(
        self, series_uid: str | None = None, ascending: bool = True
    ) -> list[tuple[int, str]]:
        """(slice number, file) pairs of a series, sorted by slice number.

        Without ``series_uid`` the first series in sorted order is used; files
        without ordering values are left out.
        """
        return self._pairs(series_uid, ascending, lambda o: o.slice_number)

    def slice_location_pairs(
        self, series_uid: str | None = None, ascending: bool = True
    ) -> list[tuple[float, str]]:
        """(slice location, file) pairs of a series, sorted by slice location."""
        return self._pairs(series_uid, ascending, lambda o: o.slice_location)

    def image_position_pairs(
        self, series_uid: str | None = None, ascending: bool = True
    ) -> list[tuple[float, str]]:
        """(position along the slice normal, file) pairs of a series, sorted by position."""
        return self._pairs(series_uid, ascending, OrderingElements.position_along_normal)

    def clear(self) -> None:
        """Forget all series and ordering values."""
        self._series.clear()
        self._ordering.clear()

    def describe(self) -> str:
        """Listing of every series with its files and their slice numbers."""
        lines = ["", ""]
        for uid in self.series_uids():
            lines.append(f"SERIES: {uid}")
            for name in self._series[uid]:
                ordering = self._ordering.get(name)
                slice_number = ordering.slice_number if ordering is not None else -1
                lines.append(f"\t{name} [{slice_number}]")
        return "\n".join(lines) + "\n"