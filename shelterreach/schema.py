"""
Segment and Destination Schema

Column contracts for the segment collection as it moves through the
pipeline, plus typed access to the free-form OSM tags.
"""
from enum import Enum
from typing import Iterator, Mapping, Optional

import geopandas as gpd
import pandas as pd

from .errors import DataError

# Tag columns the cost model needs; missing -> DataError
REQUIRED_TAG_COLUMNS = ("highway", "cycleway", "bicycle")
# Tag columns that are often absent from extracts; added as empty
OPTIONAL_TAG_COLUMNS = ("cycleway:left", "cycleway:right", "cycleway:both")
TAG_COLUMNS = REQUIRED_TAG_COLUMNS + OPTIONAL_TAG_COLUMNS

# Columns attached by the cost model
COST_COLUMNS = {
    "length": "float64",        # km
    "gradient": "float64",      # percent, forward
    "gradient_rev": "float64",  # percent, reverse
    "speed": "float64",         # km/h, forward
    "speed_rev": "float64",     # km/h, reverse
    "time": "float64",          # minutes, NaN if undefined
    "time_rev": "float64",      # minutes
    "suitability": "str",
}


class Suitability(str, Enum):
    GOOD = "good"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def parse(cls, value) -> "Suitability":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown suitability level: {value!r}") from None


def _present(value) -> Optional[str]:
    """Normalize a raw tag cell to a stripped string, or None when absent."""
    if value is None:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    if value is pd.NA:
        return None
    s = str(value).strip()
    return s or None


class SegmentTags(Mapping):
    """Read-only tag mapping; absent, null and empty tags are simply missing keys."""

    __slots__ = ("_tags",)

    def __init__(self, raw: Mapping):
        tags = {}
        for key, value in raw.items():
            v = _present(value)
            if v is not None:
                tags[str(key)] = v
        self._tags = tags

    @classmethod
    def from_row(cls, row, columns=TAG_COLUMNS) -> "SegmentTags":
        return cls({c: row[c] for c in columns if c in row})

    def __getitem__(self, key: str) -> str:
        return self._tags[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tags)

    def __len__(self) -> int:
        return len(self._tags)

    def has(self, key: str) -> bool:
        return key in self._tags

    def value(self, key: str) -> Optional[str]:
        """Lower-cased tag value, or None when absent."""
        v = self._tags.get(key)
        return v.lower() if v is not None else None

    def __repr__(self) -> str:
        return f"SegmentTags({self._tags!r})"


def has_geometry(gdf) -> bool:
    if not isinstance(gdf, gpd.GeoDataFrame):
        return False
    try:
        gdf.geometry
    except AttributeError:
        return False
    return True


def validate_segment_columns(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """
    Check a raw line collection carries geometry and the required tags.

    Returns a copy with the optional tag columns added (as absent) when
    missing. Raises DataError otherwise.
    """
    if gdf is None or len(gdf) == 0:
        raise DataError("Segment collection is empty")
    if not has_geometry(gdf):
        raise DataError("Segment collection has no geometry column")
    missing = [c for c in REQUIRED_TAG_COLUMNS if c not in gdf.columns]
    if missing:
        raise DataError(f"Segment collection lacks required tag columns: {missing}")

    out = gdf.copy()
    for col in OPTIONAL_TAG_COLUMNS:
        if col not in out.columns:
            out[col] = None
    return out


def validate_costed_segments(gdf: gpd.GeoDataFrame) -> bool:
    """Raise DataError if cost columns are missing; True otherwise."""
    missing = set(COST_COLUMNS) - set(gdf.columns)
    if missing:
        raise DataError(f"Segments are missing cost columns: {sorted(missing)}")
    if "segment_id" not in gdf.columns:
        raise DataError("Segments are missing 'segment_id'")
    bad = set(gdf["suitability"].dropna().unique()) - {s.value for s in Suitability}
    if bad:
        raise DataError(f"Unknown suitability values: {sorted(bad)}")
    return True

