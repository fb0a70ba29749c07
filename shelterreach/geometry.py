"""
Geometry normalization for raw street features.

Turns closed rings and multi-part lines into single, simple LineStrings
clipped to a circular area of interest. Also handles the destination
points, which only need to be intersect-tested against the same area.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import geopandas as gpd
import pandas as pd
from shapely.geometry import LineString, Point
from shapely.geometry.base import BaseGeometry

from .config import CRS
from .errors import DataError, GeometryError
from .schema import has_geometry, validate_segment_columns

logger = logging.getLogger(__name__)

LINE_TYPES = {"LineString", "MultiLineString"}
RING_TYPES = {"Polygon", "MultiPolygon", "LinearRing"}


@dataclass
class NormalizeResult:
    segments: gpd.GeoDataFrame
    dropped_degenerate: int
    outside_aoi: int


@dataclass
class DestinationResult:
    destinations: gpd.GeoDataFrame
    outside_aoi: int


def area_of_interest(center_lon: float, center_lat: float, radius_km: float):
    """Circular buffer of `radius_km` around the center, built in local UTM meters."""
    if radius_km <= 0:
        raise ValueError(f"radius_km must be positive, got {radius_km}")
    center = gpd.GeoSeries([Point(center_lon, center_lat)], crs=CRS)
    utm = center.estimate_utm_crs()
    return center.to_crs(utm).buffer(radius_km * 1000.0).to_crs(CRS).iloc[0]


def _to_wgs84(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    if gdf.crs is None:
        return gdf.set_crs(CRS)
    return gdf.to_crs(CRS)


def _ring_to_line(g: BaseGeometry) -> BaseGeometry:
    if g.geom_type == "LinearRing":
        return LineString(g.coords)
    if g.geom_type in ("Polygon", "MultiPolygon"):
        return g.boundary
    return g


def _is_simple_part(g) -> bool:
    """A usable segment: a LineString with two distinct vertices and non-zero length."""
    if g is None or not isinstance(g, BaseGeometry) or g.is_empty:
        return False
    if g.geom_type != "LineString":
        return False
    return len(set(g.coords)) >= 2 and g.length > 0


def normalize_segments(features: gpd.GeoDataFrame, aoi) -> NormalizeResult:
    """
    Normalize raw line/polygon features into single simple segments inside `aoi`.

    Args:
        features: GeoDataFrame with line or polygon geometry and the tag columns
        aoi: Shapely polygon (EPSG:4326) to clip to

    Returns:
        NormalizeResult with a new GeoDataFrame (one LineString per row,
        `segment_id` 0..n-1) and counts of what was dropped.
    """
    gdf = _to_wgs84(validate_segment_columns(features))

    present = gdf.geometry.notna() & ~gdf.geometry.is_empty
    dropped = int((~present).sum())
    gdf = gdf[present]
    if gdf.empty:
        raise GeometryError("Line collection has no non-empty geometries")

    types = set(gdf.geometry.geom_type.unique())
    unsupported = types - LINE_TYPES - RING_TYPES
    if unsupported:
        raise GeometryError(f"Unsupported geometry types in line input: {sorted(unsupported)}")

    gdf = gdf.copy()
    gdf[gdf.geometry.name] = gpd.GeoSeries([_ring_to_line(g) for g in gdf.geometry], index=gdf.index, crs=CRS)

    # zero-length features never survive as segments
    flat = ~gdf.geometry.apply(lambda g: g.length > 0).astype(bool)
    dropped += int(flat.sum())
    gdf = gdf[~flat]

    n_before = len(gdf)
    gdf = gpd.clip(gdf, aoi)
    outside = n_before - len(gdf)
    if gdf.empty:
        raise GeometryError("No line segments remain after clipping to the area of interest")

    gdf = gdf.explode(index_parts=False)
    keep = gdf.geometry.apply(_is_simple_part).astype(bool)
    dropped += int((~keep).sum())
    gdf = gdf[keep]

    if gdf.empty:
        raise GeometryError("No line segments remain after clipping to the area of interest")

    gdf = gdf.drop(columns=["segment_id"], errors="ignore").reset_index(drop=True)
    gdf.insert(0, "segment_id", pd.RangeIndex(len(gdf)).astype("int64"))
    gdf = gpd.GeoDataFrame(gdf, geometry=gdf.geometry.name, crs=CRS)

    logger.info(
        f"Normalized {n_before} features into {len(gdf)} segments "
        f"({outside} outside area, {dropped} degenerate dropped)"
    )
    return NormalizeResult(gdf, dropped, outside)


def clip_destinations(points: gpd.GeoDataFrame, aoi) -> DestinationResult:
    """Keep destinations intersecting `aoi`; polygons are reduced to a representative point."""
    if points is None or len(points) == 0:
        raise DataError("Destination collection is empty")
    if not has_geometry(points):
        raise DataError("Destination collection has no geometry column")

    gdf = _to_wgs84(points.copy())
    gdf = gdf[gdf.geometry.notna() & ~gdf.geometry.is_empty].copy()
    if (gdf.geometry.geom_type != "Point").any():
        gdf[gdf.geometry.name] = gpd.GeoSeries(
            [g if g.geom_type == "Point" else g.representative_point() for g in gdf.geometry],
            index=gdf.index,
            crs=CRS,
        )

    inside = gdf.geometry.intersects(aoi)
    outside = int(len(points) - inside.sum())
    gdf = gdf[inside].reset_index(drop=True)
    if "destination_id" not in gdf.columns:
        gdf.insert(0, "destination_id", pd.RangeIndex(len(gdf)).astype("int64"))

    if outside:
        logger.info(f"Excluded {outside} destinations outside the area of interest")
    return DestinationResult(gdf, outside)
