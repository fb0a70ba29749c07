"""Raw data providers: vector files, OSM PBF extracts via pyrosm, geocoding via osmnx."""
from __future__ import annotations

import logging
from typing import Optional, Sequence, Tuple

import geopandas as gpd
import osmnx as ox
import pandas as pd
from pyrosm import OSM  # type: ignore

from .config import CRS
from .errors import DataError
from .schema import TAG_COLUMNS

logger = logging.getLogger(__name__)

ox.settings.log_console = False

STREET_FILTER = {"highway": True}
SHELTER_FILTER = {"amenity": ["shelter"], "emergency": ["assembly_point"]}


def _to_wgs84(df: Optional[gpd.GeoDataFrame]) -> gpd.GeoDataFrame:
    if df is None or len(df) == 0:
        return gpd.GeoDataFrame(columns=["geometry"], geometry="geometry", crs=CRS)
    if df.crs is None:
        return df.set_crs(CRS)
    return df.to_crs(CRS)


def _ensure_columns(df: gpd.GeoDataFrame, cols: Sequence[str]) -> gpd.GeoDataFrame:
    for col in cols:
        if col not in df.columns:
            df[col] = None
    return df


def read_features(path: str, layer: Optional[str] = None) -> gpd.GeoDataFrame:
    """Any vector file geopandas can read (GeoPackage, GeoJSON, Shapefile, GeoParquet)."""
    try:
        if path.endswith(".parquet"):
            gdf = gpd.read_parquet(path)
        else:
            gdf = gpd.read_file(path, layer=layer) if layer else gpd.read_file(path)
    except FileNotFoundError as e:
        raise DataError(f"Input not found: {path}") from e
    logger.info(f"Read {len(gdf)} features from {path}")
    return _to_wgs84(gdf)


def get_osm_data(
    pbf_path: str,
    custom_filter: dict,
    *,
    tags_as_columns: Sequence[str] | None = None,
    keep_nodes: bool = False,
    keep_ways: bool = True,
    bounding_box=None,
    osm: OSM | None = None,
) -> gpd.GeoDataFrame:
    """Fetch OSM features across pyrosm versions and normalize CRS and tag columns."""
    osm_obj = osm if osm is not None else OSM(pbf_path, bounding_box=bounding_box)
    tag_cols = list(tags_as_columns or ())

    try:
        df = osm_obj.get_data_by_custom_criteria(
            custom_filter=custom_filter,
            tags_as_columns=tag_cols,
            keep_nodes=keep_nodes,
            keep_ways=keep_ways,
            keep_relations=False,
        )
        return _ensure_columns(_to_wgs84(df), tag_cols)
    except (AttributeError, TypeError) as e:
        # Older pyrosm: no combined criteria API
        logger.debug(f"get_data_by_custom_criteria unavailable ({e}); falling back to get_data")

    filter_types = []
    if keep_ways:
        filter_types.append("ways")
    if keep_nodes:
        filter_types.append("nodes")

    collected = []
    for ft in filter_types or ["ways"]:
        df = osm_obj.get_data(custom_filter=custom_filter, filter_type=ft, tags_as_columns=tag_cols)
        df = _to_wgs84(df)
        if not df.empty:
            collected.append(df)
    if not collected:
        return _ensure_columns(_to_wgs84(None), tag_cols)
    combined = gpd.GeoDataFrame(pd.concat(collected, ignore_index=True), geometry="geometry", crs=CRS)
    return _ensure_columns(combined, tag_cols)


def load_osm_streets(pbf_path: str, bounding_box=None) -> gpd.GeoDataFrame:
    """Street lines with the tag columns the cost model reads."""
    streets = get_osm_data(pbf_path, STREET_FILTER, tags_as_columns=TAG_COLUMNS, bounding_box=bounding_box)
    logger.info(f"Loaded {len(streets)} street features from {pbf_path}")
    return streets


def load_osm_shelters(pbf_path: str, bounding_box=None, custom_filter: Optional[dict] = None) -> gpd.GeoDataFrame:
    """Shelter locations (nodes and ways); geometry only is needed downstream."""
    shelters = get_osm_data(
        pbf_path,
        custom_filter or SHELTER_FILTER,
        keep_nodes=True,
        keep_ways=True,
        bounding_box=bounding_box,
    )
    logger.info(f"Loaded {len(shelters)} shelter features from {pbf_path}")
    return shelters


def geocode_center(query: str) -> Tuple[float, float]:
    """(lon, lat) for a place name."""
    lat, lon = ox.geocode(query)
    logger.info(f"Geocoded {query!r} -> ({lon:.5f}, {lat:.5f})")
    return float(lon), float(lat)
