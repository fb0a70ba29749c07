from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, Hashable, List, Tuple

import geopandas as gpd
import networkx as nx
import numpy as np
import pandas as pd
from shapely.geometry import LineString, Point

from .config import CRS
from .errors import DataError

logger = logging.getLogger(__name__)

NodeKey = Tuple[float, float]

# Attributes apportioned by length when a segment is split
ADDITIVE_COLUMNS = ("length", "time", "time_rev")


def node_key(coord) -> NodeKey:
    """Exact coordinate identity; (x, y) with any z dropped."""
    return (float(coord[0]), float(coord[1]))


def build_graph(segments: gpd.GeoDataFrame) -> nx.MultiGraph:
    """
    Build an undirected multigraph with one edge per segment.

    Endpoints that coincide exactly become a shared node. Segments that
    cross without a shared endpoint stay unconnected at the crossing.
    """
    if segments is None or len(segments) == 0:
        raise DataError("No segments to build a graph from")
    if "segment_id" not in segments.columns:
        raise DataError("Segments are missing 'segment_id'")
    if segments["segment_id"].duplicated().any():
        raise DataError("segment_id values must be unique")

    G = nx.MultiGraph(crs=CRS)
    geom_col = segments.geometry.name
    for row in segments.to_dict("records"):
        geom = row[geom_col]
        coords = list(geom.coords)
        u, v = node_key(coords[0]), node_key(coords[-1])
        for n in (u, v):
            if n not in G:
                G.add_node(n, x=n[0], y=n[1])
        attrs = {k: val for k, val in row.items() if k != geom_col}
        attrs["geometry"] = geom
        attrs["from_node"] = u
        G.add_edge(u, v, key=row["segment_id"], **attrs)

    logger.info(f"Built graph: {G.number_of_nodes()} nodes, {G.number_of_edges()} edges")
    return G


def edge_geometry_from(G: nx.MultiGraph, u: Hashable, v: Hashable, key) -> LineString:
    """Edge geometry oriented so it starts at node `u`."""
    d = G.edges[u, v, key]
    geom = d["geometry"]
    if d.get("from_node", u) != u:
        return LineString(list(geom.coords)[::-1])
    return geom


# =====================
# Shared-vertex refinement
# =====================

def _shared_vertices(segments: gpd.GeoDataFrame) -> set:
    """Coordinates that appear as a vertex in more than one segment."""
    seen: Counter = Counter()
    for geom in segments.geometry:
        for c in {node_key(c) for c in geom.coords}:
            seen[c] += 1
    return {c for c, n in seen.items() if n > 1}


def _split_coords(coords: List[NodeKey], cuts: set) -> List[List[NodeKey]]:
    parts, current = [], [coords[0]]
    for c in coords[1:-1]:
        current.append(c)
        if c in cuts:
            parts.append(current)
            current = [c]
    current.append(coords[-1])
    parts.append(current)
    return [p for p in parts if len(set(p)) >= 2]


def split_at_shared_vertices(segments: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """
    Cut segments at interior vertices that another segment also records.

    Pieces keep their parent's tags and per-length attributes; length and
    times are apportioned by each piece's share of the parent's planar
    length. `parent_id` holds the original `segment_id`; new ids are
    assigned 0..n-1. The union of geometries is unchanged.
    """
    if segments is None or len(segments) == 0:
        raise DataError("No segments to refine")

    cuts = _shared_vertices(segments)
    geom_col = segments.geometry.name
    rows: List[Dict] = []
    n_split = 0
    for row in segments.to_dict("records"):
        geom = row[geom_col]
        coords = [node_key(c) for c in geom.coords]
        parts = _split_coords(coords, cuts) if len(coords) > 2 else [coords]
        total = geom.length
        if len(parts) > 1:
            n_split += 1
        for part in parts:
            piece = dict(row)
            line = LineString(part)
            piece[geom_col] = line
            piece["parent_id"] = row.get("parent_id", row["segment_id"])
            if len(parts) > 1 and total > 0:
                share = line.length / total
                for col in ADDITIVE_COLUMNS:
                    if col in piece and piece[col] is not None and not pd.isna(piece[col]):
                        piece[col] = float(piece[col]) * share
            rows.append(piece)

    out = gpd.GeoDataFrame(rows, geometry=geom_col, crs=segments.crs)
    out["segment_id"] = np.arange(len(out), dtype="int64")
    logger.info(
        f"Refinement: {len(cuts)} shared vertices, split {n_split} segments "
        f"({len(segments)} -> {len(out)})"
    )
    return out


# =====================
# Export
# =====================

def graph_to_gdfs(G: nx.MultiGraph) -> Tuple[gpd.GeoDataFrame, gpd.GeoDataFrame]:
    """Nodes and edges as GeoDataFrames (EPSG:4326)."""
    crs = G.graph.get("crs", CRS)
    node_rows = [
        {"node": i, "x": d["x"], "y": d["y"], "degree": G.degree(n), "geometry": Point(d["x"], d["y"])}
        for i, (n, d) in enumerate(G.nodes(data=True))
    ]
    node_ids = {n: i for i, n in enumerate(G.nodes)}
    nodes = gpd.GeoDataFrame(node_rows, geometry="geometry", crs=crs) if node_rows else \
        gpd.GeoDataFrame(columns=["node", "x", "y", "degree", "geometry"], geometry="geometry", crs=crs)

    edge_rows = []
    for u, v, k, d in G.edges(keys=True, data=True):
        r = {key: val for key, val in d.items() if key != "from_node"}
        r["u"], r["v"], r["key"] = node_ids[u], node_ids[v], k
        edge_rows.append(r)
    edges = gpd.GeoDataFrame(edge_rows, geometry="geometry", crs=crs) if edge_rows else \
        gpd.GeoDataFrame(columns=["u", "v", "key", "geometry"], geometry="geometry", crs=crs)
    return nodes, edges
