# Combined core utilities module
# core_utils.py
import json
import logging
import os
import pickle
from typing import Optional

import geopandas as gpd
import networkx as nx
import pandas as pd

from .networks import graph_to_gdfs

logger = logging.getLogger(__name__)

# =====================
# Cache utilities
# =====================

def load_graph(cache_path: str) -> Optional[nx.MultiGraph]:
    if os.path.exists(cache_path):
        logger.info(f"Loading cached graph from {cache_path}")
        with open(cache_path, "rb") as f:
            return pickle.load(f)
    return None


def save_graph(G: nx.MultiGraph, cache_path: str) -> str:
    os.makedirs(os.path.dirname(cache_path) or ".", exist_ok=True)
    logger.info(f"Caching graph to {cache_path}")
    with open(cache_path, "wb") as f:
        pickle.dump(G, f)
    return cache_path


# =====================
# I/O utilities
# =====================

def _write_gdf(gdf: gpd.GeoDataFrame, path: str) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    if path.endswith(".parquet"):
        gdf.to_parquet(path, index=False)
    else:
        gdf.to_file(path)


def save_segments(segments: gpd.GeoDataFrame, path: str) -> str:
    """Enriched segments; GeoParquet for .parquet, otherwise whatever driver the extension selects."""
    _write_gdf(segments, path)
    logger.info(f"[ok] {path} ({len(segments)} segments)")
    return path


def load_segments(path: str) -> gpd.GeoDataFrame:
    if path.endswith(".parquet"):
        return gpd.read_parquet(path)
    return gpd.read_file(path)


def save_graph_layers(G: nx.MultiGraph, out_dir: str, stem: str = "graph") -> tuple:
    """Nodes and edges of `G` as two GeoParquet files."""
    nodes, edges = graph_to_gdfs(G)
    nodes_path = os.path.join(out_dir, f"{stem}_nodes.parquet")
    edges_path = os.path.join(out_dir, f"{stem}_edges.parquet")
    _write_gdf(nodes, nodes_path)
    _write_gdf(edges, edges_path)
    logger.info(f"[ok] {nodes_path} ({len(nodes)} nodes), {edges_path} ({len(edges)} edges)")
    return nodes_path, edges_path


def save_scenario_results(result: pd.DataFrame, path: str) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    result.to_csv(path, index=False)
    logger.info(f"[ok] {path} ({len(result)} destinations)")
    return path


def save_summary(summary: dict, path: str) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w") as f:
        json.dump(summary, f, indent=2, default=str)
    logger.info(f"[ok] {path}")
    return path
