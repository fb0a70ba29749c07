# selection.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Hashable, List, Optional, Tuple

import networkx as nx
import numpy as np
import shapely
from scipy.spatial import cKDTree
from shapely.geometry import Point
from shapely.strtree import STRtree

from .config import NODE_SNAP_TOLERANCE_M

M_PER_DEG = 111000.0

# =====================
# Local metric projection
# =====================

class LocalMetric:
    """Equirectangular lon/lat -> meters around a reference latitude."""

    def __init__(self, lat0: float):
        self.lat0 = float(lat0)
        self.sx = math.cos(math.radians(self.lat0)) * M_PER_DEG
        self.sy = M_PER_DEG

    def xy(self, lon, lat):
        return np.c_[np.asarray(lon, dtype=float) * self.sx, np.asarray(lat, dtype=float) * self.sy]

    def geom(self, g):
        return shapely.transform(g, lambda c: c * np.array([self.sx, self.sy]))


def _metric_for(G: nx.MultiGraph) -> LocalMetric:
    ys = [d["y"] for _, d in G.nodes(data=True)]
    return LocalMetric(float(np.mean(ys)) if ys else 0.0)


# =====================
# Node snapping
# =====================

def build_node_kdtree(G: nx.MultiGraph, metric: Optional[LocalMetric] = None):
    metric = metric or _metric_for(G)
    ids = list(G.nodes)
    xs = np.array([G.nodes[n]["x"] for n in ids])  # lon
    ys = np.array([G.nodes[n]["y"] for n in ids])  # lat
    X = metric.xy(xs, ys)
    tree = cKDTree(X)
    return ids, X, tree


def nearest_node_kdtree(ids, tree, metric: LocalMetric, lon: float, lat: float, max_m: float):
    d, i = tree.query(metric.xy([lon], [lat])[0], k=1)
    return (ids[int(i)], float(d)) if float(d) <= max_m else (None, float(d))


# =====================
# Edge snapping
# =====================

@dataclass(frozen=True)
class Attachment:
    """Where a point joins the graph: along edge (u, v, key) at `fraction` from u."""
    u: Hashable
    v: Hashable
    key: Optional[Hashable]
    fraction: float
    snap_dist_m: float

    @property
    def on_node(self) -> bool:
        return self.key is None


class EdgeIndex:
    """Nearest-point lookup of arbitrary locations onto a graph's nodes and edges."""

    def __init__(self, G: nx.MultiGraph, node_tolerance_m: float = NODE_SNAP_TOLERANCE_M):
        self.G = G
        self.node_tolerance_m = node_tolerance_m
        self.metric = _metric_for(G)
        self._edges: List[Tuple[Hashable, Hashable, Hashable]] = []
        geoms = []
        for u, v, k, d in G.edges(keys=True, data=True):
            geom = d["geometry"]
            if d.get("from_node", u) != u:
                u, v = v, u
            self._edges.append((u, v, k))
            geoms.append(self.metric.geom(geom))
        self._geoms = geoms
        self._tree = STRtree(geoms) if geoms else None
        if G.number_of_nodes():
            self._ids, _, self._kd = build_node_kdtree(G, self.metric)
        else:
            self._ids, self._kd = [], None

    def attach(self, lon: float, lat: float) -> Optional[Attachment]:
        """Attachment for a point, or None when the graph is empty."""
        if self._kd is not None:
            nid, d = nearest_node_kdtree(self._ids, self._kd, self.metric, lon, lat, self.node_tolerance_m)
            if nid is not None:
                return Attachment(nid, nid, None, 0.0, d)
        if self._tree is None:
            if self._kd is None:
                return None
            nid, d = nearest_node_kdtree(self._ids, self._kd, self.metric, lon, lat, math.inf)
            return Attachment(nid, nid, None, 0.0, d)

        pt = Point(self.metric.xy([lon], [lat])[0])
        i = int(self._tree.nearest(pt))
        line = self._geoms[i]
        u, v, k = self._edges[i]
        frac = float(line.project(pt, normalized=True)) if line.length > 0 else 0.0
        return Attachment(u, v, k, min(max(frac, 0.0), 1.0), float(line.distance(pt)))
