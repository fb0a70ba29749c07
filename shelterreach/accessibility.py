"""
Cost-distance from one origin to many destinations.

A single Dijkstra run from the origin's attachment point labels every
node it settles; destination costs are read off those labels plus the
partial edge between each destination and the graph. Destinations that
are not connected to the origin get the UNREACHABLE sentinel.
"""
from __future__ import annotations

import heapq
import itertools
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Hashable, Iterable, List, Optional, Sequence

import geopandas as gpd
import networkx as nx
import numpy as np
import pandas as pd
from shapely.geometry import Point
from tqdm import tqdm

from .connectivity import filter_by_suitability, parse_levels
from .selection import Attachment, EdgeIndex

logger = logging.getLogger(__name__)

UNREACHABLE = math.inf

STATUS_REACHABLE = "reachable"
STATUS_BEYOND = "beyond_threshold"
STATUS_UNREACHABLE = "unreachable"

RESULT_COLUMNS = ["destination_id", "cost", "status", "snap_dist_m"]


def is_unreachable(cost: float) -> bool:
    return cost == UNREACHABLE


def _edge_weight(data: dict, weight: str) -> Optional[float]:
    w = data.get(weight)
    if w is None:
        return None
    w = float(w)
    if math.isnan(w):
        return None
    if w < 0:
        raise ValueError(f"Negative edge weight {weight}={w}")
    return w


def dijkstra_costs(
    G: nx.MultiGraph,
    seeds: Dict[Hashable, float],
    targets: Optional[Iterable[Hashable]] = None,
    weight: str = "time",
) -> Dict[Hashable, float]:
    """
    Multi-seed Dijkstra over an undirected multigraph.

    Parallel edges contribute their smallest weight; edges without a
    defined weight are not traversed. Stops once every target is settled
    (or the frontier is exhausted). Returns settled node -> cost.
    """
    remaining = set(targets) if targets is not None else None
    if remaining is not None and not remaining:
        return {}

    dist: Dict[Hashable, float] = {}
    best = dict(seeds)
    counter = itertools.count()
    heap = [(c, next(counter), n) for n, c in seeds.items()]
    heapq.heapify(heap)

    while heap:
        d, _, n = heapq.heappop(heap)
        if n in dist:
            continue
        dist[n] = d
        if remaining is not None:
            remaining.discard(n)
            if not remaining:
                break
        for nbr, keydict in G.adj[n].items():
            if nbr in dist:
                continue
            ws = [w for w in (_edge_weight(e, weight) for e in keydict.values()) if w is not None]
            if not ws:
                continue
            nd = d + min(ws)
            if nd < best.get(nbr, math.inf):
                best[nbr] = nd
                heapq.heappush(heap, (nd, next(counter), nbr))
    return dist


def _usable(G: nx.MultiGraph, a: Optional[Attachment]) -> bool:
    """The node or edge `a` points at is still part of `G`."""
    if a is None:
        return False
    if a.on_node:
        return a.u in G
    return G.has_edge(a.u, a.v, a.key)


def _attachment_weight(G: nx.MultiGraph, a: Attachment, weight: str) -> Optional[float]:
    return _edge_weight(G.edges[a.u, a.v, a.key], weight)


def _seed_costs(G: nx.MultiGraph, a: Optional[Attachment], weight: str) -> Dict[Hashable, float]:
    if not _usable(G, a):
        return {}
    if a.on_node:
        return {a.u: 0.0}
    w = _attachment_weight(G, a, weight)
    if w is None:
        return {}
    seeds = {a.u: a.fraction * w}
    seeds[a.v] = min(seeds.get(a.v, math.inf), (1.0 - a.fraction) * w)
    return seeds


def _destination_cost(
    G: nx.MultiGraph, origin: Attachment, dest: Optional[Attachment], dist: Dict[Hashable, float], weight: str
) -> float:
    if not _usable(G, dest):
        return UNREACHABLE
    if dest.on_node:
        return dist.get(dest.u, UNREACHABLE)
    w = _attachment_weight(G, dest, weight)
    if w is None:
        return UNREACHABLE
    cost = min(
        dist.get(dest.u, UNREACHABLE) + dest.fraction * w,
        dist.get(dest.v, UNREACHABLE) + (1.0 - dest.fraction) * w,
    )
    if not origin.on_node and origin.key == dest.key and {origin.u, origin.v} == {dest.u, dest.v}:
        cost = min(cost, abs(origin.fraction - dest.fraction) * w)
    return cost


def _as_point(p) -> Point:
    if isinstance(p, Point):
        return p
    lon, lat = p
    return Point(float(lon), float(lat))


def _destination_frame(destinations) -> gpd.GeoDataFrame:
    if isinstance(destinations, gpd.GeoDataFrame):
        gdf = destinations
        if "destination_id" not in gdf.columns:
            gdf = gdf.assign(destination_id=np.arange(len(gdf), dtype="int64"))
        return gdf
    pts = [_as_point(p) for p in destinations]
    return gpd.GeoDataFrame(
        {"destination_id": np.arange(len(pts), dtype="int64")}, geometry=pts, crs="EPSG:4326"
    )


def classify(result: pd.DataFrame, threshold: Optional[float]) -> pd.DataFrame:
    """
    New frame with `status` set against `threshold` (minutes).

    Reachable iff the cost is finite and strictly below the threshold;
    with no threshold every finite cost is reachable.
    """
    out = result.copy()
    finite = np.isfinite(out["cost"].to_numpy(dtype="float64"))
    within = finite if threshold is None else finite & (out["cost"].to_numpy(dtype="float64") < threshold)
    out["status"] = np.where(within, STATUS_REACHABLE, np.where(finite, STATUS_BEYOND, STATUS_UNREACHABLE))
    return out


@dataclass
class Attachments:
    """Origin and destinations attached to one graph, reusable on any subgraph of it."""
    destinations: gpd.GeoDataFrame
    origin: Optional[Attachment]
    points: List[Optional[Attachment]]


def attach_points(G: nx.MultiGraph, origin, destinations) -> Attachments:
    """
    Attach the origin and every destination to `G` once.

    Subgraphs (e.g. suitability-filtered copies) reuse these attachments;
    a point whose node or edge was filtered out is unreachable there
    rather than re-snapped to whatever edge remains nearby.
    """
    dests = _destination_frame(destinations)
    index = EdgeIndex(G)
    o = _as_point(origin)
    origin_att = index.attach(o.x, o.y)
    points = [index.attach(g.x, g.y) for g in dests.geometry]
    if origin_att is not None:
        logger.debug(f"origin snapped {origin_att.snap_dist_m:.1f}m; attached {len(points)} destinations")
    return Attachments(dests, origin_att, points)


def compute_accessibility(
    G: nx.MultiGraph,
    origin,
    destinations,
    weight: str = "time",
    threshold: Optional[float] = None,
    attachments: Optional[Attachments] = None,
) -> pd.DataFrame:
    """
    Minimum `weight` cost from `origin` to each destination over `G`.

    Args:
        G: Routable graph (already filtered as desired); not modified
        origin: shapely Point or (lon, lat)
        destinations: GeoDataFrame of points (optionally with destination_id)
            or an iterable of Points / (lon, lat)
        weight: Edge attribute to minimize
        threshold: Optional reachability cutoff in the same unit as `weight`
        attachments: Precomputed attachments from `attach_points`, usually
            made on the unfiltered graph; built on `G` when omitted

    Returns:
        DataFrame with destination_id, cost (UNREACHABLE when not connected),
        status and snap_dist_m, one row per destination in input order.
    """
    att = attachments if attachments is not None else attach_points(G, origin, destinations)
    dests = att.destinations
    snap = [a.snap_dist_m if a is not None else math.nan for a in att.points]

    seeds = _seed_costs(G, att.origin, weight)
    if not seeds:
        logger.info("Origin is not on the graph; every destination is unreachable")
        costs = [UNREACHABLE] * len(dests)
    else:
        targets = set()
        for a in att.points:
            if _usable(G, a):
                targets.update((a.u, a.v))
        dist = dijkstra_costs(G, seeds, targets, weight=weight)
        costs = [_destination_cost(G, att.origin, a, dist, weight) for a in att.points]

    result = pd.DataFrame({
        "destination_id": dests["destination_id"].to_numpy(),
        "cost": np.asarray(costs, dtype="float64"),
        "snap_dist_m": np.asarray(snap, dtype="float64"),
    })
    return classify(result, threshold)[RESULT_COLUMNS]


def reachable_destinations(result: pd.DataFrame) -> pd.DataFrame:
    return result[result["status"] == STATUS_REACHABLE]


def count_reachable(result: pd.DataFrame) -> int:
    return int((result["status"] == STATUS_REACHABLE).sum())


# =====================
# Scenarios
# =====================

@dataclass(frozen=True)
class Scenario:
    name: str
    suitability_filter: FrozenSet[str]
    time_threshold_min: float


@dataclass
class ScenarioResult:
    scenario: Scenario
    result: pd.DataFrame
    edges: int
    nodes: int
    reachable: int = field(init=False)
    unreachable: int = field(init=False)

    def __post_init__(self):
        self.reachable = count_reachable(self.result)
        self.unreachable = int((self.result["status"] == STATUS_UNREACHABLE).sum())

    def reachable_ids(self) -> List:
        return reachable_destinations(self.result)["destination_id"].tolist()


def run_scenario(
    G: nx.MultiGraph,
    origin,
    destinations,
    scenario: Scenario,
    weight: str = "time",
    attachments: Optional[Attachments] = None,
) -> ScenarioResult:
    """
    Filter `G` by the scenario's suitability levels and query it.

    Points are attached to the unfiltered `G` (or `attachments` is reused),
    so narrowing the filter can only remove routes, never add them.
    """
    if attachments is None:
        attachments = attach_points(G, origin, destinations)
    H = filter_by_suitability(G, parse_levels(scenario.suitability_filter))
    result = compute_accessibility(
        H, origin, destinations, weight=weight, threshold=scenario.time_threshold_min, attachments=attachments
    )
    out = ScenarioResult(scenario, result, edges=H.number_of_edges(), nodes=H.number_of_nodes())
    logger.info(
        f"[{scenario.name}] {out.reachable}/{len(result)} destinations within "
        f"{scenario.time_threshold_min:g} min ({out.unreachable} unreachable)"
    )
    return out


def run_scenarios(
    G: nx.MultiGraph,
    origin,
    destinations,
    scenarios: Sequence[Scenario],
    weight: str = "time",
    max_workers: Optional[int] = None,
) -> List[ScenarioResult]:
    """
    Run independent scenarios against the same graph.

    `G` is only read and the points are attached to it once. With
    max_workers > 1 the scenarios run in a thread pool. Results come back
    in scenario order.
    """
    att = attach_points(G, origin, destinations)
    if max_workers and max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = [pool.submit(run_scenario, G, origin, destinations, s, weight, att) for s in scenarios]
            return [f.result() for f in futures]
    return [
        run_scenario(G, origin, destinations, s, weight, att)
        for s in tqdm(scenarios, desc="[scenarios]", unit="run")
    ]
