"""
Connected components and graph restriction.

All functions return new graphs; the input graph is never modified.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional

import networkx as nx

from .schema import Suitability

logger = logging.getLogger(__name__)


def component_sizes(G: nx.MultiGraph) -> List[int]:
    """Node counts of each connected component, largest first."""
    return sorted((len(c) for c in nx.connected_components(G)), reverse=True)


def component_count(G: nx.MultiGraph) -> int:
    return nx.number_connected_components(G) if G.number_of_nodes() else 0


def largest_component(G: nx.MultiGraph) -> nx.MultiGraph:
    """
    The component with the most nodes, as a standalone copy.

    Ties go to the component holding the smallest node key, so the result
    does not depend on iteration order.
    """
    if G.number_of_nodes() == 0:
        return G.copy()
    best = max(nx.connected_components(G), key=lambda c: (len(c), _neg_key(min(c))))
    return G.subgraph(best).copy()


def _neg_key(node):
    # max() on (size, -key) picks the smallest key among equal sizes
    return tuple(-float(x) for x in node) if isinstance(node, tuple) else -hash(node)


def _undefined(value) -> bool:
    if value is None:
        return True
    try:
        return math.isnan(float(value))
    except (TypeError, ValueError):
        return True


def _prune_isolates(H: nx.MultiGraph) -> int:
    isolates = [n for n, deg in H.degree() if deg == 0]
    H.remove_nodes_from(isolates)
    return len(isolates)


def routable_graph(G: nx.MultiGraph, weight: str = "time") -> nx.MultiGraph:
    """Copy of `G` without edges whose `weight` is undefined, isolated nodes removed."""
    H = G.copy()
    bad = [(u, v, k) for u, v, k, d in H.edges(keys=True, data=True) if _undefined(d.get(weight))]
    H.remove_edges_from(bad)
    removed_nodes = _prune_isolates(H)
    if bad:
        logger.info(f"Removed {len(bad)} edges with undefined {weight} ({removed_nodes} nodes left isolated)")
    H.graph["untimed_edges_removed"] = len(bad)
    return H


def parse_levels(allowed: Iterable) -> frozenset:
    if isinstance(allowed, (str, Suitability)):
        allowed = [allowed]
    return frozenset(Suitability.parse(a) for a in allowed)


def filter_by_suitability(G: nx.MultiGraph, allowed: Iterable) -> nx.MultiGraph:
    """
    Keep only edges whose suitability is in `allowed`, then drop degree-0 nodes.

    Edge filtering happens first so that nodes stranded by the filter are
    pruned as well.
    """
    levels = parse_levels(allowed)
    H = G.copy()
    drop = []
    for u, v, k, d in H.edges(keys=True, data=True):
        raw = d.get("suitability")
        if raw is None or Suitability.parse(raw) not in levels:
            drop.append((u, v, k))
    H.remove_edges_from(drop)
    pruned = _prune_isolates(H)
    logger.info(
        f"Suitability filter {sorted(l.value for l in levels)}: kept {H.number_of_edges()} edges, "
        f"dropped {len(drop)} edges and {pruned} isolated nodes"
    )
    return H


@dataclass
class ConnectivitySummary:
    nodes: int
    edges: int
    components: int
    largest_nodes: int
    refined_components: Optional[int] = None
    refined_largest_nodes: Optional[int] = None

    @classmethod
    def of(cls, G: nx.MultiGraph) -> "ConnectivitySummary":
        sizes = component_sizes(G)
        return cls(
            nodes=G.number_of_nodes(),
            edges=G.number_of_edges(),
            components=len(sizes),
            largest_nodes=sizes[0] if sizes else 0,
        )

    def with_refined(self, G_refined: nx.MultiGraph) -> "ConnectivitySummary":
        sizes = component_sizes(G_refined)
        self.refined_components = len(sizes)
        self.refined_largest_nodes = sizes[0] if sizes else 0
        return self
