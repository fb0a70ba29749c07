# qa.py
import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

import geopandas as gpd
import networkx as nx
import numpy as np

from .costs import SpeedModel

logger = logging.getLogger(__name__)


@dataclass
class ScenarioSummary:
    name: str
    suitability_filter: List[str]
    time_threshold_min: float
    edges: int
    reachable: int
    unreachable: int
    destinations: int
    reachable_ids: List = field(default_factory=list)


@dataclass
class RunReport:
    """What each stage produced and what it excluded, and why."""

    failed_stage: Optional[str] = None
    error: Optional[str] = None
    features_in: int = 0
    segments: int = 0
    degenerate_dropped: int = 0
    features_outside_aoi: int = 0
    destinations_in: int = 0
    destinations_outside_aoi: int = 0
    missing_elevation: int = 0
    untimed_edges_removed: int = 0
    components: int = 0
    largest_component_nodes: int = 0
    refined_components: Optional[int] = None
    refined_largest_component_nodes: Optional[int] = None
    graph_nodes: int = 0
    graph_edges: int = 0
    scenarios: List[ScenarioSummary] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed_stage is None

    def to_dict(self) -> Dict:
        return asdict(self)


def format_report(report: RunReport) -> str:
    lines = []
    if not report.ok:
        lines.append(f"FAILED at stage '{report.failed_stage}': {report.error}")
    lines.append(
        f"segments: {report.segments} from {report.features_in} features "
        f"({report.features_outside_aoi} outside area, {report.degenerate_dropped} degenerate)"
    )
    lines.append(
        f"destinations: {report.destinations_in - report.destinations_outside_aoi} of "
        f"{report.destinations_in} ({report.destinations_outside_aoi} outside area)"
    )
    lines.append(
        f"missing elevation: {report.missing_elevation} segments "
        f"({report.untimed_edges_removed} untimed edges excluded from routing)"
    )
    comp = f"components: {report.components}, largest: {report.largest_component_nodes} nodes"
    if report.refined_components is not None:
        comp += (
            f" -> refined: {report.refined_components}, "
            f"largest: {report.refined_largest_component_nodes} nodes"
        )
    lines.append(comp)
    lines.append(f"routing graph: {report.graph_nodes} nodes, {report.graph_edges} edges")
    for s in report.scenarios:
        lines.append(
            f"  [{s.name}] filter={s.suitability_filter} < {s.time_threshold_min:g} min: "
            f"{s.reachable}/{s.destinations} reachable, {s.unreachable} unreachable "
            f"({s.edges} edges)"
        )
    return "\n".join(lines)


# -----------------------
# Invariant checks
# -----------------------

def qa_costs(segments: gpd.GeoDataFrame, speed_model: SpeedModel) -> List[str]:
    """Speed within model bounds and non-negative time wherever time is defined."""
    problems = []
    timed = segments[segments["time"].notna()]
    if (timed["time"] < 0).any():
        problems.append(f"{int((timed['time'] < 0).sum())} segments with negative time")
    eps = 1e-9
    off = (timed["speed"] < speed_model.min_speed - eps) | (timed["speed"] > speed_model.max_speed + eps)
    if off.any():
        problems.append(f"{int(off.sum())} segments with speed outside "
                        f"[{speed_model.min_speed}, {speed_model.max_speed}] km/h")
    return problems


def qa_graph(G: nx.MultiGraph, segments: Optional[gpd.GeoDataFrame] = None) -> List[str]:
    """Every edge endpoint is a node; one edge per segment when segments are given."""
    problems = []
    for u, v in G.edges():
        if u not in G.nodes or v not in G.nodes:
            problems.append(f"edge ({u}, {v}) references a missing node")
            break
    if segments is not None and G.number_of_edges() != len(segments):
        problems.append(f"{G.number_of_edges()} edges for {len(segments)} segments")
    return problems


def acceptance(segments: gpd.GeoDataFrame, G: nx.MultiGraph, speed_model: SpeedModel) -> bool:
    """Runs the checks and logs what failed."""
    problems = qa_costs(segments, speed_model) + qa_graph(G, segments)
    for p in problems:
        logger.warning(f"[qa] {p}")
    if not problems:
        lengths = segments["length"].to_numpy(dtype="float64")
        logger.info(
            f"[qa] ok: {len(segments)} segments, median length {np.nanmedian(lengths) * 1000:.0f} m"
        )
    return not problems
