import logging
import os
from contextlib import contextmanager
from typing import List, Optional

import geopandas as gpd
import networkx as nx

from . import config
from .accessibility import ScenarioResult, run_scenarios
from .config import AccessibilityConfig
from .connectivity import ConnectivitySummary, largest_component, routable_graph
from .core_utils import save_graph, save_graph_layers, save_scenario_results, save_segments, save_summary
from .costs import model_costs
from .elevation import ElevationSurface
from .errors import PipelineError
from .geometry import area_of_interest, clip_destinations, normalize_segments
from .networks import build_graph, split_at_shared_vertices
from .qa import RunReport, ScenarioSummary, acceptance, format_report
from .schema import validate_costed_segments

logger = logging.getLogger(__name__)


class AccessibilityBuilder:
    """
    Runs normalize -> cost -> graph -> connectivity -> accessibility for one
    origin and writes the artifacts when an output directory is given.
    """

    def __init__(self, cfg: Optional[AccessibilityConfig] = None, output_dir: Optional[str] = None,
                 max_workers: Optional[int] = None):
        self.cfg = cfg or AccessibilityConfig()
        self.output_dir = output_dir
        self.max_workers = max_workers
        self.speed_model = self.cfg.speed_model()
        self.report = RunReport()

        self.aoi = None
        self.segments: Optional[gpd.GeoDataFrame] = None
        self.destinations: Optional[gpd.GeoDataFrame] = None
        self.graph: Optional[nx.MultiGraph] = None
        self.routing_graph: Optional[nx.MultiGraph] = None
        self.results: List[ScenarioResult] = []

        if output_dir:
            os.makedirs(output_dir, exist_ok=True)

    # -----------------------------
    # Internal helpers
    # -----------------------------
    @contextmanager
    def _stage(self, name: str):
        logger.info(f"[{name}] start")
        try:
            yield
        except PipelineError:
            raise
        except Exception as e:
            self.report.failed_stage = name
            self.report.error = f"{type(e).__name__}: {e}"
            logger.error(f"[{name}] failed: {e}")
            raise PipelineError(name, e) from e

    def _out(self, filename: str) -> str:
        return os.path.join(self.output_dir, filename)

    # -----------------------------
    # Stages
    # -----------------------------
    def normalize(self, lines: gpd.GeoDataFrame, destinations: gpd.GeoDataFrame):
        with self._stage("normalize"):
            self.aoi = area_of_interest(self.cfg.center_lon, self.cfg.center_lat, self.cfg.radius_km)
            self.report.features_in = 0 if lines is None else len(lines)
            self.report.destinations_in = 0 if destinations is None else len(destinations)

            norm = normalize_segments(lines, self.aoi)
            self.report.degenerate_dropped = norm.dropped_degenerate
            self.report.features_outside_aoi = norm.outside_aoi

            dests = clip_destinations(destinations, self.aoi)
            self.report.destinations_outside_aoi = dests.outside_aoi
            self.destinations = dests.destinations
        return norm.segments

    def cost(self, segments: gpd.GeoDataFrame, elevation: Optional[ElevationSurface]):
        with self._stage("cost"):
            res = model_costs(segments, elevation, self.speed_model, samples=self.cfg.elevation_samples)
            self.report.missing_elevation = res.missing_elevation
        return res.segments

    def build(self, segments: gpd.GeoDataFrame) -> nx.MultiGraph:
        with self._stage("graph"):
            validate_costed_segments(segments)
            G = build_graph(segments)
            summary = ConnectivitySummary.of(G)
            if self.cfg.refine_shared_vertices:
                segments = split_at_shared_vertices(segments)
                G = build_graph(segments)
                summary.with_refined(G)
            acceptance(segments, G, self.speed_model)
        self.segments = segments
        self.report.segments = len(segments)
        self.report.components = summary.components
        self.report.largest_component_nodes = summary.largest_nodes
        self.report.refined_components = summary.refined_components
        self.report.refined_largest_component_nodes = summary.refined_largest_nodes
        logger.info(f"[graph] {summary.components} components, largest has {summary.largest_nodes} nodes")
        return G

    def resolve(self, G: nx.MultiGraph) -> nx.MultiGraph:
        with self._stage("connectivity"):
            R = routable_graph(G, weight="time")
            self.report.untimed_edges_removed = R.graph.get("untimed_edges_removed", 0)
            main = largest_component(R)
            self.report.graph_nodes = main.number_of_nodes()
            self.report.graph_edges = main.number_of_edges()
        return main

    def accessibility(self, G: nx.MultiGraph) -> List[ScenarioResult]:
        with self._stage("accessibility"):
            results = run_scenarios(
                G, self.cfg.center, self.destinations, self.cfg.scenario_list(),
                weight="time", max_workers=self.max_workers,
            )
        self.report.scenarios = [
            ScenarioSummary(
                name=r.scenario.name,
                suitability_filter=sorted(r.scenario.suitability_filter),
                time_threshold_min=r.scenario.time_threshold_min,
                edges=r.edges,
                reachable=r.reachable,
                unreachable=r.unreachable,
                destinations=len(r.result),
                reachable_ids=r.reachable_ids(),
            )
            for r in results
        ]
        return results

    # -----------------------------
    # Public API
    # -----------------------------
    def run(self, lines: gpd.GeoDataFrame, destinations: gpd.GeoDataFrame,
            elevation: Optional[ElevationSurface] = None) -> RunReport:
        logger.info(
            f"[run] origin ({self.cfg.center_lon:.5f}, {self.cfg.center_lat:.5f}), "
            f"radius {self.cfg.radius_km:g} km, mode {self.cfg.mode}"
        )
        segments = self.normalize(lines, destinations)
        segments = self.cost(segments, elevation)
        self.graph = self.build(segments)
        self.routing_graph = self.resolve(self.graph)
        self.results = self.accessibility(self.routing_graph)

        if self.output_dir:
            with self._stage("save"):
                self.save()
        logger.info("[run] summary\n" + format_report(self.report))
        return self.report

    def save(self) -> None:
        save_segments(self.segments, self._out(config.SEGMENTS_FILE))
        save_graph(self.routing_graph, self._out(config.GRAPH_CACHE))
        save_graph_layers(self.routing_graph, self.output_dir)
        for r in self.results:
            save_scenario_results(r.result, self._out(config.RESULTS_FILE.format(scenario=r.scenario.name)))
        save_summary(self.report.to_dict(), self._out(config.SUMMARY_FILE))
