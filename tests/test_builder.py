"""
Test Pipeline Orchestration

Runs the full normalize -> cost -> graph -> connectivity -> accessibility
chain on a small synthetic street line and checks the run report and the
artifacts written to disk.
"""
import json
import os

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import LineString, Point

from shelterreach.builder import AccessibilityBuilder
from shelterreach.config import AccessibilityConfig
from shelterreach.core_utils import load_graph, load_segments
from shelterreach.errors import MissingElevationError, PipelineError


LON0, LAT0 = 13.40, 52.50
ALL = frozenset({"good", "medium", "low"})


class PartialSurface:
    """Flat terrain with no data east of 13.4075."""

    def elevation(self, lon, lat):
        if lon >= 13.4075:
            raise MissingElevationError((lon, lat))
        return 35.0


@pytest.fixture
def lines():
    xs = [13.400, 13.402, 13.404, 13.406, 13.408]
    return gpd.GeoDataFrame(
        {
            "highway": ["residential", "cycleway", "primary", "primary"],
            "cycleway": [None, None, None, None],
            "bicycle": [None, None, None, None],
        },
        geometry=[LineString([(xs[i], LAT0), (xs[i + 1], LAT0)]) for i in range(4)],
        crs="EPSG:4326",
    )


@pytest.fixture
def shelters():
    return gpd.GeoDataFrame(
        {"name": ["near", "mid", "far"]},
        geometry=[Point(13.402, LAT0), Point(13.406, LAT0), Point(13.5, LAT0)],
        crs="EPSG:4326",
    )


@pytest.fixture
def cfg():
    return AccessibilityConfig(
        center_lon=LON0,
        center_lat=LAT0,
        radius_km=1.0,
        scenarios={
            "all_short": (ALL, 0.5),
            "all_6min": (ALL, 6.0),
            "good_6min": (frozenset({"good"}), 6.0),
        },
    )


class TestAccessibilityBuilder:
    """End-to-end run on synthetic inputs."""

    def test_report_counts(self, cfg, lines, shelters):
        report = AccessibilityBuilder(cfg).run(lines, shelters, PartialSurface())
        assert report.ok
        assert report.features_in == 4
        assert report.segments == 4
        assert report.destinations_in == 3
        assert report.destinations_outside_aoi == 1
        assert report.missing_elevation == 1
        assert report.untimed_edges_removed == 1
        assert report.components == 1
        assert report.graph_edges == 3
        assert report.graph_nodes == 4

    def test_scenario_results(self, cfg, lines, shelters):
        report = AccessibilityBuilder(cfg).run(lines, shelters, PartialSurface())
        by_name = {s.name: s for s in report.scenarios}
        assert list(by_name) == ["all_short", "all_6min", "good_6min"]
        assert by_name["all_short"].reachable == 1
        assert by_name["all_6min"].reachable == 2
        assert by_name["all_6min"].destinations == 2
        # the origin node only touches non-good edges, so nothing is reachable on good streets
        assert by_name["good_6min"].reachable == 0
        assert by_name["good_6min"].edges == 1

    def test_flat_terrain_without_surface(self, cfg, lines, shelters):
        builder = AccessibilityBuilder(cfg)
        report = builder.run(lines, shelters)
        assert report.missing_elevation == 0
        assert report.graph_edges == 4
        assert (builder.segments["speed"] == 20.0).all()

    def test_writes_artifacts(self, cfg, lines, shelters, tmp_path):
        out = str(tmp_path / "run")
        AccessibilityBuilder(cfg, out).run(lines, shelters, PartialSurface())

        for name in ("segments.parquet", "graph.pkl", "graph_nodes.parquet", "graph_edges.parquet", "summary.json"):
            assert os.path.exists(os.path.join(out, name)), name

        segs = load_segments(os.path.join(out, "segments.parquet"))
        assert len(segs) == 4
        assert segs["time"].isna().sum() == 1

        G = load_graph(os.path.join(out, "graph.pkl"))
        assert G.number_of_edges() == 3

        res = pd.read_csv(os.path.join(out, "accessibility_all_6min.csv"))
        assert list(res.columns) == ["destination_id", "cost", "status", "snap_dist_m"]
        assert len(res) == 2

        with open(os.path.join(out, "summary.json")) as f:
            summary = json.load(f)
        assert summary["missing_elevation"] == 1
        assert len(summary["scenarios"]) == 3

    def test_refinement_reported(self, lines, shelters):
        cfg = AccessibilityConfig(center_lon=LON0, center_lat=LAT0, radius_km=1.0, refine_shared_vertices=True)
        report = AccessibilityBuilder(cfg).run(lines, shelters)
        assert report.refined_components == 1
        assert report.refined_largest_component_nodes == report.largest_component_nodes

    def test_empty_lines_fail_at_normalize(self, cfg, shelters):
        builder = AccessibilityBuilder(cfg)
        empty = gpd.GeoDataFrame({"highway": [], "cycleway": [], "bicycle": []}, geometry=[], crs="EPSG:4326")
        with pytest.raises(PipelineError) as exc:
            builder.run(empty, shelters)
        assert exc.value.stage == "normalize"
        assert builder.report.failed_stage == "normalize"
        assert not builder.report.ok

    def test_no_destinations_inside_area(self, cfg, lines):
        far = gpd.GeoDataFrame(geometry=[Point(14.0, LAT0)], crs="EPSG:4326")
        builder = AccessibilityBuilder(cfg)
        report = builder.run(lines, far)
        assert report.destinations_outside_aoi == 1
        assert all(s.destinations == 0 for s in report.scenarios)

    def test_uncosted_segments_fail_at_graph(self, cfg, lines, shelters):
        builder = AccessibilityBuilder(cfg)
        segments = builder.normalize(lines, shelters)
        with pytest.raises(PipelineError) as exc:
            builder.build(segments)
        assert exc.value.stage == "graph"
        assert builder.report.failed_stage == "graph"
        assert "time" in builder.report.error

    def test_unexpected_error_records_stage(self, cfg, lines, shelters):
        class BrokenSurface:
            def elevation(self, lon, lat):
                raise OSError("raster read failed")

        builder = AccessibilityBuilder(cfg)
        with pytest.raises(PipelineError) as exc:
            builder.run(lines, shelters, BrokenSurface())
        assert exc.value.stage == "cost"
        assert isinstance(exc.value.cause, OSError)
        assert builder.report.failed_stage == "cost"
        assert builder.report.error == "OSError: raster read failed"
