from .builder import AccessibilityBuilder
from .cli import main

__all__ = ["AccessibilityBuilder", "main"]

# -------------------------
# shelterreach file structure
# -------------------------
# config.py — constants, defaults, speed profiles, example scenarios.
# errors.py — pipeline exception types.
# schema.py — segment/destination columns, tag access, validation.
# sources.py — load raw lines/points from files, OSM PBFs, geocoding.
# geometry.py — area of interest + line normalization (clip, explode, drop degenerates).
# elevation.py — elevation surfaces (rasterio) and gradient sampling.
# costs.py — length, gradient-adjusted speed, travel time, suitability rules.
# networks.py — build the topological graph; optional shared-vertex split.
# connectivity.py — components, largest component, suitability filtering.
# selection.py — KD-tree / STRtree snapping of points onto the graph.
# accessibility.py — Dijkstra cost-distance + reachability thresholds.
# qa.py — run report + invariant checks.
# core_utils.py — graph cache + artifact I/O.
# builder.py — orchestration.
# cli.py — argparse entrypoint.
