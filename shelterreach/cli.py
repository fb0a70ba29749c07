import argparse
import logging
import os
import sys
from contextlib import ExitStack
from typing import Optional, Sequence

from . import config
from .builder import AccessibilityBuilder
from .config import AccessibilityConfig
from .errors import DataError, PipelineError
from .qa import format_report


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Which shelters can be reached from an origin within a time budget"
    )
    src = ap.add_argument_group("inputs")
    src.add_argument("--lines", help="Street line features (GeoPackage, GeoJSON, GeoParquet, ...)")
    src.add_argument("--destinations", help="Shelter point features")
    src.add_argument("--pbf", help="OSM PBF extract to read streets and/or shelters from")
    src.add_argument("--dem", help="Elevation raster (GeoTIFF); terrain is flat when omitted")
    ap.add_argument("--out", required=True, help="Output directory for artifacts")
    ap.add_argument("--config", help="JSON file with AccessibilityConfig options")

    area = ap.add_argument_group("area of interest")
    area.add_argument("--center", nargs=2, type=float, metavar=("LON", "LAT"), help="Origin / buffer center")
    area.add_argument("--place", help="Geocode a place name to use as the center")
    area.add_argument("--radius-km", type=float, help=f"Buffer radius (default {config.RADIUS_KM})")

    model = ap.add_argument_group("cost model")
    model.add_argument("--mode", choices=sorted(config.SPEED_PROFILES), help="Speed profile")
    model.add_argument("--default-speed", type=float)
    model.add_argument("--max-speed", type=float)
    model.add_argument("--min-speed", type=float)
    model.add_argument("--refine", action="store_true", help="Split segments at shared interior vertices")

    scen = ap.add_argument_group("scenario")
    scen.add_argument("--threshold", type=float, help="Run a single scenario with this cutoff (minutes)")
    scen.add_argument("--filter", help="Comma-separated suitability levels for the single scenario")
    ap.add_argument("--workers", type=int, default=None, help="Run scenarios in parallel threads")
    ap.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...)")
    return ap


def config_from_args(args) -> AccessibilityConfig:
    overrides = {
        "radius_km": args.radius_km,
        "mode": args.mode,
        "default_speed": args.default_speed,
        "max_speed": args.max_speed,
        "min_speed": args.min_speed,
        "refine_shared_vertices": True if args.refine else None,
    }
    center = args.center
    if args.place:
        from .sources import geocode_center
        center = geocode_center(args.place)
    if center:
        overrides["center_lon"], overrides["center_lat"] = center

    if args.threshold is not None or args.filter:
        overrides["scenarios"] = {}
        if args.threshold is not None:
            overrides["time_threshold_min"] = args.threshold
        if args.filter:
            overrides["suitability_filter"] = frozenset(s.strip() for s in args.filter.split(",") if s.strip())

    if args.config:
        return AccessibilityConfig.from_json(args.config, **overrides)
    return AccessibilityConfig(**{k: v for k, v in overrides.items() if v is not None})


def load_inputs(args, aoi_bbox=None):
    from .sources import load_osm_shelters, load_osm_streets, read_features

    if args.lines:
        lines = read_features(args.lines)
    elif args.pbf:
        lines = load_osm_streets(args.pbf, bounding_box=aoi_bbox)
    else:
        raise DataError("No street input: pass --lines or --pbf")

    if args.destinations:
        dests = read_features(args.destinations)
    elif args.pbf:
        dests = load_osm_shelters(args.pbf, bounding_box=aoi_bbox)
    else:
        raise DataError("No destination input: pass --destinations or --pbf")
    return lines, dests


def run_cli(args) -> int:
    for path in (args.lines, args.destinations, args.pbf, args.dem):
        if path and not os.path.exists(path):
            print(f"ERROR: input not found: {path}")
            return 1

    try:
        cfg = config_from_args(args)
    except ValueError as e:
        print(f"ERROR: invalid configuration: {e}")
        return 1

    builder = AccessibilityBuilder(cfg, args.out, max_workers=args.workers)
    try:
        with ExitStack() as stack:
            from .geometry import area_of_interest
            bbox = list(area_of_interest(cfg.center_lon, cfg.center_lat, cfg.radius_km).bounds)
            lines, dests = load_inputs(args, bbox)
            elevation = None
            if args.dem:
                from .elevation import RasterElevation
                elevation = stack.enter_context(RasterElevation(args.dem))
            report = builder.run(lines, dests, elevation)
    except KeyboardInterrupt:
        print("\n[cli] Interrupted.")
        return 130  # 128 + SIGINT
    except DataError as e:
        print(f"[cli] Input error: {e}")
        return 2
    except PipelineError as e:
        print(f"[cli] Stage '{e.stage}' failed: {e.cause}")
        print(format_report(builder.report))
        return 2
    except Exception as e:
        print(f"[cli] Fatal error: {e}")
        return 2

    print(format_report(report))
    print(f"✅ Done → {args.out}")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )
    return run_cli(args)


if __name__ == "__main__":
    sys.exit(main())
