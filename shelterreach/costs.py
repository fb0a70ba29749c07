"""
Per-segment cost model: length, terrain-adjusted speed, travel time and
cycling suitability.

The network is treated as undirected. `time` is the forward (start -> end)
travel time and is what routing uses; reverse gradient/speed/time are
computed alongside and exported, but not routed on.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import geopandas as gpd
import numpy as np
from tqdm import tqdm

from .config import ELEVATION_SAMPLES, SPEED_PROFILES, DEFAULT_MODE
from .elevation import ElevationSurface, segment_gradient
from .errors import DataError, MissingElevationError
from .schema import SegmentTags, Suitability

logger = logging.getLogger(__name__)


# =====================
# Length
# =====================

def segment_length_km(segments: gpd.GeoDataFrame):
    """Segment lengths in kilometers, measured in the local UTM projection."""
    if segments.empty:
        return segments.geometry.length
    utm_crs = segments.estimate_utm_crs()
    return segments.to_crs(utm_crs).geometry.length / 1000.0


# =====================
# Speed / time
# =====================

@dataclass(frozen=True)
class SpeedModel:
    default_speed: float = 20.0
    max_speed: float = 30.0
    min_speed: float = 5.0
    downhill_factor: float = 0.8
    uphill_factor: float = 1.4

    def __post_init__(self):
        if not (0 < self.min_speed <= self.default_speed <= self.max_speed):
            raise ValueError(
                f"Speed bounds must satisfy 0 < min <= default <= max, got "
                f"{self.min_speed}/{self.default_speed}/{self.max_speed}"
            )

    @classmethod
    def for_mode(cls, mode: str = DEFAULT_MODE) -> "SpeedModel":
        try:
            return cls(**SPEED_PROFILES[mode])
        except KeyError:
            raise ValueError(f"Unknown travel mode {mode!r}") from None

    def speed_for_gradient(self, gradient: float) -> float:
        """km/h for a gradient in percent (negative = downhill)."""
        if gradient < 0:
            return min(self.default_speed + self.downhill_factor * abs(gradient), self.max_speed)
        return max(self.default_speed - self.uphill_factor * gradient, self.min_speed)


def travel_time_min(length_km: float, speed_kmh: float) -> float:
    return length_km / speed_kmh * 60.0


# =====================
# Suitability
# =====================

CYCLEWAY_SLOTS = ("cycleway", "cycleway:left", "cycleway:right", "cycleway:both")
TRACK_VALUES = {"track", "opposite_track"}
LANE_VALUES = {"lane", "shared_lane", "share_busway", "opposite_lane", "opposite_share_busway"}
LOW_TRAFFIC_HIGHWAYS = {"residential", "living_street"}
FOOTWAY_HIGHWAYS = {"footway", "path", "pedestrian"}
BICYCLE_ALLOWED = {"designated", "yes"}


def _slot_values(tags: SegmentTags):
    return {tags.value(s) for s in CYCLEWAY_SLOTS if tags.has(s)}


def is_cycle_track(tags: SegmentTags) -> bool:
    return tags.value("highway") == "cycleway" or bool(_slot_values(tags) & TRACK_VALUES)


def is_low_traffic_road(tags: SegmentTags) -> bool:
    return tags.value("highway") in LOW_TRAFFIC_HIGHWAYS


def has_bike_lane(tags: SegmentTags) -> bool:
    return bool(_slot_values(tags) & LANE_VALUES)


def is_bike_footway(tags: SegmentTags) -> bool:
    return tags.value("highway") in FOOTWAY_HIGHWAYS and tags.value("bicycle") in BICYCLE_ALLOWED


@dataclass(frozen=True)
class SuitabilityRule:
    name: str
    level: Suitability
    applies: Callable[[SegmentTags], bool]


# Evaluated top to bottom; first match wins, fallback is LOW.
SUITABILITY_RULES: Tuple[SuitabilityRule, ...] = (
    SuitabilityRule("cycle_track", Suitability.GOOD, is_cycle_track),
    SuitabilityRule("low_traffic_road", Suitability.MEDIUM, is_low_traffic_road),
    SuitabilityRule("bike_lane", Suitability.MEDIUM, has_bike_lane),
    SuitabilityRule("bike_footway", Suitability.MEDIUM, is_bike_footway),
)
FALLBACK_RULE = SuitabilityRule("fallback", Suitability.LOW, lambda tags: True)


def rule_for(tags: SegmentTags) -> SuitabilityRule:
    """The first rule that matches `tags`."""
    for rule in SUITABILITY_RULES:
        if rule.applies(tags):
            return rule
    return FALLBACK_RULE


def classify_suitability(tags) -> Suitability:
    if not isinstance(tags, SegmentTags):
        tags = SegmentTags(tags)
    return rule_for(tags).level


# =====================
# Stage
# =====================

@dataclass
class CostResult:
    segments: gpd.GeoDataFrame
    missing_elevation: int


def model_costs(
    segments: gpd.GeoDataFrame,
    surface: Optional[ElevationSurface],
    speed_model: Optional[SpeedModel] = None,
    samples: int = ELEVATION_SAMPLES,
) -> CostResult:
    """
    Attach length, gradient, speed, time and suitability to every segment.

    Returns a new GeoDataFrame. Segments whose elevation cannot be sampled
    keep NaN gradient/speed/time and are counted in `missing_elevation`.
    Passing `surface=None` treats the terrain as flat.
    """
    if segments is None or len(segments) == 0:
        raise DataError("No segments to cost")
    speed_model = speed_model or SpeedModel()

    out = segments.copy()
    out["length"] = segment_length_km(out).to_numpy(dtype="float64")

    n = len(out)
    grad = np.full(n, np.nan)
    speed = np.full(n, np.nan)
    speed_rev = np.full(n, np.nan)
    time = np.full(n, np.nan)
    time_rev = np.full(n, np.nan)
    levels = []
    missing = 0

    rows = zip(out.geometry, out["length"].to_numpy(), out.to_dict("records"))
    for i, (geom, length_km, row) in enumerate(tqdm(rows, total=n, desc="[costs] segments", unit="seg")):
        levels.append(classify_suitability(SegmentTags.from_row(row)).value)

        if surface is None:
            g = 0.0
        else:
            try:
                g = segment_gradient(geom, length_km, surface, samples=samples)
            except MissingElevationError as e:
                missing += 1
                logger.debug(f"segment {row.get('segment_id', i)}: {e}")
                continue

        grad[i] = g
        speed[i] = speed_model.speed_for_gradient(g)
        speed_rev[i] = speed_model.speed_for_gradient(-g)
        time[i] = travel_time_min(length_km, speed[i])
        time_rev[i] = travel_time_min(length_km, speed_rev[i])

    out["gradient"] = grad
    out["gradient_rev"] = -grad
    out["speed"] = speed
    out["speed_rev"] = speed_rev
    out["time"] = time
    out["time_rev"] = time_rev
    out["suitability"] = levels

    if missing:
        logger.warning(f"{missing}/{n} segments have no elevation; their travel time is undefined")
    counts = out["suitability"].value_counts().to_dict()
    logger.info(f"Costed {n} segments; suitability: {counts}")
    return CostResult(out, missing)

