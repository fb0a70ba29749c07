import json
from dataclasses import dataclass, field, fields, replace
from typing import Dict, FrozenSet, Optional, Tuple

# Area of interest: circular buffer around a fixed origin (lon, lat)
DEFAULT_CENTER = (13.3888, 52.5170)
RADIUS_KM = 5.0

# Coordinates are stored and exchanged in this datum
CRS = "EPSG:4326"

# Speed model (km/h). Gradient in percent; factors are km/h per percent.
SPEED_PROFILES = {
    "bike": {
        "default_speed": 20.0,
        "max_speed": 30.0,
        "min_speed": 5.0,
        "downhill_factor": 0.8,
        "uphill_factor": 1.4,
    },
}
DEFAULT_MODE = "bike"

# Reachability cutoffs used by the example scenarios (minutes)
TIME_THRESHOLD_SHORT_MIN = 6.0
TIME_THRESHOLD_LONG_MIN = 15.0

SUITABILITY_LEVELS = ("good", "medium", "low")
ALL_LEVELS = frozenset(SUITABILITY_LEVELS)

# name -> (allowed suitability levels, threshold minutes)
SCENARIOS = {
    "unrestricted_6min": (ALL_LEVELS, TIME_THRESHOLD_SHORT_MIN),
    "unrestricted_15min": (ALL_LEVELS, TIME_THRESHOLD_LONG_MIN),
    "good_medium_15min": (frozenset({"good", "medium"}), TIME_THRESHOLD_LONG_MIN),
    "good_only_15min": (frozenset({"good"}), TIME_THRESHOLD_LONG_MIN),
}

# Points closer than this to a graph node attach to the node itself
NODE_SNAP_TOLERANCE_M = 1.0

# Elevation samples per segment (2 = endpoints only)
ELEVATION_SAMPLES = 2

# Output filenames
SEGMENTS_FILE = "segments.parquet"
GRAPH_CACHE = "graph.pkl"
RESULTS_FILE = "accessibility_{scenario}.csv"
SUMMARY_FILE = "summary.json"


@dataclass(frozen=True)
class AccessibilityConfig:
    """Recognized run options; defaults come from the module constants."""

    center_lon: float = DEFAULT_CENTER[0]
    center_lat: float = DEFAULT_CENTER[1]
    radius_km: float = RADIUS_KM
    mode: str = DEFAULT_MODE
    default_speed: Optional[float] = None
    max_speed: Optional[float] = None
    min_speed: Optional[float] = None
    time_threshold_min: float = TIME_THRESHOLD_LONG_MIN
    suitability_filter: FrozenSet[str] = ALL_LEVELS
    refine_shared_vertices: bool = False
    elevation_samples: int = ELEVATION_SAMPLES
    scenarios: Dict[str, Tuple[FrozenSet[str], float]] = field(
        default_factory=lambda: dict(SCENARIOS)
    )

    def __post_init__(self):
        if self.radius_km <= 0:
            raise ValueError(f"radius_km must be positive, got {self.radius_km}")
        if self.mode not in SPEED_PROFILES:
            raise ValueError(f"Unknown mode {self.mode!r}; expected one of {sorted(SPEED_PROFILES)}")
        unknown = set(self.suitability_filter) - ALL_LEVELS
        if unknown:
            raise ValueError(f"Unknown suitability levels: {sorted(unknown)}")
        if self.time_threshold_min <= 0:
            raise ValueError("time_threshold_min must be positive")

    @property
    def center(self) -> Tuple[float, float]:
        return (self.center_lon, self.center_lat)

    def speed_params(self) -> Dict[str, float]:
        """Profile for `mode` with any explicit overrides applied."""
        params = dict(SPEED_PROFILES[self.mode])
        for key in ("default_speed", "max_speed", "min_speed"):
            val = getattr(self, key)
            if val is not None:
                params[key] = float(val)
        return params

    def speed_model(self):
        from .costs import SpeedModel
        return SpeedModel(**self.speed_params())

    def scenario_list(self):
        """Configured scenarios, or a single one built from the top-level filter/threshold."""
        from .accessibility import Scenario
        if not self.scenarios:
            return [Scenario("configured", frozenset(self.suitability_filter), self.time_threshold_min)]
        return [Scenario(name, frozenset(levels), float(thr)) for name, (levels, thr) in self.scenarios.items()]

    @classmethod
    def from_json(cls, path: str, **overrides) -> "AccessibilityConfig":
        """Load options from a JSON file; keyword overrides win over the file."""
        with open(path) as f:
            raw = json.load(f)
        known = {f.name for f in fields(cls)}
        unknown = set(raw) - known
        if unknown:
            raise ValueError(f"Unknown config keys in {path}: {sorted(unknown)}")
        if "suitability_filter" in raw:
            raw["suitability_filter"] = frozenset(raw["suitability_filter"])
        if "scenarios" in raw:
            raw["scenarios"] = {
                name: (frozenset(entry["suitability_filter"]), float(entry["time_threshold_min"]))
                for name, entry in raw["scenarios"].items()
            }
        cfg = cls(**raw)
        clean = {k: v for k, v in overrides.items() if v is not None}
        return replace(cfg, **clean) if clean else cfg
