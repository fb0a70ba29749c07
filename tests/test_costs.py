"""
Test Cost Model

Validates the per-segment cost model:
- gradient-adjusted speed stays within its bounds
- travel time is length / speed in minutes
- suitability rules fire in priority order
- missing elevation leaves time undefined instead of defaulting
- running the model twice gives identical results
"""
import math

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import LineString

from shelterreach.costs import (
    SUITABILITY_RULES,
    SpeedModel,
    classify_suitability,
    model_costs,
    rule_for,
    travel_time_min,
)
from shelterreach.errors import DataError, MissingElevationError
from shelterreach.schema import SegmentTags, Suitability, validate_costed_segments


LON0, LAT0 = 13.40, 52.50


class SlopeSurface:
    """Elevation rises `m_per_deg` meters per degree of longitude; no data east of `no_data_east_of`."""

    def __init__(self, m_per_deg=10000.0, no_data_east_of=None):
        self.m_per_deg = m_per_deg
        self.no_data_east_of = no_data_east_of

    def elevation(self, lon, lat):
        if self.no_data_east_of is not None and lon > self.no_data_east_of:
            raise MissingElevationError((lon, lat))
        return (lon - LON0) * self.m_per_deg


def make_segments(tags_list, step=0.002):
    geoms = [
        LineString([(LON0 + i * step, LAT0), (LON0 + (i + 1) * step, LAT0)])
        for i in range(len(tags_list))
    ]
    df = pd.DataFrame(tags_list)
    for col in ("highway", "cycleway", "bicycle"):
        if col not in df.columns:
            df[col] = None
    df.insert(0, "segment_id", np.arange(len(df), dtype="int64"))
    return gpd.GeoDataFrame(df, geometry=geoms, crs="EPSG:4326")


class TestSpeedModel:
    """Gradient -> speed relation."""

    def test_flat_is_default(self):
        assert SpeedModel().speed_for_gradient(0.0) == 20.0

    def test_downhill_increases_speed(self):
        assert SpeedModel().speed_for_gradient(-5.0) == pytest.approx(24.0)

    def test_downhill_clamped_to_max(self):
        assert SpeedModel().speed_for_gradient(-20.0) == 30.0

    def test_uphill_decreases_speed(self):
        assert SpeedModel().speed_for_gradient(5.0) == pytest.approx(13.0)

    def test_uphill_clamped_to_min(self):
        assert SpeedModel().speed_for_gradient(20.0) == 5.0

    @pytest.mark.parametrize("g", [-100.0, -12.5, -1.0, 0.0, 0.5, 7.0, 50.0])
    def test_speed_always_within_bounds(self, g):
        s = SpeedModel().speed_for_gradient(g)
        assert 5.0 <= s <= 30.0

    def test_invalid_bounds_rejected(self):
        with pytest.raises(ValueError):
            SpeedModel(default_speed=40.0, max_speed=30.0)

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError):
            SpeedModel.for_mode("hovercraft")

    def test_travel_time_minutes(self):
        assert travel_time_min(1.0, 20.0) == pytest.approx(3.0)
        assert travel_time_min(0.5, 30.0) == pytest.approx(1.0)


class TestSuitabilityRules:
    """Ordered rule table: first match wins."""

    def test_rule_order_is_fixed(self):
        names = [r.name for r in SUITABILITY_RULES]
        assert names == ["cycle_track", "low_traffic_road", "bike_lane", "bike_footway"]

    @pytest.mark.parametrize(
        "tags,expected",
        [
            ({"highway": "cycleway"}, Suitability.GOOD),
            ({"highway": "primary", "cycleway": "track"}, Suitability.GOOD),
            ({"highway": "primary", "cycleway:right": "opposite_track"}, Suitability.GOOD),
            ({"highway": "residential"}, Suitability.MEDIUM),
            ({"highway": "living_street"}, Suitability.MEDIUM),
            ({"highway": "primary", "cycleway": "lane"}, Suitability.MEDIUM),
            ({"highway": "secondary", "cycleway:left": "shared_lane"}, Suitability.MEDIUM),
            ({"highway": "secondary", "cycleway:both": "share_busway"}, Suitability.MEDIUM),
            ({"highway": "footway", "bicycle": "designated"}, Suitability.MEDIUM),
            ({"highway": "path", "bicycle": "yes"}, Suitability.MEDIUM),
            ({"highway": "footway"}, Suitability.LOW),
            ({"highway": "footway", "bicycle": "no"}, Suitability.LOW),
            ({"highway": "primary"}, Suitability.LOW),
            ({}, Suitability.LOW),
        ],
    )
    def test_classification(self, tags, expected):
        assert classify_suitability(tags) == expected

    def test_track_beats_residential(self):
        tags = SegmentTags({"highway": "residential", "cycleway": "track"})
        assert rule_for(tags).name == "cycle_track"

    def test_residential_beats_lane(self):
        tags = SegmentTags({"highway": "residential", "cycleway": "lane"})
        assert rule_for(tags).name == "low_traffic_road"

    def test_absent_values_are_not_matches(self):
        tags = {"highway": "primary", "cycleway": float("nan"), "cycleway:left": None, "bicycle": ""}
        assert classify_suitability(tags) == Suitability.LOW
        assert len(SegmentTags(tags)) == 1

    def test_values_are_case_insensitive(self):
        assert classify_suitability({"highway": "CycleWay"}) == Suitability.GOOD


class TestModelCosts:
    """The cost stage over a segment collection."""

    def test_attaches_all_columns(self):
        segs = make_segments([{"highway": "residential"}, {"highway": "cycleway"}])
        out = model_costs(segs, SlopeSurface()).segments
        for col in ("length", "gradient", "gradient_rev", "speed", "speed_rev", "time", "time_rev", "suitability"):
            assert col in out.columns
        assert list(out["suitability"]) == ["medium", "good"]

    def test_input_not_mutated(self):
        segs = make_segments([{"highway": "residential"}])
        model_costs(segs, SlopeSurface())
        assert "time" not in segs.columns

    def test_length_in_km(self):
        segs = make_segments([{"highway": "primary"}], step=0.01)
        out = model_costs(segs, None).segments
        # 0.01 deg of longitude at 52.5N is ~0.68 km
        assert out["length"].iloc[0] == pytest.approx(0.677, abs=0.01)

    def test_uphill_segment_slower_than_reverse(self):
        segs = make_segments([{"highway": "primary"}])
        out = model_costs(segs, SlopeSurface()).segments
        row = out.iloc[0]
        assert row["gradient"] > 0
        assert row["gradient_rev"] == pytest.approx(-row["gradient"])
        assert row["speed"] < row["speed_rev"]
        assert row["time"] > row["time_rev"]

    def test_gradient_percent(self):
        segs = make_segments([{"highway": "primary"}])
        out = model_costs(segs, SlopeSurface(m_per_deg=10000.0)).segments
        row = out.iloc[0]
        rise_m = 0.002 * 10000.0
        assert row["gradient"] == pytest.approx(rise_m / (row["length"] * 1000.0) * 100.0)

    def test_time_matches_length_and_speed(self):
        segs = make_segments([{"highway": "primary"}, {"highway": "cycleway"}])
        out = model_costs(segs, SlopeSurface()).segments
        expected = out["length"] / out["speed"] * 60.0
        assert np.allclose(out["time"], expected)

    def test_flat_without_surface(self):
        segs = make_segments([{"highway": "primary"}])
        out = model_costs(segs, None).segments
        assert out["gradient"].iloc[0] == 0.0
        assert out["speed"].iloc[0] == 20.0

    def test_speed_and_time_bounds(self):
        segs = make_segments([{"highway": "primary"}] * 5)
        out = model_costs(segs, SlopeSurface(m_per_deg=200000.0)).segments
        timed = out[out["time"].notna()]
        assert (timed["time"] >= 0).all()
        assert timed["speed"].between(5.0, 30.0).all()
        assert timed["speed_rev"].between(5.0, 30.0).all()

    def test_missing_elevation_leaves_time_undefined(self):
        segs = make_segments([{"highway": "primary"}, {"highway": "primary"}])
        res = model_costs(segs, SlopeSurface(no_data_east_of=LON0 + 0.003))
        out = res.segments
        assert res.missing_elevation == 1
        assert not math.isnan(out["time"].iloc[0])
        assert math.isnan(out["time"].iloc[1])
        # suitability is still classified for untimed segments
        assert out["suitability"].iloc[1] == "low"

    def test_idempotent(self):
        segs = make_segments([{"highway": "primary"}, {"highway": "cycleway"}, {"highway": "footway"}])
        surface = SlopeSurface(m_per_deg=50000.0)
        a = model_costs(segs, surface).segments
        b = model_costs(segs, surface).segments
        pd.testing.assert_series_equal(a["time"], b["time"])
        pd.testing.assert_series_equal(a["suitability"], b["suitability"])

    def test_empty_input_rejected(self):
        empty = gpd.GeoDataFrame({"segment_id": []}, geometry=[], crs="EPSG:4326")
        with pytest.raises(DataError):
            model_costs(empty, None)

    def test_output_passes_costed_schema(self):
        segs = make_segments([{"highway": "primary"}, {"highway": "cycleway"}])
        out = model_costs(segs, None).segments
        assert validate_costed_segments(out)

    def test_costed_schema_rejects_unknown_level(self):
        out = model_costs(make_segments([{"highway": "primary"}]), None).segments
        out["suitability"] = "excellent"
        with pytest.raises(DataError):
            validate_costed_segments(out)
