"""Elevation surfaces and per-segment gradient sampling."""
from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

import numpy as np
import rasterio
from rasterio.warp import transform as warp_transform
from shapely.geometry import LineString

from .config import CRS
from .errors import MissingElevationError

logger = logging.getLogger(__name__)


@runtime_checkable
class ElevationSurface(Protocol):
    def elevation(self, lon: float, lat: float) -> float:
        """Ground elevation in meters; raises MissingElevationError when unknown."""
        ...


class RasterElevation:
    """
    DEM-backed elevation surface (GeoTIFF or anything rasterio opens).

    Coordinates are given in EPSG:4326 and reprojected into the raster CRS.
    Nodata, NaN and out-of-bounds lookups raise MissingElevationError.
    """

    def __init__(self, path: str, band: int = 1):
        self.path = path
        self.band = band
        self._src = rasterio.open(path)
        self._data = self._src.read(band)
        self._nodata = self._src.nodata
        self._reproject = self._src.crs is not None and self._src.crs.to_string() != CRS
        logger.info(f"Opened elevation raster {path} ({self._src.width}x{self._src.height}, crs={self._src.crs})")

    def elevation(self, lon: float, lat: float) -> float:
        x, y = lon, lat
        if self._reproject:
            xs, ys = warp_transform(CRS, self._src.crs, [lon], [lat])
            x, y = xs[0], ys[0]
        row, col = self._src.index(x, y)
        if not (0 <= row < self._data.shape[0] and 0 <= col < self._data.shape[1]):
            raise MissingElevationError((lon, lat), "outside raster")
        z = float(self._data[row, col])
        if np.isnan(z) or (self._nodata is not None and z == self._nodata):
            raise MissingElevationError((lon, lat), "nodata")
        return z

    def close(self) -> None:
        self._src.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def _sample_points(line: LineString, samples: int):
    if samples <= 2:
        coords = list(line.coords)
        return [coords[0], coords[-1]]
    return [line.interpolate(f, normalized=True).coords[0] for f in np.linspace(0.0, 1.0, samples)]


def segment_gradient(line: LineString, length_km: float, surface: ElevationSurface, samples: int = 2) -> float:
    """
    Net forward gradient (percent) along `line`, start -> end.

    The gradient is net rise over run between the endpoints. With
    samples > 2 the interior points of an evenly spaced profile are read
    too, only so that a gap anywhere along the line raises
    MissingElevationError; intermediate bumps do not change the result.
    """
    if length_km <= 0:
        raise ValueError("length_km must be positive")
    pts = _sample_points(line, samples)
    zs = [surface.elevation(x, y) for x, y in pts]
    rise_m = zs[-1] - zs[0]
    return rise_m / (length_km * 1000.0) * 100.0
