"""Exception types raised by the accessibility pipeline."""
from typing import Optional, Tuple


class DataError(ValueError):
    """Input collection is missing, empty or lacks a required field."""


class GeometryError(ValueError):
    """Geometry is degenerate or unusable after clipping."""


class MissingElevationError(LookupError):
    """The elevation surface has no value at a coordinate."""

    def __init__(self, coord: Tuple[float, float], reason: str = "no data"):
        self.coord = coord
        self.reason = reason
        super().__init__(f"No elevation at ({coord[0]:.6f}, {coord[1]:.6f}): {reason}")


class PipelineError(RuntimeError):
    """A stage-level failure; `stage` names the stage that aborted the run."""

    def __init__(self, stage: str, cause: Optional[BaseException] = None):
        self.stage = stage
        self.cause = cause
        msg = f"stage '{stage}' failed"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)
