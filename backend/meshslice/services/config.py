"""
Runtime settings for the slicing kernel.

Defaults live as module constants so that library callers can use the
kernel without any configuration.  Deployments can override them through
environment variables read by :func:`load_settings`:

- ``MESHSLICE_MIN_PERIMETER`` – minimum perimeter a closed polygon needs
  to survive the final filter (mesh units).
- ``MESHSLICE_SNAP_GRID`` – resolution of the grid endpoints are snapped
  to before they are compared.
- ``MESHSLICE_MAX_GAP`` – largest gap the open‑fragment stitcher will
  bridge; unset or empty means unlimited.
- ``MESHSLICE_PLANE_EPS`` – distance below which a vertex counts as lying
  on the cutting plane.
- ``MESHSLICE_CACHE_ENTRIES`` – capacity of the slice result cache.

``SLICE_DEBUG`` is read separately by each service module and only
controls diagnostic logging.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Optional

# Closed polygons shorter than this are stitching artefacts.  The value is
# in the mesh's native length units (micrometres for the printer meshes
# this kernel was written for).
DEFAULT_MINIMUM_PERIMETER: float = 1000.0
# Grid resolution used to quantise endpoints for matching.
SNAP_GRID_RESOLUTION: float = 1e-6
DEFAULT_PLANE_EPS: float = 1e-9
DEFAULT_CACHE_ENTRIES: int = 32


@dataclass(frozen=True)
class SliceSettings:
    """Tunable parameters shared by the cutter, stitcher and cache."""

    minimum_perimeter: float = DEFAULT_MINIMUM_PERIMETER
    snap_grid: float = SNAP_GRID_RESOLUTION
    max_gap: Optional[float] = None
    plane_eps: float = DEFAULT_PLANE_EPS
    cache_entries: int = DEFAULT_CACHE_ENTRIES

    def __post_init__(self) -> None:
        if not self.minimum_perimeter >= 0.0:
            raise ValueError("minimum_perimeter must be non-negative")
        if not (self.snap_grid > 0.0 and math.isfinite(self.snap_grid)):
            raise ValueError("snap_grid must be a positive finite number")
        if self.max_gap is not None and not self.max_gap >= 0.0:
            raise ValueError("max_gap must be non-negative")
        if not self.plane_eps >= 0.0:
            raise ValueError("plane_eps must be non-negative")
        if self.cache_entries < 1:
            raise ValueError("cache_entries must be at least 1")


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def load_settings() -> SliceSettings:
    """Build :class:`SliceSettings` from the environment.

    Raises:
        ValueError: If a variable is set to something that is not a
            number or is out of range.
    """
    cache_raw = os.getenv("MESHSLICE_CACHE_ENTRIES")
    try:
        cache_entries = int(cache_raw) if cache_raw else DEFAULT_CACHE_ENTRIES
    except ValueError as exc:
        raise ValueError(
            f"MESHSLICE_CACHE_ENTRIES must be an integer, got {cache_raw!r}"
        ) from exc
    return SliceSettings(
        minimum_perimeter=_env_float("MESHSLICE_MIN_PERIMETER", DEFAULT_MINIMUM_PERIMETER),  # type: ignore[arg-type]
        snap_grid=_env_float("MESHSLICE_SNAP_GRID", SNAP_GRID_RESOLUTION),  # type: ignore[arg-type]
        max_gap=_env_float("MESHSLICE_MAX_GAP", None),
        plane_eps=_env_float("MESHSLICE_PLANE_EPS", DEFAULT_PLANE_EPS),  # type: ignore[arg-type]
        cache_entries=cache_entries,
    )
