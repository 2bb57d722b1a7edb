"""
Simple in‑memory caching layer for slice results.

Slicing a large mesh is dominated by the per‑face cut and the fragment
stitching, so repeated requests for the same mesh, plane and options
should reuse the earlier result.  A ``SliceCacheKey`` identifies a slice
by the SHA‑256 digest of the mesh buffers, the plane and the options that
influence the output.

The cache is an ``OrderedDict`` with least‑recently‑used eviction.  When
the number of entries exceeds the configured capacity the oldest entry is
dropped.  The kernel itself never touches the cache; only the HTTP layer
does.

Usage::

    key = SliceCacheKey.build(mesh, plane, settings)
    result = get_slice_from_cache(key)
    if result is None:
        result = slice_mesh(mesh, plane, settings)
        put_slice_in_cache(key, result)
"""

from __future__ import annotations

import hashlib
import struct
from collections import OrderedDict
from dataclasses import dataclass
from threading import RLock
from typing import Optional, Tuple

from .config import DEFAULT_CACHE_ENTRIES, SliceSettings
from .geometry import Mesh, Plane
from .slicing import SliceResult


def mesh_digest(mesh: Mesh) -> str:
    """Content hash of a mesh's vertex and face buffers.

    Raises:
        ValueError: If a face index does not fit in a signed 64-bit integer.
    """
    h = hashlib.sha256()
    h.update(struct.pack("<QQ", len(mesh.vertices), len(mesh.faces)))
    for v in mesh.vertices:
        h.update(struct.pack("<3d", *v))
    for fi, f in enumerate(mesh.faces):
        try:
            h.update(struct.pack("<3q", *f))
        except struct.error as exc:
            raise ValueError(f"face {fi} has an out of range vertex index: {f!r}") from exc
    return h.hexdigest()


@dataclass(frozen=True)
class SliceCacheKey:
    """Unique identifier for a cached slice result.

    Attributes:
        mesh_digest: Hash of the mesh buffers (see :func:`mesh_digest`).
        normal: Unit normal of the cutting plane.
        distance: Signed distance of the plane from the origin.
        options: ``(minimum_perimeter, snap_grid, max_gap, plane_eps)``.
    """

    mesh_digest: str
    normal: Tuple[float, float, float]
    distance: float
    options: Tuple[Optional[float], ...]

    @classmethod
    def build(cls, mesh: Mesh, plane: Plane, settings: SliceSettings) -> "SliceCacheKey":
        return cls(
            mesh_digest=mesh_digest(mesh),
            normal=plane.normal,
            distance=plane.distance_from_origin,
            options=(
                settings.minimum_perimeter,
                settings.snap_grid,
                settings.max_gap,
                settings.plane_eps,
            ),
        )


# Underlying storage for the slice cache.  A reentrant lock protects the
# dictionary so concurrent requests can share it.
_cache: "OrderedDict[SliceCacheKey, SliceResult]" = OrderedDict()
_lock = RLock()
# Maximum number of entries retained in the cache.
MAX_CACHE_ENTRIES: int = DEFAULT_CACHE_ENTRIES


def get_slice_from_cache(key: SliceCacheKey) -> Optional[SliceResult]:
    """Retrieve a cached slice result if available.

    The returned object is shared with the cache and must not be mutated.
    """
    with _lock:
        result = _cache.get(key)
        if result is not None:
            # Move the key to the end to mark it as recently used
            _cache.move_to_end(key)
        return result


def put_slice_in_cache(key: SliceCacheKey, result: SliceResult, capacity: Optional[int] = None) -> None:
    """Store a slice result, evicting least recently used entries over capacity."""
    limit = capacity if capacity is not None else MAX_CACHE_ENTRIES
    with _lock:
        _cache[key] = result
        _cache.move_to_end(key)
        while len(_cache) > limit:
            _cache.popitem(last=False)


def clear_slice_cache() -> None:
    with _lock:
        _cache.clear()


def cache_size() -> int:
    with _lock:
        return len(_cache)
