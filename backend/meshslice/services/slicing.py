"""
Plane cutting of triangle meshes.

This module implements the first half of the slicing pipeline.  Given a
:class:`~meshslice.services.geometry.Mesh` and a
:class:`~meshslice.services.geometry.Plane` expressed in the mesh's own
coordinates, every face that straddles the plane contributes exactly one
directed segment.  The segment endpoints are carried into the *slice
frame*, the rigid transform built by
:func:`~meshslice.services.transforms.slice_frame` in which the plane is
``z = 0``, and handed to the stitcher in
:mod:`meshslice.services.stitching`.

Vertex classification follows a simple rule: a signed distance with
magnitude below ``eps`` is snapped to zero, and a vertex with a distance
of zero or more counts as *above* the plane.  Consequences:

- a triangle touching the plane at a single vertex yields nothing;
- a triangle lying in the plane yields nothing (counted as coplanar);
- an edge lying in the plane is emitted once, by the face below it.

Segment direction comes from the face winding.  Walking the edges in
order, the crossing on the edge that goes from above to below is the
segment ``start`` and the crossing on the edge that goes from below to
above is its ``end``.  Neighbouring faces with consistent winding then
chain end to start, and an outward‑wound solid yields counter‑clockwise
outer loops when viewed from the side the normal points to.  Crossing
points are interpolated from the endpoint with the lower vertex index so
that both faces sharing an edge compute the same coordinates.

The cutter does no de‑duplication and no topology; degenerate faces are
counted and skipped, never raised.  Set ``SLICE_DEBUG`` to log per‑slice
statistics.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .config import SliceSettings, load_settings
from .geometry import Mesh, Plane, Vector3, add, scale, sub
from .stitching import Polygon, SliceSegment, find_closed_polygons
from .transforms import identity, invert, slice_frame, transform_plane, transform_points

logger = logging.getLogger(__name__)

__all__ = [
    "CutStatistics",
    "SliceCut",
    "SliceResult",
    "get_cut_line",
    "intersect_mesh_with_plane",
    "slice_mesh",
    "create_slice",
    "get_polygon_xy_loops_at_0",
]


@dataclass
class CutStatistics:
    """Counters gathered while cutting a mesh.

    Attributes:
        inspected: Faces examined.
        cut: Faces that produced a segment.
        coplanar: Faces lying entirely in the plane.
        degenerate: Faces whose crossing collapsed to a single point
            (for example a face touching the plane at a vertex from below).
        malformed: Faces referencing vertices that do not exist.
        pruned: Faces never examined because a spatial index ruled them out.
    """

    inspected: int = 0
    cut: int = 0
    coplanar: int = 0
    degenerate: int = 0
    malformed: int = 0
    pruned: int = 0


@dataclass
class SliceCut:
    """Raw cutter output: directed segments plus the frame they live in."""

    segments: List[SliceSegment]
    stats: CutStatistics
    to_plane: np.ndarray
    from_plane: np.ndarray


@dataclass
class SliceResult:
    """Closed polygons of one slice together with cut diagnostics."""

    polygons: List[Polygon]
    stats: CutStatistics
    segment_count: int
    from_plane: np.ndarray = field(default_factory=identity)


def _crossing(p: Vector3, q: Vector3, dp: float, dq: float, p_id: int, q_id: int) -> Vector3:
    # evaluate from the lower vertex id so shared edges agree bit for bit
    if q_id < p_id:
        p, q, dp, dq = q, p, dq, dp
    if dp == 0.0:
        return p
    if dq == 0.0:
        return q
    t = dp / (dp - dq)
    return add(p, scale(sub(q, p), t))


def _cut_face(
    corners: Sequence[Vector3],
    distances: Sequence[float],
    vertex_ids: Sequence[int],
) -> Optional[Tuple[Vector3, Vector3]]:
    above = [d >= 0.0 for d in distances]
    if all(above) or not any(above):
        return None
    start: Optional[Vector3] = None
    end: Optional[Vector3] = None
    for i in range(3):
        j = (i + 1) % 3
        if above[i] == above[j]:
            continue
        point = _crossing(
            corners[i], corners[j], distances[i], distances[j], vertex_ids[i], vertex_ids[j]
        )
        if above[i]:
            start = point
        else:
            end = point
    if start is None or end is None:
        return None
    return start, end


def get_cut_line(
    a: Vector3,
    b: Vector3,
    c: Vector3,
    plane: Plane,
    eps: float = 1e-9,
) -> Optional[Tuple[Vector3, Vector3]]:
    """Intersect one triangle with a plane.

    Args:
        a, b, c: Triangle corners in winding order.
        plane: The cutting plane, in the same space as the corners.
        eps: Distances smaller than this in magnitude count as on the plane.

    Returns:
        ``(start, end)`` in 3D when the triangle straddles the plane, or
        ``None`` when all corners are on one side.  ``start`` may equal
        ``end`` when the plane only touches a corner from one side; the
        mesh cutter treats that as degenerate.
    """
    distances = []
    for corner in (a, b, c):
        d = plane.signed_distance(corner)
        distances.append(0.0 if abs(d) < eps else d)
    return _cut_face((a, b, c), distances, (0, 1, 2))


def _candidate_faces(mesh: Mesh, plane: Plane, spatial_index, eps: float) -> Iterable[int]:
    if spatial_index is None:
        return range(len(mesh.faces))
    found = set()
    # faces within eps of the plane get their vertices snapped onto it
    for item in spatial_index.crossing(plane, eps):
        face_index = getattr(item, "face_index", None)
        if face_index is not None:
            found.add(face_index)
    return sorted(found)


def intersect_mesh_with_plane(
    mesh: Mesh,
    plane: Plane,
    eps: float = 1e-9,
    snap_grid: float = 1e-6,
    spatial_index=None,
) -> SliceCut:
    """Cut every face of ``mesh`` with ``plane``.

    Args:
        mesh: Mesh in its local coordinates; never modified.
        plane: Cutting plane in the same coordinates.
        eps: On‑plane tolerance for vertex classification.
        snap_grid: Crossings shorter than this are degenerate and skipped.
        spatial_index: Optional tree from
            :func:`meshslice.services.bvh.mesh_to_bvh`; only faces whose
            items it reports as crossing the plane, or lying within ``eps``
            of it, are cut.

    Returns:
        A :class:`SliceCut` whose segments are in slice‑frame 2D
        coordinates, in face order.  A plane that misses the mesh yields
        no segments.
    """
    to_plane, from_plane = slice_frame(plane)
    stats = CutStatistics()
    if not mesh.faces or not mesh.vertices:
        return SliceCut([], stats, to_plane, from_plane)

    verts = np.asarray(mesh.vertices, dtype=float).reshape(-1, 3)
    dists_arr = verts @ np.asarray(plane.normal, dtype=float) - plane.distance_from_origin
    dists_arr[np.abs(dists_arr) < eps] = 0.0
    distances: List[float] = dists_arr.tolist()
    vertex_count = len(distances)
    min_len_sq = snap_grid * snap_grid

    face_ids = _candidate_faces(mesh, plane, spatial_index, eps)
    starts: List[Vector3] = []
    ends: List[Vector3] = []
    for fi in face_ids:
        stats.inspected += 1
        face = mesh.faces[fi]
        if any(v < 0 or v >= vertex_count for v in face):
            stats.malformed += 1
            continue
        ds = (distances[face[0]], distances[face[1]], distances[face[2]])
        if ds[0] == 0.0 and ds[1] == 0.0 and ds[2] == 0.0:
            stats.coplanar += 1
            continue
        corners = mesh.face_vertices(fi)
        cut = _cut_face(corners, ds, face)
        if cut is None:
            continue
        start, end = cut
        delta = sub(end, start)
        if delta[0] * delta[0] + delta[1] * delta[1] + delta[2] * delta[2] <= min_len_sq:
            stats.degenerate += 1
            continue
        starts.append(start)
        ends.append(end)
        stats.cut += 1
    stats.pruned = len(mesh.faces) - stats.inspected

    n = len(starts)
    flat = transform_points(to_plane, starts + ends)
    segments = [
        SliceSegment(
            (float(flat[k, 0]), float(flat[k, 1])),
            (float(flat[n + k, 0]), float(flat[n + k, 1])),
        )
        for k in range(n)
    ]
    if os.getenv("SLICE_DEBUG"):
        logger.debug(
            "intersect_mesh_with_plane: inspected=%d cut=%d coplanar=%d degenerate=%d "
            "malformed=%d pruned=%d",
            stats.inspected,
            stats.cut,
            stats.coplanar,
            stats.degenerate,
            stats.malformed,
            stats.pruned,
        )
    return SliceCut(segments, stats, to_plane, from_plane)


def slice_mesh(
    mesh: Mesh,
    plane: Plane,
    settings: Optional[SliceSettings] = None,
    spatial_index=None,
    **overrides,
) -> SliceResult:
    """Cut ``mesh`` with ``plane`` and stitch the result into polygons.

    Keyword overrides (``minimum_perimeter``, ``snap_grid``, ``max_gap``,
    ``plane_eps``) take precedence over ``settings``; when ``settings`` is
    omitted it is read from the environment.
    """
    settings = settings if settings is not None else load_settings()
    unknown = set(overrides) - {"minimum_perimeter", "snap_grid", "max_gap", "plane_eps"}
    if unknown:
        raise TypeError(f"unexpected slice options: {sorted(unknown)}")
    opts = {
        "minimum_perimeter": settings.minimum_perimeter,
        "snap_grid": settings.snap_grid,
        "max_gap": settings.max_gap,
        "plane_eps": settings.plane_eps,
    }
    opts.update({k: v for k, v in overrides.items() if v is not None})

    cut = intersect_mesh_with_plane(
        mesh,
        plane,
        eps=opts["plane_eps"],
        snap_grid=opts["snap_grid"],
        spatial_index=spatial_index,
    )
    polygons = find_closed_polygons(
        cut.segments,
        minimum_perimeter=opts["minimum_perimeter"],
        snap_grid=opts["snap_grid"],
        max_gap=opts["max_gap"],
    )
    return SliceResult(
        polygons=polygons,
        stats=cut.stats,
        segment_count=len(cut.segments),
        from_plane=cut.from_plane,
    )


def create_slice(
    mesh: Mesh,
    plane_in_mesh_space: Plane,
    settings: Optional[SliceSettings] = None,
    spatial_index=None,
    **overrides,
) -> List[Polygon]:
    """Closed cross‑section polygons of ``mesh`` on ``plane_in_mesh_space``.

    Polygons are point lists in the plane's 2D frame; use
    :func:`meshslice.services.transforms.lift_to_3d` with the inverse
    frame from :func:`slice_mesh` to get back to mesh space.
    """
    return slice_mesh(
        mesh, plane_in_mesh_space, settings=settings, spatial_index=spatial_index, **overrides
    ).polygons


def get_polygon_xy_loops_at_0(
    mesh: Mesh,
    matrix: np.ndarray,
    settings: Optional[SliceSettings] = None,
    **overrides,
) -> List[Polygon]:
    """Slice a placed mesh with the world plane ``z = 0``.

    ``matrix`` maps mesh coordinates to world coordinates.  Rather than
    transforming every vertex, the world plane is carried into mesh space
    and the untouched mesh is cut there.

    Raises:
        ValueError: If ``matrix`` is singular.
    """
    world_plane = Plane((0.0, 0.0, 1.0), 0.0)
    plane_in_mesh_space = transform_plane(invert(matrix), world_plane)
    return create_slice(mesh, plane_in_mesh_space, settings=settings, **overrides)
