"""
Homogeneous 4x4 transform helpers.

Matrices are NumPy arrays of shape ``(4, 4)`` acting on column vectors,
so a point ``p`` maps to ``M @ (x, y, z, 1)``.  The slicing service
uses these helpers for two things: building the *slice frame* (the
rigid transform that carries a cutting plane onto ``z = 0``) and carrying
a world‑space plane into the local space of a placed mesh.

Point batches are transformed in one vectorised call so that the cutter
does not build a tiny array per intersection point.
"""

from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple

import numpy as np

from .geometry import Plane, Vector3, cross, dot, normalize


def identity() -> np.ndarray:
    return np.eye(4, dtype=float)


def translation(offset: Vector3) -> np.ndarray:
    """Matrix translating points by ``offset``."""
    m = np.eye(4, dtype=float)
    m[:3, 3] = offset
    return m


def from_rows(values: Sequence[float]) -> np.ndarray:
    """Build a matrix from 16 floats in row‑major order.

    Raises:
        ValueError: If ``values`` does not hold exactly 16 finite numbers.
    """
    arr = np.asarray(values, dtype=float)
    if arr.size != 16:
        raise ValueError(f"expected 16 matrix entries, got {arr.size}")
    if not np.all(np.isfinite(arr)):
        raise ValueError("matrix entries must be finite")
    return arr.reshape(4, 4)


def invert(matrix: np.ndarray) -> np.ndarray:
    """Inverse of ``matrix``.

    Raises:
        ValueError: If the matrix is singular.
    """
    try:
        return np.linalg.inv(matrix)
    except np.linalg.LinAlgError as exc:
        raise ValueError("matrix is not invertible") from exc


def transform_point(matrix: np.ndarray, p: Vector3) -> Vector3:
    x, y, z, w = matrix @ np.array([p[0], p[1], p[2], 1.0])
    if w != 1.0 and w != 0.0:
        x, y, z = x / w, y / w, z / w
    return (float(x), float(y), float(z))


def transform_points(matrix: np.ndarray, points: Iterable[Vector3]) -> np.ndarray:
    """Transform many points at once.

    Returns:
        An ``(N, 3)`` array of transformed positions.  An empty input
        yields an array of shape ``(0, 3)``.
    """
    pts = np.asarray(list(points), dtype=float).reshape(-1, 3)
    if pts.shape[0] == 0:
        return pts
    homo = np.hstack([pts, np.ones((pts.shape[0], 1))])
    out = homo @ matrix.T
    return out[:, :3] / out[:, 3:4]


def transform_plane(matrix: np.ndarray, plane: Plane) -> Plane:
    """Carry ``plane`` through ``matrix``.

    Planes transform with the inverse transpose: if ``matrix`` maps space
    A to space B and ``plane`` lives in A, the result lives in B.

    Raises:
        ValueError: If ``matrix`` is singular or collapses the plane.
    """
    coeffs = np.array([*plane.normal, -plane.distance_from_origin], dtype=float)
    out = invert(matrix).T @ coeffs
    normal = (float(out[0]), float(out[1]), float(out[2]))
    norm = float(np.linalg.norm(out[:3]))
    if norm == 0.0:
        raise ValueError("transform collapses the plane normal")
    return Plane(normal, -float(out[3]) / norm)


def slice_frame(plane: Plane) -> Tuple[np.ndarray, np.ndarray]:
    """Build the rigid transform that flattens ``plane`` onto ``z = 0``.

    The rotation maps the plane normal onto ``+z``; the translation moves
    the point at ``normal * distance`` to the origin, so every point on
    the plane ends up with ``z == 0`` and its ``(x, y)`` are coordinates
    in the plane's own 2D frame.  For the plane ``z = d`` the frame is a
    pure translation and keeps world ``x`` and ``y``.

    Returns:
        ``(to_plane, from_plane)``: the flattening matrix and its inverse.
    """
    n = plane.normal
    # preferred up vector; falls back when it is parallel to the normal
    up = (n[1], n[2], n[0])
    x_axis = cross(up, n)
    if dot(x_axis, x_axis) < 1e-12:
        helper = min(range(3), key=lambda i: abs(n[i]))
        up = tuple(1.0 if i == helper else 0.0 for i in range(3))  # type: ignore[assignment]
        x_axis = cross(up, n)
    x_axis = normalize(x_axis)
    y_axis = cross(n, x_axis)

    rotation = np.eye(4, dtype=float)
    rotation[0, :3] = x_axis
    rotation[1, :3] = y_axis
    rotation[2, :3] = n
    to_plane = rotation @ translation(tuple(-c for c in plane.origin))  # type: ignore[arg-type]
    from_plane = invert(to_plane)
    return to_plane, from_plane


def lift_to_3d(from_plane: np.ndarray, points_2d: Iterable[Tuple[float, float]]) -> List[Vector3]:
    """Map slice‑frame 2D points back to 3D using the inverse frame."""
    pts = [(u, v, 0.0) for u, v in points_2d]
    return [tuple(float(c) for c in row) for row in transform_points(from_plane, pts)]  # type: ignore[misc]
