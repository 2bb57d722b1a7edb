"""
Geometry primitives shared by the slicing and spatial indexing services.

This module holds the small value types the rest of the kernel is built
on: 3D vector helpers operating on plain tuples, the :class:`Plane`
described by a unit normal and a signed distance from the origin, the
:class:`AxisAlignedBoundingBox` used by the spatial tree, and the
read‑only :class:`Mesh` consumed by the plane cutter.

None of these types know anything about slicing or stitching.  They are
deliberately pure‑Python so that per‑face work in the cutter does not pay
the overhead of building tiny NumPy arrays; bulk operations (transforming
many points at once) live in :mod:`meshslice.services.transforms`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Sequence, Tuple

Vector3 = Tuple[float, float, float]
Vector2 = Tuple[float, float]
FaceIndices = Tuple[int, int, int]


def dot(a: Vector3, b: Vector3) -> float:
    """Compute the dot product of two 3D vectors.

    Args:
        a: First vector.
        b: Second vector.

    Returns:
        The scalar dot product ``a·b``.
    """
    return a[0] * b[0] + a[1] * b[1] + a[2] * b[2]


def sub(a: Vector3, b: Vector3) -> Vector3:
    """Subtract two 3D vectors (a - b)."""
    return (a[0] - b[0], a[1] - b[1], a[2] - b[2])


def add(a: Vector3, b: Vector3) -> Vector3:
    """Add two 3D vectors."""
    return (a[0] + b[0], a[1] + b[1], a[2] + b[2])


def scale(a: Vector3, s: float) -> Vector3:
    """Scale a 3D vector by ``s``."""
    return (a[0] * s, a[1] * s, a[2] * s)


def cross(a: Vector3, b: Vector3) -> Vector3:
    """Cross product ``a × b``."""
    return (
        a[1] * b[2] - a[2] * b[1],
        a[2] * b[0] - a[0] * b[2],
        a[0] * b[1] - a[1] * b[0],
    )


def length(a: Vector3) -> float:
    """Euclidean length of a 3D vector."""
    return math.sqrt(dot(a, a))


def normalize(a: Vector3) -> Vector3:
    """Return ``a`` scaled to unit length.

    Raises:
        ValueError: If ``a`` has zero (or non‑finite) length.
    """
    n = length(a)
    if n == 0.0 or not math.isfinite(n):
        raise ValueError(f"cannot normalise vector {a!r}")
    return (a[0] / n, a[1] / n, a[2] / n)


def distance_squared_2d(a: Vector2, b: Vector2) -> float:
    """Squared distance between two 2D points."""
    dx = a[0] - b[0]
    dy = a[1] - b[1]
    return dx * dx + dy * dy


@dataclass(frozen=True)
class Plane:
    """Immutable plane given by a unit normal and a signed distance.

    Every point ``p`` on the plane satisfies ``dot(normal, p) ==
    distance_from_origin``.  The normal is normalised on construction so
    callers may pass any non‑zero direction; the distance is interpreted
    along the normalised direction.

    Attributes:
        normal: Unit vector perpendicular to the plane.
        distance_from_origin: Signed distance of the plane from the
            origin, measured along ``normal``.
    """

    normal: Vector3
    distance_from_origin: float = 0.0

    def __post_init__(self) -> None:
        n = tuple(float(c) for c in self.normal)
        if len(n) != 3:
            raise ValueError("plane normal must have three components")
        object.__setattr__(self, "normal", normalize(n))  # type: ignore[arg-type]
        object.__setattr__(self, "distance_from_origin", float(self.distance_from_origin))

    @classmethod
    def from_point(cls, normal: Vector3, point: Vector3) -> "Plane":
        """Build the plane with ``normal`` that passes through ``point``."""
        unit = normalize(normal)
        return cls(unit, dot(unit, point))

    def signed_distance(self, p: Vector3) -> float:
        """Signed distance from ``p`` to the plane.

        Positive on the side the normal points to, negative on the other.
        """
        return dot(self.normal, p) - self.distance_from_origin

    @property
    def origin(self) -> Vector3:
        """The point on the plane closest to the world origin."""
        return scale(self.normal, self.distance_from_origin)


@dataclass(frozen=True)
class AxisAlignedBoundingBox:
    """Axis‑aligned box given by its minimum and maximum corners.

    An *empty* box (the identity for :meth:`union`) has every minimum
    coordinate at ``+inf`` and every maximum at ``-inf``.
    """

    min_xyz: Vector3
    max_xyz: Vector3

    @classmethod
    def empty(cls) -> "AxisAlignedBoundingBox":
        inf = math.inf
        return cls((inf, inf, inf), (-inf, -inf, -inf))

    @classmethod
    def from_points(cls, points: Iterable[Vector3]) -> "AxisAlignedBoundingBox":
        """Smallest box enclosing ``points``; empty when there are none."""
        lo = [math.inf, math.inf, math.inf]
        hi = [-math.inf, -math.inf, -math.inf]
        for p in points:
            for i in range(3):
                if p[i] < lo[i]:
                    lo[i] = p[i]
                if p[i] > hi[i]:
                    hi[i] = p[i]
        return cls((lo[0], lo[1], lo[2]), (hi[0], hi[1], hi[2]))

    @property
    def is_empty(self) -> bool:
        return any(self.min_xyz[i] > self.max_xyz[i] for i in range(3))

    @property
    def is_valid(self) -> bool:
        """True when no coordinate is NaN and min does not exceed max."""
        coords = self.min_xyz + self.max_xyz
        if any(math.isnan(c) for c in coords):
            return False
        return not self.is_empty

    @property
    def size(self) -> Vector3:
        return sub(self.max_xyz, self.min_xyz)

    @property
    def center(self) -> Vector3:
        return scale(add(self.min_xyz, self.max_xyz), 0.5)

    def axis_center(self, axis: int) -> float:
        return 0.5 * (self.min_xyz[axis] + self.max_xyz[axis])

    def surface_area(self) -> float:
        """Total area of the six faces; zero for an empty box."""
        if self.is_empty:
            return 0.0
        sx, sy, sz = self.size
        return 2.0 * (sx * sy + sy * sz + sz * sx)

    def union(self, other: "AxisAlignedBoundingBox") -> "AxisAlignedBoundingBox":
        return AxisAlignedBoundingBox(
            (
                min(self.min_xyz[0], other.min_xyz[0]),
                min(self.min_xyz[1], other.min_xyz[1]),
                min(self.min_xyz[2], other.min_xyz[2]),
            ),
            (
                max(self.max_xyz[0], other.max_xyz[0]),
                max(self.max_xyz[1], other.max_xyz[1]),
                max(self.max_xyz[2], other.max_xyz[2]),
            ),
        )

    def distance_squared_to_point(self, p: Vector3) -> float:
        """Squared straight-line distance from ``p`` to the closed box.

        Zero when ``p`` is inside or on the boundary.
        """
        total = 0.0
        for i in range(3):
            if p[i] < self.min_xyz[i]:
                gap = self.min_xyz[i] - p[i]
            elif p[i] > self.max_xyz[i]:
                gap = p[i] - self.max_xyz[i]
            else:
                continue
            total += gap * gap
        return total

    def contains_point(self, p: Vector3) -> bool:
        """Closed containment test (points on the boundary are inside)."""
        return all(self.min_xyz[i] <= p[i] <= self.max_xyz[i] for i in range(3))

    def intersects(self, other: "AxisAlignedBoundingBox") -> bool:
        """True when the two closed boxes share at least one point."""
        for i in range(3):
            if self.max_xyz[i] < other.min_xyz[i] or other.max_xyz[i] < self.min_xyz[i]:
                return False
        return True

    def projected_interval(self, direction: Vector3) -> Tuple[float, float]:
        """Range of ``dot(direction, p)`` over every point ``p`` of the box."""
        c = self.center
        half = scale(self.size, 0.5)
        mid = dot(direction, c)
        radius = (
            abs(direction[0]) * half[0]
            + abs(direction[1]) * half[1]
            + abs(direction[2]) * half[2]
        )
        return mid - radius, mid + radius

    def crosses_plane(self, plane: Plane, tolerance: float = 0.0) -> bool:
        """True when the plane passes through (or touches) the box.

        With a positive ``tolerance`` a plane that misses the box by no
        more than that distance also counts.
        """
        if self.is_empty:
            return False
        lo, hi = self.projected_interval(plane.normal)
        return lo - tolerance <= plane.distance_from_origin <= hi + tolerance


@dataclass
class Mesh:
    """Triangle mesh treated as read‑only input by the kernel.

    Attributes:
        vertices: 3D vertex positions in mesh‑local coordinates.
        faces: Vertex index triples, one per triangle, in winding order.
    """

    vertices: List[Vector3] = field(default_factory=list)
    faces: List[FaceIndices] = field(default_factory=list)

    @classmethod
    def from_flat(cls, vertices: Sequence[float], indices: Sequence[int]) -> "Mesh":
        """Build a mesh from flat vertex and index buffers.

        This mirrors the ``(x0, y0, z0, x1, …)`` / ``(i0, i1, i2, …)``
        layout used by the mesh API.  A trailing partial triangle in the
        index buffer is ignored.

        Raises:
            ValueError: If the vertex buffer length is not a multiple of 3.
        """
        if len(vertices) % 3 != 0:
            raise ValueError(
                f"vertex buffer length {len(vertices)} is not a multiple of 3"
            )
        verts = [
            (float(vertices[k]), float(vertices[k + 1]), float(vertices[k + 2]))
            for k in range(0, len(vertices), 3)
        ]
        faces = [
            (int(indices[k]), int(indices[k + 1]), int(indices[k + 2]))
            for k in range(0, len(indices) - 2, 3)
        ]
        return cls(vertices=verts, faces=faces)

    def face_vertices(self, face_index: int) -> Tuple[Vector3, Vector3, Vector3]:
        """Return the three corner positions of a face.

        Raises:
            IndexError: If the face references a vertex that does not exist.
        """
        i0, i1, i2 = self.faces[face_index]
        if min(i0, i1, i2) < 0:
            raise IndexError(f"negative vertex index in face {face_index}")
        return self.vertices[i0], self.vertices[i1], self.vertices[i2]

    def iter_faces(self) -> Iterator[Tuple[int, FaceIndices]]:
        return iter(enumerate(self.faces))

    def bounding_box(self) -> AxisAlignedBoundingBox:
        return AxisAlignedBoundingBox.from_points(self.vertices)
