"""
Bounding volume hierarchy over arbitrary geometry.

Anything that can report a bounding box, a surface area and a centre can
take part in a spatial tree by implementing :class:`BvhItem`.  Leaves
wrap a single primitive (a mesh triangle, a solid box, a sphere);
:class:`BvhNode` groups other items; :class:`TransformedItem` places an
item in the world with its own local frame.  Queries walk the tree and
prune whole sub‑trees whose bounds cannot match:

- :meth:`BvhItem.crossing` – leaves whose bounds straddle a plane, with an
  optional slack;
- :meth:`BvhItem.touching` – leaves whose bounds come within a
  straight-line distance of a point;
- :meth:`BvhItem.contained` – leaves whose bounds overlap a region;
- :meth:`BvhItem.contains` – precise point containment for solids.

Trees are built once with :func:`build_bvh` (median split along a
rotating axis, or a surface‑area‑heuristic split) and then only read.
Queries never mutate the tree, so a built tree can be shared between
threads.

Malformed queries (``None`` items, inverted or NaN regions, negative
tolerances) raise :class:`SpatialQueryError` instead of returning
silently wrong results.
"""

from __future__ import annotations

import functools
import logging
import math
import os
from abc import ABC, abstractmethod
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .geometry import (
    AxisAlignedBoundingBox,
    Mesh,
    Plane,
    Vector3,
    cross,
    dot,
    length,
    scale,
    sub,
)
from .transforms import identity, invert, transform_plane, transform_point, transform_points

logger = logging.getLogger(__name__)


class SpatialQueryError(ValueError):
    """Raised for ill‑formed spatial items or queries."""


def _check_point(position: Vector3) -> Vector3:
    if position is None:
        raise SpatialQueryError("query position must not be None")
    try:
        p = (float(position[0]), float(position[1]), float(position[2]))
    except (TypeError, IndexError) as exc:
        raise SpatialQueryError(f"query position {position!r} is not a 3D point") from exc
    if any(math.isnan(c) for c in p):
        raise SpatialQueryError("query position contains NaN")
    return p


def _check_region(region: AxisAlignedBoundingBox) -> AxisAlignedBoundingBox:
    if region is None:
        raise SpatialQueryError("query region must not be None")
    if not region.is_valid:
        raise SpatialQueryError(f"query region {region!r} is empty or contains NaN")
    return region


def _check_plane(plane: Plane, tolerance: float = 0.0) -> Plane:
    if plane is None:
        raise SpatialQueryError("query plane must not be None")
    if not tolerance >= 0.0:
        raise SpatialQueryError("crossing tolerance must be non-negative")
    return plane


class BvhItem(ABC):
    """Capability shared by every element of a spatial tree."""

    @property
    def children(self) -> Sequence["BvhItem"]:
        """Direct children; empty for leaves."""
        return ()

    @property
    def axis_to_world(self) -> np.ndarray:
        """Matrix from this item's local axes to its parent's space."""
        return identity()

    @abstractmethod
    def surface_area(self) -> float:
        """Surface area used by tree construction heuristics."""

    @abstractmethod
    def bounding_box(self) -> AxisAlignedBoundingBox:
        """Bounds of the item and everything below it."""

    def center(self) -> Vector3:
        return self.bounding_box().center

    def axis_center(self, axis: int) -> float:
        return self.center()[axis % 3]

    @abstractmethod
    def crossing(self, plane: Plane, tolerance: float = 0.0) -> List["BvhItem"]:
        """Leaf items whose bounds intersect ``plane``.

        Bounds missing the plane by no more than ``tolerance`` also count,
        which lets the cutter keep faces whose vertices it snaps onto the
        plane.
        """

    @abstractmethod
    def touching(self, position: Vector3, error: float) -> List["BvhItem"]:
        """Leaf items whose bounds lie within ``error`` of ``position``.

        ``error`` is a straight-line distance from the point to the
        nearest point of the bounds.
        """

    @abstractmethod
    def contained(self, results: List["BvhItem"], region: AxisAlignedBoundingBox) -> bool:
        """Append leaf items overlapping ``region`` to ``results``.

        Returns:
            True if anything was appended.
        """

    @abstractmethod
    def contains(self, position: Vector3) -> bool:
        """Precise containment; only solids can return True."""


class BvhLeaf(BvhItem):
    """Leaf whose bounding box is computed once and reused by queries."""

    _bounds: AxisAlignedBoundingBox

    def bounding_box(self) -> AxisAlignedBoundingBox:
        return self._bounds

    def crossing(self, plane: Plane, tolerance: float = 0.0) -> List[BvhItem]:
        _check_plane(plane, tolerance)
        return [self] if self._bounds.crosses_plane(plane, tolerance) else []

    def touching(self, position: Vector3, error: float) -> List[BvhItem]:
        p = _check_point(position)
        if error < 0.0:
            raise SpatialQueryError("touch tolerance must be non-negative")
        return [self] if self._bounds.distance_squared_to_point(p) <= error * error else []

    def contained(self, results: List[BvhItem], region: AxisAlignedBoundingBox) -> bool:
        _check_region(region)
        if self._bounds.intersects(region):
            results.append(self)
            return True
        return False


class TriangleItem(BvhLeaf):
    """A single mesh triangle.  Not a solid, so :meth:`contains` is False."""

    def __init__(self, a: Vector3, b: Vector3, c: Vector3, face_index: Optional[int] = None) -> None:
        self.vertices = (tuple(a), tuple(b), tuple(c))
        self.face_index = face_index
        self._bounds = AxisAlignedBoundingBox.from_points(self.vertices)  # type: ignore[arg-type]
        self._center = scale(
            (a[0] + b[0] + c[0], a[1] + b[1] + c[1], a[2] + b[2] + c[2]), 1.0 / 3.0
        )

    def surface_area(self) -> float:
        a, b, c = self.vertices
        return 0.5 * length(cross(sub(b, a), sub(c, a)))  # type: ignore[arg-type]

    def center(self) -> Vector3:
        return self._center

    def contains(self, position: Vector3) -> bool:
        _check_point(position)
        return False

    def __repr__(self) -> str:
        return f"TriangleItem(face_index={self.face_index!r})"


class BoxItem(BvhLeaf):
    """A solid axis‑aligned box."""

    def __init__(self, min_xyz: Vector3, max_xyz: Vector3) -> None:
        bounds = AxisAlignedBoundingBox(tuple(min_xyz), tuple(max_xyz))  # type: ignore[arg-type]
        if not bounds.is_valid:
            raise SpatialQueryError(f"box minimum {min_xyz!r} exceeds maximum {max_xyz!r}")
        self._bounds = bounds

    def surface_area(self) -> float:
        return self._bounds.surface_area()

    def contains(self, position: Vector3) -> bool:
        return self._bounds.contains_point(_check_point(position))

    def __repr__(self) -> str:
        return f"BoxItem({self._bounds.min_xyz!r}, {self._bounds.max_xyz!r})"


class SphereItem(BvhLeaf):
    """A solid sphere, the simplest implicit surface."""

    def __init__(self, center: Vector3, radius: float) -> None:
        if not radius >= 0.0:
            raise SpatialQueryError("sphere radius must be non-negative")
        self._sphere_center = (float(center[0]), float(center[1]), float(center[2]))
        self.radius = float(radius)
        r = (self.radius, self.radius, self.radius)
        c = self._sphere_center
        self._bounds = AxisAlignedBoundingBox(sub(c, r), (c[0] + r[0], c[1] + r[1], c[2] + r[2]))

    def surface_area(self) -> float:
        return 4.0 * math.pi * self.radius * self.radius

    def center(self) -> Vector3:
        return self._sphere_center

    def contains(self, position: Vector3) -> bool:
        d = sub(_check_point(position), self._sphere_center)
        return dot(d, d) <= self.radius * self.radius

    def __repr__(self) -> str:
        return f"SphereItem({self._sphere_center!r}, {self.radius!r})"


class BvhNode(BvhItem):
    """Interior node owning a fixed list of child items.

    Bounds and centre are computed at construction; the surface area is
    that of the bounding box rather than the sum of the children's.
    """

    def __init__(self, children: Iterable[BvhItem]) -> None:
        kids = list(children)
        if not kids:
            raise SpatialQueryError("a BvhNode needs at least one child")
        if any(k is None for k in kids):
            raise SpatialQueryError("BvhNode children must not be None")
        self._children: Tuple[BvhItem, ...] = tuple(kids)
        bounds = AxisAlignedBoundingBox.empty()
        for k in kids:
            bounds = bounds.union(k.bounding_box())
        self._bounds = bounds
        self._center = bounds.center

    @property
    def children(self) -> Sequence[BvhItem]:
        return self._children

    def surface_area(self) -> float:
        return self._bounds.surface_area()

    def bounding_box(self) -> AxisAlignedBoundingBox:
        return self._bounds

    def center(self) -> Vector3:
        return self._center

    def crossing(self, plane: Plane, tolerance: float = 0.0) -> List[BvhItem]:
        _check_plane(plane, tolerance)
        if not self._bounds.crosses_plane(plane, tolerance):
            return []
        found: List[BvhItem] = []
        for child in self._children:
            found.extend(child.crossing(plane, tolerance))
        return found

    def touching(self, position: Vector3, error: float) -> List[BvhItem]:
        p = _check_point(position)
        if error < 0.0:
            raise SpatialQueryError("touch tolerance must be non-negative")
        if self._bounds.distance_squared_to_point(p) > error * error:
            return []
        found: List[BvhItem] = []
        for child in self._children:
            found.extend(child.touching(p, error))
        return found

    def contained(self, results: List[BvhItem], region: AxisAlignedBoundingBox) -> bool:
        _check_region(region)
        if not self._bounds.intersects(region):
            return False
        added = False
        for child in self._children:
            if child.bounding_box().intersects(region):
                added = child.contained(results, region) or added
        return added

    def contains(self, position: Vector3) -> bool:
        p = _check_point(position)
        if not self._bounds.contains_point(p):
            return False
        return any(child.contains(p) for child in self._children)

    def __repr__(self) -> str:
        return f"BvhNode(children={len(self._children)})"


class TransformedItem(BvhItem):
    """Proxy placing ``item`` in its parent's space through ``matrix``.

    Queries are carried into the item's local frame, so results are the
    wrapped item's own leaves.  The matrix should be rigid (rotation plus
    translation); touch tolerances are not rescaled.
    """

    def __init__(self, item: BvhItem, matrix: np.ndarray) -> None:
        if item is None:
            raise SpatialQueryError("transformed item must not be None")
        self._item = item
        self._matrix = np.asarray(matrix, dtype=float).reshape(4, 4)
        try:
            self._inverse = invert(self._matrix)
        except ValueError as exc:
            raise SpatialQueryError("item transform is not invertible") from exc
        self._bounds = _transform_box(self._matrix, item.bounding_box())

    @property
    def children(self) -> Sequence[BvhItem]:
        return (self._item,)

    @property
    def axis_to_world(self) -> np.ndarray:
        return self._matrix

    def surface_area(self) -> float:
        return self._bounds.surface_area()

    def bounding_box(self) -> AxisAlignedBoundingBox:
        return self._bounds

    def crossing(self, plane: Plane, tolerance: float = 0.0) -> List[BvhItem]:
        _check_plane(plane, tolerance)
        if not self._bounds.crosses_plane(plane, tolerance):
            return []
        return self._item.crossing(transform_plane(self._inverse, plane), tolerance)

    def touching(self, position: Vector3, error: float) -> List[BvhItem]:
        p = _check_point(position)
        return self._item.touching(transform_point(self._inverse, p), error)

    def contained(self, results: List[BvhItem], region: AxisAlignedBoundingBox) -> bool:
        _check_region(region)
        if not self._bounds.intersects(region):
            return False
        return self._item.contained(results, _transform_box(self._inverse, region))

    def contains(self, position: Vector3) -> bool:
        p = _check_point(position)
        return self._item.contains(transform_point(self._inverse, p))


def _transform_box(matrix: np.ndarray, box: AxisAlignedBoundingBox) -> AxisAlignedBoundingBox:
    if box.is_empty:
        return box
    lo, hi = box.min_xyz, box.max_xyz
    corners = [
        (x, y, z)
        for x in (lo[0], hi[0])
        for y in (lo[1], hi[1])
        for z in (lo[2], hi[2])
    ]
    moved = transform_points(matrix, corners)
    return AxisAlignedBoundingBox(
        tuple(float(v) for v in moved.min(axis=0)),  # type: ignore[arg-type]
        tuple(float(v) for v in moved.max(axis=0)),  # type: ignore[arg-type]
    )


class CompareCentersOnAxis:
    """Orders items by their centre along one axis.

    The axis wraps modulo 3, so builders can simply increment it at each
    level of the tree.  Instances are callable with the usual comparator
    signature and can produce a sort key via :meth:`key`.
    """

    def __init__(self, which_axis: int = 0) -> None:
        self.which_axis = which_axis

    @property
    def which_axis(self) -> int:
        return self._which_axis

    @which_axis.setter
    def which_axis(self, value: int) -> None:
        self._which_axis = value % 3

    def compare(self, a: BvhItem, b: BvhItem) -> int:
        if a is None or b is None:
            raise SpatialQueryError("cannot compare a None item")
        ca = a.axis_center(self._which_axis)
        cb = b.axis_center(self._which_axis)
        if ca > cb:
            return 1
        if ca < cb:
            return -1
        return 0

    __call__ = compare

    def key(self) -> Callable[[BvhItem], object]:
        return functools.cmp_to_key(self.compare)


def _sah_split(ordered: Sequence[BvhItem]) -> int:
    n = len(ordered)
    right_areas = [0.0] * n
    bounds = AxisAlignedBoundingBox.empty()
    for i in range(n - 1, 0, -1):
        bounds = bounds.union(ordered[i].bounding_box())
        right_areas[i] = bounds.surface_area()
    best_split = n // 2
    best_cost = math.inf
    bounds = AxisAlignedBoundingBox.empty()
    for i in range(1, n):
        bounds = bounds.union(ordered[i - 1].bounding_box())
        cost = bounds.surface_area() * i + right_areas[i] * (n - i)
        if cost < best_cost:
            best_cost = cost
            best_split = i
    return best_split


def build_bvh(
    items: Iterable[BvhItem],
    max_leaf_items: int = 1,
    strategy: str = "median",
    axis: int = 0,
) -> BvhItem:
    """Build a balanced tree over ``items``.

    At each level the items are sorted by their centre along ``axis`` and
    split in two, then the axis advances (x, y, z, x, …).  With
    ``strategy="median"`` the split is at the middle; with ``"sah"`` it is
    at the index minimising ``area(left) * count(left) + area(right) *
    count(right)``.  Groups of at most ``max_leaf_items`` become one node.

    Raises:
        SpatialQueryError: If ``items`` is empty or contains ``None``.
        ValueError: For an unknown strategy or ``max_leaf_items < 1``.
    """
    pool = list(items)
    if not pool:
        raise SpatialQueryError("cannot build a tree from no items")
    if any(item is None for item in pool):
        raise SpatialQueryError("tree items must not be None")
    if strategy not in ("median", "sah"):
        raise ValueError(f"unknown split strategy {strategy!r}")
    if max_leaf_items < 1:
        raise ValueError("max_leaf_items must be at least 1")

    if len(pool) == 1:
        return pool[0]
    if len(pool) <= max_leaf_items:
        return BvhNode(pool)

    ordered = sorted(pool, key=CompareCentersOnAxis(axis).key())
    split = _sah_split(ordered) if strategy == "sah" else len(ordered) // 2
    left = build_bvh(ordered[:split], max_leaf_items, strategy, axis + 1)
    right = build_bvh(ordered[split:], max_leaf_items, strategy, axis + 1)
    return BvhNode([left, right])


def mesh_to_bvh(mesh: Mesh, max_leaf_items: int = 4, strategy: str = "median") -> BvhItem:
    """Tree of :class:`TriangleItem` leaves, one per well‑formed face.

    Raises:
        SpatialQueryError: If the mesh has no usable faces.
    """
    items: List[BvhItem] = []
    for fi, face in mesh.iter_faces():
        try:
            a, b, c = mesh.face_vertices(fi)
        except IndexError:
            continue
        items.append(TriangleItem(a, b, c, face_index=fi))
    tree = build_bvh(items, max_leaf_items=max_leaf_items, strategy=strategy)
    if os.getenv("SLICE_DEBUG"):
        logger.debug(
            "mesh_to_bvh: faces=%d leaves=%d strategy=%s", len(mesh.faces), len(items), strategy
        )
    return tree


def iterate_bvh(
    item: BvhItem,
    descend_filter: Optional[Callable[[BvhItem, np.ndarray, int], bool]] = None,
) -> Iterator[Tuple[BvhItem, np.ndarray, int]]:
    """Depth‑first walk yielding ``(item, world_matrix, depth)``.

    ``world_matrix`` is the product of every ``axis_to_world`` from the
    root down to and including the yielded item.  When ``descend_filter``
    returns False for an item its children are skipped (the item itself is
    still yielded).
    """
    if item is None:
        raise SpatialQueryError("cannot iterate a None item")
    stack: List[Tuple[BvhItem, np.ndarray, int]] = [(item, item.axis_to_world, 0)]
    while stack:
        current, world, depth = stack.pop()
        yield current, world, depth
        if descend_filter is not None and not descend_filter(current, world, depth):
            continue
        for child in reversed(list(current.children)):
            stack.append((child, world @ child.axis_to_world, depth + 1))
