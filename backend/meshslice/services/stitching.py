"""
Reconstruction of closed polygon loops from unordered slice segments.

The plane cutter hands this module a bag of *directed* 2D segments, one
per mesh face crossing the plane, in no particular order.  On a clean
manifold mesh every segment's end coincides with exactly one other
segment's start, so the loops can be recovered by walking chains.  Real
meshes are rarely that clean: duplicate or missing faces and floating
point seams leave chains broken into open fragments.  The stitcher
therefore works in passes:

1. Index every segment by the quantised position of its start point.
2. Walk chains end‑to‑start, splitting the input into closed loops and
   open fragments.
3. Drop open fragments that collapsed to a single position.
4. Repeatedly join the globally closest pair of open fragment endpoints
   (end to start, or end to end with one fragment reversed) until no
   candidate pair remains.  A fragment whose closest partner is its own
   start closes on itself.
5. Discard closed loops that are degenerate or whose perimeter is below
   the configured minimum.

Endpoints are never compared with raw floating point equality.  They are
snapped onto a grid of resolution ``snap_grid`` by :func:`position_key`
and compared by key, which makes matching reproducible regardless of the
order in which segments arrive.

The result is neither de‑duplicated, checked for self intersection nor
simplified; coincident and collinear points are left in place.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .config import DEFAULT_MINIMUM_PERIMETER, SNAP_GRID_RESOLUTION
from .geometry import Vector2, distance_squared_2d

logger = logging.getLogger(__name__)

PositionKey = Tuple[int, int]
Polygon = List[Vector2]


@dataclass(frozen=True)
class SliceSegment:
    """A directed segment in slice space (the plane's local 2D frame).

    ``start`` and ``end`` keep the order produced by the face winding;
    chains extend from a segment's ``end`` to another segment's ``start``.
    """

    start: Vector2
    end: Vector2


def position_key(p: Vector2, snap_grid: float = SNAP_GRID_RESOLUTION) -> PositionKey:
    """Quantise a 2D point onto the snapping grid.

    Two points are considered the same position when their keys are
    equal.

    Raises:
        ValueError: If ``snap_grid`` is not positive.
    """
    if snap_grid <= 0.0:
        raise ValueError("snap_grid must be positive for snapping")
    return (int(round(p[0] / snap_grid)), int(round(p[1] / snap_grid)))


def build_start_index(
    segments: Sequence[SliceSegment],
    snap_grid: float = SNAP_GRID_RESOLUTION,
) -> Dict[PositionKey, List[int]]:
    """Map each quantised start position to the segments beginning there.

    Indices within a bucket are kept in input order.
    """
    index: Dict[PositionKey, List[int]] = {}
    for i, seg in enumerate(segments):
        index.setdefault(position_key(seg.start, snap_grid), []).append(i)
    return index


def _next_unvisited(
    start_index: Dict[PositionKey, List[int]],
    visited: List[bool],
    key: PositionKey,
) -> Optional[int]:
    for idx in start_index.get(key, ()):
        if not visited[idx]:
            return idx
    return None


def walk_chains(
    segments: Sequence[SliceSegment],
    snap_grid: float = SNAP_GRID_RESOLUTION,
) -> Tuple[List[Polygon], List[Polygon]]:
    """Partition the segments into maximal end‑to‑start chains.

    Each chain starts at the first segment not yet consumed, then keeps
    appending the end point of the current segment and moving on to an
    unvisited segment whose start has the same key.  When several
    unvisited segments start at that position the first in input order is
    taken; callers must not rely on which one that is.

    Returns:
        ``(closed, open)``.  A chain is closed when its last point has the
        same key as its first.  Closed chains still carry the repeated
        closing point at this stage.
    """
    start_index = build_start_index(segments, snap_grid)
    visited = [False] * len(segments)
    closed: List[Polygon] = []
    open_fragments: List[Polygon] = []

    for first in range(len(segments)):
        if visited[first]:
            continue
        first_point = segments[first].start
        chain: Polygon = [first_point]
        current: Optional[int] = first
        while current is not None:
            visited[current] = True
            end_point = segments[current].end
            chain.append(end_point)
            current = _next_unvisited(start_index, visited, position_key(end_point, snap_grid))
        if position_key(chain[-1], snap_grid) == position_key(first_point, snap_grid):
            closed.append(chain)
        else:
            open_fragments.append(chain)
    return closed, open_fragments


def remove_collapsed_fragments(
    fragments: Sequence[Polygon],
    snap_grid: float = SNAP_GRID_RESOLUTION,
) -> List[Polygon]:
    """Drop fragments that are empty or whose points all share one key.

    Such fragments come from faces that only graze the cutting plane.
    """
    kept: List[Polygon] = []
    for frag in fragments:
        if not frag:
            continue
        first = position_key(frag[0], snap_grid)
        if all(position_key(p, snap_grid) == first for p in frag[1:]):
            continue
        kept.append(frag)
    return kept


def _endpoint_score(a: Vector2, b: Vector2, snap_grid: float) -> float:
    if position_key(a, snap_grid) == position_key(b, snap_grid):
        return 0.0
    return distance_squared_2d(a, b)


def _closest_fragment(
    fragments: List[Polygon],
    live: List[bool],
    point: Vector2,
    use_start: bool,
    skip: Optional[int],
    snap_grid: float,
) -> Tuple[int, float]:
    best_index = -1
    best_score = math.inf
    for i, frag in enumerate(fragments):
        if not live[i] or i == skip:
            continue
        candidate = frag[0] if use_start else frag[-1]
        score = _endpoint_score(point, candidate, snap_grid)
        if score < best_score:
            best_score = score
            best_index = i
            if score == 0.0:
                break
    return best_index, best_score


def stitch_open_fragments(
    fragments: Sequence[Polygon],
    snap_grid: float = SNAP_GRID_RESOLUTION,
    max_gap: Optional[float] = None,
) -> Tuple[List[Polygon], List[Polygon]]:
    """Join open fragments across gaps, smallest gap first.

    Every round scans all live fragments and, for each fragment ``A``,
    compares ``A``'s end with the start of every live fragment (``A``
    itself included, which is how a fragment closes on itself) and with
    the end of every other live fragment (which attaches the partner
    reversed).  Scores are squared distances, and endpoints with equal
    keys score exactly zero.  The best pair of the round is applied:

    - ``A`` paired with its own start: ``A`` becomes a closed loop.
    - end to start: ``B`` is appended to ``A``.
    - end to end: the shorter fragment is appended, reversed, to the
      longer one.

    A zero score ends the scan early.  The rounds stop once no pair
    scores within ``max_gap`` (unlimited when ``None``); fragments still
    open at that point are returned separately and are not closed loops.

    This is cubic in the number of fragments in the worst case, which is
    acceptable for the fragment counts a single cross‑section produces.

    Returns:
        ``(closed, unmatched)``.
    """
    work: List[Polygon] = [list(f) for f in fragments]
    live = [bool(f) for f in work]
    limit = math.inf if max_gap is None else max_gap * max_gap
    closed: List[Polygon] = []
    merges = 0

    while True:
        best_score = math.inf
        best_a = -1
        best_b = -1
        reversed_match = False
        for a, frag_a in enumerate(work):
            if not live[a]:
                continue
            a_end = frag_a[-1]

            b, score = _closest_fragment(work, live, a_end, True, None, snap_grid)
            if b >= 0 and score < best_score and score <= limit:
                best_score, best_a, best_b, reversed_match = score, a, b, False
                if best_score == 0.0:
                    break

            b, score = _closest_fragment(work, live, a_end, False, a, snap_grid)
            if b >= 0 and score < best_score and score <= limit:
                best_score, best_a, best_b, reversed_match = score, a, b, True
                if best_score == 0.0:
                    break

        if best_a < 0:
            break

        if best_a == best_b:
            closed.append(work[best_a])
            live[best_a] = False
            continue

        frag_a = work[best_a]
        frag_b = work[best_b]
        if reversed_match:
            if len(frag_a) > len(frag_b):
                frag_a.extend(reversed(frag_b))
                live[best_b] = False
            else:
                frag_b.extend(reversed(frag_a))
                live[best_a] = False
        else:
            frag_a.extend(frag_b)
            live[best_b] = False
        merges += 1

    unmatched = [work[i] for i in range(len(work)) if live[i]]
    if os.getenv("SLICE_DEBUG"):
        logger.debug(
            "stitch_open_fragments: fragments=%d merges=%d closed=%d unmatched=%d",
            len(work),
            merges,
            len(closed),
            len(unmatched),
        )
    return closed, unmatched


def close_ring(points: Polygon, snap_grid: float = SNAP_GRID_RESOLUTION) -> Polygon:
    """Drop a trailing point that repeats the first one."""
    if len(points) >= 2 and position_key(points[-1], snap_grid) == position_key(points[0], snap_grid):
        return points[:-1]
    return points


def polygon_perimeter(points: Sequence[Vector2], stop_after: Optional[float] = None) -> float:
    """Length of the closed polygon through ``points``.

    The closing edge from the last point back to the first is included.
    When ``stop_after`` is given the sum is abandoned as soon as it
    exceeds that value, so the returned length is only a lower bound.
    """
    n = len(points)
    if n < 2:
        return 0.0
    total = 0.0
    for i in range(n):
        a = points[i]
        b = points[(i + 1) % n]
        total += math.hypot(b[0] - a[0], b[1] - a[1])
        if stop_after is not None and total > stop_after:
            break
    return total


def polygon_area_2d(points: Sequence[Vector2]) -> float:
    """Signed area via the shoelace formula (positive when counter‑clockwise)."""
    n = len(points)
    if n < 3:
        return 0.0
    area = 0.0
    for i in range(n):
        u0, v0 = points[i]
        u1, v1 = points[(i + 1) % n]
        area += u0 * v1 - u1 * v0
    return 0.5 * area


def filter_by_perimeter(
    polygons: Sequence[Polygon],
    minimum_perimeter: float = DEFAULT_MINIMUM_PERIMETER,
) -> List[Polygon]:
    """Keep polygons with at least three points and a long enough perimeter.

    A polygon whose perimeter is strictly below ``minimum_perimeter`` is
    removed; one exactly at the minimum is kept.
    """
    if minimum_perimeter < 0.0:
        raise ValueError("minimum_perimeter must be non-negative")
    kept: List[Polygon] = []
    for poly in polygons:
        if len(poly) < 3:
            continue
        if polygon_perimeter(poly, stop_after=minimum_perimeter) < minimum_perimeter:
            continue
        kept.append(poly)
    return kept


def find_closed_polygons(
    segments: Sequence[SliceSegment],
    minimum_perimeter: float = DEFAULT_MINIMUM_PERIMETER,
    snap_grid: float = SNAP_GRID_RESOLUTION,
    max_gap: Optional[float] = None,
) -> List[Polygon]:
    """Turn unordered directed segments into closed polygon loops.

    Args:
        segments: Segments in slice space, as produced by the plane cutter.
        minimum_perimeter: Loops shorter than this are discarded.
        snap_grid: Grid resolution used to decide whether two endpoints
            are the same position.
        max_gap: Largest gap the fragment stitcher may bridge, or ``None``
            for no limit.

    Returns:
        Closed polygons as point lists.  The first point is not repeated
        at the end.
    """
    if snap_grid <= 0.0:
        raise ValueError("snap_grid must be positive for snapping")
    if not segments:
        return []

    closed, open_fragments = walk_chains(segments, snap_grid)
    open_fragments = remove_collapsed_fragments(open_fragments, snap_grid)
    stitched, unmatched = stitch_open_fragments(open_fragments, snap_grid, max_gap)
    rings = [close_ring(p, snap_grid) for p in closed + stitched]
    result = filter_by_perimeter(rings, minimum_perimeter)

    if os.getenv("SLICE_DEBUG"):
        logger.debug(
            "find_closed_polygons: segments=%d chain_closed=%d open=%d stitched=%d "
            "dropped_open=%d filtered=%d returned=%d",
            len(segments),
            len(closed),
            len(open_fragments),
            len(stitched),
            len(unmatched),
            len(rings) - len(result),
            len(result),
        )
    return result
