"""
API routes for mesh slicing and spatial queries.

The endpoints here are a thin facade over the kernel in
:mod:`meshslice.services`.  They accept inline meshes (flat vertex and
index buffers), run the cutter and stitcher, and return closed polygons
with a little metadata.  Input the kernel rejects (zero normals,
malformed buffers, singular matrices) is reported as ``400``; anything
unexpected is logged and reported as ``500``.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, replace
from typing import List, Optional

from fastapi import APIRouter, HTTPException

from ..services.bvh import mesh_to_bvh
from ..services.config import SliceSettings, load_settings
from ..services.geometry import Mesh, Plane
from ..services.slice_cache import SliceCacheKey, get_slice_from_cache, put_slice_in_cache
from ..services.slicing import SliceResult, slice_mesh
from ..services.stitching import polygon_area_2d, polygon_perimeter
from ..services.transforms import from_rows, invert, lift_to_3d, transform_plane
from .models import (
    CrossingRequest,
    CrossingResponse,
    MeshPayload,
    PlanePayload,
    Point2D,
    Point3D,
    SliceAtZeroRequest,
    SliceOptions,
    SlicePolygon,
    SliceRequest,
    SliceResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_mesh(payload: MeshPayload) -> Mesh:
    return Mesh.from_flat(payload.vertices, payload.indices)


def _to_plane(payload: PlanePayload) -> Plane:
    return Plane(tuple(payload.normal), payload.distanceFromOrigin)  # type: ignore[arg-type]


def _settings_for(options: SliceOptions) -> SliceSettings:
    base = load_settings()
    changes = {}
    if options.minimumPerimeter is not None:
        changes["minimum_perimeter"] = options.minimumPerimeter
    if options.snapGrid is not None:
        changes["snap_grid"] = options.snapGrid
    if options.maxGap is not None:
        changes["max_gap"] = options.maxGap
    return replace(base, **changes)


def _run_slice(mesh: Mesh, plane: Plane, settings: SliceSettings) -> SliceResult:
    key = SliceCacheKey.build(mesh, plane, settings)
    result = get_slice_from_cache(key)
    if result is None:
        result = slice_mesh(mesh, plane, settings=settings)
        put_slice_in_cache(key, result, capacity=settings.cache_entries)
    return result


def _build_response(
    result: SliceResult,
    plane: Plane,
    settings: SliceSettings,
    include_mesh_points: bool,
) -> SliceResponse:
    polygons: List[SlicePolygon] = []
    total_points = 0
    for idx, poly in enumerate(result.polygons):
        total_points += len(poly)
        mesh_points: Optional[List[Point3D]] = None
        if include_mesh_points:
            mesh_points = [
                Point3D(x=p[0], y=p[1], z=p[2]) for p in lift_to_3d(result.from_plane, poly)
            ]
        polygons.append(
            SlicePolygon(
                index=idx,
                points=[Point2D(x=float(p[0]), y=float(p[1])) for p in poly],
                area=polygon_area_2d(poly),
                perimeter=polygon_perimeter(poly),
                meshPoints=mesh_points,
            )
        )
    metadata = {
        "plane": {"normal": list(plane.normal), "distanceFromOrigin": plane.distance_from_origin},
        "segmentCount": result.segment_count,
        "faces": asdict(result.stats),
        "totalLoops": len(polygons),
        "totalPoints": total_points,
        "minimumPerimeter": settings.minimum_perimeter,
        "snapGrid": settings.snap_grid,
        "maxGap": settings.max_gap,
    }
    return SliceResponse(polygons=polygons, metadata=metadata)


@router.post("/slice", response_model=SliceResponse)
async def slice_endpoint(body: SliceRequest) -> SliceResponse:
    """Slice an inline mesh with an arbitrary plane.

    Returns:
        The closed cross‑section polygons in the plane's 2D frame together
        with per‑face statistics.
    """
    try:
        mesh = _to_mesh(body.mesh)
        plane = _to_plane(body.plane)
        settings = _settings_for(body)
        result = _run_slice(mesh, plane, settings)
        return _build_response(result, plane, settings, body.includeMeshPoints)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except Exception as exc:
        logger.exception("slice endpoint error: %s", exc)
        raise HTTPException(status_code=500, detail=f"Failed to slice mesh: {exc}")


@router.post("/slice/at-z0", response_model=SliceResponse)
async def slice_at_z0_endpoint(body: SliceAtZeroRequest) -> SliceResponse:
    """Slice a placed mesh with the world plane ``z = 0``.

    The matrix places the mesh in the world; the plane is carried into mesh
    space so polygons are reported in that plane's frame.
    """
    try:
        mesh = _to_mesh(body.mesh)
        matrix = from_rows(body.matrix)
        plane = transform_plane(invert(matrix), Plane((0.0, 0.0, 1.0), 0.0))
        settings = _settings_for(body)
        result = _run_slice(mesh, plane, settings)
        return _build_response(result, plane, settings, body.includeMeshPoints)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except Exception as exc:
        logger.exception("slice at z0 endpoint error: %s", exc)
        raise HTTPException(status_code=500, detail=f"Failed to slice mesh: {exc}")


@router.post("/faces/crossing", response_model=CrossingResponse)
async def faces_crossing_endpoint(body: CrossingRequest) -> CrossingResponse:
    """Indices of faces whose bounds straddle the plane.

    A bounding volume hierarchy is built over the mesh triangles and queried
    with :meth:`~meshslice.services.bvh.BvhItem.crossing`.
    """
    try:
        mesh = _to_mesh(body.mesh)
        plane = _to_plane(body.plane)
        tree = mesh_to_bvh(mesh, strategy=body.strategy)
        hits = tree.crossing(plane)
        face_indices = sorted(
            {item.face_index for item in hits if getattr(item, "face_index", None) is not None}
        )
        bounds = tree.bounding_box()
        return CrossingResponse(
            faceIndices=face_indices,
            metadata={
                "totalFaces": len(mesh.faces),
                "crossingFaces": len(face_indices),
                "bbox": {"min": list(bounds.min_xyz), "max": list(bounds.max_xyz)},
                "strategy": body.strategy,
            },
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except Exception as exc:
        logger.exception("faces crossing endpoint error: %s", exc)
        raise HTTPException(status_code=500, detail=f"Failed to query faces: {exc}")
