"""
Pydantic data models for the slicing API.

These models define the shapes of requests and responses used by the
HTTP facade.  Meshes travel as flat vertex and index buffers, the same
layout :meth:`meshslice.services.geometry.Mesh.from_flat` accepts, and
polygons come back as lists of 2D points in the cutting plane's frame.
"""

from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field


class MeshPayload(BaseModel):
    """Triangle mesh sent inline with a request."""

    vertices: List[float] = Field(..., description="Flat list of vertex positions (x, y, z …)")
    indices: List[int] = Field(..., description="Index buffer; every three entries form a triangle")


class PlanePayload(BaseModel):
    """Cutting plane expressed in the mesh's coordinates."""

    normal: List[float] = Field(
        ..., min_length=3, max_length=3, description="Plane normal; need not be unit length"
    )
    distanceFromOrigin: float = Field(
        default=0.0, description="Signed distance of the plane from the origin along the normal"
    )


class SliceOptions(BaseModel):
    """Optional per‑request overrides of the kernel settings."""

    minimumPerimeter: float | None = Field(
        default=None, ge=0.0, description="Closed loops shorter than this are discarded"
    )
    snapGrid: float | None = Field(
        default=None, gt=0.0, description="Grid resolution used to match segment endpoints"
    )
    maxGap: float | None = Field(
        default=None, ge=0.0, description="Largest gap the fragment stitcher may bridge"
    )
    includeMeshPoints: bool = Field(
        default=False,
        description="When true, each polygon also carries its points mapped back into mesh space",
    )


class SliceRequest(SliceOptions):
    """Request body for slicing a mesh with an arbitrary plane."""

    mesh: MeshPayload
    plane: PlanePayload


class SliceAtZeroRequest(SliceOptions):
    """Request body for slicing a placed mesh with the world plane z = 0."""

    mesh: MeshPayload
    matrix: List[float] = Field(
        ...,
        min_length=16,
        max_length=16,
        description="Row-major 4x4 matrix mapping mesh coordinates to world coordinates",
    )


class Point2D(BaseModel):
    x: float
    y: float


class Point3D(BaseModel):
    x: float
    y: float
    z: float


class SlicePolygon(BaseModel):
    """One closed loop of the cross‑section."""

    index: int
    points: List[Point2D] = Field(..., description="Loop points in the plane's 2D frame")
    area: float = Field(..., description="Signed area; positive for counter-clockwise loops")
    perimeter: float
    meshPoints: List[Point3D] | None = Field(
        default=None, description="The same points in mesh coordinates, when requested"
    )


class SliceResponse(BaseModel):
    """Response returned for a slice request."""

    polygons: List[SlicePolygon]
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Cut statistics and the options the slice was computed with",
    )


class CrossingRequest(BaseModel):
    """Request body for finding faces whose bounds cross a plane."""

    mesh: MeshPayload
    plane: PlanePayload
    strategy: str = Field(default="median", pattern="^(median|sah)$")


class CrossingResponse(BaseModel):
    faceIndices: List[int]
    metadata: Dict[str, Any] = Field(default_factory=dict)
