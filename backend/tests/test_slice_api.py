"""
Tests for the slicing HTTP endpoints.

These tests use FastAPI's TestClient to post inline meshes to the
application without running a real server.  They check the polygons and
metadata returned for a unit cube and that bad input is reported as a
client error.
"""

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Add the backend directory to sys.path so we can import the app
sys.path.append(str(Path(__file__).resolve().parents[1]))

from meshslice.main import app  # type: ignore
from meshslice.services.slice_cache import clear_slice_cache

from test_slicing_intersection import create_unit_cube_mesh


def cube_payload() -> dict:
    cube = create_unit_cube_mesh()
    return {
        "vertices": [c for v in cube.vertices for c in v],
        "indices": [i for f in cube.faces for i in f],
    }


@pytest.fixture
def client(monkeypatch) -> TestClient:
    for name in ("MESHSLICE_MIN_PERIMETER", "MESHSLICE_SNAP_GRID", "MESHSLICE_MAX_GAP"):
        monkeypatch.delenv(name, raising=False)
    clear_slice_cache()
    return TestClient(app)


def test_health(client: TestClient) -> None:
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_slice_cube(client: TestClient) -> None:
    response = client.post(
        "/api/slice",
        json={
            "mesh": cube_payload(),
            "plane": {"normal": [0, 0, 2], "distanceFromOrigin": 0.5},
            "minimumPerimeter": 1.0,
        },
    )
    assert response.status_code == 200
    data = response.json()
    assert len(data["polygons"]) == 1
    polygon = data["polygons"][0]
    assert polygon["perimeter"] == pytest.approx(4.0)
    assert polygon["area"] == pytest.approx(1.0)
    assert polygon["meshPoints"] is None
    meta = data["metadata"]
    assert meta["segmentCount"] == 8
    assert meta["faces"]["cut"] == 8
    assert meta["totalLoops"] == 1
    assert meta["minimumPerimeter"] == 1.0
    assert meta["plane"]["normal"] == pytest.approx([0.0, 0.0, 1.0])

    # the default minimum perimeter filters the unit cube outline
    default = client.post(
        "/api/slice",
        json={"mesh": cube_payload(), "plane": {"normal": [0, 0, 1], "distanceFromOrigin": 0.5}},
    )
    assert default.status_code == 200
    assert default.json()["polygons"] == []


def test_slice_with_mesh_points(client: TestClient) -> None:
    response = client.post(
        "/api/slice",
        json={
            "mesh": cube_payload(),
            "plane": {"normal": [0, 1, 0], "distanceFromOrigin": 0.25},
            "minimumPerimeter": 1.0,
            "includeMeshPoints": True,
        },
    )
    assert response.status_code == 200
    points = response.json()["polygons"][0]["meshPoints"]
    assert points
    for p in points:
        assert p["y"] == pytest.approx(0.25)


def test_slice_at_z0(client: TestClient) -> None:
    matrix = [
        1.0, 0.0, 0.0, 0.0,
        0.0, 1.0, 0.0, 0.0,
        0.0, 0.0, 1.0, -0.5,
        0.0, 0.0, 0.0, 1.0,
    ]
    response = client.post(
        "/api/slice/at-z0",
        json={"mesh": cube_payload(), "matrix": matrix, "minimumPerimeter": 1.0},
    )
    assert response.status_code == 200
    data = response.json()
    assert len(data["polygons"]) == 1
    assert data["metadata"]["plane"]["distanceFromOrigin"] == pytest.approx(0.5)


@pytest.mark.parametrize(
    "body",
    [
        {"mesh": {"vertices": [0.0, 1.0], "indices": []}, "plane": {"normal": [0, 0, 1]}},
        {"mesh": {"vertices": [], "indices": []}, "plane": {"normal": [0, 0, 0]}},
    ],
)
def test_bad_slice_input_is_a_client_error(client: TestClient, body: dict) -> None:
    response = client.post("/api/slice", json=body)
    assert response.status_code == 400


def test_singular_matrix_is_a_client_error(client: TestClient) -> None:
    response = client.post(
        "/api/slice/at-z0", json={"mesh": cube_payload(), "matrix": [0.0] * 16}
    )
    assert response.status_code == 400


def test_request_validation(client: TestClient) -> None:
    response = client.post(
        "/api/slice",
        json={"mesh": cube_payload(), "plane": {"normal": [0, 1]}},
    )
    assert response.status_code == 422


def test_faces_crossing(client: TestClient) -> None:
    response = client.post(
        "/api/faces/crossing",
        json={
            "mesh": cube_payload(),
            "plane": {"normal": [0, 0, 1], "distanceFromOrigin": 0.5},
            "strategy": "sah",
        },
    )
    assert response.status_code == 200
    data = response.json()
    assert data["faceIndices"] == list(range(4, 12))
    assert data["metadata"]["totalFaces"] == 12
    assert data["metadata"]["strategy"] == "sah"


def test_faces_crossing_on_empty_mesh_is_a_client_error(client: TestClient) -> None:
    response = client.post(
        "/api/faces/crossing",
        json={"mesh": {"vertices": [], "indices": []}, "plane": {"normal": [0, 0, 1]}},
    )
    assert response.status_code == 400


def test_oversized_index_is_a_client_error(client: TestClient) -> None:
    payload = cube_payload()
    payload["indices"][-1] = 2**70
    response = client.post(
        "/api/slice",
        json={"mesh": payload, "plane": {"normal": [0, 0, 1], "distanceFromOrigin": 0.5}},
    )
    assert response.status_code == 400
