"""
Tests for the in‑memory slice result cache in slice_cache.py.
"""

from __future__ import annotations

import sys
from pathlib import Path
import pytest

# Make the backend package importable when running tests directly via pytest
sys.path.append(str(Path(__file__).resolve().parents[1]))

from meshslice.services.config import SliceSettings
from meshslice.services.geometry import Mesh, Plane
from meshslice.services.slice_cache import (
    SliceCacheKey,
    cache_size,
    clear_slice_cache,
    get_slice_from_cache,
    mesh_digest,
    put_slice_in_cache,
)
from meshslice.services.slicing import CutStatistics, SliceResult


TRIANGLE = Mesh([(0.0, 0.0, -1.0), (1.0, 0.0, 1.0), (0.0, 1.0, 1.0)], [(0, 1, 2)])


@pytest.fixture(autouse=True)
def empty_cache():
    clear_slice_cache()
    yield
    clear_slice_cache()


def make_result(n: int) -> SliceResult:
    return SliceResult(polygons=[], stats=CutStatistics(inspected=n), segment_count=n)


def key_at(distance: float, settings: SliceSettings = SliceSettings()) -> SliceCacheKey:
    return SliceCacheKey.build(TRIANGLE, Plane((0.0, 0.0, 1.0), distance), settings)


def test_put_then_get_returns_same_result() -> None:
    result = make_result(1)
    put_slice_in_cache(key_at(0.0), result)
    assert get_slice_from_cache(key_at(0.0)) is result
    assert get_slice_from_cache(key_at(0.5)) is None


def test_key_depends_on_mesh_plane_and_options() -> None:
    assert key_at(0.0) == key_at(0.0)
    assert key_at(0.0) != key_at(0.1)
    assert key_at(0.0) != key_at(0.0, SliceSettings(minimum_perimeter=1.0))
    moved = Mesh([(0.0, 0.0, -2.0)] + TRIANGLE.vertices[1:], list(TRIANGLE.faces))
    assert mesh_digest(moved) != mesh_digest(TRIANGLE)
    rewound = Mesh(list(TRIANGLE.vertices), [(0, 2, 1)])
    assert mesh_digest(rewound) != mesh_digest(TRIANGLE)


def test_least_recently_used_entry_is_evicted() -> None:
    first, second, third = key_at(0.0), key_at(0.1), key_at(0.2)
    put_slice_in_cache(first, make_result(1), capacity=2)
    put_slice_in_cache(second, make_result(2), capacity=2)
    # touch the first entry so the second becomes the oldest
    assert get_slice_from_cache(first) is not None
    put_slice_in_cache(third, make_result(3), capacity=2)
    assert cache_size() == 2
    assert get_slice_from_cache(second) is None
    assert get_slice_from_cache(first) is not None
    assert get_slice_from_cache(third) is not None


def test_clear_empties_cache() -> None:
    put_slice_in_cache(key_at(0.0), make_result(1))
    assert cache_size() == 1
    clear_slice_cache()
    assert cache_size() == 0


def test_digest_rejects_index_outside_64_bits() -> None:
    mesh = Mesh(list(TRIANGLE.vertices), [(0, 1, 2**70)])
    with pytest.raises(ValueError):
        mesh_digest(mesh)
