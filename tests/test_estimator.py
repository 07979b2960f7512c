from __future__ import annotations

import logging

import numpy as np
import pytest

from rgbdnormals import InputShapeError, RgbdNormals, depth_to_points
from rgbdnormals.sim.synthetic import plane_depth, sphere_depth

K_VGA = np.array([[525.0, 0.0, 319.5], [0.0, 525.0, 239.5], [0.0, 0.0, 1.0]])
K_SMALL = np.array([[140.0, 0.0, 79.5], [0.0, 140.0, 59.5], [0.0, 0.0, 1.0]])

METHOD_PRECISIONS = [(m, p) for m in ("fals", "linemod", "sri") for p in ("float32", "float64")]


def _frontal_points(rows: int = 480, cols: int = 640, K: np.ndarray = K_VGA) -> np.ndarray:
    return depth_to_points(np.full((rows, cols), 1000.0), K)


def _sphere_points(dtype=np.float64) -> np.ndarray:
    depth = sphere_depth(120, 160, K_SMALL, center=[0.0, 0.0, 1000.0], radius=400.0)
    return depth_to_points(depth, K_SMALL, dtype=dtype)


def _tilted_points(rows: int = 120, cols: int = 160, K: np.ndarray = K_SMALL) -> np.ndarray:
    depth = plane_depth(rows, cols, K, normal=[0.2, -0.1, -1.0], distance=-900.0)
    return depth_to_points(depth, K)


@pytest.mark.parametrize("method", ["fals", "sri"])
def test_frontal_plane_points_away_from_camera(method):
    est = RgbdNormals(480, 640, "float64", K_VGA, 5, method)
    normals = est.compute(_frontal_points())
    assert normals.shape == (480, 640, 3)
    assert normals.dtype == np.float64

    interior = normals[20:-20, 20:-20]
    assert np.all(np.isfinite(interior))
    assert np.max(np.abs(interior - np.array([0.0, 0.0, -1.0]))) < 1e-3


def test_frontal_plane_fals_is_valid_everywhere():
    normals = RgbdNormals(480, 640, "float64", K_VGA, 5, "fals").compute(_frontal_points())
    assert np.all(np.isfinite(normals))
    assert np.max(np.abs(normals - np.array([0.0, 0.0, -1.0]))) < 1e-3


def test_frontal_plane_linemod_outside_border_band():
    depth = np.full((480, 640), 1000, dtype=np.uint16)
    normals = RgbdNormals(480, 640, "float32", K_VGA, 5, "linemod").compute(depth)
    assert normals.dtype == np.float32
    inner = normals[5:-5, 5:-5]
    assert np.all(np.isfinite(inner))
    assert np.max(np.abs(inner - np.array([0.0, 0.0, -1.0], dtype=np.float32))) < 1e-3


@pytest.mark.parametrize("method,precision", METHOD_PRECISIONS)
def test_valid_normals_are_unit_and_face_camera(method, precision):
    est = RgbdNormals(120, 160, precision, K_SMALL, 5, method)
    normals = est.compute(_sphere_points())
    assert normals.shape == (120, 160, 3)
    assert normals.dtype == np.dtype(precision)

    valid = np.all(np.isfinite(normals), axis=-1)
    assert valid.sum() > 1000
    n = normals[valid].astype(np.float64)
    assert np.max(np.abs(np.linalg.norm(n, axis=-1) - 1.0)) < 1e-4
    assert np.all(n[:, 2] <= 0.0)
    # Sentinel pixels are NaN in every component.
    assert np.all(np.isnan(normals[~valid]))


@pytest.mark.parametrize("method,precision", METHOD_PRECISIONS)
def test_repeated_compute_is_bit_identical(method, precision):
    est = RgbdNormals(120, 160, precision, K_SMALL, 3, method)
    points = _sphere_points()
    a = est.compute(points)
    b = est.compute(points)
    assert a.tobytes() == b.tobytes()


def _variants():
    K_shifted = K_SMALL.copy()
    K_shifted[0, 2] += 0.5
    base = dict(rows=120, cols=160, precision="float64", K=K_SMALL, window_size=5, method="fals")
    yield "rows", base, {**base, "rows": 100}
    yield "cols", base, {**base, "cols": 150}
    yield "precision", base, {**base, "precision": "float32"}
    yield "K", base, {**base, "K": K_shifted}
    yield "window_size", base, {**base, "window_size": 3}
    yield "method", base, {**base, "method": "sri"}
    yield "method_linemod", base, {**base, "method": "linemod"}


@pytest.mark.parametrize("name,old,new", list(_variants()), ids=[v[0] for v in _variants()])
def test_reconfiguration_matches_fresh_estimator(name, old, new):
    est = RgbdNormals(**old)
    est.compute(_tilted_points(old["rows"], old["cols"]))
    first_engine = est.initialize()

    est.configure(**new)
    points = _tilted_points(new["rows"], new["cols"])
    out = est.compute(points)
    fresh = RgbdNormals(**new).compute(points)

    assert est.initialize() is not first_engine
    assert est.initialize().config == est.config
    assert out.tobytes() == fresh.tobytes()


def test_reconfigure_changes_single_fields():
    est = RgbdNormals(120, 160, "float64", K_SMALL, 5, "fals")
    est.reconfigure(method="SRI", window_size=7)
    assert est.config.method == "sri"
    assert est.config.window_size == 7
    assert est.config.rows == 120
    with pytest.raises(TypeError):
        est.reconfigure(colour="red")


def test_engine_is_reused_while_configuration_is_unchanged():
    est = RgbdNormals(120, 160, "float64", K_SMALL, 5, "sri")
    engine = est.initialize()
    est.compute(_tilted_points())
    assert est.initialize() is engine

    # Same values again: the configuration compares equal, nothing is rebuilt.
    est.configure(120, 160, "double", K_SMALL.tolist(), 5, "SRI")
    assert est.initialize() is engine


def test_rebuild_is_logged(caplog):
    est = RgbdNormals(120, 160, "float64", K_SMALL, 5, "fals")
    with caplog.at_level(logging.DEBUG, logger="rgbdnormals.api.estimator"):
        est.initialize()
        est.reconfigure(window_size=3)
        est.initialize()
    messages = [r.getMessage() for r in caplog.records]
    assert any("Building fals engine" in m for m in messages)
    assert any("window_size" in m and "rebuilding" in m for m in messages)


def test_linemod_accepts_points_and_depth_alike():
    points = _tilted_points()
    est = RgbdNormals(120, 160, "float64", K_SMALL, 5, "linemod")
    from_points = est.compute(points)
    from_depth = est.compute(np.ascontiguousarray(points[..., 2]))
    assert from_points.tobytes() == from_depth.tobytes()


def test_undefined_points_give_sentinel():
    points = _tilted_points()
    points[60, 80] = np.nan
    for method in ("fals", "sri"):
        normals = RgbdNormals(120, 160, "float64", K_SMALL, 3, method).compute(points)
        assert np.all(np.isnan(normals[60, 80]))
        assert np.all(np.isfinite(normals[30, 40]))


def test_window_one_fals_has_singular_covariance():
    normals = RgbdNormals(120, 160, "float64", K_SMALL, 1, "fals").compute(_tilted_points())
    assert np.all(np.isnan(normals))


@pytest.mark.parametrize(
    "method,grid",
    [
        ("fals", np.ones((120, 160))),
        ("fals", np.ones((120, 160, 3), dtype=np.int32)),
        ("sri", np.ones((120, 160), dtype=np.uint16)),
        ("sri", np.ones((120, 160, 4))),
        ("linemod", np.ones((120, 160, 2))),
        ("linemod", np.ones((120, 160), dtype=bool)),
        ("linemod", np.ones((120, 160, 3), dtype=np.uint16)),
        ("fals", np.ones((100, 160, 3))),
        ("linemod", np.ones((120, 161))),
        ("linemod", np.ones(160)),
    ],
)
def test_rejects_mismatched_input(method, grid):
    est = RgbdNormals(120, 160, "float32", K_SMALL, 5, method)
    with pytest.raises(InputShapeError):
        est.compute(grid)
    assert not est.initialized


def test_call_is_compute():
    est = RgbdNormals(120, 160, "float32", K_SMALL, 5, "fals")
    points = _tilted_points().astype(np.float32)
    assert est(points).tobytes() == est.compute(points).tobytes()


def test_initialized_tracks_the_cache():
    est = RgbdNormals(120, 160, "float64", K_SMALL, 5, "fals")
    assert not est.initialized
    est.compute(_tilted_points())
    assert est.initialized
    est.reconfigure(window_size=3)
    assert not est.initialized
    est.initialize()
    assert est.initialized


def test_none_precision_is_rejected():
    from rgbdnormals import ConfigurationError

    with pytest.raises(ConfigurationError):
        RgbdNormals(120, 160, None, K_SMALL, 5, "fals")
