import numpy as np
import pytest

from rgbdnormals.core.filters import box_mean, deriv_kernels, invert_sym3_cholesky, sep_filter


def _box_mean_reference(grid: np.ndarray, k: int) -> np.ndarray:
    h, w = grid.shape[:2]
    half = k // 2
    out = np.empty_like(grid)
    for y in range(h):
        for x in range(w):
            win = grid[max(0, y - half) : y + half + 1, max(0, x - half) : x + half + 1]
            out[y, x] = win.reshape(-1, *grid.shape[2:]).mean(axis=0)
    return out


@pytest.mark.parametrize("k", [1, 3, 5, 7])
def test_box_mean_truncates_windows_at_border(k):
    rng = np.random.default_rng(k)
    grid = rng.normal(size=(9, 11))
    assert np.allclose(box_mean(grid, k), _box_mean_reference(grid, k), atol=1e-12)

    grid9 = rng.normal(size=(6, 8, 9))
    assert np.allclose(box_mean(grid9, k), _box_mean_reference(grid9, k), atol=1e-12)


def test_invert_sym3_cholesky_matches_inverse():
    rng = np.random.default_rng(0)
    A = rng.normal(size=(50, 3, 3))
    M = A @ np.swapaxes(A, -1, -2) + 0.1 * np.eye(3)
    inv = invert_sym3_cholesky(M)
    assert np.allclose(inv, np.linalg.inv(M), rtol=1e-9, atol=1e-9)


def test_invert_sym3_cholesky_singular_gives_nan():
    v = np.array([0.1, 0.2, 0.97])
    M = np.stack([np.outer(v, v), np.eye(3)])
    inv = invert_sym3_cholesky(M)
    assert np.all(np.isnan(inv[0]))
    assert np.allclose(inv[1], np.eye(3))


@pytest.mark.parametrize("k", [1, 3, 5, 7])
@pytest.mark.parametrize("dtype", [np.float32, np.float64])
def test_deriv_kernels_are_unit_scaled(k, dtype):
    vv, uu = np.meshgrid(np.arange(20, dtype=dtype), np.arange(30, dtype=dtype), indexing="ij")
    grid = (2.0 * uu - 3.0 * vv).astype(dtype)

    kx, ky = deriv_kernels(1, 0, k, dtype)
    assert kx.dtype == dtype
    d_u = sep_filter(grid, kx, ky)
    kx, ky = deriv_kernels(0, 1, k, dtype)
    d_v = sep_filter(grid, kx, ky)

    assert np.allclose(d_u[4:-4, 4:-4], 2.0, atol=1e-4)
    assert np.allclose(d_v[4:-4, 4:-4], -3.0, atol=1e-4)
