from __future__ import annotations

import cv2
import numpy as np


def _cv_depth(dtype: np.dtype) -> int:
    return cv2.CV_64F if np.dtype(dtype) == np.float64 else cv2.CV_32F


def box_mean(grid: np.ndarray, window_size: int) -> np.ndarray:
    """
    Windowed arithmetic mean over a (H,W) or (H,W,C) grid.

    Windows are truncated at the image border (no padding): each output is the mean of
    the pixels of the window that fall inside the grid. Input must be finite, OpenCV
    uses running sums.
    """
    grid = np.asarray(grid)
    k = int(window_size)
    if k == 1:
        return grid.copy()

    ones = np.ones(grid.shape[:2], dtype=grid.dtype)
    count = cv2.boxFilter(ones, -1, (k, k), anchor=(-1, -1), normalize=False, borderType=cv2.BORDER_CONSTANT)

    def _sum(channel: np.ndarray) -> np.ndarray:
        return cv2.boxFilter(
            np.ascontiguousarray(channel), -1, (k, k), anchor=(-1, -1), normalize=False, borderType=cv2.BORDER_CONSTANT
        )

    if grid.ndim == 2:
        return _sum(grid) / count
    out = np.empty_like(grid)
    for c in range(grid.shape[2]):
        out[..., c] = _sum(grid[..., c]) / count
    return out


def deriv_kernels(dx: int, dy: int, window_size: int, dtype: np.dtype) -> tuple[np.ndarray, np.ndarray]:
    """Normalized separable first-derivative kernels (kx, ky) as flat arrays."""
    kx, ky = cv2.getDerivKernels(int(dx), int(dy), int(window_size), normalize=True, ktype=_cv_depth(dtype))
    return kx.reshape(-1).astype(dtype), ky.reshape(-1).astype(dtype)


def sep_filter(grid: np.ndarray, kx: np.ndarray, ky: np.ndarray) -> np.ndarray:
    """Correlate a (H,W) grid with kx along rows then ky along columns (reflect-101 border)."""
    return cv2.sepFilter2D(
        np.ascontiguousarray(grid), -1, np.asarray(kx), np.asarray(ky), borderType=cv2.BORDER_REFLECT_101
    )


def invert_sym3_cholesky(M: np.ndarray) -> np.ndarray:
    """
    Batched inverse of symmetric positive (semi-)definite 3x3 matrices, shaped (...,3,3).

    M = L L^T is factored in closed form and M^-1 = L^-T L^-1. A pivot below the dtype's
    machine epsilon (relative to the trace) marks the matrix as singular: its inverse is NaN.
    """
    M = np.asarray(M)
    a00, a10, a11 = M[..., 0, 0], M[..., 1, 0], M[..., 1, 1]
    a20, a21, a22 = M[..., 2, 0], M[..., 2, 1], M[..., 2, 2]
    eps = 4 * np.finfo(M.dtype).eps * np.abs(a00 + a11 + a22)

    with np.errstate(divide="ignore", invalid="ignore"):
        ok = a00 >= eps
        l00 = np.sqrt(np.where(ok, a00, np.nan))
        l10 = a10 / l00
        l20 = a20 / l00
        s11 = a11 - l10 * l10
        ok &= s11 >= eps
        l11 = np.sqrt(np.where(ok, s11, np.nan))
        l21 = (a21 - l20 * l10) / l11
        s22 = a22 - l20 * l20 - l21 * l21
        ok &= s22 >= eps
        l22 = np.sqrt(np.where(ok, s22, np.nan))

        # Lower-triangular L^-1.
        i00 = 1.0 / l00
        i11 = 1.0 / l11
        i22 = 1.0 / l22
        i10 = -l10 * i00 * i11
        i21 = -l21 * i11 * i22
        i20 = (l10 * l21 - l11 * l20) * i00 * i11 * i22

    L_inv = np.zeros(M.shape, dtype=M.dtype)
    L_inv[..., 0, 0] = i00
    L_inv[..., 1, 0] = i10
    L_inv[..., 1, 1] = i11
    L_inv[..., 2, 0] = i20
    L_inv[..., 2, 1] = i21
    L_inv[..., 2, 2] = i22
    L_inv[~ok] = np.nan
    return np.swapaxes(L_inv, -1, -2) @ L_inv
