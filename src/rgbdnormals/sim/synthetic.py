from __future__ import annotations

import numpy as np

from rgbdnormals.core.geometry import inverse_intrinsics, orient_normals


def _pixel_rays(rows: int, cols: int, K: np.ndarray) -> np.ndarray:
    """Rays K^-1 (u, v, 1) with unit z, shaped (H,W,3)."""
    K_inv = inverse_intrinsics(np.asarray(K, dtype=np.float64))
    vv, uu = np.meshgrid(np.arange(rows, dtype=np.float64), np.arange(cols, dtype=np.float64), indexing="ij")
    x = K_inv[0, 0] * uu + K_inv[0, 1] * vv + K_inv[0, 2]
    y = K_inv[1, 1] * vv + K_inv[1, 2]
    return np.stack([x, y, np.ones_like(x)], axis=-1)


def plane_depth(
    rows: int, cols: int, K: np.ndarray, normal: np.ndarray, distance: float, dtype: np.dtype = np.float64
) -> np.ndarray:
    """
    Depth of the plane n.X = distance seen by a pinhole camera.

    Pixels whose ray misses the plane (parallel or behind the camera) are NaN.
    """
    n = np.asarray(normal, dtype=np.float64).reshape(3)
    n = n / np.linalg.norm(n)
    denom = _pixel_rays(rows, cols, K) @ n
    with np.errstate(divide="ignore", invalid="ignore"):
        z = float(distance) / denom
    return np.where(np.isfinite(z) & (z > 0), z, np.nan).astype(dtype)


def plane_normals(rows: int, cols: int, normal: np.ndarray, dtype: np.dtype = np.float64) -> np.ndarray:
    """Expected normal map of a plane: the plane normal facing the camera, on every pixel."""
    n = np.asarray(normal, dtype=np.float64).reshape(3)
    out = orient_normals(n[0], n[1], n[2])
    return np.broadcast_to(out, (rows, cols, 3)).astype(dtype)


def sphere_depth(
    rows: int, cols: int, K: np.ndarray, center: np.ndarray, radius: float, dtype: np.dtype = np.float64
) -> np.ndarray:
    """Depth of the visible side of a sphere; NaN where rays miss it."""
    c = np.asarray(center, dtype=np.float64).reshape(3)
    p = _pixel_rays(rows, cols, K)
    pp = np.sum(p * p, axis=-1)
    pc = p @ c
    disc = pc * pc - pp * (c @ c - float(radius) ** 2)
    with np.errstate(invalid="ignore"):
        # Rays have unit z, so the ray parameter is the depth.
        t = (pc - np.sqrt(disc)) / pp
    return np.where((disc >= 0) & (t > 0), t, np.nan).astype(dtype)


def sphere_normals(
    rows: int, cols: int, K: np.ndarray, center: np.ndarray, radius: float, dtype: np.dtype = np.float64
) -> np.ndarray:
    """Analytic normals matching `sphere_depth`, facing the camera."""
    c = np.asarray(center, dtype=np.float64).reshape(3)
    z = sphere_depth(rows, cols, K, center, radius)
    X = _pixel_rays(rows, cols, K) * z[..., None]
    d = X - c
    return orient_normals(d[..., 0], d[..., 1], d[..., 2]).astype(dtype)
