from __future__ import annotations

import numpy as np


def compute_radius(points: np.ndarray) -> np.ndarray:
    """Distance of each (H,W,3) point to the camera center, same float dtype as the points."""
    points = np.asarray(points)
    return np.sqrt(np.sum(points * points, axis=-1))


def inverse_intrinsics(K: np.ndarray) -> np.ndarray:
    """
    Closed-form inverse of an upper-triangular pinhole matrix with K[2,2] == 1.

        [[fx, s, cx],          [[1/fx, -s/(fx fy), (s cy - cx fy)/(fx fy)],
         [0, fy, cy],   ->      [0,    1/fy,       -cy/fy],
         [0,  0,  1]]           [0,    0,          1]]
    """
    K = np.asarray(K)
    fx, s, cx = K[0, 0], K[0, 1], K[0, 2]
    fy, cy = K[1, 1], K[1, 2]
    K_inv = np.eye(3, dtype=K.dtype)
    K_inv[0, 0] = 1.0 / fx
    K_inv[0, 1] = -s / (fx * fy)
    K_inv[0, 2] = (s * cy - cx * fy) / (fx * fy)
    K_inv[1, 1] = 1.0 / fy
    K_inv[1, 2] = -cy / fy
    return K_inv


def depth_to_points(depth: np.ndarray, K: np.ndarray, dtype: np.dtype | None = None) -> np.ndarray:
    """
    Back-project a (H,W) depth grid into (H,W,3) camera-frame points.

    Zero or non-finite depth is treated as missing and yields NaN points.
    Integer depth is returned as float64 unless `dtype` is given.
    """
    depth = np.asarray(depth)
    if depth.ndim != 2:
        raise ValueError("depth must be a 2D grid")
    if dtype is None:
        dtype = depth.dtype if depth.dtype.kind == "f" else np.dtype(np.float64)
    dtype = np.dtype(dtype)

    K_inv = inverse_intrinsics(np.asarray(K, dtype=dtype))
    h, w = depth.shape
    vv, uu = np.meshgrid(np.arange(h, dtype=dtype), np.arange(w, dtype=dtype), indexing="ij")
    x = K_inv[0, 0] * uu + K_inv[0, 1] * vv + K_inv[0, 2]
    y = K_inv[1, 1] * vv + K_inv[1, 2]

    z = depth.astype(dtype)
    z = np.where(np.isfinite(z) & (z != 0), z, np.nan).astype(dtype)
    return np.stack([x * z, y * z, z], axis=-1)


def pixel_bearings(rows: int, cols: int, K: np.ndarray, dtype: np.dtype) -> tuple[np.ndarray, np.ndarray]:
    """
    Spherical bearings (theta, phi) of every pixel ray, shaped (H,W).

    Same axes as the camera frame: z away from the camera, y down, x right.
    theta goes from z to x, phi from the xz-plane to y.
    """
    dtype = np.dtype(dtype)
    K = np.asarray(K, dtype=dtype)
    depth = np.full((rows, cols), K[0, 0], dtype=dtype)
    points = depth_to_points(depth, K, dtype=dtype)
    r = compute_radius(points)
    theta = np.arctan2(points[..., 0], points[..., 2])
    phi = np.arcsin(points[..., 1] / r)
    return theta.astype(dtype), phi.astype(dtype)


def view_vectors(theta: np.ndarray, phi: np.ndarray) -> np.ndarray:
    """Unit view directions V = (sin t cos p, sin p, cos t cos p), shaped (H,W,3)."""
    cos_phi = np.cos(phi)
    return np.stack([np.sin(theta) * cos_phi, np.sin(phi), np.cos(theta) * cos_phi], axis=-1)


def orient_normals(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> np.ndarray:
    """
    Normalize (a,b,c) and flip it so that it faces the camera (z <= 0).

    Zero-length or non-finite vectors come out as NaN in every component.
    """
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        norm = np.sqrt(a * a + b * b + c * c)
        scale = np.where(c > 0, -1.0, 1.0).astype(norm.dtype) / norm
        scale = np.where(np.isfinite(norm) & (norm > 0), scale, np.nan).astype(norm.dtype)
        return np.stack([a * scale, b * scale, c * scale], axis=-1)


def undefined_radius(r: np.ndarray) -> np.ndarray:
    """Pixels whose radius cannot be used: NaN, infinite or zero."""
    return ~np.isfinite(r) | (r == 0)
