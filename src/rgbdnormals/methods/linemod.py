"""
LINEMOD normals.

Hinterstoisser et al., "Gradient Response Maps for Real-Time Detection of Texture-Less
Objects", TPAMI 2012. A depth gradient is fitted on a sparse lattice around each pixel,
ignoring samples across depth discontinuities, and turned into a normal through K^-1.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from rgbdnormals.config import NormalsConfig
from rgbdnormals.core.geometry import inverse_intrinsics, orient_normals

RADIUS = 5
SAMPLE_STEP = RADIUS
DEPTH_THRESHOLD = 50


def _lattice() -> list[tuple[int, int]]:
    steps = range(-RADIUS, RADIUS + 1, SAMPLE_STEP)
    return [(i, j) for j in steps for i in steps]


def _multiply_by_K_inv(K_inv: np.ndarray, a: np.ndarray, b: np.ndarray, c: np.ndarray) -> np.ndarray:
    # K_inv is upper triangular with K_inv[2,2] == 1.
    return np.stack(
        [
            K_inv[0, 0] * a + K_inv[0, 1] * b + K_inv[0, 2] * c,
            K_inv[1, 1] * b + K_inv[1, 2] * c,
            c,
        ],
        axis=-1,
    )


@dataclass(frozen=True)
class LinemodEngine:
    config: NormalsConfig

    @classmethod
    def build(cls, config: NormalsConfig) -> "LinemodEngine":
        return cls(config=config)

    def compute(self, depth: np.ndarray) -> np.ndarray:
        """
        Normals from a (H,W) depth grid (integer or float).

        The first and last RADIUS rows and columns are left as NaN.
        """
        depth = np.asarray(depth)
        dtype = self.config.dtype
        rows, cols = depth.shape
        normals = np.full((rows, cols, 3), np.nan, dtype=dtype)
        if rows <= 2 * RADIUS or cols <= 2 * RADIUS:
            return normals

        # Integer depth is accumulated exactly; float depth keeps its own precision.
        acc = np.int64 if depth.dtype.kind in "iu" else depth.dtype
        depth = depth.astype(acc, copy=False)
        inner = (slice(RADIUS, rows - RADIUS), slice(RADIUS, cols - RADIUS))
        d = depth[inner]

        A00 = np.zeros(d.shape, dtype=np.int64)
        A01 = np.zeros(d.shape, dtype=np.int64)
        A11 = np.zeros(d.shape, dtype=np.int64)
        b0 = np.zeros(d.shape, dtype=acc)
        b1 = np.zeros(d.shape, dtype=acc)
        with np.errstate(invalid="ignore"):
            for i, j in _lattice():
                sample = depth[RADIUS + j : rows - RADIUS + j, RADIUS + i : cols - RADIUS + i]
                delta = sample - d
                keep = np.abs(delta) <= DEPTH_THRESHOLD
                A00 += keep * (i * i)
                A01 += keep * (i * j)
                A11 += keep * (j * j)
                b0 += np.where(keep, i * delta, 0).astype(acc, copy=False)
                b1 += np.where(keep, j * delta, 0).astype(acc, copy=False)

        # Cramer's rule without dividing by det: both tangents get scaled by det instead,
        # which the final normalization removes.
        det = A00 * A11 - A01 * A01
        dx = A11 * b0 - A01 * b1
        dy = -A01 * b0 + A00 * b1

        y, x = np.meshgrid(
            np.arange(RADIUS, rows - RADIUS, dtype=dtype), np.arange(RADIUS, cols - RADIUS, dtype=dtype), indexing="ij"
        )
        d_det = (d * det).astype(dtype)
        dx = dx.astype(dtype)
        dy = dy.astype(dtype)

        K_inv = inverse_intrinsics(self.config.camera_matrix)
        # X1 - X and X2 - X for X = K^-1 (x, y, 1) d, X1 at (x+1, y), X2 at (x, y+1).
        X1 = _multiply_by_K_inv(K_inv, d_det + (x + 1) * dx, y * dx, dx)
        X2 = _multiply_by_K_inv(K_inv, x * dy, d_det + (y + 1) * dy, dy)
        n = np.cross(X1, X2)

        normals[inner] = orient_normals(n[..., 0], n[..., 1], n[..., 2])
        return normals
