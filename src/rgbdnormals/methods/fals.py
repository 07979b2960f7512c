"""
FALS normals (Fast Approximate Least Squares).

Badino, Huber, Park, Kanade, "Fast and Accurate Computation of Surface Normals from
Range Images", ICRA 2011.

For a local plane n.X = d and points X_i = r_i v_i, every pixel gives v_i.(n/d) = 1/r_i.
The least-squares solution over a window is

    n/d = (sum v_i v_i^T)^-1 sum v_i / r_i

and the first factor only depends on the camera, so it is cached.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from rgbdnormals.config import NormalsConfig
from rgbdnormals.core.filters import box_mean, invert_sym3_cholesky
from rgbdnormals.core.geometry import orient_normals, pixel_bearings, undefined_radius, view_vectors


@dataclass(frozen=True)
class FalsEngine:
    """
    Cached FALS state for one configuration.

    Single precision is supported but ill-conditioned: on narrow windows the averaged
    V V^T is close to rank one, and float32 normals can be off by a few hundredths even
    on a frontal plane. Use float64 where accuracy matters.
    """

    config: NormalsConfig
    V: np.ndarray  # (H,W,3) unit view vectors
    M_inv: np.ndarray  # (H,W,3,3) inverse of the box-averaged V V^T

    @classmethod
    def build(cls, config: NormalsConfig) -> "FalsEngine":
        dtype = config.dtype
        theta, phi = pixel_bearings(config.rows, config.cols, config.camera_matrix, dtype)
        V = view_vectors(theta, phi).astype(dtype)

        VVt = (V[..., :, None] * V[..., None, :]).reshape(config.rows, config.cols, 9)
        M = box_mean(VVt, config.window_size).reshape(config.rows, config.cols, 3, 3)
        return cls(config=config, V=V, M_inv=invert_sym3_cholesky(M))

    def compute(self, r: np.ndarray) -> np.ndarray:
        """Normals from a (H,W) radius grid."""
        r = np.asarray(r, dtype=self.config.dtype)
        bad = undefined_radius(r)

        with np.errstate(divide="ignore", invalid="ignore"):
            B = np.where(bad[..., None], 0, self.V / r[..., None]).astype(self.config.dtype)
        B = box_mean(B, self.config.window_size)

        n = np.einsum("...ij,...j->...i", self.M_inv, B)
        normals = orient_normals(n[..., 0], n[..., 1], n[..., 2])
        normals[bad] = np.nan
        return normals
