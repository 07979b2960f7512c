"""
SRI normals (Spherical Range Image).

Badino, Huber, Park, Kanade, "Fast and Accurate Computation of Surface Normals from
Range Images", ICRA 2011.

The radius image is resampled on a grid uniform in (theta, phi), differentiated there,
and the normal of the level set |X| = r(theta, phi) is mapped back to image pixels.
"""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np

from rgbdnormals.config import NormalsConfig
from rgbdnormals.core.filters import deriv_kernels, sep_filter
from rgbdnormals.core.geometry import (
    inverse_intrinsics,
    orient_normals,
    pixel_bearings,
    undefined_radius,
    view_vectors,
)
from rgbdnormals.core.remap import RemapTable


def _rotation_grid(theta: np.ndarray, phi: np.ndarray) -> np.ndarray:
    """
    Per-cell matrix R_hat, shaped (H,W,3,3), such that

        n = R_hat @ (1, r_theta / r, r_phi / r)

    is the (unnormalized) surface normal. It is P Rz(theta) Ry(phi) with its second
    column divided by cos(phi), and 2 V subtracted from its first column; the latter
    correction makes the result the gradient of |X| - r(theta, phi).
    """
    ct, st = np.cos(theta), np.sin(theta)
    cp, sp = np.cos(phi), np.sin(phi)
    zero = np.zeros_like(theta)
    one = np.ones_like(theta)

    P = np.array([[0, 1, 0], [0, 0, 1], [1, 0, 0]], dtype=theta.dtype)
    Rz = np.stack([ct, -st, zero, st, ct, zero, zero, zero, one], axis=-1).reshape(theta.shape + (3, 3))
    Ry = np.stack([cp, zero, -sp, zero, one, zero, sp, zero, cp], axis=-1).reshape(theta.shape + (3, 3))
    R = P @ Rz @ Ry

    R[..., :, 1] /= cp[..., None]
    R[..., 0, 0] -= 2 * cp * st
    R[..., 1, 0] -= 2 * sp
    R[..., 2, 0] -= 2 * cp * ct
    return R


@dataclass(frozen=True)
class SriEngine:
    config: NormalsConfig
    min_theta: float
    min_phi: float
    theta_step: float
    phi_step: float
    R_hat: np.ndarray  # (H,W,3,3) on the spherical grid
    kx_dtheta: np.ndarray
    ky_dtheta: np.ndarray
    kx_dphi: np.ndarray
    ky_dphi: np.ndarray
    forward_table: RemapTable  # image -> spherical grid
    inverse_table: RemapTable  # spherical grid -> image

    @classmethod
    def build(cls, config: NormalsConfig) -> "SriEngine":
        rows, cols, dtype = config.rows, config.cols, config.dtype
        # Tables are built in double precision, stored at the configured one.
        K = np.asarray(config.K, dtype=np.float64)
        theta, phi = pixel_bearings(rows, cols, K, np.float64)

        min_theta, max_theta = float(theta[0, 0]), float(theta[0, cols - 1])
        center_col = cols // 2 - 1
        min_phi, max_phi = float(phi[0, center_col]), float(phi[rows - 1, center_col])
        theta_step = (max_theta - min_theta) / (cols - 1)
        phi_step = (max_phi - min_phi) / (rows - 1)

        grid_phi, grid_theta = np.meshgrid(
            min_phi + np.arange(rows, dtype=np.float64) * phi_step,
            min_theta + np.arange(cols, dtype=np.float64) * theta_step,
            indexing="ij",
        )
        R_hat = _rotation_grid(grid_theta, grid_phi).astype(dtype)

        # Forward table: where each spherical cell's ray lands in the image.
        dirs = view_vectors(grid_theta, grid_phi).reshape(-1, 1, 3)
        uv, _jac = cv2.projectPoints(dirs, np.zeros(3), np.zeros(3), K, None)
        uv = uv.reshape(rows, cols, 2)
        if K[0, 1] != 0:
            # projectPoints has no skew term.
            uv[..., 0] += K[0, 1] * (uv[..., 1] - K[1, 2]) / K[1, 1]
        forward_table = RemapTable.from_maps(uv[..., 0], uv[..., 1], (rows, cols), dtype=dtype)

        # Inverse table: spherical grid coordinates of each pixel's ray.
        K_inv = inverse_intrinsics(K)
        vv, uu = np.meshgrid(np.arange(rows, dtype=np.float64), np.arange(cols, dtype=np.float64), indexing="ij")
        x = K_inv[0, 0] * uu + K_inv[0, 1] * vv + K_inv[0, 2]
        y = K_inv[1, 1] * vv + K_inv[1, 2]
        pix_theta = np.arctan(x)
        pix_phi = np.arcsin(y / np.sqrt(x * x + y * y + 1.0))
        inverse_table = RemapTable.from_maps(
            (pix_theta - min_theta) / theta_step, (pix_phi - min_phi) / phi_step, (rows, cols), dtype=dtype
        )

        kx_dtheta, ky_dtheta = deriv_kernels(1, 0, config.window_size, dtype)
        kx_dphi, ky_dphi = deriv_kernels(0, 1, config.window_size, dtype)
        # Derivatives are taken per grid cell, not per radian.
        kx_dtheta = (kx_dtheta / theta_step).astype(dtype)
        ky_dphi = (ky_dphi / phi_step).astype(dtype)

        return cls(
            config=config,
            min_theta=min_theta,
            min_phi=min_phi,
            theta_step=theta_step,
            phi_step=phi_step,
            R_hat=R_hat,
            kx_dtheta=kx_dtheta,
            ky_dtheta=ky_dtheta,
            kx_dphi=kx_dphi,
            ky_dphi=ky_dphi,
            forward_table=forward_table,
            inverse_table=inverse_table,
        )

    def compute(self, r: np.ndarray) -> np.ndarray:
        """Normals from a (H,W) radius grid."""
        r = np.asarray(r, dtype=self.config.dtype)
        r = np.where(undefined_radius(r), np.nan, r).astype(self.config.dtype)

        # Higher order interpolation does not help here.
        r_sph = self.forward_table.apply(r)
        r_theta = sep_filter(r_sph, self.kx_dtheta, self.ky_dtheta)
        r_phi = sep_filter(r_sph, self.kx_dphi, self.ky_dphi)

        R = self.R_hat
        with np.errstate(divide="ignore", invalid="ignore"):
            rt = r_theta / r_sph
            rp = r_phi / r_sph
        # R[1,1] is 0.
        n = orient_normals(
            R[..., 0, 0] + R[..., 0, 1] * rt + R[..., 0, 2] * rp,
            R[..., 1, 0] + R[..., 1, 2] * rp,
            R[..., 2, 0] + R[..., 2, 1] * rt + R[..., 2, 2] * rp,
        )

        # Bilinear blending does not preserve orientation, fix it again.
        normals = self.inverse_table.apply(n)
        return orient_normals(normals[..., 0], normals[..., 1], normals[..., 2])
