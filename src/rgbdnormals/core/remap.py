from __future__ import annotations

from dataclasses import dataclass

import numpy as np

# Coordinates this close outside the source grid are snapped onto its border.
_EDGE_TOL_PX = 1e-3


@dataclass(frozen=True)
class RemapTable:
    """
    Precomputed bilinear resampling table.

    Built once from float coordinate maps (map_x[i, j], map_y[i, j] = source column/row
    sampled by destination pixel (i, j)) and stored as integer base indices plus
    fractional weights, so repeated application is a gather and a blend. Unlike OpenCV's
    fixed-point maps the fractions are kept at full float precision.

    Destination pixels whose coordinates fall outside the source grid get NaN.
    """

    x0: np.ndarray  # (H',W') int32 base column
    y0: np.ndarray  # (H',W') int32 base row
    fx: np.ndarray  # (H',W') fractional column weight
    fy: np.ndarray  # (H',W') fractional row weight
    valid: np.ndarray  # (H',W') bool
    src_shape: tuple[int, int]

    @classmethod
    def from_maps(
        cls, map_x: np.ndarray, map_y: np.ndarray, src_shape: tuple[int, int], dtype: np.dtype = np.float64
    ) -> "RemapTable":
        map_x = np.asarray(map_x, dtype=np.float64)
        map_y = np.asarray(map_y, dtype=np.float64)
        if map_x.shape != map_y.shape:
            raise ValueError("map_x and map_y must have the same shape")
        h, w = int(src_shape[0]), int(src_shape[1])

        valid = (
            np.isfinite(map_x)
            & np.isfinite(map_y)
            & (map_x >= -_EDGE_TOL_PX)
            & (map_x <= w - 1 + _EDGE_TOL_PX)
            & (map_y >= -_EDGE_TOL_PX)
            & (map_y <= h - 1 + _EDGE_TOL_PX)
        )
        x = np.clip(np.where(valid, map_x, 0.0), 0.0, w - 1.0)
        y = np.clip(np.where(valid, map_y, 0.0), 0.0, h - 1.0)

        # The last row/column is reached with base n-2 and weight 1.
        x0 = np.clip(np.floor(x), 0, max(w - 2, 0)).astype(np.int32)
        y0 = np.clip(np.floor(y), 0, max(h - 2, 0)).astype(np.int32)
        return cls(
            x0=x0,
            y0=y0,
            fx=(x - x0).astype(dtype),
            fy=(y - y0).astype(dtype),
            valid=valid,
            src_shape=(h, w),
        )

    @property
    def shape(self) -> tuple[int, int]:
        return self.x0.shape

    def apply(self, src: np.ndarray) -> np.ndarray:
        """Resample a (H,W) or (H,W,C) source grid onto the table's destination grid."""
        src = np.asarray(src)
        if src.shape[:2] != self.src_shape:
            raise ValueError(f"source grid must be {self.src_shape} (got {src.shape[:2]})")
        h, w = self.src_shape
        x1 = np.minimum(self.x0 + 1, w - 1)
        y1 = np.minimum(self.y0 + 1, h - 1)

        fx = self.fx.astype(src.dtype, copy=False)
        fy = self.fy.astype(src.dtype, copy=False)
        if src.ndim == 3:
            fx = fx[..., None]
            fy = fy[..., None]

        Ia = src[self.y0, self.x0]
        Ib = src[self.y0, x1]
        Ic = src[y1, self.x0]
        Id = src[y1, x1]
        top = Ia + fx * (Ib - Ia)
        bottom = Ic + fx * (Id - Ic)
        out = top + fy * (bottom - top)
        out[~self.valid] = np.nan
        return out
