from __future__ import annotations

import numpy as np


def angular_error_deg(normals: np.ndarray, reference: np.ndarray) -> np.ndarray:
    """
    Per-pixel angle between two (H,W,3) normal maps, in degrees.

    NaN where either map has no normal.
    """
    a = np.asarray(normals, dtype=np.float64)
    b = np.asarray(reference, dtype=np.float64)
    if a.shape != b.shape:
        raise ValueError("normals and reference must have the same shape")
    with np.errstate(invalid="ignore", divide="ignore"):
        cos = np.sum(a * b, axis=-1) / (np.linalg.norm(a, axis=-1) * np.linalg.norm(b, axis=-1))
    return np.degrees(np.arccos(np.clip(cos, -1.0, 1.0)))


def summarize_normals(
    normals: np.ndarray, reference: np.ndarray | None = None, mask: np.ndarray | None = None
) -> dict[str, float]:
    """
    Summary statistics of a normal map, optionally against a reference map.

    `mask` restricts the statistics to a subset of pixels (e.g. away from the border).
    """
    normals = np.asarray(normals, dtype=np.float64)
    if mask is None:
        mask = np.ones(normals.shape[:2], dtype=bool)
    mask = np.asarray(mask, dtype=bool)

    valid = np.all(np.isfinite(normals), axis=-1) & mask
    n_pix = int(mask.sum())
    norms = np.linalg.norm(normals[valid], axis=-1)
    z = normals[valid][:, 2] if valid.any() else np.zeros((0,), dtype=np.float64)

    stats = {
        "n_pixels": float(n_pix),
        "valid_fraction": float(valid.sum()) / n_pix if n_pix else float("nan"),
        "unit_norm_max_dev": float(np.max(np.abs(norms - 1.0))) if norms.size else float("nan"),
        "max_z": float(np.max(z)) if z.size else float("nan"),
    }
    if reference is not None:
        err = angular_error_deg(normals, reference)[mask]
        err = err[np.isfinite(err)]
        stats.update(
            {
                "angle_mean_deg": float(np.mean(err)) if err.size else float("nan"),
                "angle_median_deg": float(np.median(err)) if err.size else float("nan"),
                "angle_p95_deg": float(np.quantile(err, 0.95)) if err.size else float("nan"),
                "angle_max_deg": float(np.max(err)) if err.size else float("nan"),
            }
        )
    return stats
