from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np

METHODS = ("fals", "linemod", "sri")
WINDOW_SIZES = (1, 3, 5, 7)
PRECISIONS = ("float32", "float64")


class ConfigurationError(ValueError):
    pass


@dataclass(frozen=True)
class NormalsConfig:
    """
    Immutable estimator configuration.

    K is stored as nested tuples of floats already rounded to `precision`, so the
    generated equality compares every intrinsic entry at the configured precision.
    """

    rows: int
    cols: int
    precision: str
    K: tuple[tuple[float, float, float], ...]
    window_size: int
    method: str

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(self.precision)

    @property
    def shape(self) -> tuple[int, int]:
        return self.rows, self.cols

    @property
    def camera_matrix(self) -> np.ndarray:
        return np.asarray(self.K, dtype=self.dtype)


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigurationError(msg)


def _parse_precision(precision: Any) -> str:
    # np.dtype(None) is float64.
    _require(precision is not None, "precision must be float32 or float64 (got None)")
    try:
        dt = np.dtype(precision)
    except TypeError as exc:
        raise ConfigurationError(f"precision must be float32 or float64 (got {precision!r})") from exc
    _require(dt.name in PRECISIONS, f"precision must be float32 or float64 (got {dt.name})")
    return dt.name


def _parse_K(K: Any, precision: str) -> tuple[tuple[float, float, float], ...]:
    # Arrays and nested lists follow one rule: integer or float entries, cast to double.
    try:
        raw = np.asarray(K)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError("K must be a 3x3 numeric matrix") from exc
    _require(raw.dtype.kind in "iuf", f"K must be a real numeric matrix (got {raw.dtype})")
    arr = raw.astype(np.float64)
    _require(arr.shape == (3, 3), f"K must be 3x3 (got shape {arr.shape})")
    arr = arr.astype(precision)
    _require(bool(np.all(np.isfinite(arr))), "K must be finite")
    _require(arr[1, 0] == 0 and arr[2, 0] == 0 and arr[2, 1] == 0, "K must be upper triangular")
    _require(arr[2, 2] == 1, "K[2,2] must be 1")
    _require(arr[0, 0] != 0 and arr[1, 1] != 0, "K focal lengths must be non-zero")
    return tuple(tuple(float(v) for v in row) for row in arr)


def make_config(
    rows: int,
    cols: int,
    precision: Any,
    K: Any,
    window_size: int = 5,
    method: str = "fals",
) -> NormalsConfig:
    _require(isinstance(rows, (int, np.integer)) and not isinstance(rows, bool), "rows must be an integer")
    _require(isinstance(cols, (int, np.integer)) and not isinstance(cols, bool), "cols must be an integer")
    rows, cols = int(rows), int(cols)
    _require(rows > 0 and cols > 0, "rows and cols must be > 0")

    precision = _parse_precision(precision)

    _require(isinstance(method, str), "method must be a string")
    method = method.lower()
    _require(method in METHODS, f"method must be one of {METHODS} (got {method!r})")
    if method == "sri":
        _require(rows >= 2 and cols >= 2, "SRI needs at least 2 rows and 2 cols")

    _require(
        isinstance(window_size, (int, np.integer))
        and not isinstance(window_size, bool)
        and int(window_size) in WINDOW_SIZES,
        f"window_size must be one of {WINDOW_SIZES} (got {window_size!r})",
    )

    return NormalsConfig(
        rows=rows,
        cols=cols,
        precision=precision,
        K=_parse_K(K, precision),
        window_size=int(window_size),
        method=method,
    )
