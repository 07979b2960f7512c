from __future__ import annotations

import dataclasses
import logging
from typing import Any

import numpy as np

from rgbdnormals.config import NormalsConfig, make_config
from rgbdnormals.core.geometry import compute_radius
from rgbdnormals.methods import NormalsEngine, build_engine

logger = logging.getLogger(__name__)


class InputShapeError(ValueError):
    pass


def _changed_fields(old: NormalsConfig, new: NormalsConfig) -> list[str]:
    return [f.name for f in dataclasses.fields(NormalsConfig) if getattr(old, f.name) != getattr(new, f.name)]


class RgbdNormals:
    """
    Surface normals of a depth or point grid, with the per-camera precomputation cached.

    The engine for the current configuration is built lazily on the first `compute`
    and rebuilt whenever the configuration changes. Not thread-safe: guard a shared
    instance with a lock.

    Inputs:
    - fals / sri: (H,W,3) float points.
    - linemod: (H,W,3) float points (z is used) or (H,W) integer or float depth.

    Output: (H,W,3) normals at the configured precision, facing the camera (z <= 0),
    NaN where no normal could be estimated.
    """

    def __init__(
        self,
        rows: int,
        cols: int,
        precision: Any,
        K: Any,
        window_size: int = 5,
        method: str = "fals",
    ) -> None:
        self._config = make_config(rows, cols, precision, K, window_size, method)
        self._engine: NormalsEngine | None = None

    @property
    def config(self) -> NormalsConfig:
        return self._config

    @property
    def initialized(self) -> bool:
        """True when an engine for the current configuration is cached."""
        return self._engine is not None and self._engine.config == self._config

    def configure(
        self,
        rows: int,
        cols: int,
        precision: Any,
        K: Any,
        window_size: int = 5,
        method: str = "fals",
    ) -> None:
        """Replace the configuration. The cache is checked on the next call."""
        self._config = make_config(rows, cols, precision, K, window_size, method)

    def reconfigure(self, **changes: Any) -> None:
        """Replace some configuration fields, e.g. `reconfigure(method="sri")`."""
        unknown = set(changes) - {f.name for f in dataclasses.fields(NormalsConfig)}
        if unknown:
            raise TypeError(f"unknown configuration fields: {sorted(unknown)}")
        current = dataclasses.asdict(self._config)
        current.update(changes)
        self._config = make_config(**current)

    def initialize(self) -> NormalsEngine:
        """Build the engine now if there is none or it belongs to another configuration."""
        engine = self._engine
        if engine is not None and engine.config == self._config:
            return engine
        if engine is None:
            logger.debug("Building %s engine for %s", self._config.method, self._config)
        else:
            logger.debug(
                "Configuration changed (%s), rebuilding %s engine",
                ", ".join(_changed_fields(engine.config, self._config)),
                self._config.method,
            )
        engine = build_engine(self._config)
        self._engine = engine
        return engine

    def compute(self, grid: np.ndarray) -> np.ndarray:
        grid = np.asarray(grid)
        self._check_input(grid)
        engine = self.initialize()

        cfg = self._config
        if cfg.method == "linemod":
            depth = grid[..., 2] if grid.ndim == 3 else grid
            return engine.compute(depth)

        points = grid.astype(cfg.dtype, copy=False)
        return engine.compute(compute_radius(points))

    __call__ = compute

    def _check_input(self, grid: np.ndarray) -> None:
        cfg = self._config
        is_points = grid.ndim == 3 and grid.shape[2] == 3 and grid.dtype.name in ("float32", "float64")
        if cfg.method == "linemod":
            is_depth = grid.ndim == 2 and (grid.dtype.kind in "iu" or grid.dtype.name in ("float32", "float64"))
            if not (is_points or is_depth):
                raise InputShapeError(
                    "linemod needs (H,W,3) float points or (H,W) integer/float depth "
                    f"(got shape {grid.shape}, dtype {grid.dtype})"
                )
        elif not is_points:
            raise InputShapeError(
                f"{cfg.method} needs (H,W,3) float points (got shape {grid.shape}, dtype {grid.dtype})"
            )
        if grid.shape[:2] != cfg.shape:
            raise InputShapeError(f"grid must be {cfg.rows}x{cfg.cols} (got {grid.shape[0]}x{grid.shape[1]})")
