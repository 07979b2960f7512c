from __future__ import annotations

from typing import Protocol

import numpy as np

from rgbdnormals.config import NormalsConfig
from rgbdnormals.methods.fals import FalsEngine
from rgbdnormals.methods.linemod import LinemodEngine
from rgbdnormals.methods.sri import SriEngine


class NormalsEngine(Protocol):
    config: NormalsConfig

    def compute(self, grid: np.ndarray) -> np.ndarray: ...


_ENGINES = {
    "fals": FalsEngine,
    "linemod": LinemodEngine,
    "sri": SriEngine,
}


def build_engine(config: NormalsConfig) -> NormalsEngine:
    """Build and prime the engine selected by `config.method`."""
    return _ENGINES[config.method].build(config)


__all__ = ["NormalsEngine", "FalsEngine", "LinemodEngine", "SriEngine", "build_engine"]
