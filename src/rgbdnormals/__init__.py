from rgbdnormals.api import InputShapeError, RgbdNormals
from rgbdnormals.config import METHODS, WINDOW_SIZES, ConfigurationError, NormalsConfig, make_config
from rgbdnormals.core.geometry import compute_radius, depth_to_points, orient_normals

__all__ = [
    "RgbdNormals",
    "NormalsConfig",
    "make_config",
    "ConfigurationError",
    "InputShapeError",
    "METHODS",
    "WINDOW_SIZES",
    "compute_radius",
    "depth_to_points",
    "orient_normals",
]
