from rgbdnormals.api.estimator import InputShapeError, RgbdNormals

__all__ = ["RgbdNormals", "InputShapeError"]
