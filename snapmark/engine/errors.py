"""
Error taxonomy for the annotation engine.

- DecodeError: the source image cannot be decoded; the session cannot start.
- SceneCorruptError: a serialized scene or history entry cannot be rebuilt.
- DegenerateGeometryError: a shape or crop region is below the minimum size.
  Callers treat it as a cancelled gesture, never as a failure.
- EngineInvariantError: an internal invariant was violated. Only raised when
  the engine runs with strict invariants enabled.
"""


class EngineError(Exception):
    """Base class for annotation engine errors."""


class DecodeError(EngineError):
    """Raised when a raster cannot be decoded from its encoded bytes."""


class SceneCorruptError(EngineError):
    """Raised when a serialized scene entry is unknown or malformed."""


class DegenerateGeometryError(EngineError):
    """Raised when drawn geometry is too small to keep."""

    def __init__(self, width: float, height: float, minimum: float) -> None:
        super().__init__(
            f"Geometry {width:.1f}x{height:.1f} is below the minimum size {minimum:.1f}"
        )
        self.width = width
        self.height = height
        self.minimum = minimum


class EngineInvariantError(EngineError):
    """Raised for internal invariant violations in strict mode."""
