"""
Engine settings.

The engine never reads the config file; hosts build an EngineSettings from
the ConfigService and hand it over.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from snapmark.services.config_service import ConfigService


@dataclass(frozen=True)
class EngineSettings:
    """Immutable engine configuration."""

    viewport_width: float = 1000.0
    viewport_height: float = 800.0
    max_display_scale: float = 1.0
    block_size: float = 10.0
    min_shape_size: float = 3.0
    min_crop_size: float = 10.0
    history_limit: int = 100
    export_multiplier: float = 1.0
    default_color: str = "#ef4444"
    default_stroke_width: float = 4.0
    font_size: float = 24.0
    strict_invariants: bool = False

    @classmethod
    def from_config(cls, config: "ConfigService") -> "EngineSettings":
        viewport = config.viewport
        return cls(
            viewport_width=float(viewport.get("width", cls.viewport_width)),
            viewport_height=float(viewport.get("height", cls.viewport_height)),
            max_display_scale=config.max_display_scale,
            block_size=config.pixelate_block_size,
            min_shape_size=config.min_shape_size,
            min_crop_size=config.min_crop_size,
            history_limit=config.history_limit,
            export_multiplier=config.export_multiplier,
            default_color=config.default_color,
            default_stroke_width=config.default_stroke_width,
            font_size=config.font_size,
            strict_invariants=config.strict_invariants,
        )
