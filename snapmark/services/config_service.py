"""
Configuration service for SnapMark.

This module handles loading, saving, and managing application settings.
Configuration is stored as JSON in ~/.config/snapmark/config.json following
the XDG Base Directory Specification.
"""

import copy
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from snapmark.services.logging_service import get_logger

# Default configuration directory following XDG Base Directory Specification
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "snapmark"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.json"

# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    # Drawing defaults for new annotations
    "default_color": "#ef4444",
    "default_stroke_width": 4,
    "palette": [
        "#ef4444",  # red
        "#f97316",  # orange
        "#eab308",  # yellow
        "#22c55e",  # green
        "#3b82f6",  # blue
        "#8b5cf6",  # purple
        "#000000",  # black
        "#ffffff",  # white
    ],
    "stroke_widths": [2, 4, 6, 8],
    "font_size": 24,
    # Pixelation block edge, in canvas units
    "pixelate_block_size": 10,
    # Gestures smaller than these (canvas units, either axis) are discarded
    "min_shape_size": 3,
    "min_crop_size": 10,
    # Number of undo snapshots kept; 0 keeps everything
    "history_limit": 100,
    # Export resolution relative to the working raster's native pixels
    "export_multiplier": 1.0,
    # Fit-to-viewport never enlarges past this display scale
    "max_display_scale": 1.0,
    "viewport": {
        "width": 1000,
        "height": 800,
    },
    # Raise on engine invariant violations instead of logging them
    "strict_invariants": False,
    "default_export_folder": str(Path.home() / "Pictures" / "SnapMark"),
}


class ConfigService:
    """
    Service for managing application configuration.

    Handles loading, saving, and accessing configuration values.
    Provides sensible defaults when config file is missing or corrupted.
    """

    def __init__(self, config_path: Optional[Path] = None) -> None:
        """
        Initialize the ConfigService.

        Args:
            config_path: Optional path to config file. Defaults to
                        ~/.config/snapmark/config.json
        """
        self._logger = get_logger(__name__)
        self._config_path = config_path or DEFAULT_CONFIG_FILE
        self._config: Dict[str, Any] = {}

        self._load()

    @property
    def config_path(self) -> Path:
        return self._config_path

    def _load(self) -> None:
        """Load configuration from file, using defaults if needed."""
        self._config = copy.deepcopy(DEFAULT_CONFIG)

        if not self._config_path.exists():
            self._logger.info(
                f"Config file not found at {self._config_path}. Using defaults."
            )
            self._save_to_file()
            return

        try:
            with open(self._config_path, "r", encoding="utf-8") as f:
                loaded_config = json.load(f)

            # Merge loaded config with defaults (loaded values override defaults)
            if isinstance(loaded_config, dict):
                self._deep_merge(self._config, loaded_config)
                self._logger.info(f"Configuration loaded from {self._config_path}")
                # Save back to ensure any new default keys are persisted
                self._save_to_file()
            else:
                raise ValueError("Config file does not contain a valid JSON object")

        except (json.JSONDecodeError, ValueError) as e:
            self._logger.warning(
                f"Config file corrupted or invalid: {e}. Recreating with defaults."
            )
            self._config = copy.deepcopy(DEFAULT_CONFIG)
            self._save_to_file()

        except OSError as e:
            self._logger.warning(
                f"Could not read config file: {e}. Using defaults."
            )

    def _deep_merge(self, base: Dict, override: Dict) -> None:
        """Recursively merge override dict into base dict."""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def _save_to_file(self) -> None:
        """Save current configuration to file."""
        try:
            self._config_path.parent.mkdir(parents=True, exist_ok=True)

            with open(self._config_path, "w", encoding="utf-8") as f:
                json.dump(self._config, f, indent=2)

            self._logger.debug(f"Configuration saved to {self._config_path}")

        except OSError as e:
            self._logger.error(f"Could not save config file: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.

        Args:
            key: The configuration key to retrieve.
            default: Default value if key doesn't exist.

        Returns:
            The configuration value, or default if not found.
        """
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value (in memory only).

        Call save() to persist changes to disk.
        """
        self._config[key] = value
        self._logger.debug(f"Config key '{key}' set to '{value}'")

    def save(self) -> None:
        """Persist current configuration to disk."""
        self._save_to_file()

    # ─── Drawing Settings ─────────────────────────────────────────────────

    @property
    def default_color(self) -> str:
        return self.get("default_color", DEFAULT_CONFIG["default_color"])

    @property
    def default_stroke_width(self) -> float:
        return float(self.get("default_stroke_width", DEFAULT_CONFIG["default_stroke_width"]))

    @property
    def palette(self) -> List[str]:
        return list(self.get("palette", DEFAULT_CONFIG["palette"]))

    @property
    def stroke_widths(self) -> List[float]:
        return [float(w) for w in self.get("stroke_widths", DEFAULT_CONFIG["stroke_widths"])]

    @property
    def font_size(self) -> float:
        return float(self.get("font_size", DEFAULT_CONFIG["font_size"]))

    # ─── Engine Settings ──────────────────────────────────────────────────

    @property
    def pixelate_block_size(self) -> float:
        return float(self.get("pixelate_block_size", DEFAULT_CONFIG["pixelate_block_size"]))

    @property
    def min_shape_size(self) -> float:
        return float(self.get("min_shape_size", DEFAULT_CONFIG["min_shape_size"]))

    @property
    def min_crop_size(self) -> float:
        return float(self.get("min_crop_size", DEFAULT_CONFIG["min_crop_size"]))

    @property
    def history_limit(self) -> int:
        return int(self.get("history_limit", DEFAULT_CONFIG["history_limit"]))

    @property
    def export_multiplier(self) -> float:
        return float(self.get("export_multiplier", DEFAULT_CONFIG["export_multiplier"]))

    @property
    def max_display_scale(self) -> float:
        return float(self.get("max_display_scale", DEFAULT_CONFIG["max_display_scale"]))

    @property
    def viewport(self) -> Dict[str, int]:
        """Get the initial viewport size used to lay out the raster."""
        return self.get("viewport", DEFAULT_CONFIG["viewport"])

    @property
    def strict_invariants(self) -> bool:
        return bool(self.get("strict_invariants", False))

    # ─── Export Settings ──────────────────────────────────────────────────

    @property
    def default_export_folder(self) -> str:
        return self.get(
            "default_export_folder", str(Path.home() / "Pictures" / "SnapMark")
        )
