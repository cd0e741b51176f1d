"""
SnapMark - screenshot markup with a non-destructive annotation engine.

This package contains the main application modules:
- engine: Scene model, tool state machine, pixelation, crop and history
- editor: Qt host widgets that drive the engine
- services: Application services (config, logging)
"""

__version__ = "0.1.0"
