"""
Editor widget for SnapMark - the annotation editor UI.

This widget composes the editor interface:
- Top toolbar with tool buttons, crop apply/cancel, undo/redo, clear, save
- Style bar with the color palette and stroke widths
- Center canvas hosting the annotation engine
- Bottom status line with the raster dimensions
"""

from datetime import datetime
from pathlib import Path
from typing import Optional

from PySide6.QtCore import QPoint, Qt, Signal, Slot
from PySide6.QtGui import QColor, QIcon, QImage, QPainter, QPainterPath, QPixmap, QPolygon
from PySide6.QtWidgets import (
    QButtonGroup,
    QComboBox,
    QFileDialog,
    QHBoxLayout,
    QLabel,
    QPushButton,
    QSizePolicy,
    QToolBar,
    QToolButton,
    QVBoxLayout,
    QWidget,
)

from snapmark.editor.editor_canvas import EditorCanvas
from snapmark.engine.errors import EngineError
from snapmark.engine.settings import EngineSettings
from snapmark.engine.tools import InteractionState, ToolType
from snapmark.services.config_service import ConfigService
from snapmark.services.logging_service import get_logger

TOOL_BUTTONS = [
    (ToolType.SELECT, "Select", "V"),
    (ToolType.ARROW, "Arrow", "A"),
    (ToolType.RECTANGLE, "Rectangle", "R"),
    (ToolType.ELLIPSE, "Ellipse", "E"),
    (ToolType.TEXT, "Text", "T"),
    (ToolType.FREEHAND, "Freehand", "P"),
    (ToolType.PIXELATE, "Pixelate", "X"),
    (ToolType.CROP, "Crop", "C"),
]


def _create_tool_icon(shape: str, color: QColor = QColor(220, 220, 220)) -> QIcon:
    """Draw a toolbar icon."""
    size = 24
    pixmap = QPixmap(size, size)
    pixmap.fill(Qt.GlobalColor.transparent)

    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.RenderHint.Antialiasing)
    painter.setPen(color)
    margin = 4

    if shape == "select":
        painter.setBrush(color)
        painter.drawPolygon(QPolygon([
            QPoint(6, 4), QPoint(6, 18), QPoint(10, 14), QPoint(14, 20),
            QPoint(16, 18), QPoint(12, 12), QPoint(18, 12),
        ]))

    elif shape == "arrow":
        painter.drawLine(6, 18, 18, 6)
        painter.setBrush(color)
        painter.drawPolygon(QPolygon([QPoint(18, 6), QPoint(13, 6), QPoint(18, 11)]))

    elif shape == "rectangle":
        painter.setBrush(Qt.BrushStyle.NoBrush)
        painter.drawRect(margin, margin, size - margin * 2, size - margin * 2)

    elif shape == "ellipse":
        painter.setBrush(Qt.BrushStyle.NoBrush)
        painter.drawEllipse(margin, margin, size - margin * 2, size - margin * 2)

    elif shape == "text":
        font = painter.font()
        font.setPixelSize(16)
        font.setBold(True)
        painter.setFont(font)
        painter.drawText(pixmap.rect(), Qt.AlignmentFlag.AlignCenter, "T")

    elif shape == "freehand":
        path = QPainterPath()
        path.moveTo(4, 12)
        path.cubicTo(8, 4, 12, 20, 16, 10)
        path.lineTo(20, 8)
        painter.setBrush(Qt.BrushStyle.NoBrush)
        painter.drawPath(path)

    elif shape == "pixelate":
        for i in range(3):
            for j in range(3):
                if (i + j) % 2 == 0:
                    painter.fillRect(4 + i * 6, 4 + j * 6, 5, 5, color)

    elif shape == "crop":
        painter.drawLine(4, 4, 10, 4)
        painter.drawLine(4, 4, 4, 10)
        painter.drawLine(14, 4, 20, 4)
        painter.drawLine(20, 4, 20, 10)
        painter.drawLine(4, 14, 4, 20)
        painter.drawLine(4, 20, 10, 20)
        painter.drawLine(14, 20, 20, 20)
        painter.drawLine(20, 14, 20, 20)

    elif shape in ("undo", "redo"):
        path = QPainterPath()
        if shape == "undo":
            path.moveTo(18, 18)
            path.cubicTo(18, 8, 12, 8, 6, 10)
            tip = [QPoint(6, 10), QPoint(10, 6), QPoint(10, 14)]
        else:
            path.moveTo(6, 18)
            path.cubicTo(6, 8, 12, 8, 18, 10)
            tip = [QPoint(18, 10), QPoint(14, 6), QPoint(14, 14)]
        painter.setBrush(Qt.BrushStyle.NoBrush)
        painter.drawPath(path)
        painter.setBrush(color)
        painter.drawPolygon(QPolygon(tip))

    elif shape == "save":
        painter.setBrush(Qt.BrushStyle.NoBrush)
        painter.drawRect(4, 4, 16, 16)
        painter.drawRect(7, 4, 10, 6)
        painter.drawRect(7, 12, 10, 6)

    painter.end()
    return QIcon(pixmap)


class ColorSwatch(QPushButton):
    """Checkable palette button showing one color."""

    def __init__(self, color: QColor, parent=None):
        super().__init__(parent)
        self.color = QColor(color)
        self.setCheckable(True)
        self.setFixedSize(22, 22)
        self.setToolTip(self.color.name())
        self.setStyleSheet(f"""
            QPushButton {{
                background-color: {self.color.name()};
                border: 2px solid #555;
                border-radius: 11px;
            }}
            QPushButton:checked {{
                border-color: #fff;
            }}
        """)


class EditorWidget(QWidget):
    """
    Main editor widget composing toolbar, style bar, canvas and status line.
    """

    saved = Signal(str)

    def __init__(self, config_service: Optional[ConfigService] = None, parent=None):
        super().__init__(parent)
        self._logger = get_logger(__name__)
        self._config = config_service or ConfigService()
        self._settings = EngineSettings.from_config(self._config)

        self._setup_ui()
        self._connect_signals()

    def _setup_ui(self) -> None:
        """Build the UI layout."""
        main_layout = QVBoxLayout(self)
        main_layout.setContentsMargins(0, 0, 0, 0)
        main_layout.setSpacing(0)

        # ─── Top Toolbar ──────────────────────────────────────────────
        self._toolbar = QToolBar()
        self._toolbar.setMovable(False)
        self._toolbar.setStyleSheet("""
            QToolBar {
                background-color: #2a2a2a;
                border-bottom: 1px solid #3a3a3a;
                padding: 6px 8px;
                spacing: 4px;
            }
            QToolButton {
                background-color: transparent;
                border: none;
                border-radius: 8px;
                padding: 6px 8px;
                min-width: 32px;
                min-height: 32px;
            }
            QToolButton:hover {
                background-color: rgba(255, 255, 255, 0.1);
            }
            QToolButton:checked {
                background-color: rgba(74, 144, 226, 0.3);
            }
        """)

        self._tool_group = QButtonGroup(self)
        self._tool_group.setExclusive(True)
        for tool_type, tooltip, shortcut in TOOL_BUTTONS:
            btn = QToolButton()
            btn.setIcon(_create_tool_icon(tool_type.value))
            btn.setToolTip(f"{tooltip} ({shortcut})")
            btn.setCheckable(True)
            btn.setProperty("tool_type", tool_type.value)
            btn.clicked.connect(lambda checked, t=tool_type: self._select_tool(t))
            self._tool_group.addButton(btn)
            self._toolbar.addWidget(btn)
            if tool_type == ToolType.SELECT:
                btn.setChecked(True)

        self._toolbar.addSeparator()

        # Shown while a crop region is pending
        self._apply_crop_btn = QToolButton()
        self._apply_crop_btn.setText("Apply Crop")
        self._apply_crop_btn.setToolTip("Apply crop (Enter)")
        self._apply_crop_btn.clicked.connect(self._apply_crop)
        self._apply_crop_action = self._toolbar.addWidget(self._apply_crop_btn)

        self._cancel_crop_btn = QToolButton()
        self._cancel_crop_btn.setText("Cancel")
        self._cancel_crop_btn.setToolTip("Cancel crop (Esc)")
        self._cancel_crop_btn.clicked.connect(self._cancel_crop)
        self._cancel_crop_action = self._toolbar.addWidget(self._cancel_crop_btn)
        self._set_crop_buttons_visible(False)

        self._toolbar.addSeparator()

        self._undo_btn = QToolButton()
        self._undo_btn.setIcon(_create_tool_icon("undo"))
        self._undo_btn.setToolTip("Undo (Ctrl+Z)")
        self._undo_btn.setEnabled(False)
        self._undo_btn.clicked.connect(lambda: self.engine.undo())
        self._toolbar.addWidget(self._undo_btn)

        self._redo_btn = QToolButton()
        self._redo_btn.setIcon(_create_tool_icon("redo"))
        self._redo_btn.setToolTip("Redo (Ctrl+Shift+Z)")
        self._redo_btn.setEnabled(False)
        self._redo_btn.clicked.connect(lambda: self.engine.redo())
        self._toolbar.addWidget(self._redo_btn)

        delete_btn = QToolButton()
        delete_btn.setText("Delete")
        delete_btn.setToolTip("Delete selection (Del)")
        delete_btn.clicked.connect(lambda: self.engine.delete_selected())
        self._toolbar.addWidget(delete_btn)

        clear_btn = QToolButton()
        clear_btn.setText("Clear")
        clear_btn.setToolTip("Remove all annotations")
        clear_btn.clicked.connect(lambda: self.engine.clear())
        self._toolbar.addWidget(clear_btn)

        spacer = QWidget()
        spacer.setSizePolicy(QSizePolicy.Policy.Expanding, QSizePolicy.Policy.Preferred)
        self._toolbar.addWidget(spacer)

        save_btn = QToolButton()
        save_btn.setIcon(_create_tool_icon("save"))
        save_btn.setToolTip("Save as PNG (Ctrl+S)")
        save_btn.clicked.connect(self.save_as)
        self._toolbar.addWidget(save_btn)

        main_layout.addWidget(self._toolbar)

        # ─── Style Bar ────────────────────────────────────────────────
        style_bar = QHBoxLayout()
        style_bar.setContentsMargins(8, 4, 8, 4)
        style_bar.setSpacing(6)

        self._color_group = QButtonGroup(self)
        self._color_group.setExclusive(True)
        default_color = QColor(self._settings.default_color)
        for name in self._config.palette:
            swatch = ColorSwatch(QColor(name))
            swatch.clicked.connect(lambda checked, c=swatch.color: self._on_color_selected(c))
            self._color_group.addButton(swatch)
            style_bar.addWidget(swatch)
            if swatch.color == default_color:
                swatch.setChecked(True)

        style_bar.addSpacing(12)
        style_bar.addWidget(QLabel("Width"))
        self._width_combo = QComboBox()
        for width in self._config.stroke_widths:
            self._width_combo.addItem(f"{width}px", float(width))
        index = self._width_combo.findData(float(self._settings.default_stroke_width))
        if index >= 0:
            self._width_combo.setCurrentIndex(index)
        self._width_combo.currentIndexChanged.connect(self._on_width_selected)
        style_bar.addWidget(self._width_combo)
        style_bar.addStretch(1)

        main_layout.addLayout(style_bar)

        # ─── Canvas ───────────────────────────────────────────────────
        self._canvas = EditorCanvas(self._settings)
        main_layout.addWidget(self._canvas, 1)

        # ─── Status Line ──────────────────────────────────────────────
        self._status = QLabel("")
        self._status.setStyleSheet("QLabel { color: #aaa; padding: 4px 8px; }")
        main_layout.addWidget(self._status)

    def _connect_signals(self) -> None:
        engine = self.engine
        engine.tool_changed.connect(self._on_tool_changed)
        engine.history_changed.connect(self._on_history_changed)
        engine.crop_region_changed.connect(self._on_crop_region_changed)
        self._canvas.dimensions_changed.connect(self._on_dimensions_changed)

    @property
    def engine(self):
        return self._canvas.engine

    @property
    def canvas(self) -> EditorCanvas:
        return self._canvas

    # ─── Tool Management ──────────────────────────────────────────────────

    def _select_tool(self, tool_type: ToolType) -> None:
        """Select a tool; a pending crop is dropped first."""
        if self.engine.state == InteractionState.CROPPING:
            self.engine.cancel_crop()
        if not self.engine.set_tool(tool_type):
            self._on_tool_changed(self.engine.tool_type)
        self._canvas.setFocus()

    def _apply_crop(self) -> None:
        self.engine.apply_crop()
        self._canvas.setFocus()

    def _cancel_crop(self) -> None:
        self.engine.cancel_crop()
        self._canvas.setFocus()

    def _set_crop_buttons_visible(self, visible: bool) -> None:
        self._apply_crop_action.setVisible(visible)
        self._cancel_crop_action.setVisible(visible)

    # ─── Signal Handlers ──────────────────────────────────────────────────

    @Slot(object)
    def _on_tool_changed(self, tool_type: ToolType) -> None:
        for btn in self._tool_group.buttons():
            if btn.property("tool_type") == tool_type.value:
                btn.setChecked(True)
                break

    @Slot(bool, bool)
    def _on_history_changed(self, can_undo: bool, can_redo: bool) -> None:
        self._undo_btn.setEnabled(can_undo)
        self._redo_btn.setEnabled(can_redo)

    @Slot(object)
    def _on_crop_region_changed(self, region) -> None:
        self._set_crop_buttons_visible(region is not None and not region.isEmpty())

    @Slot(int, int)
    def _on_dimensions_changed(self, width: int, height: int) -> None:
        self._status.setText(f"{width} x {height}")

    def _on_color_selected(self, color: QColor) -> None:
        self.engine.set_style(color=color)

    def _on_width_selected(self, index: int) -> None:
        width = self._width_combo.itemData(index)
        if width is not None:
            self.engine.set_style(stroke_width=width)

    # ─── Image Management ─────────────────────────────────────────────────

    def set_image(self, image: QImage) -> None:
        """Load an image into the editor."""
        self._canvas.set_image(image)
        self._canvas.setFocus()

    def save_to(self, path: Path) -> bool:
        """Flatten the scene and write it as PNG."""
        try:
            data = self.engine.export_png()
        except EngineError as exc:
            self._logger.error(f"Nothing to save: {exc}")
            return False

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        self._logger.info(f"Saved to {path}")
        self.saved.emit(str(path))
        return True

    def save_as(self) -> bool:
        """Ask for a file name and save the flattened image."""
        if self.engine.scene is None:
            return False

        folder = Path(self._config.default_export_folder)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        suggested = folder / f"snapmark_{timestamp}.png"

        filename, _ = QFileDialog.getSaveFileName(
            self, "Save Image", str(suggested), "PNG Images (*.png)"
        )
        if not filename:
            return False
        return self.save_to(Path(filename))

    # ─── Key Events ───────────────────────────────────────────────────────

    def keyPressEvent(self, event) -> None:
        """Handle editor-level shortcuts; the canvas handles the rest."""
        if (
            event.key() == Qt.Key.Key_S
            and event.modifiers() & Qt.KeyboardModifier.ControlModifier
        ):
            self.save_as()
            return
        super().keyPressEvent(event)
