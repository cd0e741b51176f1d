"""
Main window for SnapMark.

Hosts the EditorWidget with a small menu bar. Closing the window after a
save is left to the caller (the CLI quits when an output path was given).
"""

from pathlib import Path
from typing import Optional

from PySide6.QtGui import QAction, QImage, QKeySequence
from PySide6.QtWidgets import QMainWindow, QMessageBox, QWidget

from snapmark import __version__
from snapmark.editor.editor_widget import EditorWidget
from snapmark.services.config_service import ConfigService
from snapmark.services.logging_service import get_logger


class MainWindow(QMainWindow):
    """
    Main application window for SnapMark.

    Features:
    - Annotation editor with toolbar and palette
    - File and Edit menus mirroring the toolbar
    """

    def __init__(
        self,
        config_service: Optional[ConfigService] = None,
        output_path: Optional[Path] = None,
        parent: Optional[QWidget] = None,
    ) -> None:
        """
        Initialize the MainWindow.

        Args:
            config_service: Config service shared with the editor.
            output_path: If set, File > Save writes here without asking.
            parent: Optional parent widget.
        """
        super().__init__(parent)
        self._logger = get_logger(__name__)
        self._config = config_service
        self._output_path = output_path

        self._editor = EditorWidget(self._config, self)
        self.setCentralWidget(self._editor)

        self._setup_window()
        self._setup_menu_bar()
        self._logger.info("MainWindow initialized")

    @property
    def editor(self) -> EditorWidget:
        return self._editor

    def _setup_window(self) -> None:
        self.setWindowTitle("SnapMark")
        self.setMinimumSize(800, 600)
        self.resize(1200, 860)

    def _setup_menu_bar(self) -> None:
        """Create and configure the menu bar."""
        menu_bar = self.menuBar()

        # ─── File Menu ────────────────────────────────────────────────
        file_menu = menu_bar.addMenu("&File")

        save_action = QAction("&Save", self)
        save_action.setShortcut(QKeySequence.StandardKey.Save)
        save_action.triggered.connect(self._on_save)
        file_menu.addAction(save_action)

        file_menu.addSeparator()

        quit_action = QAction("&Quit", self)
        quit_action.setShortcut(QKeySequence.StandardKey.Quit)
        quit_action.triggered.connect(self.close)
        file_menu.addAction(quit_action)

        # ─── Edit Menu ────────────────────────────────────────────────
        edit_menu = menu_bar.addMenu("&Edit")

        undo_action = QAction("&Undo", self)
        undo_action.triggered.connect(lambda: self._editor.engine.undo())
        edit_menu.addAction(undo_action)

        redo_action = QAction("&Redo", self)
        redo_action.triggered.connect(lambda: self._editor.engine.redo())
        edit_menu.addAction(redo_action)

        clear_action = QAction("&Clear Annotations", self)
        clear_action.triggered.connect(lambda: self._editor.engine.clear())
        edit_menu.addAction(clear_action)

        # ─── Help Menu ────────────────────────────────────────────────
        help_menu = menu_bar.addMenu("&Help")

        about_action = QAction("&About", self)
        about_action.triggered.connect(self._show_about_dialog)
        help_menu.addAction(about_action)

    # ─── Public Methods ───────────────────────────────────────────────────

    def load_image_in_editor(self, image: QImage) -> None:
        """Show the window and start annotating ``image``."""
        self.show()
        self._editor.set_image(image)
        self.setWindowTitle(f"SnapMark - {image.width()}x{image.height()}")
        self.raise_()
        self.activateWindow()
        self._logger.info(f"Image loaded in editor: {image.width()}x{image.height()}")

    # ─── Menu Actions ─────────────────────────────────────────────────────

    def _on_save(self) -> None:
        if self._output_path is not None:
            self._editor.save_to(self._output_path)
        else:
            self._editor.save_as()

    def _show_about_dialog(self) -> None:
        about_text = (
            "<h2>SnapMark</h2>"
            "<p>Screenshot annotation with non-destructive crop.</p>"
            f"<p><b>Version:</b> {__version__}</p>"
            "<p><b>Keyboard Shortcuts:</b></p>"
            "<ul>"
            "<li>V Select, A Arrow, R Rectangle, E Ellipse</li>"
            "<li>T Text, P Freehand, X Pixelate, C Crop</li>"
            "<li>Enter apply crop, Esc cancel</li>"
            "<li>Ctrl+Z undo, Ctrl+Shift+Z / Ctrl+Y redo</li>"
            "<li>Ctrl+S save</li>"
            "</ul>"
        )
        QMessageBox.about(self, "About SnapMark", about_text)
