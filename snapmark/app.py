"""
SnapMark - screenshot annotation editor.

This is the main entry point for the application.
Run with: python -m snapmark.app IMAGE [--output PATH]
"""

import argparse
import signal
import sys
from pathlib import Path
from typing import List, Optional

from PySide6.QtCore import QTimer
from PySide6.QtWidgets import QApplication

from snapmark import __version__
from snapmark.engine.errors import DecodeError
from snapmark.engine.layout import decode_image
from snapmark.services.config_service import ConfigService
from snapmark.services.logging_service import get_logger, setup_logging
from snapmark.ui.main_window import MainWindow

# Global app reference for signal handlers
_app: Optional[QApplication] = None
_should_quit = False


def cleanup_and_quit(signum, frame):
    """Handle termination signals."""
    global _should_quit
    _should_quit = True


def check_for_quit():
    """Timer callback to check if we should quit."""
    if _should_quit and _app:
        get_logger(__name__).info("Signal received, quitting...")
        _app.quit()


def parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="snapmark",
        description="Annotate a screenshot and export the flattened result.",
    )
    parser.add_argument("image", type=Path, help="Image to annotate (PNG, JPEG, ...)")
    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Write the flattened PNG here on save instead of asking",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for SnapMark.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    global _app

    args = parse_args(sys.argv[1:] if argv is None else argv)

    setup_logging()
    logger = get_logger(__name__)
    logger.info(f"Starting SnapMark {__version__}...")

    try:
        data = args.image.read_bytes()
    except OSError as e:
        logger.error(f"Cannot read {args.image}: {e}")
        return 1

    _app = QApplication.instance() or QApplication(sys.argv[:1])
    _app.setApplicationName("SnapMark")
    _app.setApplicationVersion(__version__)

    try:
        image = decode_image(data)
    except DecodeError as e:
        logger.error(f"Cannot open {args.image}: {e}")
        return 1

    signal.signal(signal.SIGINT, cleanup_and_quit)
    signal.signal(signal.SIGTERM, cleanup_and_quit)

    # Timer to poll for quit signal (Qt event loop blocks Python signals)
    quit_timer = QTimer()
    quit_timer.timeout.connect(check_for_quit)
    quit_timer.start(100)

    window = MainWindow(ConfigService(), args.output)
    if args.output is not None:
        window.editor.saved.connect(lambda path: window.close())
    window.load_image_in_editor(image)

    exit_code = _app.exec()
    logger.info(f"SnapMark exiting with code {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
