"""
Vision Lab GUI entry point.
Run: python main.py [config.yaml]
"""

from __future__ import annotations

import logging
import sys

from perception.config import load_config
from perception.errors import ConfigError
from perception.logging_config import setup_logging

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    argv = sys.argv[1:] if argv is None else argv
    try:
        config = load_config(argv[0] if argv else None)
    except ConfigError as e:
        setup_logging()
        logger.error("%s", e.message)
        sys.exit(2)
    setup_logging(config.log_level, config.log_path)

    from PySide6.QtWidgets import QApplication
    from ui.main_window import MainWindow

    app = QApplication(sys.argv[:1])
    window = MainWindow(config)
    window.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
