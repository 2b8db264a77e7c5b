"""Centralized logging configuration for pepdock."""
import logging
from pathlib import Path
import sys

FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class LogFilter(logging.Filter):
    """Filter out per-command debug chatter from the tool runner."""
    def filter(self, record):
        if record.name.endswith("toolchain") and record.levelno < logging.INFO:
            return False
        return True


def configure_logging(log_dir: Path = Path("runlogs"), level: int = logging.INFO):
    """Set up logging with file and console handlers."""
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    # Main handler - writes to file
    main_handler = logging.FileHandler(
        filename=log_dir / "pepdock.log",
        mode="a"
    )
    main_handler.setFormatter(logging.Formatter(FORMAT, DATE_FORMAT))
    main_handler.addFilter(LogFilter())

    # Console handler - only warnings+
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(logging.Formatter(FORMAT, DATE_FORMAT))

    logging.basicConfig(
        level=level,
        handlers=[main_handler, console_handler],
        force=True
    )

    # Special cases
    logging.getLogger("matplotlib").setLevel(logging.WARNING)
