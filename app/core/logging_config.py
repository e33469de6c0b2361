# app/core/logging_config.py
"""
Logging configuration for WhatsaFlow.
Console output plus rotating log files, with a dedicated file for the
flow engine so bot runs can be traced without the webhook noise.
"""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional


LOGS_DIR = Path(__file__).parent.parent.parent / "logs"

ERROR_LOG_FILE = LOGS_DIR / "error.log"
DEBUG_LOG_FILE = LOGS_DIR / "debug.log"
FLOW_ENGINE_LOG_FILE = LOGS_DIR / "flow_engine.log"

FLOW_LOGGER_NAME = "whatsaflow.flows"


class ColoredFormatter(logging.Formatter):
    """Colored console formatter for better readability"""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'RESET': '\033[0m'
    }

    def format(self, record):
        # Work on a copy so file handlers don't receive the escape codes
        record = logging.makeLogRecord(record.__dict__)
        log_color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        record.levelname = f"{log_color}{record.levelname}{self.COLORS['RESET']}"
        return super().format(record)


def _rotating_handler(path: Path, level: int, fmt: str, max_mb: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=5,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt='%Y-%m-%d %H:%M:%S'))
    return handler


def setup_logging(app_name: str = "whatsaflow", level: str = "INFO", logs_dir: Optional[Path] = None):
    """
    Setup logging with console and file handlers.

    Creates three log files:
    - error.log: Only ERROR and CRITICAL messages
    - debug.log: All DEBUG and above messages
    - flow_engine.log: Flow trigger/node/execution activity
    """
    target_dir = Path(logs_dir) if logs_dir else LOGS_DIR
    target_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # ═══════════════════════════════════════════════════════════
    # Console Handler - with colors
    # ═══════════════════════════════════════════════════════════
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    console_handler.setFormatter(ColoredFormatter('%(levelname)s | %(name)s | %(message)s'))
    root_logger.addHandler(console_handler)

    # ═══════════════════════════════════════════════════════════
    # Rotating files
    # ═══════════════════════════════════════════════════════════
    root_logger.addHandler(_rotating_handler(
        target_dir / ERROR_LOG_FILE.name,
        logging.ERROR,
        '%(asctime)s | %(levelname)s | %(name)s | %(filename)s:%(lineno)d | %(message)s',
        max_mb=10,
    ))
    root_logger.addHandler(_rotating_handler(
        target_dir / DEBUG_LOG_FILE.name,
        logging.DEBUG,
        '%(asctime)s | %(levelname)-8s | %(name)-30s | %(filename)s:%(lineno)d | %(message)s',
        max_mb=20,
    ))

    # Only attach to the flow engine logger tree
    flow_logger = logging.getLogger(FLOW_LOGGER_NAME)
    for handler in flow_logger.handlers[:]:
        flow_logger.removeHandler(handler)
    flow_logger.addHandler(_rotating_handler(
        target_dir / FLOW_ENGINE_LOG_FILE.name,
        logging.DEBUG,
        '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        max_mb=20,
    ))
    flow_logger.setLevel(logging.DEBUG)
    flow_logger.propagate = True  # Also send to root handlers

    # Quiet chatty libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"{'='*60}")
    logger.info(f"Logging initialized for {app_name}")
    logger.info(f"Log directory: {target_dir}")
    logger.info(f"{'='*60}")

    return root_logger


def get_flow_logger(area: Optional[str] = None) -> logging.Logger:
    """Get a logger under the flow engine tree (writes to flow_engine.log)"""
    name = f"{FLOW_LOGGER_NAME}.{area}" if area else FLOW_LOGGER_NAME
    return logging.getLogger(name)
