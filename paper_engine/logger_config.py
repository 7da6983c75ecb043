"""
Centralized logging configuration for the paper trading engine.

- Console output for real-time monitoring
- Rotating engine.log (everything at `level`)
- Rotating errors.log (ERROR and above)
- Separate trades.log audit trail for BUY/SELL fills
"""

import logging
import logging.handlers
import sys
from pathlib import Path

DETAILED_FORMAT = logging.Formatter(
    '%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

SIMPLE_FORMAT = logging.Formatter(
    '%(asctime)s | %(levelname)-8s | %(message)s',
    datefmt='%H:%M:%S'
)


def setup_logging(logs_dir="logs", level=logging.INFO, console_level=logging.INFO):
    """
    Configure logging for the whole process. Safe to call more than once.

    Args:
        logs_dir: Directory for rotating log files (created if missing)
        level: File logging level (default: INFO)
        console_level: Console logging level (default: INFO)
    """
    logs_dir = Path(logs_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # filter at handler level
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(SIMPLE_FORMAT)
    root_logger.addHandler(console_handler)

    main_handler = logging.handlers.RotatingFileHandler(
        logs_dir / "engine.log",
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding='utf-8'
    )
    main_handler.setLevel(level)
    main_handler.setFormatter(DETAILED_FORMAT)
    root_logger.addHandler(main_handler)

    error_handler = logging.handlers.RotatingFileHandler(
        logs_dir / "errors.log",
        maxBytes=5 * 1024 * 1024,  # 5 MB
        backupCount=5,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(DETAILED_FORMAT)
    root_logger.addHandler(error_handler)

    # Trade audit trail, kept out of the root handlers
    trade_logger = logging.getLogger("trades")
    trade_logger.handlers.clear()
    trade_handler = logging.handlers.RotatingFileHandler(
        logs_dir / "trades.log",
        maxBytes=10 * 1024 * 1024,
        backupCount=10,  # keep more trade history
        encoding='utf-8'
    )
    trade_handler.setLevel(logging.INFO)
    trade_handler.setFormatter(DETAILED_FORMAT)
    trade_logger.addHandler(trade_handler)
    trade_logger.setLevel(logging.INFO)
    trade_logger.propagate = False

    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("numba").setLevel(logging.WARNING)

    logging.info("=" * 80)
    logging.info("Logging system initialized")
    logging.info(f"Log directory: {logs_dir.absolute()}")
    logging.info(f"Console level: {logging.getLevelName(console_level)}")
    logging.info(f"File level: {logging.getLevelName(level)}")
    logging.info("=" * 80)
