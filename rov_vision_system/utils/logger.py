"""
Logging setup for the ROV vision system.
Configures loguru sinks with file rotation and provides component-bound loggers.
"""

import sys
import json
import traceback
from pathlib import Path
from typing import Optional, Dict, Any

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} - {extra[component]} - {level} - "
    "{function}:{line} - {message}"
)

logger.configure(extra={'component': 'RovVision'})


def init_logger(log_dir: Optional[str] = "logs",
                log_level: str = "INFO",
                console_output: bool = True,
                max_file_size: str = "10 MB",
                backup_count: int = 5):
    """Initialize the global loguru sinks"""
    logger.remove()

    if console_output:
        logger.add(sys.stderr, level=log_level.upper(), format=CONSOLE_FORMAT, colorize=True)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        # Main application log
        logger.add(
            log_path / "rov_vision.log",
            level=log_level.upper(),
            format=FILE_FORMAT,
            rotation=max_file_size,
            retention=backup_count,
            enqueue=True,
        )

        # Error log (errors and critical only)
        logger.add(
            log_path / "errors.log",
            level="ERROR",
            format=FILE_FORMAT,
            rotation=max_file_size,
            retention=backup_count,
            enqueue=True,
        )

    logger.bind(component='Logger').info("ROV vision logger initialized")
    return logger


def get_component_logger(component: str):
    """Get logger bound to a specific component"""
    return logger.bind(component=component)


def log_error_with_context(error: Exception, context: Optional[Dict[str, Any]] = None,
                           component: str = 'RovVision'):
    """Log error with full context and traceback"""
    component_logger = get_component_logger(component)
    component_logger.error(f"Exception occurred: {type(error).__name__}: {error}")

    if context:
        component_logger.error(f"Context: {json.dumps(context, indent=2, default=str)}")

    component_logger.error(f"Traceback:\n{''.join(traceback.format_exception(type(error), error, error.__traceback__))}")


class RateLimitedLogger:
    """Stops forwarding a repeated warning after a fixed number of emissions"""

    def __init__(self, component: str, limit: int = 100):
        self.logger = get_component_logger(component)
        self.limit = limit
        self.count = 0

    def warning(self, message: str) -> bool:
        """Log the warning if under the cap. Returns True if it was emitted."""
        if self.count >= self.limit:
            return False
        self.count += 1
        self.logger.warning(message)
        return True

    def reset(self):
        self.count = 0
