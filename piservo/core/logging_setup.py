"""
Logging Setup for Servo System

Provides centralized logging configuration with a colored console
handler, rotating log files and per-area log files.

Author: Servo System Development
Created: October 2026
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional


class ColoredFormatter(logging.Formatter):
    """Custom formatter that adds colors to log levels for console output"""

    # ANSI color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[1;31m' # Bold Red
    }
    RESET = '\033[0m'

    def format(self, record):
        # Handlers share the record; restore the plain name for the file handlers
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class ServoLogFilter(logging.Filter):
    """Adds the servo system area (motion, core, ...) to every record"""

    def filter(self, record):
        if not hasattr(record, 'servo_module'):
            # piservo.motion.dispatcher -> motion
            name_parts = record.name.split('.')
            if len(name_parts) >= 2 and name_parts[0] == 'piservo':
                record.servo_module = name_parts[1]
            else:
                record.servo_module = 'system'
        return True


class ModuleFilter(logging.Filter):
    """Filter to only allow logs from a specific module"""

    def __init__(self, module_name: str):
        super().__init__()
        self.module_name = module_name

    def filter(self, record):
        return record.name.startswith(self.module_name)


# (logger name, log file) pairs for the per-area logs
MODULE_LOGS = [
    ('piservo.motion', 'motion_control.log'),
    ('piservo.core', 'core.log'),
]


def setup_logging(log_level: str = "INFO",
                  log_dir: Optional[Path] = None,
                  enable_console: bool = True,
                  enable_file: bool = True,
                  max_file_size: int = 10 * 1024 * 1024,  # 10MB
                  backup_count: int = 5) -> logging.Logger:
    """
    Setup centralized logging for the servo system

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files (None for default)
        enable_console: Enable console logging
        enable_file: Enable file logging
        max_file_size: Maximum log file size before rotation
        backup_count: Number of backup log files to keep

    Returns:
        Configured root logger
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    if log_dir is None:
        log_dir = Path.home() / "servo_logs"
    log_dir = Path(log_dir)
    if enable_file:
        log_dir.mkdir(parents=True, exist_ok=True)

    # Clear any existing handlers
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    for module_name, _ in MODULE_LOGS:
        module_logger = logging.getLogger(module_name)
        for handler in module_logger.handlers[:]:
            module_logger.removeHandler(handler)
            handler.close()

    root_logger.setLevel(numeric_level)

    detailed_formatter = logging.Formatter(
        fmt='%(asctime)s | %(levelname)-8s | %(servo_module)-8s | %(name)-28s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_formatter = ColoredFormatter(
        fmt='%(asctime)s | %(levelname)-8s | %(servo_module)-8s | %(message)s',
        datefmt='%H:%M:%S'
    )

    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(console_formatter)
        console_handler.addFilter(ServoLogFilter())
        root_logger.addHandler(console_handler)

    if enable_file:
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_dir / "servo_system.log",
            maxBytes=max_file_size,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(detailed_formatter)
        file_handler.addFilter(ServoLogFilter())
        root_logger.addHandler(file_handler)

        error_handler = logging.handlers.RotatingFileHandler(
            filename=log_dir / "servo_errors.log",
            maxBytes=max_file_size,
            backupCount=backup_count,
            encoding='utf-8'
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(detailed_formatter)
        error_handler.addFilter(ServoLogFilter())
        root_logger.addHandler(error_handler)

        _configure_module_loggers(log_dir, detailed_formatter, numeric_level)

    logger = logging.getLogger(__name__)
    logger.info("=" * 60)
    logger.info("Servo System Logging Initialized")
    logger.info(f"Log Level: {log_level}")
    logger.info(f"Log Directory: {log_dir}")
    logger.info(f"Console Logging: {enable_console}")
    logger.info(f"File Logging: {enable_file}")
    logger.info("=" * 60)

    return root_logger


def _configure_module_loggers(log_dir: Path, formatter: logging.Formatter, level: int):
    """Configure dedicated log files for each area of the package"""
    for module_name, log_filename in MODULE_LOGS:
        logger = logging.getLogger(module_name)

        module_handler = logging.handlers.RotatingFileHandler(
            filename=log_dir / log_filename,
            maxBytes=5 * 1024 * 1024,  # 5MB per module
            backupCount=3,
            encoding='utf-8'
        )
        module_handler.setLevel(level)
        module_handler.setFormatter(formatter)
        module_handler.addFilter(ServoLogFilter())
        module_handler.addFilter(ModuleFilter(module_name))
        logger.addHandler(module_handler)


# Convenience function for quick logger setup during development
def setup_simple_logging(level: str = "INFO") -> logging.Logger:
    """Setup simple console-only logging for development/testing"""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%H:%M:%S'
    )
    return logging.getLogger()
