"""
Centralized logging configuration for the thread router.

This module provides a function to set up application-wide logging,
including formatting, log levels, and handlers for console and file output.
"""

import logging
import logging.handlers # Required for RotatingFileHandler
import os
import sys # To ensure we can always output to stdout for console
import json

# Attributes every LogRecord carries; anything else on a record arrived through `extra`.
_STANDARD_RECORD_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}

class StructuredLogFormatter(logging.Formatter):
    """
    Custom formatter that renders every record as a single JSON object.

    Features:
    - Includes session_code and thread_id if present in extra fields
    - Copies any other `extra` fields (scores, categories, counts) into the payload
    - Preserves standard log fields (timestamp, level, logger)
    """

    def format(self, record):
        # Create base log structure
        log_data = {
            'timestamp': self.formatTime(record, self.datefmt),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage()
        }

        for key, value in record.__dict__.items():
            if key in _STANDARD_RECORD_ATTRS or key.startswith('_'):
                continue
            log_data[key] = value

        # Add exception info if present
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)

DEFAULT_LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

class ContextLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter whose defaults are overridden by call-site `extra` instead of replacing it."""

    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **(kwargs.get('extra') or {})}
        return msg, kwargs

def get_logger(name: str) -> logging.LoggerAdapter:
    """
    Get a logger carrying the router's correlation fields.

    Args:
        name (str): Logger name (usually __name__)

    Returns:
        logging.LoggerAdapter: Adapter with `session_code` and `thread_id` defaults
    """
    logger = logging.getLogger(name)

    # Null values for our custom fields so every record has them
    return ContextLoggerAdapter(logger, {
        'session_code': 'no_session',
        'thread_id': 'no_thread'
    })

def setup_app_logging(config: dict = None, default_level=logging.INFO) -> None:
    """
    Set up logging for the entire application.

    This function configures the root logger with handlers for console
    and file output. Log levels and file paths can be specified via
    the optional config dictionary.

    Args:
        config (dict, optional): A dictionary containing logging configurations.
                                Expected keys:
                                - 'level': String representation of log level (e.g., "DEBUG", "INFO").
                                - 'file_path': Path to the log file; empty disables file logging.
                                - 'max_bytes': Max size of the log file before rotation.
                                - 'backup_count': Number of backup log files to keep.
                                - 'date_format': Custom log date format string.
        default_level (int, optional): The default logging level if not specified
                                     in the config. Defaults to logging.INFO.
    """
    if config is None:
        config = {}

    # Determine log level
    log_level_str = str(config.get('level', logging.getLevelName(default_level))).upper()
    numeric_log_level = getattr(logging, log_level_str, default_level)
    if not isinstance(numeric_log_level, int):
        print(f"Warning: Invalid log level string '{log_level_str}'. Using default level {logging.getLevelName(default_level)}.", file=sys.stderr)
        numeric_log_level = default_level

    log_date_format = config.get('date_format', DEFAULT_LOG_DATE_FORMAT)
    formatter = StructuredLogFormatter(datefmt=log_date_format)

    # Configuring the root logger lets every module using logging.getLogger(__name__)
    # inherit this configuration.
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_log_level)

    # Remove any existing handlers
    if root_logger.hasHandlers():
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()

    # Console Handler (StreamHandler)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # File Handler (RotatingFileHandler)
    log_file_path = config.get('file_path')
    if log_file_path:
        try:
            log_dir = os.path.dirname(log_file_path)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            max_bytes = int(config.get('max_bytes', 5*1024*1024))  # 5 MB
            backup_count = int(config.get('backup_count', 3))       # Keep 3 backup files

            file_handler = logging.handlers.RotatingFileHandler(
                log_file_path,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding='utf-8'
            )
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
        except Exception as e:
            print(f"Error setting up file logging to {log_file_path}: {e}. File logging will be disabled.", file=sys.stderr)

    get_logger("LoggingConfig").info("Application logging setup complete. Level: %s", log_level_str)
