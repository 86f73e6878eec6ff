"""
Logging setup for the TLS secret sync application.
"""
import json
import logging
import logging.handlers
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict

PLAIN_FORMAT = '%(message)s'
TIMESTAMP_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


@dataclass
class LogEntry:
    """Structured log entry for JSON logging."""
    timestamp: str
    level: str
    logger_name: str
    message: str
    module: str
    function: str
    line_number: int
    thread_id: int
    process_id: int
    extra_data: Optional[Dict[str, Any]] = None
    exception_info: Optional[Dict[str, Any]] = None


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = LogEntry(
            timestamp=datetime.fromtimestamp(record.created).isoformat(),
            level=record.levelname,
            logger_name=record.name,
            message=record.getMessage(),
            module=record.module,
            function=record.funcName,
            line_number=record.lineno,
            thread_id=record.thread,
            process_id=record.process,
            extra_data=getattr(record, 'extra_data', None)
        )

        if record.exc_info:
            log_entry.exception_info = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': traceback.format_exception(*record.exc_info)
            }

        return json.dumps(asdict(log_entry), default=str)


class LoggingService:
    """Configures console and optional JSON file logging."""

    def __init__(self, config, stream=None):
        """
        Initialize logging service with configuration.

        Args:
            config: Object with log_level and log_file_path attributes
            stream: Console stream (defaults to stderr; stdout carries PEM output)
        """
        self.config = config
        self.stream = stream or sys.stderr
        self.console_handler: Optional[logging.Handler] = None
        self.file_handler: Optional[logging.Handler] = None
        self._setup_logging()
        self.logger = logging.getLogger(__name__)
        self.logger.debug("Logging service initialized")

    def _setup_logging(self):
        """Setup console and file handlers on the root logger."""
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        root_logger.setLevel(log_level)

        self.console_handler = logging.StreamHandler(self.stream)
        self.console_handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
        self.console_handler.setLevel(log_level)
        root_logger.addHandler(self.console_handler)

        if self.config.log_file_path:
            Path(self.config.log_file_path).parent.mkdir(parents=True, exist_ok=True)
            self.file_handler = logging.handlers.RotatingFileHandler(
                filename=self.config.log_file_path,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
                encoding='utf-8'
            )
            self.file_handler.setFormatter(JSONFormatter())
            self.file_handler.setLevel(log_level)
            root_logger.addHandler(self.file_handler)

    def enable_timestamps(self):
        """Switch console output to timestamped lines for long-running mode."""
        self.console_handler.setFormatter(logging.Formatter(TIMESTAMP_FORMAT))

    def log_with_context(self, level: str, message: str, **context):
        """Log message with additional context data."""
        logger = logging.getLogger('tlssync')
        log_method = getattr(logger, level.lower(), logger.info)
        log_method(message, extra={'extra_data': context})
