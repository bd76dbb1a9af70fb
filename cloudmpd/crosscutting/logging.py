import json
import logging
import logging.handlers
import re
import sys
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from contextvars import ContextVar

# Context variables for correlation
client_var: ContextVar[Optional[str]] = ContextVar('client', default=None)
command_var: ContextVar[Optional[str]] = ContextVar('command', default=None)

LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3


class SecretMasker:
    """Masks sensitive information in log messages."""

    def __init__(self):
        """Initialize secret masker with patterns."""
        # Patterns for sensitive data
        self.patterns = [
            # API tokens and keys
            r'(?i)(token|key|secret|password|auth)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{10,})["\']?',
            # Spotify access tokens
            r'(?i)(spotify_access_token|access_token)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{50,})["\']?',
            # Yandex tokens
            r'(?i)(yandex_token|yandex_access_token)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{20,})["\']?',
            # Client secrets
            r'(?i)(client_secret)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{20,})["\']?',
            # Authorization headers
            r'(?i)(authorization|bearer)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{50,})["\']?',
            # OAuth codes
            r'(?i)(code|authorization_code)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{20,})["\']?',
        ]
        self.compiled_patterns = [re.compile(pattern) for pattern in self.patterns]

        # Signed stream URLs carry their signature in the query string
        self.url_param_pattern = re.compile(r'(?i)([?&](?:sign|ts|signature)=)([^&\s]+)')

    @staticmethod
    def _mask_value(secret: str) -> str:
        # Keep first 4 and last 4 characters
        if len(secret) > 8:
            return secret[:4] + '*' * (len(secret) - 8) + secret[-4:]
        return '*' * len(secret)

    def mask_secrets(self, text: str) -> str:
        """Mask sensitive information in text."""
        if not text:
            return text

        masked_text = text
        for pattern in self.compiled_patterns:
            masked_text = pattern.sub(
                lambda m: f"{m.group(1)}: {self._mask_value(m.group(2))}", masked_text)

        masked_text = self.url_param_pattern.sub(
            lambda m: m.group(1) + self._mask_value(m.group(2)), masked_text)
        return masked_text

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mask sensitive information in dictionary."""
        if not data:
            return data

        masked_data = {}
        for key, value in data.items():
            if isinstance(value, str):
                masked_data[key] = self.mask_secrets(value)
            elif isinstance(value, dict):
                masked_data[key] = self.mask_dict(value)
            elif isinstance(value, list):
                masked_data[key] = [self.mask_dict(item) if isinstance(item, dict)
                                    else self.mask_secrets(item) if isinstance(item, str)
                                    else item for item in value]
            else:
                masked_data[key] = value
        return masked_data


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self):
        super().__init__()
        self.masker = SecretMasker()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            'ts': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': self.mask_secrets(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        client = client_var.get()
        command = command_var.get()
        if client:
            log_entry['client'] = client
        if command:
            log_entry['command'] = command

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        if hasattr(record, 'fields') and record.fields:
            log_entry['fields'] = self.masker.mask_dict(record.fields)

        return json.dumps(log_entry, ensure_ascii=False)

    def mask_secrets(self, text: str) -> str:
        return self.masker.mask_secrets(text)


class CorrelationContext:
    """Context manager binding the client address and current command to log records."""

    def __init__(self, client: Optional[str] = None, command: Optional[str] = None):
        self.client = client
        self.command = command
        self._tokens = []

    def __enter__(self):
        if self.client is not None:
            self._tokens.append((client_var, client_var.set(self.client)))
        if self.command is not None:
            self._tokens.append((command_var, command_var.set(self.command)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []


def setup_logging(level: str = 'INFO',
                  log_file: Optional[str] = None) -> logging.Logger:
    """Setup structured logging for the cloudmpd package."""
    logger = logging.getLogger('cloudmpd')
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()

    formatter = StructuredFormatter()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = 'cloudmpd') -> logging.Logger:
    return logging.getLogger(name)


def log_with_fields(logger: logging.Logger, level: str, message: str,
                    fields: Optional[Dict[str, Any]] = None, exc_info: bool = False, **kwargs):
    """Log message with additional fields."""
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    record = logger.makeRecord(
        logger.name, levelno, '', 0, message, (), None
    )
    if exc_info:
        record.exc_info = sys.exc_info() if sys.exc_info()[0] else None

    if fields or kwargs:
        record.fields = {**(fields or {}), **kwargs}

    logger.handle(record)


# Convenience functions for common logging patterns
def log_client_connected(logger: logging.Logger, client: str, **kwargs):
    with CorrelationContext(client=client):
        log_with_fields(logger, 'INFO', 'Client connected', kwargs)


def log_client_disconnected(logger: logging.Logger, client: str,
                            commands: int, **kwargs):
    with CorrelationContext(client=client):
        log_with_fields(logger, 'INFO', 'Client disconnected', {
            'commands': commands,
            **kwargs
        })


def log_command_failed(logger: logging.Logger, command: str, code: int,
                       message: str, index: int = 0, **kwargs):
    with CorrelationContext(command=command or None):
        log_with_fields(logger, 'INFO', 'Command failed', {
            'ack_code': code,
            'ack_message': message,
            'list_index': index,
            **kwargs
        })


def log_error(logger: logging.Logger, message: str, error: Exception, **kwargs):
    """Log error with exception details."""
    log_with_fields(logger, 'ERROR', message, {
        'error_type': type(error).__name__,
        'error_message': str(error),
        **kwargs
    }, exc_info=True)
