"""
Compliance logging for the HL7 Viewer query service.

Message text and extracted values are clinical data, so log records carry
counts, timings and request metadata only.
"""

import sys
import json
import time
import logging
from contextlib import contextmanager
from typing import Dict, Any, Iterator, Optional
from datetime import datetime, timezone
from flask import Flask, request, g, has_request_context


class SecurityFilter(logging.Filter):
    """Mask PHI-bearing fields in log records."""

    SENSITIVE_KEYS = {
        'message_text', 'raw_text', 'hl7_message', 'value', 'values',
        'comparand', 'patient_id', 'patient_name', 'date_of_birth', 'dob', 'ssn'
    }

    def filter(self, record: logging.LogRecord) -> bool:
        """Remove sensitive data from log records."""
        try:
            for key, value in list(record.__dict__.items()):
                if key.lower() in self.SENSITIVE_KEYS:
                    setattr(record, key, '***')
                elif isinstance(value, dict):
                    setattr(record, key, self._sanitize_dict(value))

            return True
        except Exception:
            # If filtering fails, allow log but mask message
            record.msg = "[FILTER_ERROR] " + str(getattr(record, 'msg', ''))
            record.args = ()
            return True

    def _sanitize_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Remove sensitive keys from dictionaries."""
        sanitized = {}
        for key, value in data.items():
            if str(key).lower() in self.SENSITIVE_KEYS:
                sanitized[key] = '***'
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_dict(value)
            else:
                sanitized[key] = value
        return sanitized


class ComplianceFormatter(logging.Formatter):
    """JSON formatter for audit logging."""

    RESERVED = {
        'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
        'module', 'exc_info', 'exc_text', 'stack_info', 'lineno', 'funcName',
        'created', 'msecs', 'relativeCreated', 'thread', 'threadName',
        'processName', 'process', 'message', 'taskName'
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format as JSON for log aggregation systems."""
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        # Request context for audit correlation
        if has_request_context():
            log_entry.update({
                'request_id': getattr(g, 'request_id', None),
                'method': request.method,
                'path': request.path,
                'remote_addr': request.remote_addr,
            })

        for key, value in record.__dict__.items():
            if key not in self.RESERVED:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def setup_logging(app: Flask) -> None:
    """Configure compliance logging for the application."""
    log_level = app.config.get('LOG_LEVEL', 'INFO').upper()
    is_dev = app.config.get('FLASK_ENV') == 'development'

    logging.root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, log_level))

    # Simple format for development, JSON for production
    if is_dev:
        formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        )
    else:
        formatter = ComplianceFormatter()

    handler.setFormatter(formatter)
    handler.addFilter(SecurityFilter())

    logging.root.setLevel(getattr(logging, log_level))
    logging.root.addHandler(handler)

    logging.getLogger('werkzeug').setLevel(logging.WARNING)

    logger = logging.getLogger('hl7_viewer')
    logger.info(f"Compliance logging configured (level: {log_level})")


def get_logger(name: str) -> logging.Logger:
    """Get logger with hl7_viewer prefix."""
    if not name.startswith('hl7_viewer'):
        name = f'hl7_viewer.{name.split(".")[-1]}'
    return logging.getLogger(name)


def log_security_event(event_type: str, details: Dict[str, Any], level: str = 'WARNING'):
    """Log security events for SOC monitoring."""
    logger = logging.getLogger('hl7_viewer.security')
    log_func = getattr(logger, level.lower())

    log_func(
        f"Security event: {event_type}",
        extra={
            'event_type': event_type,
            'security_event': True,
            **details
        }
    )


def create_audit_log(action: str, resource: str, details: Optional[Dict[str, Any]] = None):
    """Create audit log entry for access to clinical message data."""
    logger = logging.getLogger('hl7_viewer.audit')

    audit_entry = {
        'audit_event': True,
        'action': action,
        'resource': resource,
    }

    if details:
        audit_entry.update(details)

    if has_request_context() and hasattr(g, 'request_id'):
        audit_entry['request_id'] = g.request_id

    logger.info(f"Audit: {action} {resource}", extra=audit_entry)


@contextmanager
def log_performance(operation: str, logger: logging.Logger) -> Iterator[None]:
    """Log the wall-clock duration of an operation at DEBUG level."""
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            f"{operation} completed in {elapsed_ms:.1f} ms",
            extra={'operation': operation, 'duration_ms': round(elapsed_ms, 3)}
        )
