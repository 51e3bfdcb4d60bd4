"""
Structured logging for storage, retry, audit, migration and cache operations.
Every module logs through the shared `logger` instance below.
"""

import logging
import os
from typing import Any, Dict, List

SENSITIVE_FIELDS = ['apiKey', 'api_key', 'token', 'secret', 'password', 'x-api-key']


class StructuredLogger:
    """Structured logger for configuration storage and catalog operations."""

    def __init__(self, name: str = "shopconfig"):
        self.logger = logging.getLogger(name)
        debug = os.getenv("DEBUG", "false").lower() == "true"
        self.logger.setLevel(logging.DEBUG if debug else logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {sanitize_payload(details)}"

        self.logger.log(level, message)

    def log_storage_operation(self, operation: str, platform: str, status: str = "success", details: Dict[str, Any] = None):
        """Log a storage adapter operation tagged with its platform."""
        log_details = {"platform": platform}
        if details:
            log_details.update(details)

        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation(f"storage.{operation}", status, log_details, level)

    def log_retry_attempt(self, label: str, attempt: int, max_attempts: int, delay: float, error: Exception):
        """Log a failed attempt that is about to be retried."""
        details = {
            "attempt": f"{attempt}/{max_attempts}",
            "retry_in_sec": round(delay, 3),
            "error": str(error)[:200]
        }
        self.log_operation(f"retry.{label}", "retrying", details, logging.WARNING)

    def log_audit_event(self, action: str, platform: str, actor_tag: str = None, status: str = "recorded"):
        """Log an audit trail append."""
        details = {"action": action, "platform": platform}
        if actor_tag:
            details["actor"] = actor_tag

        level = logging.INFO if status == "recorded" else logging.WARNING
        self.log_operation("audit", status, details, level)

    def log_migration(self, platform: str, version: int, description: str, status: str = "applied"):
        """Log a migration step result."""
        details = {"platform": platform, "version": version, "description": description}
        level = logging.INFO if status == "applied" else logging.ERROR
        self.log_operation("migration", status, details, level)

    def log_cache_event(self, event: str, details: Dict[str, Any] = None):
        """Log catalog cache housekeeping at debug level."""
        self.log_operation(f"cache.{event}", "done", details, logging.DEBUG)

    def log_fallback(self, operation: str, platform: str, reason: str):
        """Log a degraded path taken after the authoritative backend failed."""
        details = {"platform": platform, "reason": reason[:200]}
        self.log_operation(f"fallback.{operation}", "degraded", details, logging.WARNING)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Redact credential fields and truncate long strings before logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]" if v else v
        return sanitized
    elif isinstance(payload, str):
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload


# Global logger instance
logger = StructuredLogger()
