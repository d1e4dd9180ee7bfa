"""
Structured logging for person mutations, outbox activity and reconciliation runs.
"""

import logging
from typing import Any, Dict


class StructuredLogger:
    """Structured logger for router, outbox and reconciliation operations."""

    def __init__(self, name: str = "person_outbox"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

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
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_person_mutation(self, operation: str, identifier: str, status: str = "success", details: Dict[str, Any] = None):
        """Log a router-level person operation (create/update/delete/get/list)."""
        log_details = {"identifier": identifier}
        if details:
            log_details.update(details)

        self.log_operation(f"person.{operation}", status, log_details)

    def log_outbox_operation(self, operation: str, pending_id: int, identifier: str = None, kind: str = None, payload: str = None):
        """Log a pending-operation store change."""
        details = {"pending_id": pending_id}
        if identifier is not None:
            details["identifier"] = identifier
        if kind is not None:
            details["kind"] = kind
        if payload is not None:
            # Payloads carry personal data; only their size is logged
            details["payload_length"] = len(payload)

        self.log_operation(f"outbox.{operation}", "success", details)

    def log_replay_entry(self, pending_id: int, identifier: str, kind: str, status: str, reason: str = None):
        """Log the outcome of replaying one queued operation."""
        details = {"pending_id": pending_id, "identifier": identifier, "kind": kind}
        if reason:
            details["reason"] = sanitize_payload(reason)

        level = logging.INFO
        if status in ("corrupt", "integrity_violation"):
            level = logging.ERROR
        elif status in ("failed", "obsolete", "blocked"):
            level = logging.WARNING

        self.log_operation("reconcile.entry", status, details, level=level)

    def log_reconcile_run(self, status: str, details: Dict[str, Any] = None):
        """Log a reconciliation pass summary."""
        self.log_operation("reconcile.run", status, details)

    def log_heartbeat_task(self, task_name: str, start_time: float, end_time: float, status: str = "success", details: Dict[str, Any] = None):
        """Log heartbeat task execution."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"duration_ms": duration_ms}
        if details:
            log_details.update(details)
        elif status == "success":
            log_details["message"] = f"Heartbeat task '{task_name}' completed in {duration_ms}ms"
        elif status == "failed":
            log_details["message"] = f"Heartbeat task '{task_name}' failed after {duration_ms}ms"

        self.log_operation(f"heartbeat.{task_name}", status, log_details)

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


# Global logger instance
logger = StructuredLogger()


def sanitize_payload(payload: Any, max_length: int = 100) -> Any:
    """Truncate long strings inside a payload before it is logged."""
    if isinstance(payload, dict):
        return {k: sanitize_payload(v, max_length) for k, v in payload.items()}
    elif isinstance(payload, str):
        return payload[:max_length] + "..." if len(payload) > max_length else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, max_length) for item in payload]
    else:
        return payload
