"""
Structured logging for sweep operations, store writes and service probes.
"""

import logging
from typing import Any, Dict, List


class StructuredLogger:
    """Structured logger for sweep phases, repairs and remote probes."""

    def __init__(self, name: str = "studyvault"):
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

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.info(message)

    def log_kv_operation(self, operation: str, key: str, value: str = None, status: str = "success"):
        """Log a KV-specific operation."""
        details = {"key": key}
        if value is not None:
            details["value"] = value[:50] + "..." if len(value) > 50 else value

        self.log_operation(f"KV.{operation}", status, details)

    def log_sweep_started(self, phase_count: int, service_checks: bool):
        self.log_operation("sweep", "started", {
            "phases": phase_count,
            "service_checks": service_checks
        })

    def log_sweep_phase(self, phase: str, start_time: float, end_time: float, status: str = "success", details: Dict[str, Any] = None):
        """Log one sweep phase with its duration."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"duration_ms": duration_ms}
        if details:
            log_details.update(details)

        self.log_operation(f"sweep.{phase}", status, log_details)

    def log_repair_action(self, action_id: str, category: str, severity: str, label: str):
        """Log a single repair action as it is recorded."""
        log_details = {
            "action_id": action_id,
            "category": category,
            "label": label[:100]
        }
        self.log_operation("sweep.action", severity, log_details)

    def log_service_probe(self, function: str, status_code: int, latency_ms: int, state: str):
        """Log a remote service health probe."""
        log_details = {
            "function": function,
            "status_code": status_code,
            "latency_ms": latency_ms
        }
        self.log_operation("service.probe", state, log_details)

    def log_sweep_completed(self, score: int, fixed: int, warnings: int, errors: int):
        log_details = {
            "score": score,
            "fixed": fixed,
            "warnings": warnings,
            "errors": errors
        }
        status = "clean" if fixed == 0 and warnings == 0 and errors == 0 else "repaired"
        self.log_operation("sweep", status, log_details)

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


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None, sensitive_fields: List[str] = None):
    """General audit event logging with privacy controls."""
    if sensitive_fields is None:
        sensitive_fields = ['value', 'data', 'payload', 'content', 'secret', 'password', 'authorization']

    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = ['value', 'data', 'payload', 'content', 'secret', 'password', 'authorization']

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k.lower() not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
