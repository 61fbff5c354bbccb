"""
Utility modules for vendor connectors
"""

from .pii_redactor import (
    PIIRedactor,
    PIIRedactorFilter,
    get_default_redactor,
    mask_partial,
    redact_pii,
    sanitize_pii,
)

from .logging import (
    ConnectorLogger,
    SafeLogger,
    bind_correlation_id,
    correlation_id,
    current_correlation_id,
    get_safe_logger,
    log_performance,
    sanitize_url,
)

__all__ = [
    # PII Redaction
    "PIIRedactor",
    "PIIRedactorFilter",
    "get_default_redactor",
    "mask_partial",
    "redact_pii",
    "sanitize_pii",
    # Logging
    "ConnectorLogger",
    "SafeLogger",
    "bind_correlation_id",
    "correlation_id",
    "current_correlation_id",
    "get_safe_logger",
    "log_performance",
    "sanitize_url",
]
