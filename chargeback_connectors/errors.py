"""
Typed error taxonomy for vendor integrations

Callers branch on the class: credential failures are fatal, transient failures
have already been retried, circuit-open failures happened without network I/O,
validation failures were rejected before dispatch.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .utils.logging import current_correlation_id


class ErrorSeverity(str, Enum):
    """Error severity levels for alerting and routing"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """Error categories for classification"""
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    RATE_LIMIT = "rate_limit"
    CIRCUIT_BREAKER = "circuit_breaker"
    EXTERNAL_SERVICE = "external_service"
    NETWORK = "network"
    NOT_FOUND = "not_found"
    WEBHOOK = "webhook"


class ErrorDetail(BaseModel):
    """Serializable error information for callers and audit logs"""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    correlation_id: str = Field(..., description="Unique correlation ID for tracing")
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    category: ErrorCategory
    severity: ErrorSeverity
    vendor: Optional[str] = None
    status_code: Optional[int] = None
    retryable: bool = False
    details: Dict[str, Any] = Field(default_factory=dict)
    retry_after: Optional[float] = None


class IntegrationError(Exception):
    """Base exception for all vendor integration errors"""

    code = "INTEGRATION_ERROR"
    category = ErrorCategory.EXTERNAL_SERVICE
    severity = ErrorSeverity.MEDIUM
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        vendor: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        retry_after: Optional[float] = None,
        correlation_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.vendor = vendor
        self.status_code = status_code
        self.details = details or {}
        self.retry_after = retry_after
        self.correlation_id = correlation_id or current_correlation_id() or str(uuid.uuid4())

    def to_error_detail(self) -> ErrorDetail:
        """Convert exception to ErrorDetail model"""
        return ErrorDetail(
            code=self.code,
            message=self.message,
            correlation_id=self.correlation_id,
            category=self.category,
            severity=self.severity,
            vendor=self.vendor,
            status_code=self.status_code,
            retryable=self.retryable,
            details=self.details,
            retry_after=self.retry_after,
        )


class AuthenticationError(IntegrationError):
    """Credentials were rejected by the vendor. Not retried."""
    code = "AUTHENTICATION_FAILED"
    category = ErrorCategory.AUTHENTICATION
    severity = ErrorSeverity.HIGH


class TransientError(IntegrationError):
    """Network failure, timeout or 5xx. Eligible for retry and circuit counting."""
    code = "TRANSIENT_FAILURE"
    category = ErrorCategory.NETWORK
    retryable = True


class RateLimitError(TransientError):
    """Vendor answered 429"""
    code = "RATE_LIMIT_EXCEEDED"
    category = ErrorCategory.RATE_LIMIT


class RetryExhaustedError(IntegrationError):
    """A transient failure persisted through every retry attempt"""
    code = "RETRY_EXHAUSTED"
    category = ErrorCategory.NETWORK
    severity = ErrorSeverity.HIGH

    def __init__(self, message: str, *, attempts: int, last_error: Optional[BaseException] = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        details["attempts"] = attempts
        if last_error is not None:
            details["last_error"] = str(last_error)
            kwargs.setdefault("status_code", getattr(last_error, "status_code", None))
        super().__init__(message, details=details, **kwargs)
        self.attempts = attempts
        self.last_error = last_error


class CircuitOpenError(IntegrationError):
    """Raised without any network I/O while a circuit is open"""
    code = "CIRCUIT_BREAKER_OPEN"
    category = ErrorCategory.CIRCUIT_BREAKER
    severity = ErrorSeverity.HIGH

    def __init__(self, circuit_name: str, next_attempt_time: Optional[datetime] = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        details["circuit_name"] = circuit_name
        if next_attempt_time:
            details["next_attempt_time"] = next_attempt_time.isoformat()
        super().__init__(f"Circuit breaker '{circuit_name}' is open", details=details, **kwargs)
        self.circuit_name = circuit_name
        self.next_attempt_time = next_attempt_time


class RateLimiterTimeoutError(IntegrationError):
    """The local token bucket could not admit the call within its queue timeout"""
    code = "RATE_LIMITER_TIMEOUT"
    category = ErrorCategory.RATE_LIMIT


class VendorAPIError(IntegrationError):
    """Non-retryable vendor rejection (4xx other than 401/403/429)"""
    code = "VENDOR_API_ERROR"


class NotFoundError(VendorAPIError):
    code = "NOT_FOUND"
    category = ErrorCategory.NOT_FOUND
    severity = ErrorSeverity.LOW


class ValidationError(IntegrationError):
    """Input rejected before dispatch"""
    code = "VALIDATION_ERROR"
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.LOW

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details, **kwargs)
        self.field = field


class UnsupportedVendorError(ValidationError):
    def __init__(self, vendor: str, supported: List[str], kind: str = "PMS"):
        super().__init__(
            f"Unsupported {kind} type: {vendor}. Supported types: {', '.join(supported)}",
            field="type",
            details={"supported": list(supported)},
        )
        self.requested = vendor
        self.supported = list(supported)


class WebhookSignatureError(IntegrationError):
    """Webhook rejected: signature missing, unverifiable or mismatched"""
    code = "WEBHOOK_SIGNATURE_INVALID"
    category = ErrorCategory.WEBHOOK
    severity = ErrorSeverity.HIGH
