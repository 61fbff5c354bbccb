"""
Chargeback Connectors

Vendor integrations for hotel chargeback defense: PMS adapters that gather
stay evidence and write alerts back, and dispute portal adapters that file
responses with card networks and processors. Every adapter exposes the same
canonical models regardless of the vendor behind it.
"""

from .config import ConnectorSettings, get_settings
from .contracts import (
    Address,
    BaseConnector,
    Capabilities,
    ChargebackAlert,
    DisputeOutcome,
    FolioItem,
    GuestFlag,
    GuestName,
    GuestNote,
    GuestProfile,
    PaymentMethod,
    PMSConnector,
    PushAck,
    RatePlan,
    RateQuery,
    Reservation,
    ReservationDocument,
    SearchCriteria,
)
from .errors import (
    AuthenticationError,
    CircuitOpenError,
    IntegrationError,
    NotFoundError,
    RateLimiterTimeoutError,
    RateLimitError,
    RetryExhaustedError,
    TransientError,
    UnsupportedVendorError,
    ValidationError,
    VendorAPIError,
    WebhookSignatureError,
)
from .factory import (
    AdapterRegistry,
    ConnectorFactory,
    ConnectorMetadata,
    ConnectorStatus,
    PMSType,
    create_adapter,
    find_vendors_with_capability,
    get_all_metadata,
    get_capability_matrix,
    get_metadata,
    get_supported_types,
    get_types_by_category,
    is_supported,
    register_connector,
)
from .webhooks import WebhookEvent, WebhookRegistration

__version__ = "1.0.0"

__all__ = [
    # Factory
    "AdapterRegistry",
    "ConnectorFactory",
    "ConnectorMetadata",
    "ConnectorStatus",
    "PMSType",
    "create_adapter",
    "find_vendors_with_capability",
    "get_all_metadata",
    "get_capability_matrix",
    "get_metadata",
    "get_supported_types",
    "get_types_by_category",
    "is_supported",
    "register_connector",
    # Contracts
    "BaseConnector",
    "Capabilities",
    "PMSConnector",
    # Domain models
    "Address",
    "ChargebackAlert",
    "DisputeOutcome",
    "FolioItem",
    "GuestFlag",
    "GuestName",
    "GuestNote",
    "GuestProfile",
    "PaymentMethod",
    "PushAck",
    "RatePlan",
    "RateQuery",
    "Reservation",
    "ReservationDocument",
    "SearchCriteria",
    "WebhookEvent",
    "WebhookRegistration",
    # Errors
    "AuthenticationError",
    "CircuitOpenError",
    "IntegrationError",
    "NotFoundError",
    "RateLimitError",
    "RateLimiterTimeoutError",
    "RetryExhaustedError",
    "TransientError",
    "UnsupportedVendorError",
    "ValidationError",
    "VendorAPIError",
    "WebhookSignatureError",
    # Config
    "ConnectorSettings",
    "get_settings",
]
