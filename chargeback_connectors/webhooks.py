"""
Webhook primitives shared by PMS and dispute adapters
"""

import hashlib
import hmac
import json
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .errors import ValidationError, WebhookSignatureError

# Canonical PMS event names
RESERVATION_CREATED = "reservation.created"
RESERVATION_UPDATED = "reservation.updated"
RESERVATION_CANCELLED = "reservation.cancelled"
GUEST_CHECKED_IN = "guest.checked_in"
GUEST_CHECKED_OUT = "guest.checked_out"
PAYMENT_RECEIVED = "payment.received"
FOLIO_UPDATED = "folio.updated"

CANONICAL_EVENTS = (
    RESERVATION_CREATED,
    RESERVATION_UPDATED,
    RESERVATION_CANCELLED,
    GUEST_CHECKED_IN,
    GUEST_CHECKED_OUT,
    PAYMENT_RECEIVED,
    FOLIO_UPDATED,
)

WebhookBody = Union[bytes, str, Mapping[str, Any]]


@dataclass
class WebhookEvent:
    """Canonical envelope handed to the caller after a webhook is accepted"""
    event_type: str
    timestamp: str
    data: Dict[str, Any]
    vendor: str
    vendor_event_type: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookRegistration:
    webhook_id: Optional[str]
    secret: str
    status: str
    callback_url: str
    events: List[str] = field(default_factory=list)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class EventNameMap:
    """
    Bidirectional table between canonical and vendor event names.

    Vendor names are matched case-insensitively; unknown vendor names pass
    through so new vendor events are not silently dropped.
    """

    def __init__(self, canonical_to_vendor: Mapping[str, str]):
        self._to_vendor = dict(canonical_to_vendor)
        self._to_canonical = {v.lower(): k for k, v in self._to_vendor.items()}

    def to_vendor(self, canonical: str) -> str:
        return self._to_vendor.get(canonical, canonical)

    def to_vendor_list(self, canonical: Optional[Iterable[str]] = None) -> List[str]:
        names = list(canonical) if canonical else list(self._to_vendor)
        return [self.to_vendor(name) for name in names]

    def to_canonical(self, vendor_name: Optional[str]) -> str:
        if not vendor_name:
            return "unknown"
        return self._to_canonical.get(str(vendor_name).lower(), str(vendor_name))

    @property
    def vendor_events(self) -> List[str]:
        return list(self._to_vendor.values())

    @property
    def canonical_events(self) -> List[str]:
        return list(self._to_vendor)


def generate_webhook_secret() -> str:
    return secrets.token_hex(32)


def body_bytes(body: WebhookBody) -> bytes:
    """Raw bytes the signature is computed over"""
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    return json.dumps(body, separators=(",", ":")).encode("utf-8")


def compute_signature(secret: str, body: WebhookBody, algorithm: str = "sha256") -> str:
    return hmac.new(secret.encode("utf-8"), body_bytes(body), getattr(hashlib, algorithm)).hexdigest()


def verify_signature(secret: str, body: WebhookBody, signature: Optional[str], algorithm: str = "sha256") -> bool:
    """Constant-time comparison; accepts ``sha256=<hex>`` prefixed values."""
    if not secret or not signature:
        return False
    provided = signature.strip()
    if "=" in provided and provided.split("=", 1)[0].lower() == algorithm:
        provided = provided.split("=", 1)[1]
    expected = compute_signature(secret, body, algorithm)
    return hmac.compare_digest(expected.lower().encode("utf-8"), provided.lower().encode("utf-8"))


def header_value(headers: Mapping[str, str], *names: str) -> Optional[str]:
    lowered = {str(k).lower(): v for k, v in (headers or {}).items()}
    for name in names:
        value = lowered.get(name.lower())
        if value:
            return value
    return None


def verify_and_load(
    headers: Mapping[str, str],
    body: WebhookBody,
    *,
    secret: Optional[str],
    signature_headers: Iterable[str],
    vendor: str,
) -> Dict[str, Any]:
    """
    Check the signature over the raw body, then decode it.

    Fails closed: no configured secret, no signature header or a mismatch all
    raise WebhookSignatureError before the payload is looked at.
    """
    if not secret:
        raise WebhookSignatureError("No webhook secret configured; refusing unverifiable payload", vendor=vendor)

    signature = header_value(headers, *signature_headers)
    if not signature:
        raise WebhookSignatureError("Webhook signature header missing", vendor=vendor)

    if not verify_signature(secret, body, signature):
        raise WebhookSignatureError("Webhook signature mismatch", vendor=vendor)

    if isinstance(body, Mapping):
        return dict(body)
    try:
        payload = json.loads(body_bytes(body).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError(f"Invalid {vendor} webhook payload: not valid JSON", field="body", vendor=vendor) from e
    if not isinstance(payload, dict):
        raise ValidationError(f"Invalid {vendor} webhook payload: expected an object", field="body", vendor=vendor)
    return payload
