"""
Chargeback Connectors - Dispute Adapter Factory
"""

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Type

from ..factory import AdapterRegistry, ConnectorMetadata, VendorKey
from .adapters import FiservAdapter, VisaVROLAdapter
from .contracts import BaseDisputeAdapter


class DisputePortalType(str, Enum):
    VISA_VROL = "VISA_VROL"
    FISERV = "FISERV"


BUILTIN_DISPUTE_ADAPTERS: Dict[DisputePortalType, Type[BaseDisputeAdapter]] = {
    DisputePortalType.VISA_VROL: VisaVROLAdapter,
    DisputePortalType.FISERV: FiservAdapter,
}

_registry = AdapterRegistry("dispute", "disputes", BUILTIN_DISPUTE_ADAPTERS)


def get_registry() -> AdapterRegistry:
    return _registry


def create_dispute_adapter(portal_type: VendorKey, config: Mapping[str, Any], **kwargs) -> BaseDisputeAdapter:
    """Instantiate the adapter for ``portal_type`` (case-insensitive)"""
    return _registry.create(portal_type, config, **kwargs)


def get_supported_portals() -> List[str]:
    return _registry.supported_types()


def is_supported(portal_type: Optional[VendorKey]) -> bool:
    return _registry.is_supported(portal_type)


def get_metadata(portal_type: VendorKey) -> Optional[ConnectorMetadata]:
    return _registry.get_metadata(portal_type)


def get_all_metadata() -> Dict[str, ConnectorMetadata]:
    return _registry.get_all_metadata()


def get_portals_by_category(category: str) -> List[str]:
    return _registry.get_types_by_category(category)


def find_portals_with_capability(capability: str) -> List[str]:
    return _registry.find_vendors_with_capability(capability)


def register_dispute_adapter(
    portal_type: VendorKey,
    adapter_class: Type[BaseDisputeAdapter],
    metadata: Optional[ConnectorMetadata] = None,
):
    """Register a custom dispute portal adapter"""
    _registry.register(portal_type, adapter_class, metadata)
