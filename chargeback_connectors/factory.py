"""
Chargeback Connectors - PMS Connector Factory
Vendor-type lookup, static capability metadata and instance caching
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Type, Union

import yaml

from .adapters.hostaway import HostawayConnector
from .adapters.hotelogix import HotelogixConnector
from .adapters.lodgify import LodgifyConnector
from .adapters.maestro import MaestroConnector
from .adapters.mews import MewsConnector
from .adapters.opera_cloud import OperaCloudConnector
from .adapters.protel import ProtelConnector
from .adapters.stayntouch import StayNTouchConnector
from .base import BaseIntegration
from .contracts import BaseConnector
from .errors import IntegrationError, UnsupportedVendorError

logger = logging.getLogger(__name__)

CAPABILITY_MATRIX_PATH = Path(__file__).parent / "capability_matrix.yaml"


class ConnectorStatus(Enum):
    """Connector availability status"""

    AVAILABLE = "available"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"
    MAINTENANCE = "maintenance"


@dataclass
class ConnectorMetadata:
    """Static facts about a vendor integration"""

    vendor: str
    name: str
    category: str
    status: ConnectorStatus
    authentication: str  # oauth2, api_key, basic
    capabilities: Dict[str, bool] = field(default_factory=dict)
    supports_webhooks: bool = False
    supports_push: bool = False
    supports_documents: bool = False
    rate_limits: Dict[str, int] = field(default_factory=dict)
    version: str = "1.0.0"
    documentation_url: Optional[str] = None

    @property
    def features(self) -> List[str]:
        return [name for name, enabled in self.capabilities.items() if enabled]


def load_capability_matrix(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load capability matrix from YAML configuration"""
    matrix_path = path or CAPABILITY_MATRIX_PATH
    if not matrix_path.exists():
        logger.warning("Capability matrix not found at %s, using adapter defaults", matrix_path)
        return {}
    with open(matrix_path, "r") as f:
        return yaml.safe_load(f) or {}


VendorKey = Union[str, Enum]


class AdapterRegistry:
    """
    Case-insensitive map from vendor type to adapter class plus metadata.

    Built-in adapters are fixed at construction; ``register`` adds or
    replaces entries at runtime (tests, private vendors).
    """

    def __init__(
        self,
        kind: str,
        section: str,
        builtins: Mapping[VendorKey, Type[BaseIntegration]],
        matrix: Optional[Mapping[str, Any]] = None,
    ):
        self.kind = kind
        matrix = load_capability_matrix() if matrix is None else matrix
        self._vendor_config: Dict[str, Dict[str, Any]] = {
            self._key(k): dict(v or {}) for k, v in (matrix.get(section) or {}).items()
        }
        self._adapters: Dict[str, Type[BaseIntegration]] = {}
        self._metadata: Dict[str, ConnectorMetadata] = {}
        for vendor, adapter_class in builtins.items():
            self.register(vendor, adapter_class)
        logger.info("Loaded %d %s adapters", len(self._adapters), kind)

    @staticmethod
    def _key(vendor: Optional[VendorKey]) -> str:
        if isinstance(vendor, Enum):
            vendor = vendor.value
        return str(vendor or "").strip().upper().replace("-", "_").replace(" ", "_")

    def _build_metadata(self, key: str, adapter_class: Type[BaseIntegration]) -> ConnectorMetadata:
        vendor_config = self._vendor_config.get(key, {})
        capabilities = vendor_config.get("capabilities") or dict(getattr(adapter_class, "capabilities", {}) or {})
        return ConnectorMetadata(
            vendor=key,
            name=vendor_config.get("display_name") or adapter_class.display_name or key.title(),
            category=vendor_config.get("category", "custom"),
            status=ConnectorStatus(vendor_config.get("status", "available")),
            authentication=vendor_config.get("authentication", adapter_class.auth_type.value),
            capabilities=capabilities,
            supports_webhooks=vendor_config.get("supports_webhooks", bool(capabilities.get("webhooks"))),
            supports_push=vendor_config.get("supports_push", bool(capabilities.get("notes"))),
            supports_documents=vendor_config.get("supports_documents", bool(capabilities.get("documents"))),
            rate_limits=vendor_config.get(
                "rate_limits", {"requests_per_minute": adapter_class.requests_per_minute or 60}
            ),
            version=vendor_config.get("version", "1.0.0"),
            documentation_url=vendor_config.get("documentation_url"),
        )

    def register(
        self,
        vendor: VendorKey,
        adapter_class: Type[BaseIntegration],
        metadata: Optional[ConnectorMetadata] = None,
    ):
        """Register (or replace) an adapter class"""
        key = self._key(vendor)
        self._adapters[key] = adapter_class
        self._metadata[key] = metadata or self._build_metadata(key, adapter_class)
        logger.debug("Registered %s adapter %s (%s)", self.kind, key, adapter_class.__name__)

    def get_adapter_class(self, vendor: VendorKey) -> Type[BaseIntegration]:
        key = self._key(vendor)
        if key not in self._adapters:
            raise UnsupportedVendorError(str(vendor), self.supported_types(), kind=self.kind)
        return self._adapters[key]

    def create(self, vendor: VendorKey, config: Mapping[str, Any], **kwargs) -> BaseIntegration:
        """Instantiate a fresh adapter; ``kwargs`` reach the adapter constructor"""
        adapter_class = self.get_adapter_class(vendor)
        return adapter_class(config, **kwargs)

    def supported_types(self) -> List[str]:
        return list(self._adapters.keys())

    def is_supported(self, vendor: Optional[VendorKey]) -> bool:
        return self._key(vendor) in self._adapters

    def get_metadata(self, vendor: VendorKey) -> Optional[ConnectorMetadata]:
        return self._metadata.get(self._key(vendor))

    def get_all_metadata(self) -> Dict[str, ConnectorMetadata]:
        return dict(self._metadata)

    def list_vendors(self, status: Optional[ConnectorStatus] = None) -> List[str]:
        """List all registered vendors, optionally filtered by status"""
        if status:
            return [vendor for vendor, meta in self._metadata.items() if meta.status == status]
        return self.supported_types()

    def get_types_by_category(self, category: str) -> List[str]:
        return [vendor for vendor, meta in self._metadata.items() if meta.category == category]

    def get_capability_matrix(self) -> Dict[str, Dict[str, bool]]:
        return {vendor: dict(meta.capabilities) for vendor, meta in self._metadata.items()}

    def find_vendors_with_capability(self, capability: str) -> List[str]:
        """Find vendors that support a specific capability"""
        return [vendor for vendor, meta in self._metadata.items() if meta.capabilities.get(capability, False)]


class PMSType(str, Enum):
    OPERA_CLOUD = "OPERA_CLOUD"
    MEWS = "MEWS"
    HOSTAWAY = "HOSTAWAY"
    LODGIFY = "LODGIFY"
    MAESTRO = "MAESTRO"
    HOTELOGIX = "HOTELOGIX"
    PROTEL = "PROTEL"
    STAYNTOUCH = "STAYNTOUCH"


BUILTIN_CONNECTORS: Dict[PMSType, Type[BaseConnector]] = {
    PMSType.OPERA_CLOUD: OperaCloudConnector,
    PMSType.MEWS: MewsConnector,
    PMSType.HOSTAWAY: HostawayConnector,
    PMSType.LODGIFY: LodgifyConnector,
    PMSType.MAESTRO: MaestroConnector,
    PMSType.HOTELOGIX: HotelogixConnector,
    PMSType.PROTEL: ProtelConnector,
    PMSType.STAYNTOUCH: StayNTouchConnector,
}

# Global registry instance
_registry = AdapterRegistry("PMS", "pms", BUILTIN_CONNECTORS)


class ConnectorFactory:
    """
    Creates adapter instances and caches one per vendor integration.

    The cache key is ``VENDOR:integration_id`` (falling back to property_id),
    so two tenants on the same vendor never share a limiter, breaker or token.
    """

    def __init__(self, registry: Optional[AdapterRegistry] = None, **adapter_kwargs):
        self.registry = registry or _registry
        self.adapter_kwargs = adapter_kwargs
        self._instances: Dict[str, BaseIntegration] = {}

    def _instance_key(self, vendor: VendorKey, config: Mapping[str, Any]) -> str:
        scope = (
            config.get("integration_id")
            or config.get("integrationId")
            or config.get("property_id")
            or config.get("propertyId")
            or "default"
        )
        return f"{self.registry._key(vendor)}:{scope}"

    def create(self, vendor: VendorKey, config: Mapping[str, Any]) -> BaseIntegration:
        """Return the cached adapter for this integration, building it on first use"""
        metadata = self.registry.get_metadata(vendor)
        if metadata and metadata.status == ConnectorStatus.UNAVAILABLE:
            raise IntegrationError(f"Connector {metadata.vendor} is currently unavailable", vendor=metadata.vendor)
        if metadata and metadata.status == ConnectorStatus.MAINTENANCE:
            logger.warning("Connector %s is in maintenance mode", metadata.vendor)

        instance_key = self._instance_key(vendor, config)
        if instance_key not in self._instances:
            self._instances[instance_key] = self.registry.create(vendor, config, **self.adapter_kwargs)
            logger.info("Created connector instance: %s", instance_key)
        return self._instances[instance_key]

    def get_instance(self, vendor: VendorKey, integration_id: str) -> Optional[BaseIntegration]:
        """Get existing connector instance"""
        return self._instances.get(f"{self.registry._key(vendor)}:{integration_id}")

    async def close_all(self):
        """Close all connector instances"""
        for instance_key, connector in list(self._instances.items()):
            try:
                await connector.disconnect()
                logger.info("Closed connector: %s", instance_key)
            except Exception as e:
                logger.error("Error closing connector %s: %s", instance_key, e)
        self._instances.clear()


# Convenience functions
def create_adapter(pms_type: VendorKey, config: Mapping[str, Any], **kwargs) -> BaseConnector:
    """Instantiate the adapter for ``pms_type`` (case-insensitive)"""
    return _registry.create(pms_type, config, **kwargs)


def get_supported_types() -> List[str]:
    return _registry.supported_types()


def is_supported(pms_type: Optional[VendorKey]) -> bool:
    return _registry.is_supported(pms_type)


def get_metadata(pms_type: VendorKey) -> Optional[ConnectorMetadata]:
    return _registry.get_metadata(pms_type)


def get_all_metadata() -> Dict[str, ConnectorMetadata]:
    return _registry.get_all_metadata()


def get_types_by_category(category: str) -> List[str]:
    return _registry.get_types_by_category(category)


def get_capability_matrix() -> Dict[str, Dict[str, bool]]:
    """Get the capability matrix for all vendors"""
    return _registry.get_capability_matrix()


def find_vendors_with_capability(capability: str) -> List[str]:
    """Find all connectors that support a specific capability"""
    return _registry.find_vendors_with_capability(capability)


def register_connector(
    pms_type: VendorKey,
    connector_class: Type[BaseConnector],
    metadata: Optional[ConnectorMetadata] = None,
):
    """Register a custom connector"""
    _registry.register(pms_type, connector_class, metadata)
