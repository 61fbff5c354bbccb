"""
Dispute portal integrations: case lifecycle, reason codes and portal adapters
"""

from .adapters import FiservAdapter, VisaVROLAdapter
from .contracts import (
    ArbitrationFiling,
    BaseDisputeAdapter,
    CE3Submission,
    DisputeCase,
    DisputePage,
    DisputeQuery,
    DisputeStage,
    DisputeStatus,
    DisputeStatusInfo,
    EvidenceDocument,
    EvidencePackage,
    EvidenceRequirements,
    PreArbitrationResponse,
    PriorTransaction,
    RepresentmentRequest,
    SubmissionResult,
    TC40Report,
    TC40ReportPage,
)
from .factory import (
    DisputePortalType,
    create_dispute_adapter,
    get_supported_portals,
    register_dispute_adapter,
)
from .reason_codes import (
    CE3_REQUIREMENTS,
    VISA_REASON_CODES,
    ReasonCategory,
    ReasonCode,
    calculate_response_deadline,
    normalize_reason_code,
)

__all__ = [
    "ArbitrationFiling",
    "BaseDisputeAdapter",
    "CE3Submission",
    "CE3_REQUIREMENTS",
    "DisputeCase",
    "DisputePage",
    "DisputePortalType",
    "DisputeQuery",
    "DisputeStage",
    "DisputeStatus",
    "DisputeStatusInfo",
    "EvidenceDocument",
    "EvidencePackage",
    "EvidenceRequirements",
    "FiservAdapter",
    "PreArbitrationResponse",
    "PriorTransaction",
    "ReasonCategory",
    "ReasonCode",
    "RepresentmentRequest",
    "SubmissionResult",
    "TC40Report",
    "TC40ReportPage",
    "VISA_REASON_CODES",
    "VisaVROLAdapter",
    "calculate_response_deadline",
    "create_dispute_adapter",
    "get_supported_portals",
    "normalize_reason_code",
    "register_dispute_adapter",
]
