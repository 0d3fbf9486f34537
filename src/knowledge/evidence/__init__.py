"""Evidence pack assembly: permission filtering, PII redaction, confidence."""

from src.knowledge.evidence.confidence import (
    ConfidenceThresholds,
    assess_confidence,
    build_warnings,
)
from src.knowledge.evidence.policy import (
    OwnershipPermissionFilter,
    PermissionFilter,
    PIIRedactor,
    Redactor,
)
from src.knowledge.evidence.service import EvidencePackService

__all__ = [
    "ConfidenceThresholds",
    "EvidencePackService",
    "OwnershipPermissionFilter",
    "PIIRedactor",
    "PermissionFilter",
    "Redactor",
    "assess_confidence",
    "build_warnings",
]
