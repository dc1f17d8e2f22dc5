from docintel.models.documents import (
    AuditLog,
    Base,
    Document,
    DocumentAnalysis,
    DocumentChunk,
    Notification,
)
from docintel.models.organization import Customer, OrganizationMember, SystemSetting
from docintel.models.pipeline import FunctionRun, IdempotencyClaim, StepCheckpoint

__all__ = [
    "AuditLog",
    "Base",
    "Customer",
    "Document",
    "DocumentAnalysis",
    "DocumentChunk",
    "FunctionRun",
    "IdempotencyClaim",
    "Notification",
    "OrganizationMember",
    "StepCheckpoint",
    "SystemSetting",
]
