# Services module
from refurbline.services import qlid
from refurbline.services.identifier_service import IdentifierService, get_next_qlid
from refurbline.services.step_ledger_service import StepLedgerService
from refurbline.services.parts_notifier import PartsConsumer, LoggingPartsConsumer
from refurbline.services.diagnosis_service import DiagnosisService
from refurbline.services.certification_service import (
    CertificationService, CertificationRequest, WarrantyInfo
)
from refurbline.services.job_lifecycle_service import JobLifecycleService
from refurbline.services.concurrency import retry_on_stale_state

__all__ = [
    "qlid",
    "IdentifierService",
    "get_next_qlid",
    "StepLedgerService",
    # Repair tracking
    "PartsConsumer",
    "LoggingPartsConsumer",
    "DiagnosisService",
    # Certification
    "CertificationService",
    "CertificationRequest",
    "WarrantyInfo",
    # Lifecycle
    "JobLifecycleService",
    "retry_on_stale_state",
]
