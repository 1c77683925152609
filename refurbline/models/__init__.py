from refurbline.models.identifier_counter import IdentifierCounter, IdentifierCounterAudit, CounterNamespace
from refurbline.models.refurb_job import (
    RefurbJob, JobTransition, JobState, JobAction, ProductCategory, JobPriority, FinalGrade
)
from refurbline.models.step_completion import StepCompletion
from refurbline.models.diagnosis import JobDiagnosis, DiagnosisSeverity, RepairStatus
from refurbline.models.certification import (
    Certification, CertificationLevel, WarrantyType, WarrantyStatus
)

__all__ = [
    "IdentifierCounter", "IdentifierCounterAudit", "CounterNamespace",
    "RefurbJob", "JobTransition", "JobState", "JobAction", "ProductCategory", "JobPriority", "FinalGrade",
    "StepCompletion",
    "JobDiagnosis", "DiagnosisSeverity", "RepairStatus",
    "Certification", "CertificationLevel", "WarrantyType", "WarrantyStatus",
]
