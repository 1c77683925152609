"""Certification report payload: the certificate plus the job's full history."""
from typing import List

from pydantic import BaseModel

from refurbline.schemas.certification import CertificationResponse
from refurbline.schemas.diagnosis import DiagnosisResponse
from refurbline.schemas.refurb_job import JobResponse, StepCompletionResponse, TransitionResponse


class CertificationReportResponse(BaseModel):
    certification: CertificationResponse
    job: JobResponse
    diagnoses: List[DiagnosisResponse]
    completions: List[StepCompletionResponse]
    transitions: List[TransitionResponse]
