from fastapi import APIRouter

from refurbline.api.v1.endpoints import (
    # Job lifecycle
    jobs,
    diagnoses,
    certifications,
    # Identifier issuance
    identifiers,
)


api_router = APIRouter(prefix="/api/v1")

api_router.include_router(jobs.router, prefix="/jobs", tags=["Jobs"])
api_router.include_router(diagnoses.router, prefix="/diagnoses", tags=["Diagnoses"])
api_router.include_router(certifications.router, prefix="/certifications", tags=["Certifications"])
api_router.include_router(identifiers.router, prefix="/identifiers", tags=["Identifiers"])
