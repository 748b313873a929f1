"""
Registration API routes.

Handles the ID check used by the registration form preview and the
authoritative registration submit. Registration errors are rendered by the
exception handler in hn_registry.main.

Routes are plain `def` so FastAPI runs them in its threadpool: the
registration call may block on the counter lock.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session, sessionmaker

from hn_registry.database import get_db, get_session_factory
from hn_registry.schemas.identity import (
    IdentityRequest,
    RegisterRequest,
    IdentityCheckResponse,
    IdentitySummaryResponse,
    RegistrationResponse,
    ErrorResponse,
)
from hn_registry.services.registration_service import (
    PatientRecordHook,
    check_identity,
    register_identity,
    find_by_hospital_number,
)

router = APIRouter(prefix="/api", tags=["registration"])


def get_patient_record_hook() -> Optional[PatientRecordHook]:
    """
    Dependency providing the patient-record persistence hook.

    The patient-record component overrides this dependency to store
    demographics in the same unit of work as the hospital number.
    """
    return None


@router.post("/patients/check-id", response_model=IdentityCheckResponse)
def check_id(payload: IdentityRequest, db: Session = Depends(get_db)):
    result = check_identity(db, payload.id_type, payload.id_value)
    return IdentityCheckResponse.model_validate(result)


@router.post(
    "/patients/register",
    response_model=RegistrationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
def register(
    payload: RegisterRequest,
    session_factory: sessionmaker = Depends(get_session_factory),
    on_registered: Optional[PatientRecordHook] = Depends(get_patient_record_hook),
):
    result = register_identity(
        payload.id_type,
        payload.id_value,
        session_factory=session_factory,
        display_name=payload.display_name,
        on_registered=on_registered,
    )
    return RegistrationResponse.model_validate(result)


@router.get(
    "/hospital-numbers/{hospital_number}", response_model=IdentitySummaryResponse
)
def get_hospital_number(hospital_number: str, db: Session = Depends(get_db)):
    summary = find_by_hospital_number(db, hospital_number)
    if not summary:
        raise HTTPException(status_code=404, detail="Hospital number not found")
    return IdentitySummaryResponse.model_validate(summary)
