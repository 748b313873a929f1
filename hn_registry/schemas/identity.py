from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Optional
from hn_registry.models.patient_identity import IdentityType
from hn_registry.schemas.base import BaseResponseSchema


class IdentityRequest(BaseModel):
    """Identity as submitted by the registration form (raw, not yet normalized)"""

    id_type: str = Field(..., examples=["thai_id"])
    id_value: str = Field(..., examples=["1-1037-02345-67-9"])

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(IdentityRequest):
    display_name: Optional[str] = Field(None, max_length=255)


class IdentitySummaryResponse(BaseResponseSchema):
    """Existing patient shown in the duplicate alert"""

    hospital_number: str
    identity_type: IdentityType
    identity_value: str
    display_name: Optional[str] = None
    created_at: Optional[datetime] = None


class IdentityCheckResponse(BaseResponseSchema):
    duplicate: bool
    existing: Optional[IdentitySummaryResponse] = None
    preview_hospital_number: Optional[str] = None


class RegistrationResponse(BaseResponseSchema):
    hospital_number: str
    identity_type: IdentityType
    identity_value: str


class ErrorResponse(BaseResponseSchema):
    code: str
    detail: str
    existing: Optional[IdentitySummaryResponse] = None
