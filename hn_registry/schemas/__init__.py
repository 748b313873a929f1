from hn_registry.schemas.identity import (
    IdentityRequest,
    RegisterRequest,
    IdentitySummaryResponse,
    IdentityCheckResponse,
    RegistrationResponse,
    ErrorResponse,
)

__all__ = [
    "IdentityRequest",
    "RegisterRequest",
    "IdentitySummaryResponse",
    "IdentityCheckResponse",
    "RegistrationResponse",
    "ErrorResponse",
]
