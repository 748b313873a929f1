from hn_registry.models.hospital_number_counter import HospitalNumberCounter
from hn_registry.models.patient_identity import PatientIdentity, IdentityType

__all__ = [
    "HospitalNumberCounter",
    "PatientIdentity",
    "IdentityType",
]
