# Package initialization
# Import all models so Base.metadata knows every table
from .consent_token import ConsentToken
from .patient_abha_link import PatientAbhaLink

__all__ = [
    "ConsentToken",
    "PatientAbhaLink",
]
