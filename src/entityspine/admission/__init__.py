"""
entityspine.admission - write-time checks in front of persistence.

:class:`AdmissionGate` runs idempotency, uniqueness and limit checks;
:class:`LookupConstraintValidator` rejects references that do not point
at existing records of the expected family and kind.
"""

from entityspine.admission.constraints import LookupConstraintValidator
from entityspine.admission.gate import PERSIST_TICK, AdmissionDecision, AdmissionGate
from entityspine.admission.idempotency import compute_idempotency_key

__all__ = [
    "AdmissionDecision",
    "AdmissionGate",
    "PERSIST_TICK",
    "LookupConstraintValidator",
    "compute_idempotency_key",
]
