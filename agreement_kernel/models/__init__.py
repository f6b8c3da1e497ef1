"""ORM models for the agreement kernel."""

from agreement_kernel.models.activity import ActivityRecord
from agreement_kernel.models.agreement import Agreement, LineItem, SubAgreement
from agreement_kernel.models.status_record import StatusRecord

__all__ = [
    "ActivityRecord",
    "Agreement",
    "LineItem",
    "StatusRecord",
    "SubAgreement",
]
