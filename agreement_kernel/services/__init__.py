"""Services for the agreement kernel (write side)."""

from agreement_kernel.services.activity_log import ActivityLogService
from agreement_kernel.services.agreement_service import AgreementService
from agreement_kernel.services.entity_status_service import EntityStatusService
from agreement_kernel.services.notifier import StatusChangeNotifier
from agreement_kernel.services.sequence_service import SequenceService
from agreement_kernel.services.sync_engine import AgreementSyncEngine

__all__ = [
    "ActivityLogService",
    "AgreementService",
    "AgreementSyncEngine",
    "EntityStatusService",
    "SequenceService",
    "StatusChangeNotifier",
]
