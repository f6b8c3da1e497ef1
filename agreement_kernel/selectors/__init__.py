"""Read-only selectors for the agreement kernel."""

from agreement_kernel.selectors.status_selector import StatusRecordSelector
from agreement_kernel.selectors.summary_reporter import SummaryReporter

__all__ = [
    "StatusRecordSelector",
    "SummaryReporter",
]
