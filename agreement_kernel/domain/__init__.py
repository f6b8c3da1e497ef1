"""
Pure domain layer.

Statuses, vocabularies, derivation rules, DTOs and the clock.  Nothing here
touches SQLAlchemy, the database or configuration files.
"""

from agreement_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from agreement_kernel.domain.derivation import (
    ResponseTally,
    derive_agreement_status,
    derive_sub_agreement_status,
    tally_line_items,
)
from agreement_kernel.domain.dtos import (
    AgreementSummary,
    BatchItemOutcome,
    BatchResponse,
    BatchResponseResult,
    CancellationResult,
    DriftFinding,
    IssuedAgreement,
    LineItemDraft,
    LineItemTransitionResult,
    StatusChange,
    StatusOverrideResult,
    StatusRecordInfo,
    StatusScope,
    SubAgreementDraft,
    SubAgreementInfo,
    TransitionResult,
)
from agreement_kernel.domain.statuses import (
    AgreementStatus,
    EntityKind,
    LineItemStatus,
    SubAgreementStatus,
)
from agreement_kernel.domain.vocabulary import (
    StatusOption,
    StatusVocabulary,
    VocabularyRegistry,
)

__all__ = [
    "AgreementStatus",
    "AgreementSummary",
    "BatchItemOutcome",
    "BatchResponse",
    "BatchResponseResult",
    "CancellationResult",
    "Clock",
    "DeterministicClock",
    "DriftFinding",
    "EntityKind",
    "IssuedAgreement",
    "LineItemDraft",
    "LineItemStatus",
    "LineItemTransitionResult",
    "ResponseTally",
    "StatusChange",
    "StatusOption",
    "StatusOverrideResult",
    "StatusRecordInfo",
    "StatusScope",
    "StatusVocabulary",
    "SubAgreementDraft",
    "SubAgreementInfo",
    "SubAgreementStatus",
    "SystemClock",
    "TransitionResult",
    "VocabularyRegistry",
    "derive_agreement_status",
    "derive_sub_agreement_status",
    "tally_line_items",
]
