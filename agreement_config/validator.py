"""
Vocabulary Validator (``agreement_config.validator``).

Responsibility
--------------
Checks a raw vocabulary document before it is turned into a registry, so
that a bad file is rejected with every problem listed at once rather than
with the first exception.

Invariants enforced
-------------------
* A non-empty ``default`` vocabulary exists.
* Every option has a non-empty ``value`` and ``label``; values are unique
  within a kind.
* The hierarchy kinds (agreement, sub-agreement, line-item) exist and list
  every status the kernel writes for them.

Failure modes
-------------
* Errors  -> the vocabulary MUST NOT be activated.
* Warnings (unknown kind, unknown colour type)  -> activated, but should be
  reviewed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from agreement_kernel.domain.statuses import (
    AgreementStatus,
    EntityKind,
    LineItemStatus,
    SubAgreementStatus,
)

KNOWN_COLOR_TYPES = frozenset({"secondary", "warning", "info", "success", "error"})

REQUIRED_STATUSES: dict[str, type[Enum]] = {
    EntityKind.AGREEMENT.value: AgreementStatus,
    EntityKind.SUB_AGREEMENT.value: SubAgreementStatus,
    EntityKind.LINE_ITEM.value: LineItemStatus,
}


@dataclass
class VocabularyValidationResult:
    """
    Result of vocabulary validation.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_vocabulary_document(data: dict[str, Any]) -> VocabularyValidationResult:
    """Validate a raw vocabulary document as loaded from YAML."""
    result = VocabularyValidationResult()

    default = data.get("default")
    if not isinstance(default, list) or not default:
        result.add_error("A non-empty 'default' vocabulary is required")
    else:
        _validate_options("default", default, result)

    kinds = data.get("kinds") or {}
    if not isinstance(kinds, dict):
        result.add_error("'kinds' must be a mapping of kind -> options")
        return result

    known_kinds = {k.value for k in EntityKind}
    for kind, options in kinds.items():
        if kind not in known_kinds:
            result.add_warning(f"Unknown entity kind '{kind}'")
        if not isinstance(options, list) or not options:
            result.add_error(f"Vocabulary for '{kind}' must be a non-empty list")
            continue
        _validate_options(kind, options, result)

    _validate_required_statuses(kinds, result)
    return result


def _validate_options(
    kind: str, options: list[Any], result: VocabularyValidationResult
) -> None:
    seen: set[str] = set()
    for index, option in enumerate(options):
        if not isinstance(option, dict):
            result.add_error(f"{kind}[{index}]: option must be a mapping")
            continue
        value = option.get("value")
        if not value:
            result.add_error(f"{kind}[{index}]: missing 'value'")
            continue
        if not option.get("label"):
            result.add_error(f"{kind}[{index}] '{value}': missing 'label'")
        if value in seen:
            result.add_error(f"{kind}: duplicate status '{value}'")
        seen.add(value)
        color_type = option.get("color_type")
        if color_type is not None and color_type not in KNOWN_COLOR_TYPES:
            result.add_warning(f"{kind} '{value}': unknown color_type '{color_type}'")


def _validate_required_statuses(
    kinds: dict[str, Any], result: VocabularyValidationResult
) -> None:
    for kind, status_enum in REQUIRED_STATUSES.items():
        options = kinds.get(kind)
        if not isinstance(options, list):
            result.add_error(f"Vocabulary for hierarchy kind '{kind}' is required")
            continue
        declared = {o.get("value") for o in options if isinstance(o, dict)}
        for status in status_enum:
            if status.value not in declared:
                result.add_error(
                    f"Vocabulary for '{kind}' must declare '{status.value}'"
                )
