"""
Status vocabularies -- immutable lookup tables of allowed statuses per kind.

Responsibility:
    Holds, for every tracked entity kind, the ordered set of status values
    it may take together with their display metadata (label, description,
    colour hints).  ``record_transition`` validates against these tables
    before any write.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.  Instances are built by
    ``agreement_config`` from YAML and injected into the services; the
    kernel never reads configuration itself.

Invariants enforced:
    - A vocabulary never contains the same value twice.
    - Every registry has a default vocabulary; unknown kinds resolve to it.
    - Registries are frozen: the kind -> vocabulary mapping is a
      MappingProxyType and every member is a frozen dataclass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping


@dataclass(frozen=True)
class StatusOption:
    """One allowed status value with its display metadata."""

    value: str
    label: str
    description: str = ""
    color_type: str = "secondary"
    color_class: str = ""


@dataclass(frozen=True)
class StatusVocabulary:
    """
    Ordered vocabulary for a single entity kind.

    Guarantees:
        - ``values`` preserves declaration order.
        - ``contains`` and ``get`` are O(1).

    Raises:
        ValueError: If two options share a value.
    """

    entity_kind: str
    options: tuple[StatusOption, ...]
    _by_value: Mapping[str, StatusOption] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        by_value: dict[str, StatusOption] = {}
        for option in self.options:
            if option.value in by_value:
                raise ValueError(
                    f"Duplicate status '{option.value}' in vocabulary "
                    f"for '{self.entity_kind}'"
                )
            by_value[option.value] = option
        object.__setattr__(self, "_by_value", MappingProxyType(by_value))

    @property
    def values(self) -> tuple[str, ...]:
        return tuple(option.value for option in self.options)

    def contains(self, status: str) -> bool:
        return status in self._by_value

    def get(self, status: str) -> StatusOption | None:
        return self._by_value.get(status)

    def label_for(self, status: str) -> str:
        option = self._by_value.get(status)
        return option.label if option is not None else status


@dataclass(frozen=True)
class VocabularyRegistry:
    """
    All vocabularies known to the kernel, plus the fallback.

    Contract:
        ``for_kind`` is a pure lookup.  A kind without its own vocabulary
        gets ``default``.
    """

    vocabularies: Mapping[str, StatusVocabulary]
    default: StatusVocabulary
    checksum: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "vocabularies", MappingProxyType(dict(self.vocabularies))
        )

    @classmethod
    def from_vocabularies(
        cls,
        vocabularies: Iterable[StatusVocabulary],
        default: StatusVocabulary,
        checksum: str = "",
    ) -> VocabularyRegistry:
        return cls(
            vocabularies={v.entity_kind: v for v in vocabularies},
            default=default,
            checksum=checksum,
        )

    def for_kind(self, entity_kind: str) -> StatusVocabulary:
        return self.vocabularies.get(entity_kind, self.default)

    def has_kind(self, entity_kind: str) -> bool:
        return entity_kind in self.vocabularies
