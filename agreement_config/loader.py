"""
Vocabulary Loader (``agreement_config.loader``).

Responsibility
--------------
Reads the status vocabulary YAML file and turns its contents into the
kernel's frozen ``VocabularyRegistry``.  Runtime callers go through
``agreement_config.get_active_vocabulary()`` instead of calling this module.

Invariants enforced
-------------------
* Required keys (``value``, ``label``) raise ``KeyError`` when missing; no
  silent defaults for them.
* ``compute_checksum`` is deterministic for identical content.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from agreement_kernel.domain.vocabulary import (
    StatusOption,
    StatusVocabulary,
    VocabularyRegistry,
)

DEFAULT_KIND = "default"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_option(data: dict[str, Any]) -> StatusOption:
    """Parse one status option."""
    return StatusOption(
        value=str(data["value"]),
        label=str(data["label"]),
        description=str(data.get("description", "")),
        color_type=str(data.get("color_type", "secondary")),
        color_class=str(data.get("color_class", "")),
    )


def parse_vocabulary(entity_kind: str, options: list[dict[str, Any]]) -> StatusVocabulary:
    return StatusVocabulary(
        entity_kind=entity_kind,
        options=tuple(parse_option(o) for o in options),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def build_registry(data: dict[str, Any]) -> VocabularyRegistry:
    """
    Build a registry from an already validated document.

    Raises:
        KeyError: ``default`` is missing or an option lacks a required key.
        ValueError: A vocabulary repeats a value.
    """
    default = parse_vocabulary(DEFAULT_KIND, data[DEFAULT_KIND])
    kinds = data.get("kinds") or {}
    return VocabularyRegistry.from_vocabularies(
        (parse_vocabulary(kind, options) for kind, options in kinds.items()),
        default=default,
        checksum=compute_checksum(data),
    )


def load_registry(path: Path) -> VocabularyRegistry:
    """Load and build without validation (build/test tooling)."""
    return build_registry(load_yaml_file(path))
