"""
agreement_config -- single public entrypoint for the status vocabulary.

Responsibility:
    Provides the ONLY way to obtain the status vocabulary at runtime through
    ``get_active_vocabulary()``.  Returns a frozen ``VocabularyRegistry``.
    YAML loading is internal tooling and never exposed to callers.

Architecture position:
    Configuration -- YAML-driven, validated before activation.
    This package sits above ``agreement_kernel``.  The kernel MUST NEVER
    import from ``agreement_config``; the registry is injected into
    ``EntityStatusService`` by the caller.

Invariants enforced:
    - Single entrypoint: all runtime vocabulary flows through
      ``get_active_vocabulary()``.
    - Validation before activation: a document with any validation error is
      never turned into a registry.
    - Deterministic checksum: identical YAML content always yields the same
      registry checksum.

Failure modes:
    - ``FileNotFoundError`` -- the vocabulary file does not exist.
    - ``ValueError`` -- validation failures (all errors listed).

Audit relevance:
    Every load emits a ``STATUS_VOCABULARY_TRACE`` log entry with the
    document version, checksum and kind count, tying recorded statuses back
    to the vocabulary that accepted them.
"""

from __future__ import annotations

import logging
from pathlib import Path

from agreement_config.loader import build_registry, load_yaml_file
from agreement_config.validator import validate_vocabulary_document
from agreement_kernel.domain.vocabulary import VocabularyRegistry

_logger = logging.getLogger("agreement_kernel.config")

DEFAULT_VOCABULARY_PATH = (
    Path(__file__).parent / "vocabularies" / "status_vocabulary.yaml"
)

_cache: dict[Path, VocabularyRegistry] = {}


def get_active_vocabulary(path: Path | None = None) -> VocabularyRegistry:
    """The ONLY public vocabulary entrypoint.

    Contract:
        The registry for a given file is loaded and validated once per
        process; later calls return the same frozen object.

    Guarantees:
        - The returned registry passed ``validate_vocabulary_document``.
        - A ``STATUS_VOCABULARY_TRACE`` log entry is emitted when the file
          is loaded.

    Args:
        path: Override path to a vocabulary YAML file.  Defaults to the
            packaged ``vocabularies/status_vocabulary.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If validation fails.
    """
    resolved = (path or DEFAULT_VOCABULARY_PATH).resolve()
    cached = _cache.get(resolved)
    if cached is not None:
        return cached

    data = load_yaml_file(resolved)
    validation = validate_vocabulary_document(data)
    if not validation.is_valid:
        raise ValueError(
            "Status vocabulary validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning(
            "status_vocabulary_warning",
            extra={"path": str(resolved), "warning": warning},
        )

    registry = build_registry(data)

    _logger.info(
        "STATUS_VOCABULARY_TRACE",
        extra={
            "trace_type": "STATUS_VOCABULARY_TRACE",
            "path": str(resolved),
            "version": data.get("version"),
            "checksum": registry.checksum,
            "kind_count": len(registry.vocabularies),
        },
    )

    _cache[resolved] = registry
    return registry


def clear_vocabulary_cache() -> None:
    """Forget loaded registries (tests and reload tooling)."""
    _cache.clear()


__all__ = [
    "DEFAULT_VOCABULARY_PATH",
    "clear_vocabulary_cache",
    "get_active_vocabulary",
]
