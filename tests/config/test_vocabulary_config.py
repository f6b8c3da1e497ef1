"""
Vocabulary configuration: YAML loading, validation and the single
``get_active_vocabulary`` entrypoint.
"""

import pytest
import yaml

from agreement_config import (
    DEFAULT_VOCABULARY_PATH,
    clear_vocabulary_cache,
    get_active_vocabulary,
)
from agreement_config.loader import build_registry, compute_checksum, load_yaml_file
from agreement_config.validator import validate_vocabulary_document
from agreement_kernel.domain.statuses import (
    AgreementStatus,
    LineItemStatus,
    SubAgreementStatus,
)


def _options(*values):
    return [{"value": v, "label": v.title()} for v in values]


def _document(**overrides):
    doc = {
        "version": 1,
        "default": _options("pending", "confirmed", "cancelled"),
        "kinds": {
            "agreement": _options(*(s.value for s in AgreementStatus)),
            "sub-agreement": _options(*(s.value for s in SubAgreementStatus)),
            "line-item": _options(*(s.value for s in LineItemStatus)),
        },
    }
    doc.update(overrides)
    return doc


@pytest.fixture(autouse=True)
def _fresh_cache():
    clear_vocabulary_cache()
    yield
    clear_vocabulary_cache()


class TestPackagedVocabulary:
    """The vocabulary file shipped with the package."""

    def test_packaged_file_is_valid(self):
        result = validate_vocabulary_document(load_yaml_file(DEFAULT_VOCABULARY_PATH))
        assert result.is_valid, result.errors
        assert result.warnings == []

    def test_hierarchy_kinds_declare_every_status(self):
        registry = get_active_vocabulary()
        for kind, enum in (
            ("agreement", AgreementStatus),
            ("sub-agreement", SubAgreementStatus),
            ("line-item", LineItemStatus),
        ):
            vocab = registry.for_kind(kind)
            for status in enum:
                assert vocab.contains(status.value), (kind, status.value)

    def test_history_only_kinds_present(self):
        registry = get_active_vocabulary()
        for kind in ("contract", "counterparty", "event"):
            assert registry.has_kind(kind)

    def test_labels_and_colours_loaded(self):
        option = get_active_vocabulary().for_kind("sub-agreement").get("needs-attention")
        assert option.label
        assert option.color_type in {"secondary", "warning", "info", "success", "error"}


class TestGetActiveVocabulary:
    def test_cached_per_path(self):
        assert get_active_vocabulary() is get_active_vocabulary()

    def test_checksum_is_deterministic(self, tmp_path):
        first = tmp_path / "a.yaml"
        second = tmp_path / "b.yaml"
        first.write_text(yaml.safe_dump(_document()))
        second.write_text(yaml.safe_dump(_document()))
        assert get_active_vocabulary(first).checksum == get_active_vocabulary(second).checksum
        assert get_active_vocabulary(first).checksum == compute_checksum(_document())

    def test_invalid_file_lists_all_errors(self, tmp_path):
        doc = _document(default=[])
        doc["kinds"]["line-item"] = _options("pending", "pending")
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump(doc))

        with pytest.raises(ValueError) as exc_info:
            get_active_vocabulary(path)
        message = str(exc_info.value)
        assert "default" in message
        assert "duplicate status 'pending'" in message

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_vocabulary(tmp_path / "absent.yaml")

    def test_trace_logged_once_per_load(self, tmp_path, captured_logs):
        path = tmp_path / "v.yaml"
        path.write_text(yaml.safe_dump(_document()))
        registry = get_active_vocabulary(path)
        get_active_vocabulary(path)

        traces = [r for r in captured_logs() if r["message"] == "STATUS_VOCABULARY_TRACE"]
        assert len(traces) == 1
        assert traces[0]["checksum"] == registry.checksum
        assert traces[0]["kind_count"] == 3
        assert traces[0]["version"] == 1


class TestValidator:
    def test_valid_document(self):
        assert validate_vocabulary_document(_document()).is_valid

    def test_missing_hierarchy_status(self):
        doc = _document()
        doc["kinds"]["sub-agreement"] = _options("pending", "accepted")
        result = validate_vocabulary_document(doc)
        assert not result.is_valid
        assert any("'needs-attention'" in e for e in result.errors)

    def test_missing_hierarchy_kind(self):
        doc = _document()
        del doc["kinds"]["agreement"]
        result = validate_vocabulary_document(doc)
        assert any("hierarchy kind 'agreement'" in e for e in result.errors)

    def test_missing_label(self):
        doc = _document()
        doc["kinds"]["contract"] = [{"value": "active"}]
        result = validate_vocabulary_document(doc)
        assert any("missing 'label'" in e for e in result.errors)

    def test_unknown_kind_and_colour_are_warnings(self):
        doc = _document()
        doc["kinds"]["invoice"] = [
            {"value": "open", "label": "Open", "color_type": "purple"}
        ]
        result = validate_vocabulary_document(doc)
        assert result.is_valid
        assert len(result.warnings) == 2

    def test_kinds_must_be_mapping(self):
        result = validate_vocabulary_document(_document(kinds=["agreement"]))
        assert not result.is_valid


class TestLoader:
    def test_build_registry_falls_back_to_default(self):
        registry = build_registry(_document())
        assert registry.for_kind("unknown").values == ("pending", "confirmed", "cancelled")

    def test_option_defaults(self):
        registry = build_registry(_document())
        option = registry.for_kind("agreement").get("draft")
        assert option.color_type == "secondary"
        assert option.description == ""

    def test_checksum_changes_with_content(self):
        assert compute_checksum(_document()) != compute_checksum(_document(version=2))
