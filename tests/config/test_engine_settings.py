"""
Tests for engine settings loading.

Covers:
- Packaged defaults
- Override documents, by argument and by GOLDPOS_CONFIG
- Strict key checking and value validation
- Deterministic checksums and the GOLDPOS_CONFIG_TRACE record
"""

import pytest
from decimal import Decimal

import yaml

from goldpos_config import CONFIG_ENV_VAR, get_active_settings
from goldpos_config.loader import compute_checksum, merge_documents, parse_decimal, parse_settings
from goldpos_config.schema import OwnershipSettings, TransferSettings
from goldpos_kernel.domain.dtos import CostMethod


@pytest.fixture
def write_override(tmp_path):
    def _write(document):
        path = tmp_path / "override.yaml"
        path.write_text(yaml.safe_dump(document))
        return path

    return _write


class TestDefaults:
    def test_packaged_defaults(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)

        settings = get_active_settings()

        assert settings.ownership.low_ownership_threshold == Decimal("50")
        assert settings.ownership.high_severity_ownership_below == Decimal("25")
        assert settings.ownership.high_severity_outstanding_above == Decimal("10000")
        assert settings.costing.recommended_method == CostMethod.WEIGHTED_AVERAGE
        assert settings.concurrency.max_attempts == 3
        assert settings.transfers.number_prefix == "RGT"
        assert len(settings.checksum) == 64

    def test_trace_record_emitted(self, monkeypatch, captured_logs):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)

        settings = get_active_settings()

        (trace,) = [r for r in captured_logs() if r["message"] == "GOLDPOS_CONFIG_TRACE"]
        assert trace["checksum"] == settings.checksum
        assert trace["source"].endswith("defaults.yaml")


class TestOverrides:
    def test_override_merges_section_wise(self, write_override):
        path = write_override({"ownership": {"low_ownership_threshold": "60"}})

        settings = get_active_settings(path)

        assert settings.ownership.low_ownership_threshold == Decimal("60")
        assert settings.ownership.high_severity_ownership_below == Decimal("25")

    def test_env_var_override(self, write_override, monkeypatch):
        path = write_override({"costing": {"recommended_method": "FIFO"}})
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        settings = get_active_settings()

        assert settings.costing.recommended_method == CostMethod.FIFO

    def test_override_changes_checksum(self, write_override, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        path = write_override({"transfers": {"number_prefix": "XFR"}})

        assert get_active_settings(path).checksum != get_active_settings().checksum

    def test_missing_override_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_settings(tmp_path / "absent.yaml")


class TestValidation:
    @pytest.mark.parametrize(
        "document",
        [
            {"alerts": {}},
            {"ownership": {"low_threshold": "50"}},
            {"ownership": ["not", "a", "mapping"]},
        ],
    )
    def test_unknown_or_malformed_keys_rejected(self, document):
        with pytest.raises(ValueError):
            parse_settings(document)

    def test_float_literals_rejected(self):
        with pytest.raises(ValueError):
            parse_settings({"ownership": {"low_ownership_threshold": 50.5}})

    def test_unknown_cost_method_rejected(self):
        with pytest.raises(ValueError):
            parse_settings({"costing": {"recommended_method": "Average"}})

    def test_inverted_thresholds_rejected(self):
        with pytest.raises(ValueError):
            OwnershipSettings(
                low_ownership_threshold=Decimal("20"),
                high_severity_ownership_below=Decimal("30"),
            )

    def test_threshold_out_of_range_rejected(self):
        with pytest.raises(ValueError):
            parse_settings({"ownership": {"low_ownership_threshold": "150"}})

    def test_prefix_must_be_alphanumeric(self):
        with pytest.raises(ValueError):
            TransferSettings(number_prefix="RG-T")

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            parse_settings({"concurrency": {"max_attempts": 0}})


class TestHelpers:
    def test_parse_decimal(self):
        assert parse_decimal("0.01", "x") == Decimal("0.01")
        assert parse_decimal(7, "x") == Decimal("7")
        with pytest.raises(ValueError):
            parse_decimal(True, "x")
        with pytest.raises(ValueError):
            parse_decimal("abc", "x")

    def test_merge_does_not_mutate_base(self):
        base = {"ownership": {"low_ownership_threshold": "50"}}

        merged = merge_documents(base, {"ownership": {"low_ownership_threshold": "70"}})

        assert merged["ownership"]["low_ownership_threshold"] == "70"
        assert base["ownership"]["low_ownership_threshold"] == "50"

    def test_checksum_ignores_key_order(self):
        a = {"version": 1, "transfers": {"number_prefix": "RGT"}}
        b = {"transfers": {"number_prefix": "RGT"}, "version": 1}

        assert compute_checksum(a) == compute_checksum(b)
