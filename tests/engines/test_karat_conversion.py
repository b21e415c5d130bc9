"""
Tests for karat conversion.

Covers:
- Equal-value conversion and rounding of the target weight
- Conversion factor and value properties
- Same-karat rejection
- Non-positive weights and rates
"""

import pytest
from decimal import Decimal

from goldpos_engines.karat import convert_weight
from goldpos_kernel.exceptions import DifferentKaratRequiredError, ValidationError


def convert(from_karat="21K", to_karat="24K", weight="10", from_rate="100", to_rate="115"):
    return convert_weight(
        from_karat_type_id=from_karat,
        to_karat_type_id=to_karat,
        from_weight=Decimal(weight),
        from_rate=Decimal(from_rate),
        to_rate=Decimal(to_rate),
    )


class TestConvertWeight:
    def test_21k_to_24k(self):
        """10g of 21K at 100 becomes 1000 / 115 = 8.696g of 24K."""
        result = convert()

        assert result.to_weight == Decimal("8.696")
        assert result.conversion_factor == Decimal("0.869600")
        assert result.from_value == Decimal("1000.00")
        assert result.to_value == Decimal("1000.04")

    def test_lower_karat_gains_weight(self):
        result = convert(from_karat="24K", to_karat="18K", weight="10", from_rate="115", to_rate="85")

        assert result.to_weight == Decimal("13.529")
        assert result.conversion_factor > Decimal("1")

    def test_value_preserved_within_weight_rounding(self):
        result = convert(weight="123.457", from_rate="101.25", to_rate="117.80")

        drift = abs(result.to_weight * result.to_rate - result.from_weight * result.from_rate)
        assert drift <= result.to_rate * Decimal("0.0005")

    def test_same_karat_rejected(self):
        with pytest.raises(DifferentKaratRequiredError) as exc_info:
            convert(from_karat="21K", to_karat="21K")

        assert exc_info.value.karat_type_id == "21K"
        assert exc_info.value.code == "DIFFERENT_KARAT_REQUIRED"

    def test_same_karat_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            convert(from_karat="18K", to_karat="18K")

    @pytest.mark.parametrize("weight", ["0", "-5"])
    def test_non_positive_weight_rejected(self, weight):
        with pytest.raises(ValidationError) as exc_info:
            convert(weight=weight)
        assert exc_info.value.field == "from_weight"

    @pytest.mark.parametrize("from_rate,to_rate", [("0", "115"), ("100", "0"), ("-1", "115")])
    def test_non_positive_rate_rejected(self, from_rate, to_rate):
        with pytest.raises(ValidationError):
            convert(from_rate=from_rate, to_rate=to_rate)

    def test_weight_rounding_to_zero_rejected(self):
        with pytest.raises(ValidationError):
            convert(weight="0.001", from_rate="1", to_rate="500")

    def test_weight_beyond_milligram_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            convert(weight="10.0004")

        assert exc_info.value.field == "from_weight"

    def test_conversion_is_deterministic(self):
        assert convert() == convert()
