"""Tests for per-load earnings."""

from decimal import Decimal

import pytest
from hypothesis import given, strategies as st

from driver_payroll.calculators.load_earnings import compute_load_earning, compute_load_earnings
from driver_payroll.calculators.types import LoadInput, PaymentMethod, PaymentTerms
from driver_payroll.errors import CalculationError


def percentage_terms(driver: str = "70", company: str = "30", fee: str = "5") -> PaymentTerms:
    return PaymentTerms(
        method=PaymentMethod.PERCENTAGE,
        driver_percent=Decimal(driver),
        company_percent=Decimal(company),
        service_fee_percent=Decimal(fee),
    )


class TestPercentage:
    """Service fee comes off the top, the remainder is split."""

    def test_three_load_week(self):
        """$1000 + $1500 + $800 at 70% with a 5% fee."""
        loads = [
            LoadInput("L-1", Decimal("1000")),
            LoadInput("L-2", Decimal("1500")),
            LoadInput("L-3", Decimal("800")),
        ]

        result = compute_load_earnings(loads, percentage_terms())

        assert result.service_fee == Decimal("165")
        assert result.base_pay == Decimal("2194.5")
        assert result.gross_revenue == Decimal("3300")
        assert result.company_share == Decimal("940.5")
        assert result.load_count == 3
        assert [e.driver_share for e in result.per_load] == [
            Decimal("665"),
            Decimal("997.5"),
            Decimal("532"),
        ]

    def test_no_rounding_inside_calculation(self):
        """Fractions of a cent survive until persistence."""
        earning = compute_load_earning(
            LoadInput("L-1", Decimal("333.33")), percentage_terms(fee="3")
        )
        assert earning.service_fee == Decimal("9.9999")
        assert earning.driver_share == Decimal("226.331070")

    @given(
        gross=st.decimals(min_value=0, max_value=100000, places=2),
        driver_percent=st.integers(min_value=0, max_value=100),
        fee_percent=st.decimals(min_value=0, max_value=25, places=2),
    )
    def test_shares_and_fee_sum_to_gross(self, gross, driver_percent, fee_percent):
        """driver + company + fee == gross for every load."""
        terms = percentage_terms(
            driver=str(driver_percent),
            company=str(100 - driver_percent),
            fee=str(fee_percent),
        )
        earning = compute_load_earning(LoadInput("L-1", gross), terms)
        assert earning.driver_share + earning.company_share + earning.service_fee == gross


class TestPayPerMile:
    def test_miles_times_rate(self):
        terms = PaymentTerms(
            method=PaymentMethod.PAY_PER_MILE,
            pay_per_mile_rate=Decimal("0.65"),
            service_fee_percent=Decimal("5"),
        )
        earning = compute_load_earning(
            LoadInput("L-1", Decimal("2000"), final_miles=Decimal("1000")), terms
        )
        assert earning.driver_share == Decimal("650.00")
        assert earning.service_fee == Decimal("100")
        assert earning.company_share == Decimal("1250.00")
        assert earning.miles == Decimal("1000")

    def test_zero_mile_load_pays_nothing(self):
        """A zero-mile load is legitimate, not an error."""
        terms = PaymentTerms(method=PaymentMethod.PAY_PER_MILE, pay_per_mile_rate=Decimal("0.65"))
        earning = compute_load_earning(
            LoadInput("L-1", Decimal("400"), final_miles=Decimal("0")), terms
        )
        assert earning.driver_share == 0
        assert earning.company_share == Decimal("400")

    def test_missing_miles_count_as_zero(self):
        terms = PaymentTerms(method=PaymentMethod.PAY_PER_MILE, pay_per_mile_rate=Decimal("0.65"))
        result = compute_load_earnings([LoadInput("L-1", Decimal("400"))], terms)
        assert result.base_pay == 0
        assert result.total_miles == 0


class TestFlatRate:
    def test_stored_rate_is_driver_share(self):
        terms = PaymentTerms(method=PaymentMethod.FLAT_RATE, service_fee_percent=Decimal("5"))
        earning = compute_load_earning(
            LoadInput("L-1", Decimal("1200"), driver_rate=Decimal("850")), terms
        )
        assert earning.driver_share == Decimal("850")
        assert earning.company_share == Decimal("290")

    def test_missing_rate_names_the_load(self):
        terms = PaymentTerms(method=PaymentMethod.FLAT_RATE)
        loads = [
            LoadInput("L-1", Decimal("1200"), driver_rate=Decimal("850")),
            LoadInput("L-2", Decimal("900")),
        ]

        with pytest.raises(CalculationError) as exc_info:
            compute_load_earnings(loads, terms)

        assert exc_info.value.load_number == "L-2"
        assert "L-2" in str(exc_info.value)
