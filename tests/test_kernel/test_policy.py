"""
Tests for LedgerPolicy - defaults, bounds and environment loading
"""

from decimal import Decimal

import pydantic
import pytest

from care_ledger.kernel.policy import DEFAULT_SERVICE_CODES, LedgerPolicy


def test_defaults() -> None:
    policy = LedgerPolicy()

    assert policy.funding_amount_max == Decimal("999999.99")
    assert policy.transaction_amount_max == Decimal("999999.99")
    assert policy.transaction_quantity_max == Decimal("10000")
    assert policy.default_page_size == 25
    assert policy.max_page_size == 100
    assert policy.allow_overdraft_override is False
    assert policy.service_codes == DEFAULT_SERVICE_CODES


@pytest.mark.parametrize(
    ("requested", "expected"),
    [(None, 25), (0, 1), (-5, 1), (10, 10), (100, 100), (500, 100)],
)
def test_clamp_page_size(requested: int | None, expected: int) -> None:
    assert LedgerPolicy().clamp_page_size(requested) == expected


def test_default_page_size_cannot_exceed_maximum() -> None:
    with pytest.raises(pydantic.ValidationError):
        LedgerPolicy(default_page_size=50, max_page_size=20)


def test_known_service_codes() -> None:
    policy = LedgerPolicy()

    assert policy.is_known_service_code("SDA_RENT")
    assert policy.is_known_service_code("THERAPY")
    assert not policy.is_known_service_code("sda_rent")
    assert not policy.is_known_service_code("MASSAGE")


def test_from_env_reads_prefixed_variables() -> None:
    policy = LedgerPolicy.from_env(
        {
            "CARE_LEDGER_ALLOW_OVERDRAFT_OVERRIDE": "true",
            "CARE_LEDGER_SERVICE_CODES": "SDA_RENT, THERAPY",
            "CARE_LEDGER_MAX_PAGE_SIZE": "50",
            "CARE_LEDGER_FUNDING_AMOUNT_MAX": "5000",
            "UNRELATED": "ignored",
        }
    )

    assert policy.allow_overdraft_override is True
    assert policy.service_codes == ["SDA_RENT", "THERAPY"]
    assert policy.max_page_size == 50
    assert policy.funding_amount_max == Decimal("5000")


def test_from_env_without_variables_uses_defaults() -> None:
    assert LedgerPolicy.from_env({}) == LedgerPolicy()


def test_from_env_false_values() -> None:
    policy = LedgerPolicy.from_env({"CARE_LEDGER_ALLOW_OVERDRAFT_OVERRIDE": "no"})

    assert policy.allow_overdraft_override is False
