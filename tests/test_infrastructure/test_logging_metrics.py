"""
Test infrastructure components: logging and metrics.

These tests verify the production hardening infrastructure works correctly.
"""

from datetime import date

import pytest

from care_ledger.funding.models import FundingRecord
from care_ledger.kernel.errors import InsufficientBalanceError
from care_ledger.kernel.logging import (
    LogOperation,
    configure_logging,
    get_correlation_id,
    get_logger,
    set_correlation_id,
)
from care_ledger.kernel.metrics import (
    amount_overrides_total,
    contract_balance,
    operations_total,
    posting_rejections_total,
    transactions_posted_total,
)
from care_ledger.ledger import CareLedger
from care_ledger.residents.models import Resident


class TestLoggingFramework:
    """Test structured logging framework."""

    def test_configure_logging_console(self) -> None:
        """Test logging configuration for console output."""
        configure_logging(json_output=False, log_level="INFO")
        logger = get_logger(__name__)
        assert logger is not None

    def test_configure_logging_json(self) -> None:
        """Test logging configuration for JSON output."""
        configure_logging(json_output=True, log_level="DEBUG")
        logger = get_logger(__name__)
        assert logger is not None

    def test_correlation_id(self) -> None:
        """Test correlation ID context management."""
        cid = get_correlation_id()
        assert cid

        set_correlation_id("posting-run-42")
        assert get_correlation_id() == "posting-run-42"

    def test_log_operation_with_exception(self) -> None:
        """Test LogOperation re-raises after logging the failure."""
        configure_logging(json_output=False, log_level="INFO")
        logger = get_logger(__name__)

        with pytest.raises(ValueError):
            with LogOperation(logger, "failing_operation", amount="12.00"):
                raise ValueError("Test error")


class TestMetrics:
    """Test Prometheus metrics collection."""

    def test_posted_metric_and_balance_gauge(
        self, ledger: CareLedger, resident: Resident, contract: FundingRecord
    ) -> None:
        """Posting counts by contract type and publishes the balance."""
        before = transactions_posted_total.labels(contract_type="NDIS")._value.get()
        txn = ledger.create_transaction(
            resident.id, contract.id, date(2025, 1, 10), "THERAPY", "1", "120"
        )

        ledger.post_transaction(txn.id)

        after = transactions_posted_total.labels(contract_type="NDIS")._value.get()
        assert after == before + 1
        assert contract_balance.labels(contract_id=contract.id)._value.get() == 880.0

    def test_rejections_are_counted(
        self, ledger: CareLedger, resident: Resident, contract: FundingRecord
    ) -> None:
        """A blocked post counts as a rejection, not a failure."""
        rejected = posting_rejections_total.labels(reason="insufficient_balance")
        outcome = operations_total.labels(operation="post_transaction", status="rejected")
        before = (rejected._value.get(), outcome._value.get())
        txn = ledger.create_transaction(
            resident.id, contract.id, date(2025, 1, 10), "THERAPY", "1", "5000"
        )

        with pytest.raises(InsufficientBalanceError):
            ledger.post_transaction(txn.id)

        assert (rejected._value.get(), outcome._value.get()) == (before[0] + 1, before[1] + 1)

    def test_override_metric(
        self, ledger: CareLedger, resident: Resident, contract: FundingRecord
    ) -> None:
        before = amount_overrides_total._value.get()

        ledger.create_transaction(
            resident.id, contract.id, date(2025, 1, 10), "THERAPY", "1", "120", amount="100"
        )

        assert amount_overrides_total._value.get() == before + 1

