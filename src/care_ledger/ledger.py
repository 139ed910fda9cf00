"""
CareLedger - Main façade class

This is the primary interface for the contract balance and transaction
posting engine. It hides the repository, the handlers and the command models
behind plain method calls and returns typed records.

Example:
    >>> from care_ledger import CareLedger
    >>> ledger = CareLedger(sqlite_path="ledger.db")
    >>> resident = ledger.register_resident("Ada", "Lovelace")
    >>> contract = ledger.add_funding(resident.id, "NDIS", "1000.00", date(2024, 1, 1))
    >>> txn = ledger.create_transaction(
    ...     resident.id, contract.id, date(2024, 1, 5), "CORE_SUPPORT", 3, "100.00"
    ... )
    >>> ledger.post_transaction(txn.id)
    >>> ledger.get_funding(contract.id).current_balance  # Decimal("700.00")
"""

from collections.abc import Callable
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, TypeVar

import pydantic

from care_ledger.funding.commands import CreateFunding, DeleteFunding, UpdateFunding
from care_ledger.funding.handlers import FundingHandlers
from care_ledger.funding.models import FundingRecord
from care_ledger.kernel.errors import (
    HouseNotFound,
    ResidentNotFound,
    TransactionNotFound,
    ValidationError,
)
from care_ledger.kernel.ids import IdFactory, default_id_factory
from care_ledger.kernel.locks import ContractLockRegistry
from care_ledger.kernel.metrics import record_contract_balance
from care_ledger.kernel.policy import LedgerPolicy
from care_ledger.kernel.time import RealTimeProvider, TimeProvider
from care_ledger.residents.models import House, Resident
from care_ledger.storage.memory import InMemoryRepository
from care_ledger.storage.repository import LedgerRepository
from care_ledger.storage.sqlite import SQLiteRepository
from care_ledger.transactions.balance import summarize_resident
from care_ledger.transactions.commands import (
    BulkTransactionOperation,
    CreateTransaction,
    PostTransaction,
    UpdateTransaction,
    VoidTransaction,
)
from care_ledger.transactions.models import (
    BalancePreview,
    BulkOperationResult,
    RecentTransactionsSummary,
    ResidentBalanceSummary,
    SortField,
    TransactionFilters,
    TransactionPage,
    TransactionRecord,
    TransactionSort,
)
from care_ledger.transactions.workflow import PostingWorkflow

M = TypeVar("M", bound=pydantic.BaseModel)


def build_command(model: Callable[..., M], **fields: Any) -> M:
    """
    Construct a command model, converting pydantic errors

    Raises:
        ValidationError: With one issue per malformed field
    """
    try:
        return model(**fields)
    except pydantic.ValidationError as e:
        raise ValidationError.from_pydantic(e) from e


class CareLedger:
    """
    Care Ledger main façade

    Provides a unified API for:
    - Resident and house registration
    - Funding contract lifecycle
    - Draft transactions, posting, voiding and bulk operations
    - Listings, balance summaries and reconciliation
    """

    def __init__(
        self,
        repository: LedgerRepository | None = None,
        sqlite_path: str | Path | None = None,
        policy: LedgerPolicy | None = None,
        time_provider: TimeProvider | None = None,
        id_factory: IdFactory | None = None,
    ) -> None:
        """
        Initialize the ledger

        Args:
            repository: Storage to use (wins over sqlite_path)
            sqlite_path: Path to SQLite database; in-memory storage if None
            policy: Ledger policy (uses defaults if None)
            time_provider: Time provider (uses real time if None)
            id_factory: Id generator (time-ordered ids if None)
        """
        self.policy = policy or LedgerPolicy()
        self.time_provider = time_provider or RealTimeProvider()
        self.id_factory = id_factory or default_id_factory

        if repository is not None:
            self.repository = repository
        elif sqlite_path is not None:
            self.repository = SQLiteRepository(sqlite_path, self.policy, self.time_provider)
        else:
            self.repository = InMemoryRepository(self.policy)

        self.locks = ContractLockRegistry()
        self.funding_handlers = FundingHandlers(
            self.repository, self.time_provider, self.policy, self.locks, self.id_factory
        )
        self.workflow = PostingWorkflow(
            self.repository, self.time_provider, self.policy, self.locks, self.id_factory
        )

    # Residents & houses

    def register_house(self, name: str) -> House:
        """Register a care house"""
        house = build_command(House, id=self.id_factory.generate("house"), name=name)
        self.repository.save_house(house)
        return house

    def register_resident(
        self, first_name: str, last_name: str, house_id: str | None = None
    ) -> Resident:
        """
        Register a resident

        Raises:
            HouseNotFound: If house_id is given but unknown
            ValidationError: If a name is empty or too long
        """
        if house_id is not None and self.repository.get_house(house_id) is None:
            raise HouseNotFound(house_id)

        resident = build_command(
            Resident,
            id=self.id_factory.generate("res"),
            first_name=first_name,
            last_name=last_name,
            house_id=house_id,
            created_at=self.time_provider.now(),
        )
        self.repository.save_resident(resident)
        return resident

    def get_resident(self, resident_id: str) -> Resident:
        resident = self.repository.get_resident(resident_id)
        if resident is None:
            raise ResidentNotFound(resident_id)
        return resident

    def list_residents(self) -> list[Resident]:
        return sorted(self.repository.list_residents(), key=lambda r: (r.last_name, r.id))

    # Funding operations

    def add_funding(
        self,
        resident_id: str,
        type: str,
        amount: Decimal | str | int,
        start_date: date,
        end_date: date | None = None,
        renewal_date: date | None = None,
        description: str | None = None,
        is_active: bool = True,
        drawdown_rate: str = "monthly",
        auto_drawdown: bool = True,
    ) -> FundingRecord:
        """
        Add a funding contract to a resident

        Args:
            resident_id: Owning resident
            type: NDIS, Government, Private, Family or Other
            amount: Contract value (0 to 999999.99)
            start_date: First day of the contract
            end_date: Last day (open-ended if None)
            renewal_date: Renewal due date (after start_date)
            description: Free text (up to 200 characters)
            is_active: Whether postings are allowed
            drawdown_rate: daily, weekly or monthly
            auto_drawdown: Whether drawdown is automatic

        Returns:
            The new funding record (current_balance == amount)
        """
        command = build_command(
            CreateFunding,
            resident_id=resident_id,
            type=type,
            amount=amount,
            start_date=start_date,
            end_date=end_date,
            renewal_date=renewal_date,
            description=description,
            is_active=is_active,
            drawdown_rate=drawdown_rate,
            auto_drawdown=auto_drawdown,
        )
        return self.funding_handlers.handle_create_funding(command)

    def update_funding(self, contract_id: str, **changes: Any) -> FundingRecord:
        """
        Partially update a contract

        Only the keyword arguments passed are changed; pass None to clear an
        optional field (end_date, renewal_date, description).
        """
        command = build_command(UpdateFunding, contract_id=contract_id, **changes)
        return self.funding_handlers.handle_update_funding(command)

    def remove_funding(self, contract_id: str) -> None:
        """Delete a contract with no draft or posted transactions (terminal)"""
        command = build_command(DeleteFunding, contract_id=contract_id)
        self.funding_handlers.handle_delete_funding(command)

    def list_funding(self, resident_id: str) -> list[FundingRecord]:
        return self.funding_handlers.list_funding(resident_id)

    def get_funding(self, contract_id: str) -> FundingRecord:
        return self.funding_handlers.get_funding(contract_id)

    # Transaction operations

    def create_transaction(
        self,
        resident_id: str,
        contract_id: str,
        occurred_at: date,
        service_code: str,
        quantity: Decimal | str | int,
        unit_price: Decimal | str | int,
        amount: Decimal | str | int | None = None,
        description: str | None = None,
        note: str | None = None,
        actor_id: str = "system",
    ) -> TransactionRecord:
        """
        Create a draft transaction

        amount defaults to quantity x unit_price; pass it to override.
        """
        command = build_command(
            CreateTransaction,
            resident_id=resident_id,
            contract_id=contract_id,
            occurred_at=occurred_at,
            service_code=service_code,
            quantity=quantity,
            unit_price=unit_price,
            amount=amount,
            description=description,
            note=note,
        )
        return self.workflow.create(command, actor_id)

    def update_transaction(self, transaction_id: str, **changes: Any) -> TransactionRecord:
        """Edit a draft; only the keyword arguments passed are changed"""
        command = build_command(UpdateTransaction, transaction_id=transaction_id, **changes)
        return self.workflow.update(command)

    def delete_transaction(self, transaction_id: str) -> None:
        """Discard a draft"""
        self.workflow.delete_draft(transaction_id)

    def get_transaction(self, transaction_id: str) -> TransactionRecord:
        transaction = self.repository.get_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFound(transaction_id)
        return transaction

    def preview_posting(self, contract_id: str, amount: Decimal | str | int) -> BalancePreview:
        """Preview posting an amount against a contract without committing"""
        try:
            value = Decimal(str(amount))
        except InvalidOperation as e:
            raise ValidationError.single("amount", "Amount must be a number") from e
        return self.workflow.preview_amount(contract_id, value)

    def preview_transaction(self, transaction_id: str) -> BalancePreview:
        """Preview posting an existing draft without committing"""
        return self.workflow.preview(transaction_id)

    def post_transaction(
        self,
        transaction_id: str,
        force: bool = False,
        request_id: str | None = None,
        actor_id: str = "system",
    ) -> TransactionRecord:
        """
        Post a draft (draft → posted)

        Args:
            transaction_id: Draft to post
            force: Post even if it overdraws (only honoured when the policy
                allows overdraft override)
            request_id: Idempotency key; repeating it returns the stored record
            actor_id: Who posts
        """
        command = build_command(
            PostTransaction, transaction_id=transaction_id, force=force, request_id=request_id
        )
        return self.workflow.post(command, actor_id)

    def void_transaction(
        self,
        transaction_id: str,
        reason: str | None,
        request_id: str | None = None,
        actor_id: str = "system",
    ) -> TransactionRecord:
        """Void a posted transaction (posted → voided); reason is required"""
        command = build_command(
            VoidTransaction, transaction_id=transaction_id, reason=reason, request_id=request_id
        )
        return self.workflow.void(command, actor_id)

    def bulk_operation(
        self,
        action: str,
        transaction_ids: list[str],
        reason: str | None = None,
        actor_id: str = "system",
    ) -> BulkOperationResult:
        """Post or void many transactions; each item succeeds or fails on its own"""
        command = build_command(
            BulkTransactionOperation,
            action=action,
            transaction_ids=transaction_ids,
            reason=reason,
        )
        return self.workflow.bulk(command, actor_id)

    # Queries

    def list_transactions(
        self,
        filters: TransactionFilters | dict[str, Any] | None = None,
        sort: TransactionSort | dict[str, Any] | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> TransactionPage:
        """
        Filtered, sorted, paginated transaction listing

        Defaults: no filters, occurred_at descending, page size 25.
        """
        if isinstance(filters, dict):
            filters = build_command(TransactionFilters, **filters)
        if isinstance(sort, dict):
            sort = build_command(TransactionSort, **sort)
        return self.repository.list_transactions(filters, sort, page, page_size)

    def resident_balance_summary(self, resident_id: str) -> ResidentBalanceSummary:
        """Balances of a resident's active contracts"""
        self.get_resident(resident_id)
        return summarize_resident(
            resident_id,
            self.repository.list_funding_records(resident_id=resident_id),
            self.repository.iter_transactions(resident_id=resident_id),
            self.time_provider.today(),
            self.policy.recent_window_days,
        )

    def recent_transactions(self, resident_id: str, limit: int = 10) -> RecentTransactionsSummary:
        """A resident's latest transactions, newest first"""
        self.get_resident(resident_id)
        page = self.repository.list_transactions(
            TransactionFilters(resident_ids=[resident_id]),
            TransactionSort(field=SortField.OCCURRED_AT),
            page=1,
            page_size=limit,
        )
        return RecentTransactionsSummary(
            resident_id=resident_id,
            transactions=page.transactions,
            total_count=page.total,
            has_more=page.has_more,
        )

    def reconcile_contract(self, contract_id: str, repair: bool = False) -> FundingRecord:
        """
        Check a contract's stored balance against its ledger

        Raises:
            BalanceDriftDetected: If they differ and repair is False
        """
        return self.workflow.reconcile(contract_id, repair)

    def publish_balance_metrics(self) -> int:
        """
        Set the contract balance gauge for every stored contract

        Balances are recomputed from each contract's ledger, so a metrics
        process sees postings made by other processes on the same database.

        Returns:
            Number of contracts published
        """
        records = self.repository.list_funding_records()
        for record in records:
            record_contract_balance(record.id, self.workflow.current_balance(record))
        return len(records)
