"""
Funding Module Handlers - Contract lifecycle

Handlers are the decision-making layer for funding contracts. They:
1. Load current state from the repository
2. Validate invariants (fields, resident reference, posted total)
3. Write the new state with an optimistic version check

Updates and deletes run under the contract lock, so they can never
interleave with a post or void on the same contract.
"""

from care_ledger.funding.commands import CreateFunding, DeleteFunding, UpdateFunding
from care_ledger.funding.invariants import merge_funding_update, validate_funding_create
from care_ledger.funding.models import FundingRecord, derive_contract_status
from care_ledger.kernel.errors import ContractInUse, ContractNotFound, ResidentNotFound
from care_ledger.kernel.ids import IdFactory, default_id_factory
from care_ledger.kernel.locks import ContractLockRegistry
from care_ledger.kernel.logging import LogOperation, get_logger
from care_ledger.kernel.metrics import record_contract_balance, track_operation
from care_ledger.kernel.policy import LedgerPolicy
from care_ledger.kernel.retry import retry_on_version_conflict
from care_ledger.kernel.time import TimeProvider
from care_ledger.storage.repository import LedgerRepository
from care_ledger.transactions.balance import posted_total

logger = get_logger(__name__)


class FundingHandlers:
    """
    Command handlers for the funding module

    Handlers validate commands against the current repository state and
    persist the resulting funding records.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        time_provider: TimeProvider,
        policy: LedgerPolicy,
        locks: ContractLockRegistry,
        id_factory: IdFactory = default_id_factory,
    ) -> None:
        """
        Initialize handlers with dependencies

        Args:
            repository: Storage for residents, contracts and transactions
            time_provider: For timestamps and contract status (injectable for testing)
            policy: Ledger policy
            locks: Per-contract lock registry shared with the posting workflow
            id_factory: Id generator
        """
        self.repository = repository
        self.time_provider = time_provider
        self.policy = policy
        self.locks = locks
        self.id_factory = id_factory

    @track_operation("create_funding")
    def handle_create_funding(self, command: CreateFunding) -> FundingRecord:
        """
        Handle CreateFunding command

        Validates:
        - Resident exists
        - Amount, dates, enums and description are valid

        Args:
            command: CreateFunding command

        Returns:
            The stored funding record (balance == amount, version 1)

        Raises:
            ResidentNotFound: If the resident doesn't exist
            ValidationError: If any field is invalid
        """
        with LogOperation(logger, "create_funding", resident_id=command.resident_id):
            if self.repository.get_resident(command.resident_id) is None:
                raise ResidentNotFound(command.resident_id)

            data = validate_funding_create(command, self.policy)
            now = self.time_provider.now()

            record = FundingRecord(
                id=self.id_factory.generate("fund"),
                resident_id=command.resident_id,
                current_balance=data["amount"],
                contract_status=derive_contract_status(
                    data["is_active"],
                    data["start_date"],
                    data["end_date"],
                    self.time_provider.today(),
                ),
                version=1,
                created_at=now,
                updated_at=now,
                **data,
            )
            saved = self.repository.save_funding_record(record)
            record_contract_balance(saved.id, saved.current_balance)
            return saved

    @track_operation("update_funding")
    def handle_update_funding(self, command: UpdateFunding) -> FundingRecord:
        """
        Handle UpdateFunding command

        Merges supplied fields, re-validates the whole record and recomputes
        the balance from the ledger. The amount may not drop below what has
        already been posted.

        Args:
            command: UpdateFunding command

        Returns:
            The updated funding record

        Raises:
            ContractNotFound: If the contract doesn't exist
            ValidationError: If the merged record is invalid
        """
        with LogOperation(logger, "update_funding", contract_id=command.contract_id):
            return self._update_funding(command)

    @retry_on_version_conflict()
    def _update_funding(self, command: UpdateFunding) -> FundingRecord:
        with self.locks.hold(command.contract_id):
            record = self.repository.get_funding_record(command.contract_id)
            if record is None:
                raise ContractNotFound(command.contract_id)

            posted = posted_total(
                record.id, self.repository.iter_transactions(contract_id=record.id)
            )
            merged = merge_funding_update(record, command, self.policy, posted)

            updated = record.model_copy(
                update={
                    **merged,
                    "current_balance": merged["amount"] - posted,
                    "contract_status": derive_contract_status(
                        merged["is_active"],
                        merged["start_date"],
                        merged["end_date"],
                        self.time_provider.today(),
                    ),
                    "updated_at": self.time_provider.now(),
                }
            )
            saved = self.repository.save_funding_record(updated, expected_version=record.version)
            record_contract_balance(saved.id, saved.current_balance)
            return saved

    @track_operation("delete_funding")
    def handle_delete_funding(self, command: DeleteFunding) -> None:
        """
        Handle DeleteFunding command (terminal)

        A contract still referenced by draft or posted transactions cannot
        be deleted; void or delete those first. Voided transactions keep
        their contract id for history.

        Raises:
            ContractNotFound: If the contract doesn't exist
            ContractInUse: If live transactions reference it
        """
        with LogOperation(logger, "delete_funding", contract_id=command.contract_id):
            with self.locks.hold(command.contract_id):
                record = self.repository.get_funding_record(command.contract_id)
                if record is None:
                    raise ContractNotFound(command.contract_id)

                live = [
                    t
                    for t in self.repository.iter_transactions(contract_id=record.id)
                    if not t.is_voided()
                ]
                if live:
                    raise ContractInUse(record.id, len(live))

                self.repository.delete_funding_record(record.id)
                self.locks.forget(record.id)

    def list_funding(self, resident_id: str) -> list[FundingRecord]:
        """
        List a resident's contracts with today's derived status

        Raises:
            ResidentNotFound: If the resident doesn't exist
        """
        if self.repository.get_resident(resident_id) is None:
            raise ResidentNotFound(resident_id)

        today = self.time_provider.today()
        records = self.repository.list_funding_records(resident_id=resident_id)
        return [
            r.model_copy(update={"contract_status": r.status_on(today)})
            for r in sorted(records, key=lambda r: (r.start_date, r.id))
        ]

    def get_funding(self, contract_id: str) -> FundingRecord:
        """
        Raises:
            ContractNotFound: If the contract doesn't exist or was deleted
        """
        record = self.repository.get_funding_record(contract_id)
        if record is None:
            raise ContractNotFound(contract_id)
        today = self.time_provider.today()
        return record.model_copy(update={"contract_status": record.status_on(today)})
