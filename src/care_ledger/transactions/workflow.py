"""
Posting Workflow - Transaction state transitions against contract balances

Handles the whole transaction lifecycle:
- create/update/delete drafts (no balance effect)
- post: draft → posted, debits the contract
- void: posted → voided, credits it back
- bulk post/void on a thread pool

Every balance change follows the same cycle, under the contract lock:
re-read the records, recompute the balance from the ledger, validate, then
commit the transaction and the new balance in one repository call. If the
contract changed underneath us (another process), the commit raises
BalanceVersionConflict and the whole cycle is retried.

Fun fact: Double-entry bookkeeping was first codified by Luca Pacioli in
1494; a void here is still the textbook reversing entry, never an erasure.
"""

import contextvars
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from care_ledger.funding.models import FundingRecord
from care_ledger.kernel.errors import (
    BalanceDriftDetected,
    ContractInactive,
    ContractNotFound,
    InsufficientBalanceError,
    InvalidStateError,
    ResidentNotFound,
    TransactionNotFound,
    ValidationError,
    error_code,
)
from care_ledger.kernel.ids import IdFactory, default_id_factory
from care_ledger.kernel.locks import ContractLockRegistry
from care_ledger.kernel.logging import LogOperation, get_logger
from care_ledger.kernel.metrics import (
    amount_overrides_total,
    bulk_items_total,
    posting_rejections_total,
    record_contract_balance,
    track_operation,
    transactions_created_total,
    transactions_posted_total,
    transactions_voided_total,
)
from care_ledger.kernel.policy import LedgerPolicy
from care_ledger.kernel.retry import retry_on_version_conflict
from care_ledger.kernel.time import TimeProvider
from care_ledger.storage.repository import LedgerRepository
from care_ledger.transactions.balance import compute_balance, preview_posting
from care_ledger.transactions.commands import (
    BulkTransactionOperation,
    CreateTransaction,
    PostTransaction,
    UpdateTransaction,
    VoidTransaction,
)
from care_ledger.transactions.invariants import (
    validate_can_delete,
    validate_can_post,
    validate_can_void,
    validate_contract_active,
    validate_contract_owner,
    validate_transaction_create,
    validate_transaction_update,
    validate_void_reason,
)
from care_ledger.transactions.models import (
    BalancePreview,
    BulkAction,
    BulkError,
    BulkOperationResult,
    TransactionRecord,
    TransactionStatus,
)

logger = get_logger(__name__)

INTERNAL_ERROR_MESSAGE = "An unexpected error occurred"


class PostingWorkflow:
    """
    Transaction lifecycle and balance bookkeeping

    Shares the contract lock registry with FundingHandlers so contract
    updates and postings on the same contract are serialized.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        time_provider: TimeProvider,
        policy: LedgerPolicy,
        locks: ContractLockRegistry,
        id_factory: IdFactory = default_id_factory,
    ) -> None:
        self.repository = repository
        self.time_provider = time_provider
        self.policy = policy
        self.locks = locks
        self.id_factory = id_factory

    # Lookups

    def _get_transaction(self, transaction_id: str) -> TransactionRecord:
        transaction = self.repository.get_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFound(transaction_id)
        return transaction

    def _get_contract(self, contract_id: str) -> FundingRecord:
        record = self.repository.get_funding_record(contract_id)
        if record is None:
            raise ContractNotFound(contract_id)
        return record

    def current_balance(self, record: FundingRecord) -> Decimal:
        """
        Recompute a contract's balance from its ledger

        The stored balance is only a cache; if it disagrees with the ledger
        the drift is logged and the recomputed value wins.
        """
        computed = compute_balance(
            record, self.repository.iter_transactions(contract_id=record.id)
        )
        if computed != record.current_balance:
            logger.warning(
                "Balance drift detected",
                contract_id=record.id,
                version=record.version,
            )
        return computed

    # Drafts

    @track_operation("create_transaction")
    def create(self, command: CreateTransaction, actor_id: str = "system") -> TransactionRecord:
        """
        Create a draft transaction

        Args:
            command: CreateTransaction command
            actor_id: Who records the transaction

        Returns:
            The stored draft

        Raises:
            ResidentNotFound: If the resident doesn't exist
            ContractNotFound: If the contract doesn't exist
            ContractResidentMismatch: If the contract belongs to someone else
            ValidationError: If any field is invalid
        """
        with LogOperation(
            logger,
            "create_transaction",
            resident_id=command.resident_id,
            contract_id=command.contract_id,
        ):
            if self.repository.get_resident(command.resident_id) is None:
                raise ResidentNotFound(command.resident_id)
            self._get_contract(command.contract_id)

            # A contract delete checks for live transactions under this lock
            with self.locks.hold(command.contract_id):
                record = self._get_contract(command.contract_id)
                validate_contract_owner(record, command.resident_id)

                data = validate_transaction_create(command, self.policy)
                transaction = TransactionRecord(
                    id=self.id_factory.generate("txn"),
                    resident_id=command.resident_id,
                    contract_id=command.contract_id,
                    status=TransactionStatus.DRAFT,
                    created_at=self.time_provider.now(),
                    created_by=actor_id,
                    **data,
                )
                self._note_override(transaction)
                self.repository.save_transaction(transaction)

            transactions_created_total.labels(service_code=transaction.service_code).inc()
            return transaction

    @track_operation("update_transaction")
    def update(self, command: UpdateTransaction) -> TransactionRecord:
        """
        Edit a draft transaction

        Raises:
            TransactionNotFound: If the transaction doesn't exist
            InvalidTransition: If it is no longer a draft
            ValidationError: If any merged field is invalid
        """
        with LogOperation(logger, "update_transaction", transaction_id=command.transaction_id):
            contract_id = self._get_transaction(command.transaction_id).contract_id
            with self.locks.hold(contract_id):
                transaction = self._get_transaction(command.transaction_id)
                data = validate_transaction_update(transaction, command, self.policy)
                updated = transaction.model_copy(update=data)
                self._note_override(updated)
                self.repository.save_transaction(updated)
                return updated

    @track_operation("delete_transaction")
    def delete_draft(self, transaction_id: str) -> None:
        """
        Discard a draft

        Raises:
            TransactionNotFound: If the transaction doesn't exist
            InvalidTransition: If it was posted or voided
        """
        with LogOperation(logger, "delete_transaction", transaction_id=transaction_id):
            contract_id = self._get_transaction(transaction_id).contract_id
            with self.locks.hold(contract_id):
                validate_can_delete(self._get_transaction(transaction_id))
                self.repository.delete_transaction(transaction_id)

    def _note_override(self, transaction: TransactionRecord) -> None:
        if transaction.amount_overridden:
            amount_overrides_total.inc()
            logger.warning(
                "Transaction amount overrides quantity x unit price",
                transaction_id=transaction.id,
                contract_id=transaction.contract_id,
            )

    # Previews

    def preview_amount(self, contract_id: str, amount: Decimal) -> BalancePreview:
        """
        Preview posting an arbitrary amount (live form preview)

        Raises:
            ContractNotFound: If the contract doesn't exist
            ValidationError: If amount is negative, not finite or above the
                transaction maximum
        """
        if not amount.is_finite() or amount < 0:
            raise ValidationError.single("amount", "Amount must be non-negative")
        if amount > self.policy.transaction_amount_max:
            raise ValidationError.single(
                "amount", f"Amount must be no more than {self.policy.transaction_amount_max}"
            )
        record = self._get_contract(contract_id)
        return preview_posting(record, amount, self.current_balance(record))

    def preview(self, transaction_id: str) -> BalancePreview:
        """
        Preview posting an existing transaction

        Raises:
            TransactionNotFound: If the transaction doesn't exist
            ContractNotFound: If its contract was deleted
        """
        transaction = self._get_transaction(transaction_id)
        record = self._get_contract(transaction.contract_id)
        return preview_posting(record, transaction.amount, self.current_balance(record))

    # Post

    @track_operation("post_transaction")
    def post(self, command: PostTransaction, actor_id: str = "system") -> TransactionRecord:
        """
        Post a draft (draft → posted) and debit its contract

        A repeated request carrying the request_id of the post that already
        happened returns the stored transaction unchanged.

        Args:
            command: PostTransaction command
            actor_id: Who posts

        Returns:
            The posted transaction

        Raises:
            TransactionNotFound: If the transaction doesn't exist
            InvalidTransition: If it is not a draft
            ContractInactive: If the contract is switched off
            InsufficientBalanceError: If the post would overdraw the contract
                and overdraft override is not both allowed and requested
        """
        with LogOperation(
            logger,
            "post_transaction",
            transaction_id=command.transaction_id,
            request_id=command.request_id,
        ):
            contract_id = self._get_transaction(command.transaction_id).contract_id
            return self._post_once(command, contract_id, actor_id)

    @retry_on_version_conflict()
    def _post_once(
        self, command: PostTransaction, contract_id: str, actor_id: str
    ) -> TransactionRecord:
        with self.locks.hold(contract_id):
            transaction = self._get_transaction(command.transaction_id)
            if command.request_id and transaction.posted_request_id == command.request_id:
                logger.info("Replayed post request", transaction_id=transaction.id)
                return transaction

            try:
                validate_can_post(transaction)
                record = self._get_contract(contract_id)
                validate_contract_active(record)
            except ContractInactive:
                posting_rejections_total.labels(reason="inactive_contract").inc()
                raise
            except InvalidStateError:
                posting_rejections_total.labels(reason="invalid_state").inc()
                raise

            balance = self.current_balance(record)
            preview = preview_posting(record, transaction.amount, balance)
            if not preview.can_post:
                if not (command.force and self.policy.allow_overdraft_override):
                    posting_rejections_total.labels(reason="insufficient_balance").inc()
                    raise InsufficientBalanceError(record.id, preview)
                logger.warning(
                    "Overdraft override applied",
                    transaction_id=transaction.id,
                    contract_id=record.id,
                )

            now = self.time_provider.now()
            posted = transaction.model_copy(
                update={
                    "status": TransactionStatus.POSTED,
                    "posted_at": now,
                    "posted_by": actor_id,
                    "posted_request_id": command.request_id,
                }
            )
            saved = self.repository.commit_transition(
                posted,
                record.model_copy(
                    update={
                        "current_balance": preview.remaining_after_post,
                        "contract_status": record.status_on(self.time_provider.today()),
                        "updated_at": now,
                    }
                ),
                expected_version=record.version,
            )

        transactions_posted_total.labels(contract_type=saved.type.value).inc()
        record_contract_balance(saved.id, saved.current_balance)
        return posted

    # Void

    @track_operation("void_transaction")
    def void(self, command: VoidTransaction, actor_id: str = "system") -> TransactionRecord:
        """
        Void a posted transaction (posted → voided) and credit its contract

        Args:
            command: VoidTransaction command (reason required)
            actor_id: Who voids

        Returns:
            The voided transaction

        Raises:
            TransactionNotFound: If the transaction doesn't exist
            ValidationError: If the reason is missing
            InvalidTransition: If it is not posted
        """
        with LogOperation(
            logger,
            "void_transaction",
            transaction_id=command.transaction_id,
            request_id=command.request_id,
        ):
            transaction = self._get_transaction(command.transaction_id)
            if command.request_id and transaction.voided_request_id == command.request_id:
                logger.info("Replayed void request", transaction_id=transaction.id)
                return transaction

            reason = validate_void_reason(command.reason, self.policy)
            return self._void_once(command, transaction.contract_id, reason, actor_id)

    @retry_on_version_conflict()
    def _void_once(
        self, command: VoidTransaction, contract_id: str, reason: str, actor_id: str
    ) -> TransactionRecord:
        with self.locks.hold(contract_id):
            transaction = self._get_transaction(command.transaction_id)
            if command.request_id and transaction.voided_request_id == command.request_id:
                return transaction
            validate_can_void(transaction)
            record = self._get_contract(contract_id)

            balance = self.current_balance(record)
            now = self.time_provider.now()
            voided = transaction.model_copy(
                update={
                    "status": TransactionStatus.VOIDED,
                    "voided_at": now,
                    "voided_by": actor_id,
                    "void_reason": reason,
                    "voided_request_id": command.request_id,
                }
            )
            saved = self.repository.commit_transition(
                voided,
                record.model_copy(
                    update={
                        "current_balance": balance + transaction.amount,
                        "contract_status": record.status_on(self.time_provider.today()),
                        "updated_at": now,
                    }
                ),
                expected_version=record.version,
            )

        transactions_voided_total.labels(contract_type=saved.type.value).inc()
        record_contract_balance(saved.id, saved.current_balance)
        return voided

    # Bulk

    @track_operation("bulk_operation")
    def bulk(
        self, command: BulkTransactionOperation, actor_id: str = "system"
    ) -> BulkOperationResult:
        """
        Post or void many transactions independently

        Items run on a thread pool; items on the same contract serialize on
        its lock. One failing item never affects the others. Results keep
        the input order.

        Args:
            command: BulkTransactionOperation command
            actor_id: Who performs the operation

        Returns:
            BulkOperationResult with per-item errors

        Raises:
            ValidationError: If no ids are given, or a void has no reason
        """
        if not command.transaction_ids:
            raise ValidationError.single(
                "transactionIds", "At least one transaction id is required"
            )
        reason = None
        if command.action == BulkAction.VOID:
            reason = validate_void_reason(command.reason, self.policy)

        with LogOperation(
            logger,
            "bulk_operation",
            action=command.action.value,
            items=len(command.transaction_ids),
        ):
            with ThreadPoolExecutor(max_workers=self.policy.bulk_max_workers) as pool:
                futures = [
                    pool.submit(
                        contextvars.copy_context().run,
                        self._bulk_item,
                        command.action,
                        transaction_id,
                        reason,
                        actor_id,
                    )
                    for transaction_id in command.transaction_ids
                ]
                outcomes = [future.result() for future in futures]

        transactions = [t for t, _ in outcomes if t is not None]
        errors = [e for _, e in outcomes if e is not None]
        return BulkOperationResult(
            success=not errors,
            processed=len(transactions),
            failed=len(errors),
            errors=errors,
            transactions=transactions,
        )

    def _bulk_item(
        self,
        action: BulkAction,
        transaction_id: str,
        reason: str | None,
        actor_id: str,
    ) -> tuple[TransactionRecord | None, BulkError | None]:
        try:
            if action == BulkAction.POST:
                result = self.post(PostTransaction(transaction_id=transaction_id), actor_id)
            else:
                result = self.void(
                    VoidTransaction(transaction_id=transaction_id, reason=reason), actor_id
                )
        except Exception as e:
            bulk_items_total.labels(action=action.value, outcome="failed").inc()
            code = error_code(e)
            if code == "InternalError":
                logger.exception(
                    "Bulk item failed unexpectedly",
                    transaction_id=transaction_id,
                    action=action.value,
                )
                return None, BulkError(
                    transaction_id=transaction_id,
                    error="InternalError",
                    message=INTERNAL_ERROR_MESSAGE,
                )
            return None, BulkError(transaction_id=transaction_id, error=code, message=str(e))

        bulk_items_total.labels(action=action.value, outcome="processed").inc()
        return result, None

    # Reconciliation

    @track_operation("reconcile_contract")
    def reconcile(self, contract_id: str, repair: bool = False) -> FundingRecord:
        """
        Compare a contract's stored balance with its ledger

        Args:
            contract_id: Contract to check
            repair: Overwrite the stored balance with the recomputed one

        Returns:
            The (possibly repaired) funding record

        Raises:
            ContractNotFound: If the contract doesn't exist
            BalanceDriftDetected: If the balances differ and repair is False
        """
        with LogOperation(logger, "reconcile_contract", contract_id=contract_id, repair=repair):
            return self._reconcile_once(contract_id, repair)

    @retry_on_version_conflict()
    def _reconcile_once(self, contract_id: str, repair: bool) -> FundingRecord:
        with self.locks.hold(contract_id):
            record = self._get_contract(contract_id)
            computed = compute_balance(
                record, self.repository.iter_transactions(contract_id=record.id)
            )
            if computed == record.current_balance:
                return record
            if not repair:
                raise BalanceDriftDetected(
                    record.id, str(record.current_balance), str(computed)
                )

            logger.warning("Repairing contract balance", contract_id=record.id)
            saved = self.repository.save_funding_record(
                record.model_copy(
                    update={"current_balance": computed, "updated_at": self.time_provider.now()}
                ),
                expected_version=record.version,
            )
            record_contract_balance(saved.id, saved.current_balance)
            return saved
