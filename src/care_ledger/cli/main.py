"""
Care Ledger CLI

Command-line interface for the contract balance and transaction posting
engine. Provides commands for residents, funding contracts, transactions
and balances.

Usage:
    care-ledger init --db ledger.db
    care-ledger resident add --first-name Ada --last-name Lovelace
    care-ledger funding add --resident <id> --type NDIS --amount 1000 --start 2024-01-01
    care-ledger txn create --resident <id> --contract <id> --date 2024-01-05 \\
        --service CORE_SUPPORT --quantity 3 --unit-price 100
    care-ledger txn post --id <txn_id>
    care-ledger balance show --resident <id>
    care-ledger metrics --port 9090
"""

import json
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from care_ledger.kernel.errors import CareLedgerError, ValidationError
from care_ledger.kernel.logging import configure_logging
from care_ledger.kernel.metrics import start_metrics_server
from care_ledger.kernel.policy import LedgerPolicy
from care_ledger.ledger import CareLedger

# Configure logging to stderr (avoids polluting stdout for JSON output)
configure_logging(log_level=os.getenv("CARE_LEDGER_LOG_LEVEL", "WARNING"))

app = typer.Typer(
    name="care-ledger",
    help="Care Ledger - Contract balance and transaction posting engine",
    add_completion=False,
)

# Sub-apps
resident_app = typer.Typer(help="Resident and house registration commands")
funding_app = typer.Typer(help="Funding contract commands")
txn_app = typer.Typer(help="Transaction lifecycle commands")
balance_app = typer.Typer(help="Balance, preview and reconciliation commands")

app.add_typer(resident_app, name="resident")
app.add_typer(funding_app, name="funding")
app.add_typer(txn_app, name="txn")
app.add_typer(balance_app, name="balance")

# Global state
DEFAULT_DB = Path(".care-ledger.db")
DATE_FORMATS = ["%Y-%m-%d"]
METRICS_REFRESH_SECONDS = 15

DbOption = Annotated[Optional[Path], typer.Option("--db", help="Database path")]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON")]


def get_ledger(db_path: Optional[Path] = None) -> CareLedger:
    """Get CareLedger instance backed by an existing database"""
    db = db_path or DEFAULT_DB
    if not db.exists():
        typer.echo(f"Error: Database not found: {db}", err=True)
        typer.echo(f"Run 'care-ledger init --db {db}' to initialize", err=True)
        raise typer.Exit(1)
    return CareLedger(sqlite_path=db, policy=LedgerPolicy.from_env())


@contextmanager
def reporting_errors() -> Iterator[None]:
    """Print ledger errors to stderr and exit with status 1"""
    try:
        yield
    except CareLedgerError as e:
        typer.echo(f"Error ({e.code}): {e}", err=True)
        if isinstance(e, ValidationError):
            for issue in e.issues:
                typer.echo(f"  {issue.field}: {issue.message}", err=True)
        raise typer.Exit(1)


def as_date(value: Optional[datetime]) -> Any:
    return value.date() if value is not None else None


def split_ids(value: Optional[str]) -> Optional[list[str]]:
    if not value:
        return None
    return [part.strip() for part in value.split(",") if part.strip()]


# Initialization command


@app.command()
def init(
    db: Annotated[
        Path,
        typer.Option(help="Database path"),
    ] = DEFAULT_DB,
) -> None:
    """Initialize a new Care Ledger database"""
    if db.exists():
        typer.echo(f"Error: Database already exists: {db}", err=True)
        raise typer.Exit(1)

    CareLedger(sqlite_path=db)
    typer.echo(f"✓ Initialized Care Ledger database: {db}")


# Resident commands


@resident_app.command("add-house")
def resident_add_house(
    name: Annotated[str, typer.Option("--name", help="House name")],
    db: DbOption = None,
) -> None:
    """Register a care house"""
    ledger = get_ledger(db)
    with reporting_errors():
        house = ledger.register_house(name)
    typer.echo(f"✓ Registered house: {house.id}")
    typer.echo(f"  Name: {house.name}")


@resident_app.command("add")
def resident_add(
    first_name: Annotated[str, typer.Option("--first-name", help="Given name")],
    last_name: Annotated[str, typer.Option("--last-name", help="Family name")],
    house: Annotated[Optional[str], typer.Option("--house", help="House ID")] = None,
    db: DbOption = None,
) -> None:
    """Register a resident"""
    ledger = get_ledger(db)
    with reporting_errors():
        resident = ledger.register_resident(first_name, last_name, house_id=house)
    typer.echo(f"✓ Registered resident: {resident.id}")
    typer.echo(f"  Name: {resident.full_name}")
    if resident.house_id:
        typer.echo(f"  House: {resident.house_id}")


@resident_app.command("list")
def resident_list(db: DbOption = None) -> None:
    """List residents"""
    ledger = get_ledger(db)
    residents = ledger.list_residents()

    if not residents:
        typer.echo("No residents")
        return

    typer.echo(f"Residents ({len(residents)}):")
    for resident in residents:
        typer.echo(f"  {resident.id}: {resident.full_name}")


# Funding commands


@funding_app.command("add")
def funding_add(
    resident: Annotated[str, typer.Option("--resident", help="Resident ID")],
    funding_type: Annotated[
        str,
        typer.Option("--type", help="Funding type (NDIS, Government, Private, Family, Other)"),
    ],
    amount: Annotated[str, typer.Option("--amount", help="Contract amount")],
    start: Annotated[datetime, typer.Option("--start", formats=DATE_FORMATS, help="Start date")],
    end: Annotated[
        Optional[datetime], typer.Option("--end", formats=DATE_FORMATS, help="End date")
    ] = None,
    renewal: Annotated[
        Optional[datetime],
        typer.Option("--renewal", formats=DATE_FORMATS, help="Renewal date"),
    ] = None,
    description: Annotated[
        Optional[str], typer.Option("--description", help="Description")
    ] = None,
    drawdown_rate: Annotated[
        str, typer.Option("--drawdown-rate", help="daily, weekly or monthly")
    ] = "monthly",
    inactive: Annotated[
        bool, typer.Option("--inactive", help="Create the contract switched off")
    ] = False,
    db: DbOption = None,
) -> None:
    """Add a funding contract to a resident"""
    ledger = get_ledger(db)
    with reporting_errors():
        record = ledger.add_funding(
            resident_id=resident,
            type=funding_type,
            amount=amount,
            start_date=start.date(),
            end_date=as_date(end),
            renewal_date=as_date(renewal),
            description=description,
            is_active=not inactive,
            drawdown_rate=drawdown_rate,
        )
    typer.echo(f"✓ Added funding contract: {record.id}")
    typer.echo(f"  Type: {record.type.value}")
    typer.echo(f"  Amount: ${record.amount}")
    typer.echo(f"  Status: {record.contract_status.value}")


@funding_app.command("update")
def funding_update(
    contract_id: Annotated[str, typer.Option("--id", help="Contract ID")],
    amount: Annotated[Optional[str], typer.Option("--amount", help="New amount")] = None,
    end: Annotated[
        Optional[datetime], typer.Option("--end", formats=DATE_FORMATS, help="New end date")
    ] = None,
    description: Annotated[
        Optional[str], typer.Option("--description", help="New description")
    ] = None,
    active: Annotated[
        Optional[bool], typer.Option("--active/--inactive", help="Switch the contract on or off")
    ] = None,
    db: DbOption = None,
) -> None:
    """Update a funding contract"""
    ledger = get_ledger(db)

    changes: dict[str, Any] = {}
    if amount is not None:
        changes["amount"] = amount
    if end is not None:
        changes["end_date"] = end.date()
    if description is not None:
        changes["description"] = description
    if active is not None:
        changes["is_active"] = active

    with reporting_errors():
        record = ledger.update_funding(contract_id, **changes)
    typer.echo(f"✓ Updated funding contract: {record.id}")
    typer.echo(f"  Amount: ${record.amount}")
    typer.echo(f"  Balance: ${record.current_balance}")


@funding_app.command("remove")
def funding_remove(
    contract_id: Annotated[str, typer.Option("--id", help="Contract ID")],
    db: DbOption = None,
) -> None:
    """Delete a funding contract (terminal)"""
    ledger = get_ledger(db)
    with reporting_errors():
        ledger.remove_funding(contract_id)
    typer.echo(f"✓ Removed funding contract: {contract_id}")


@funding_app.command("list")
def funding_list(
    resident: Annotated[str, typer.Option("--resident", help="Resident ID")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """List a resident's funding contracts"""
    ledger = get_ledger(db)
    with reporting_errors():
        records = ledger.list_funding(resident)

    if json_output:
        typer.echo(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return

    if not records:
        typer.echo(f"No funding contracts for resident {resident}")
        return

    typer.echo(f"Funding contracts ({len(records)}):")
    for record in records:
        typer.echo(
            f"  {record.id}: {record.type.value} [{record.contract_status.value}] - "
            f"${record.current_balance} of ${record.amount}"
        )


@funding_app.command("show")
def funding_show(
    contract_id: Annotated[str, typer.Option("--id", help="Contract ID")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show funding contract details"""
    ledger = get_ledger(db)
    with reporting_errors():
        record = ledger.get_funding(contract_id)

    if json_output:
        typer.echo(record.model_dump_json(indent=2))
        return

    typer.echo(f"\nFunding contract: {record.id}")
    typer.echo(f"  Resident: {record.resident_id}")
    typer.echo(f"  Type: {record.type.value}")
    typer.echo(f"  Status: {record.contract_status.value}")
    typer.echo(f"  Amount: ${record.amount}")
    typer.echo(f"  Balance: ${record.current_balance}")
    typer.echo(f"  Start: {record.start_date}")
    if record.end_date:
        typer.echo(f"  End: {record.end_date}")
    if record.renewal_date:
        typer.echo(f"  Renewal: {record.renewal_date}")
    if record.description:
        typer.echo(f"  Description: {record.description}")


# Transaction commands


@txn_app.command("create")
def txn_create(
    resident: Annotated[str, typer.Option("--resident", help="Resident ID")],
    contract: Annotated[str, typer.Option("--contract", help="Contract ID")],
    occurred: Annotated[
        datetime, typer.Option("--date", formats=DATE_FORMATS, help="Service date")
    ],
    service: Annotated[str, typer.Option("--service", help="Service code")],
    quantity: Annotated[str, typer.Option("--quantity", help="Units delivered")],
    unit_price: Annotated[str, typer.Option("--unit-price", help="Price per unit")],
    amount: Annotated[
        Optional[str], typer.Option("--amount", help="Override quantity x unit price")
    ] = None,
    description: Annotated[
        Optional[str], typer.Option("--description", help="Description")
    ] = None,
    note: Annotated[Optional[str], typer.Option("--note", help="Internal note")] = None,
    actor: Annotated[str, typer.Option("--actor", help="Who records it")] = "cli",
    db: DbOption = None,
) -> None:
    """Create a draft transaction"""
    ledger = get_ledger(db)
    with reporting_errors():
        transaction = ledger.create_transaction(
            resident_id=resident,
            contract_id=contract,
            occurred_at=occurred.date(),
            service_code=service,
            quantity=quantity,
            unit_price=unit_price,
            amount=amount,
            description=description,
            note=note,
            actor_id=actor,
        )
    typer.echo(f"✓ Created draft transaction: {transaction.id}")
    typer.echo(f"  Amount: ${transaction.amount}")
    if transaction.amount_overridden:
        typer.echo(f"  Computed: ${transaction.computed_amount} (overridden)")


@txn_app.command("update")
def txn_update(
    transaction_id: Annotated[str, typer.Option("--id", help="Transaction ID")],
    occurred: Annotated[
        Optional[datetime], typer.Option("--date", formats=DATE_FORMATS, help="Service date")
    ] = None,
    service: Annotated[Optional[str], typer.Option("--service", help="Service code")] = None,
    quantity: Annotated[Optional[str], typer.Option("--quantity", help="Units")] = None,
    unit_price: Annotated[
        Optional[str], typer.Option("--unit-price", help="Price per unit")
    ] = None,
    amount: Annotated[Optional[str], typer.Option("--amount", help="Amount override")] = None,
    description: Annotated[
        Optional[str], typer.Option("--description", help="Description")
    ] = None,
    note: Annotated[Optional[str], typer.Option("--note", help="Internal note")] = None,
    db: DbOption = None,
) -> None:
    """Edit a draft transaction"""
    ledger = get_ledger(db)

    changes: dict[str, Any] = {
        "service_code": service,
        "quantity": quantity,
        "unit_price": unit_price,
        "amount": amount,
        "description": description,
        "note": note,
        "occurred_at": as_date(occurred),
    }
    changes = {k: v for k, v in changes.items() if v is not None}

    with reporting_errors():
        transaction = ledger.update_transaction(transaction_id, **changes)
    typer.echo(f"✓ Updated draft transaction: {transaction.id}")
    typer.echo(f"  Amount: ${transaction.amount}")


@txn_app.command("delete")
def txn_delete(
    transaction_id: Annotated[str, typer.Option("--id", help="Transaction ID")],
    db: DbOption = None,
) -> None:
    """Delete a draft transaction"""
    ledger = get_ledger(db)
    with reporting_errors():
        ledger.delete_transaction(transaction_id)
    typer.echo(f"✓ Deleted draft transaction: {transaction_id}")


@txn_app.command("preview")
def txn_preview(
    transaction_id: Annotated[str, typer.Option("--id", help="Transaction ID")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Preview posting a draft without committing"""
    ledger = get_ledger(db)
    with reporting_errors():
        preview = ledger.preview_transaction(transaction_id)

    if json_output:
        typer.echo(preview.model_dump_json(indent=2))
        return

    typer.echo(f"  Current balance: ${preview.current_balance}")
    typer.echo(f"  Transaction: ${preview.transaction_amount}")
    typer.echo(f"  Remaining after post: ${preview.remaining_after_post}")
    typer.echo(f"  Can post: {'yes' if preview.can_post else 'no'}")
    if preview.warning_message:
        typer.echo(f"  ⚠️  {preview.warning_message}")


@txn_app.command("post")
def txn_post(
    transaction_id: Annotated[str, typer.Option("--id", help="Transaction ID")],
    force: Annotated[
        bool, typer.Option("--force", help="Overdraw if the policy allows it")
    ] = False,
    request_id: Annotated[
        Optional[str], typer.Option("--request-id", help="Idempotency key")
    ] = None,
    actor: Annotated[str, typer.Option("--actor", help="Who posts")] = "cli",
    db: DbOption = None,
) -> None:
    """Post a draft transaction"""
    ledger = get_ledger(db)
    with reporting_errors():
        transaction = ledger.post_transaction(
            transaction_id, force=force, request_id=request_id, actor_id=actor
        )
        record = ledger.get_funding(transaction.contract_id)
    typer.echo(f"✓ Posted transaction: {transaction.id}")
    typer.echo(f"  Amount: ${transaction.amount}")
    typer.echo(f"  Contract balance: ${record.current_balance}")


@txn_app.command("void")
def txn_void(
    transaction_id: Annotated[str, typer.Option("--id", help="Transaction ID")],
    reason: Annotated[str, typer.Option("--reason", help="Why it is voided")],
    request_id: Annotated[
        Optional[str], typer.Option("--request-id", help="Idempotency key")
    ] = None,
    actor: Annotated[str, typer.Option("--actor", help="Who voids")] = "cli",
    db: DbOption = None,
) -> None:
    """Void a posted transaction"""
    ledger = get_ledger(db)
    with reporting_errors():
        transaction = ledger.void_transaction(
            transaction_id, reason, request_id=request_id, actor_id=actor
        )
        record = ledger.get_funding(transaction.contract_id)
    typer.echo(f"✓ Voided transaction: {transaction.id}")
    typer.echo(f"  Contract balance: ${record.current_balance}")


@txn_app.command("bulk")
def txn_bulk(
    action: Annotated[str, typer.Option("--action", help="post or void")],
    ids: Annotated[str, typer.Option("--ids", help="Transaction IDs (comma-separated)")],
    reason: Annotated[
        Optional[str], typer.Option("--reason", help="Void reason (required for void)")
    ] = None,
    actor: Annotated[str, typer.Option("--actor", help="Who performs it")] = "cli",
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Post or void many transactions at once"""
    ledger = get_ledger(db)
    with reporting_errors():
        result = ledger.bulk_operation(action, split_ids(ids) or [], reason, actor_id=actor)

    if json_output:
        typer.echo(result.model_dump_json(indent=2, exclude={"transactions"}))
    else:
        typer.echo(f"Processed: {result.processed}")
        typer.echo(f"Failed: {result.failed}")
        for error in result.errors:
            typer.echo(f"  {error.transaction_id}: {error.error} - {error.message}")

    if not result.success:
        raise typer.Exit(1)


@txn_app.command("list")
def txn_list(
    resident: Annotated[
        Optional[str], typer.Option("--resident", help="Resident IDs (comma-separated)")
    ] = None,
    contract: Annotated[
        Optional[str], typer.Option("--contract", help="Contract IDs (comma-separated)")
    ] = None,
    house: Annotated[
        Optional[str], typer.Option("--house", help="House IDs (comma-separated)")
    ] = None,
    status: Annotated[
        Optional[str], typer.Option("--status", help="Statuses (comma-separated)")
    ] = None,
    service: Annotated[Optional[str], typer.Option("--service", help="Service code")] = None,
    search: Annotated[Optional[str], typer.Option("--search", help="Free-text search")] = None,
    date_from: Annotated[
        Optional[datetime], typer.Option("--from", formats=DATE_FORMATS, help="From date")
    ] = None,
    date_to: Annotated[
        Optional[datetime], typer.Option("--to", formats=DATE_FORMATS, help="To date")
    ] = None,
    sort: Annotated[str, typer.Option("--sort", help="Sort field")] = "occurred_at",
    direction: Annotated[str, typer.Option("--direction", help="asc or desc")] = "desc",
    page: Annotated[int, typer.Option("--page", help="Page number")] = 1,
    page_size: Annotated[
        Optional[int], typer.Option("--page-size", help="Page size")
    ] = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """List transactions"""
    ledger = get_ledger(db)

    filters: dict[str, Any] = {
        "resident_ids": split_ids(resident),
        "contract_ids": split_ids(contract),
        "house_ids": split_ids(house),
        "statuses": split_ids(status),
        "service_code": service,
        "search": search,
    }
    if date_from or date_to:
        filters["date_range"] = {"start": as_date(date_from), "end": as_date(date_to)}

    with reporting_errors():
        result = ledger.list_transactions(
            filters={k: v for k, v in filters.items() if v is not None},
            sort={"field": sort, "direction": direction},
            page=page,
            page_size=page_size,
        )

    if json_output:
        typer.echo(result.model_dump_json(indent=2))
        return

    if not result.transactions:
        typer.echo("No transactions")
        return

    typer.echo(f"Transactions (page {result.page}, {result.total} total):")
    for t in result.transactions:
        typer.echo(
            f"  {t.id}: {t.occurred_at} {t.service_code} [{t.status.value}] - ${t.amount}"
        )
    if result.has_more:
        typer.echo(f"  ... more on page {result.page + 1}")


# Balance commands


@balance_app.command("show")
def balance_show(
    resident: Annotated[str, typer.Option("--resident", help="Resident ID")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show a resident's balance summary"""
    ledger = get_ledger(db)
    with reporting_errors():
        summary = ledger.resident_balance_summary(resident)

    if json_output:
        typer.echo(summary.model_dump_json(indent=2))
        return

    typer.echo(f"\nResident: {summary.resident_id}")
    typer.echo(f"  Allocated: ${summary.total_allocated}")
    typer.echo(f"  Spent: ${summary.total_spent}")
    typer.echo(f"  Remaining: ${summary.total_remaining}")

    typer.echo(f"\n  Active contracts ({len(summary.active_contracts)}):")
    for line in summary.active_contracts:
        typer.echo(
            f"    {line.contract_id} [{line.type}]: ${line.current_balance} of "
            f"${line.original_amount} ({line.recent_transaction_count} recent)"
        )


@balance_app.command("preview")
def balance_preview(
    contract: Annotated[str, typer.Option("--contract", help="Contract ID")],
    amount: Annotated[str, typer.Option("--amount", help="Amount to preview")],
    db: DbOption = None,
) -> None:
    """Preview posting an amount against a contract"""
    ledger = get_ledger(db)
    with reporting_errors():
        preview = ledger.preview_posting(contract, amount)

    typer.echo(f"  Current balance: ${preview.current_balance}")
    typer.echo(f"  Remaining after post: ${preview.remaining_after_post}")
    typer.echo(f"  Can post: {'yes' if preview.can_post else 'no'}")
    if preview.warning_message:
        typer.echo(f"  ⚠️  {preview.warning_message}")


@balance_app.command("reconcile")
def balance_reconcile(
    contract: Annotated[str, typer.Option("--contract", help="Contract ID")],
    repair: Annotated[
        bool, typer.Option("--repair", help="Overwrite a drifted stored balance")
    ] = False,
    db: DbOption = None,
) -> None:
    """Check a contract's stored balance against its ledger"""
    ledger = get_ledger(db)
    with reporting_errors():
        record = ledger.reconcile_contract(contract, repair=repair)
    typer.echo(f"✓ Contract {record.id} balance ${record.current_balance} matches its ledger")


# Metrics server


@app.command()
def metrics(
    port: Annotated[int, typer.Option(help="Port to serve /metrics on")] = 9090,
    refresh: Annotated[
        int, typer.Option(help="Seconds between contract balance refreshes", min=1)
    ] = METRICS_REFRESH_SECONDS,
    db: DbOption = None,
) -> None:
    """
    Serve Prometheus metrics until interrupted

    Counters are per process, so this serves the contract balance gauges,
    re-read from the database every refresh interval.
    """
    ledger = get_ledger(db)
    with reporting_errors():
        published = ledger.publish_balance_metrics()

    start_metrics_server(port=port)
    typer.echo(f"✓ Serving metrics: http://0.0.0.0:{port}/metrics")
    typer.echo(f"  Contracts: {published}")

    try:
        while True:
            time.sleep(refresh)
            with reporting_errors():
                ledger.publish_balance_metrics()
    except KeyboardInterrupt:
        typer.echo("Shutting down metrics server")


def main() -> None:
    """Main entry point"""
    app()


if __name__ == "__main__":
    main()
