"""
CLI Integration Tests

Drives the care-ledger commands end-to-end against a temporary database.
"""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from care_ledger.cli import main as cli_main
from care_ledger.cli.main import app
from care_ledger.kernel.metrics import contract_balance

runner = CliRunner()


def invoke(db_path: Path, *args: str):
    return runner.invoke(app, [*args, "--db", str(db_path)])


def created_id(output: str) -> str:
    """Pull the id out of a '✓ ...: <id>' confirmation line"""
    return output.splitlines()[0].split(": ")[1].strip()


@pytest.fixture
def db(temp_db: Path) -> Path:
    result = runner.invoke(app, ["init", "--db", str(temp_db)])
    assert result.exit_code == 0
    assert "Initialized Care Ledger database" in result.stdout
    return temp_db


@pytest.fixture
def funded(db: Path) -> dict[str, str]:
    """A resident in a house with a 1000.00 NDIS contract"""
    result = invoke(db, "resident", "add-house", "--name", "Banksia House")
    house_id = created_id(result.stdout)

    result = invoke(
        db, "resident", "add", "--first-name", "Ada", "--last-name", "Lovelace",
        "--house", house_id,
    )
    assert result.exit_code == 0
    resident_id = created_id(result.stdout)

    result = invoke(
        db, "funding", "add", "--resident", resident_id, "--type", "NDIS",
        "--amount", "1000.00", "--start", "2020-01-01",
    )
    assert result.exit_code == 0
    contract_id = created_id(result.stdout)

    return {"house": house_id, "resident": resident_id, "contract": contract_id}


def create_txn(db: Path, funded: dict[str, str], quantity: str, unit_price: str) -> str:
    result = invoke(
        db, "txn", "create", "--resident", funded["resident"], "--contract",
        funded["contract"], "--date", "2020-03-01", "--service", "CORE_SUPPORT",
        "--quantity", quantity, "--unit-price", unit_price,
    )
    assert result.exit_code == 0, result.output
    return created_id(result.stdout)


def test_init_refuses_existing_database(db: Path) -> None:
    result = runner.invoke(app, ["init", "--db", str(db)])

    assert result.exit_code == 1
    assert "already exists" in result.output


def test_commands_need_an_initialized_database(temp_db: Path) -> None:
    result = invoke(temp_db, "resident", "list")

    assert result.exit_code == 1
    assert "Database not found" in result.output


def test_post_overdraw_and_void_via_cli(db: Path, funded: dict[str, str]) -> None:
    first = create_txn(db, funded, "2", "150")

    result = invoke(db, "txn", "post", "--id", first)
    assert result.exit_code == 0
    assert "Contract balance: $700.00" in result.stdout

    second = create_txn(db, funded, "1", "800")
    result = invoke(db, "txn", "preview", "--id", second)
    assert "Can post: no" in result.stdout
    assert "Exceeds remaining balance by $100.00" in result.stdout

    result = invoke(db, "txn", "post", "--id", second)
    assert result.exit_code == 1
    assert "InsufficientBalanceError" in result.output

    result = invoke(db, "txn", "void", "--id", first, "--reason", "duplicate")
    assert result.exit_code == 0
    assert "Contract balance: $1000.00" in result.stdout

    result = invoke(db, "balance", "reconcile", "--contract", funded["contract"])
    assert result.exit_code == 0
    assert "matches its ledger" in result.stdout


def test_validation_errors_list_every_field(db: Path, funded: dict[str, str]) -> None:
    result = invoke(
        db, "txn", "create", "--resident", funded["resident"], "--contract",
        funded["contract"], "--date", "2020-03-01", "--service", "NOPE",
        "--quantity", "0", "--unit-price", "10",
    )

    assert result.exit_code == 1
    assert "Error (ValidationError)" in result.output
    assert "quantity:" in result.output
    assert "serviceCode:" in result.output


def test_funding_end_before_start(db: Path, funded: dict[str, str]) -> None:
    result = invoke(
        db, "funding", "add", "--resident", funded["resident"], "--type", "Family",
        "--amount", "10", "--start", "2024-01-01", "--end", "2023-12-31",
    )

    assert result.exit_code == 1
    assert "endDate: End date must be after start date" in result.output


def test_funding_update_and_list_json(db: Path, funded: dict[str, str]) -> None:
    result = invoke(db, "funding", "update", "--id", funded["contract"], "--amount", "1500")
    assert result.exit_code == 0
    assert "Balance: $1500" in result.stdout

    result = invoke(db, "funding", "list", "--resident", funded["resident"], "--json")
    assert result.exit_code == 0
    records = json.loads(result.stdout)
    assert [r["id"] for r in records] == [funded["contract"]]
    assert records[0]["version"] == 2


def test_bulk_void_exit_code_reflects_failures(db: Path, funded: dict[str, str]) -> None:
    ids = [create_txn(db, funded, "1", "100") for _ in range(3)]
    result = invoke(db, "txn", "bulk", "--action", "post", "--ids", ",".join(ids))
    assert result.exit_code == 0
    assert "Processed: 3" in result.stdout

    invoke(db, "txn", "void", "--id", ids[1], "--reason", "typo")
    result = invoke(
        db, "txn", "bulk", "--action", "void", "--ids", ",".join(ids), "--reason", "cleanup",
        "--json",
    )

    assert result.exit_code == 1
    payload = json.loads(result.stdout)
    assert payload["processed"] == 2
    assert payload["errors"][0]["transaction_id"] == ids[1]
    assert payload["errors"][0]["error"] == "InvalidStateError"


def test_txn_list_filters_and_pages(db: Path, funded: dict[str, str]) -> None:
    ids = [create_txn(db, funded, "1", price) for price in ("10", "30", "20")]
    invoke(db, "txn", "post", "--id", ids[1])

    result = invoke(
        db, "txn", "list", "--house", funded["house"], "--sort", "amount",
        "--direction", "asc", "--page-size", "2", "--json",
    )
    page = json.loads(result.stdout)
    assert [t["id"] for t in page["transactions"]] == [ids[0], ids[2]]
    assert page["has_more"] is True

    result = invoke(db, "txn", "list", "--status", "posted")
    assert ids[1] in result.stdout
    assert ids[0] not in result.stdout

    result = invoke(db, "txn", "list", "--page", "0")
    assert result.exit_code == 1


def test_balance_show(db: Path, funded: dict[str, str]) -> None:
    txn = create_txn(db, funded, "4", "25")
    invoke(db, "txn", "post", "--id", txn)

    result = invoke(db, "balance", "show", "--resident", funded["resident"], "--json")

    summary = json.loads(result.stdout)
    assert summary["total_spent"] == "100.00"
    assert summary["active_contracts"][0]["current_balance"] == "900.00"


def test_missing_records_exit_with_error(db: Path) -> None:
    result = invoke(db, "funding", "show", "--id", "fund-missing")

    assert result.exit_code == 1
    assert "Error (NotFoundError)" in result.output


def test_metrics_serves_contract_balances(
    db: Path, funded: dict[str, str], monkeypatch: pytest.MonkeyPatch
) -> None:
    txn = create_txn(db, funded, "1", "250")
    invoke(db, "txn", "post", "--id", txn)
    started = []

    def interrupt(seconds: float) -> None:
        raise KeyboardInterrupt

    monkeypatch.setattr(cli_main, "start_metrics_server", lambda port: started.append(port))
    monkeypatch.setattr(cli_main.time, "sleep", interrupt)

    result = invoke(db, "metrics", "--port", "9123")

    assert result.exit_code == 0, result.output
    assert started == [9123]
    assert "Contracts: 1" in result.stdout
    assert "Shutting down metrics server" in result.stdout
    assert contract_balance.labels(contract_id=funded["contract"])._value.get() == 750.0
