"""Click CLI commands for StockSage."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click
from sqlmodel import select

from .config import BaseConfig
from .infra.database import SessionFactory, bootstrap_database
from .infra.repositories import SQLModelImportStore
from .logging_config import setup_logging
from .models import User
from .services.export_csv import export_transactions_csv
from .services.field_mapping import suggest_mappings
from .services.import_csv import import_file, preview_file, summarize_transactions
from .services.import_orchestrator import ImportConfigurationError
from .services.import_types import (
    DuplicateHandling,
    ImportConfig,
    ImportResult,
    ImportSummary,
    ParseResult,
)


def _ensure_user(session_factory: SessionFactory, username: str) -> int:
    with session_factory() as session:
        user = session.exec(select(User).where(User.username == username)).first()
        if user is None:
            user = User(username=username)
            session.add(user)
            session.flush()
        return user.id


def _echo_messages(label: str, messages: list[str], *, err: bool = False) -> None:
    if not messages:
        return
    click.echo(f"{label} ({len(messages)}):", err=err)
    for message in messages:
        click.echo(f"  - {message}", err=err)


def _echo_preview(parsed: ParseResult, rows) -> None:
    click.echo(f"Encoding: {parsed.detected_encoding}  Delimiter: {parsed.detected_delimiter!r}")
    click.echo(f"Rows: {parsed.total_rows}  Portfolios: {', '.join(parsed.portfolios) or '-'}")
    click.echo(f"Transaction types: {', '.join(parsed.transaction_types) or '-'}")
    valid = sum(1 for row in rows if row.is_valid)
    click.echo(f"Valid rows: {valid}/{len(rows)}")


def _echo_summary(summary: ImportSummary) -> None:
    def joined(counts: dict) -> str:
        return ", ".join(f"{key}={value}" for key, value in counts.items()) or "-"

    click.echo(f"By type: {joined(summary.transaction_types)}")
    click.echo(f"By portfolio: {joined(summary.portfolios)}")
    click.echo(f"By currency: {joined(summary.currencies)}")
    totals = {currency: f"{total:.2f}" for currency, total in summary.total_amount.items()}
    click.echo(f"Gross amounts: {joined(totals)}")
    if summary.date_range is not None:
        start, end = summary.date_range
        click.echo(f"Booked: {start.isoformat()} to {end.isoformat()}")
    click.echo(
        f"Clean: {summary.valid}  With warnings: {summary.with_warnings}  "
        f"With errors: {summary.with_errors}"
    )


def _echo_column_hints(headers: list[str]) -> None:
    hints = suggest_mappings(headers)[:5]
    if not hints:
        return
    click.echo("Possible column matches:", err=True)
    for hint in hints:
        click.echo(f"  - {hint.header} -> {hint.target} ({hint.confidence:.0%})", err=True)


def _echo_result(result: ImportResult) -> None:
    click.echo(f"Import batch: {result.import_batch_id}")
    click.echo(
        f"Parsed {result.parsed_rows}, created {result.created_transactions}, "
        f"updated {result.updated_transactions}, duplicates {result.duplicate_rows}, "
        f"skipped {result.skipped_rows}"
    )
    click.echo(
        f"New accounts: {result.created_accounts}  New securities: {result.created_securities}"
    )


@click.group()
def cli() -> None:
    """StockSage brokerage import tools."""


@cli.command("import-csv")
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--username", default="default", show_default=True, help="Owner of the imported rows")
@click.option("--encoding", default=None, help="Override encoding detection")
@click.option("--delimiter", default=None, help="Override delimiter detection")
@click.option("--skip-rows", default=0, show_default=True, type=int)
@click.option(
    "--duplicates",
    type=click.Choice([policy.value for policy in DuplicateHandling]),
    default=DuplicateHandling.SKIP.value,
    show_default=True,
)
@click.option("--strict", is_flag=True, default=False, help="Reject unknown transaction types")
@click.option("--no-create-securities", is_flag=True, default=False)
@click.option("--workers", default=1, show_default=True, type=int)
@click.option("--dry-run", is_flag=True, default=False, help="Parse and validate only")
@click.option(
    "--export",
    "export_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the mapped rows to this CSV file",
)
def import_csv_command(
    csv_path: Path,
    username: str,
    encoding: Optional[str],
    delimiter: Optional[str],
    skip_rows: int,
    duplicates: str,
    strict: bool,
    no_create_securities: bool,
    workers: int,
    dry_run: bool,
    export_path: Optional[Path],
) -> None:
    """Import a brokerage CSV export."""

    app_config = BaseConfig()
    logger = setup_logging(app_config)
    config = ImportConfig(
        encoding=encoding,
        delimiter=delimiter,
        skip_rows=skip_rows,
        duplicate_handling=DuplicateHandling(duplicates),
        strict_mode=strict,
        create_missing_securities=not no_create_securities,
        max_workers=workers,
    )
    problems = config.validate()
    if problems:
        raise click.UsageError("; ".join(problems))

    if dry_run:
        parsed, rows = preview_file(csv_path, config, max_size=app_config.MAX_IMPORT_FILE_SIZE)
        _echo_preview(parsed, rows)
        if rows:
            _echo_summary(summarize_transactions(rows))
        _echo_messages("Warnings", parsed.warnings)
        _echo_messages("Errors", parsed.errors, err=True)
        if not parsed.is_valid and parsed.headers:
            _echo_column_hints(parsed.headers)
        if export_path is not None:
            export_transactions_csv(transactions=rows, output_path=export_path)
            click.echo(f"Export written: {export_path}")
        if not parsed.is_valid:
            raise SystemExit(1)
        return

    _, session_factory = bootstrap_database(app_config)
    owner_id = _ensure_user(session_factory, username)
    store = SQLModelImportStore(session_factory)

    try:
        result = import_file(
            csv_path, store, owner_id, config, max_size=app_config.MAX_IMPORT_FILE_SIZE
        )
    except ImportConfigurationError as exc:
        raise click.UsageError(str(exc)) from exc

    _echo_result(result)
    _echo_messages("Warnings", result.warnings)
    _echo_messages("Errors", result.errors, err=True)
    if export_path is not None:
        export_transactions_csv(transactions=result.processed_data, output_path=export_path)
        click.echo(f"Export written: {export_path}")

    logger.info("CLI import finished", extra={"success": result.success})
    if not result.success:
        raise SystemExit(1)


def main() -> None:
    cli()


if __name__ == "__main__":  # pragma: no cover
    main()
