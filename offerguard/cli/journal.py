"""
offerguard/cli/journal.py

offerguard verify-journal: re-check every receipt signature in a journal.

Usage:
    offerguard verify-journal receipts.jsonl
    offerguard verify-journal receipts.jsonl --format json
    offerguard verify-journal receipts.jsonl --public-key <hex>
    offerguard verify-journal receipts.jsonl --require-signed

Exit codes:
    0  every line parses and every signature verifies
    1  violations found
    2  error (journal missing or unreadable)
"""

import json
import sys
from pathlib import Path
from typing import Optional

import click

from offerguard.cli.output import (
    EXIT_ERROR,
    EXIT_OK,
    EXIT_REJECTED,
    Color,
    emit_error,
    row,
)
from offerguard.core.exceptions import JournalError
from offerguard.store.journal import JournalReport, ReceiptJournal


@click.command(name="verify-journal")
@click.argument("journal", type=click.Path())
@click.option(
    "--format", "fmt",
    type=click.Choice(["human", "json"], case_sensitive=False),
    default="human",
    show_default=True,
    help="Output format.",
)
@click.option(
    "--public-key",
    type=str,
    default=None,
    metavar="HEX",
    help="Verify against this key instead of the key stored in each receipt.",
)
@click.option(
    "--require-signed",
    is_flag=True,
    default=False,
    help="Treat unsigned receipts as violations.",
)
@click.option("--no-color", is_flag=True, default=False, help="Disable ANSI color output.")
def verify_journal_command(
    journal:        str,
    fmt:            str,
    public_key:     Optional[str],
    require_signed: bool,
    no_color:       bool,
) -> None:
    """
    Verify a receipt journal.

    JOURNAL is the path to a .jsonl receipt journal.
    """
    Color.configure(not no_color)

    try:
        report = ReceiptJournal(Path(journal)).verify(
            public_key_hex=public_key,
            require_signed=require_signed,
        )
    except JournalError as e:
        emit_error("verify_journal", str(e), fmt)
        sys.exit(EXIT_ERROR)

    if fmt == "json":
        out = report.to_dict()
        out["journal"] = journal
        click.echo(json.dumps({"offerguard_verify_journal": out}, indent=2))
    else:
        _output_human(journal, report)

    sys.exit(EXIT_OK if report.clean else EXIT_REJECTED)


def _output_human(journal: str, report: JournalReport) -> None:
    bar = "─" * 60
    click.echo()
    click.echo(row("Journal", journal))
    click.echo(row("Receipts", f"{report.total_receipts:,}"
                   f"  ({report.accepted:,} accepted, {report.rejected:,} rejected)"))
    click.echo(row("Signatures", f"{report.valid_signatures:,} valid"
                   f"  ·  {report.unsigned:,} unsigned"))
    click.echo()

    if report.violations:
        click.echo(f"  {bar}")
        for v in report.violations:
            click.echo(
                f"  {Color.red(str(v.line)):>6}  "
                f"{Color.yellow(v.receipt_id or '-')}  {v.detail}"
            )
        click.echo(f"  {bar}")
        click.echo(Color.red(Color.bold(
            f"  INVALID  ·  {len(report.violations)} violation(s)"
        )))
    else:
        click.echo(Color.green(Color.bold("  VALID  ·  0 violations")))
    click.echo()
