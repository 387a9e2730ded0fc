"""
offerguard/cli/__init__.py

offerguard CLI: root Click command group.

Registered in pyproject.toml as:

    [project.scripts]
    offerguard = "offerguard.cli:cli"

Adding a new command:
    1. Create offerguard/cli/your_command.py with a @click.command()
    2. Import it here
    3. cli.add_command(your_command)
"""

from typing import Optional

import click

from offerguard.cli.evaluate import encode_command, evaluate_command
from offerguard.cli.journal import verify_journal_command
from offerguard.cli.summarize import summarize_command
from offerguard.config import OfferGuardConfig
from offerguard.core.exceptions import OfferGuardError


@click.group()
@click.version_option(package_name="offerguard")
@click.option(
    "--config",
    "config_path",
    type=click.Path(),
    default=None,
    metavar="FILE",
    help="YAML config file (log level, signing key, journal, guardrail defaults).",
)
@click.option(
    "--log-level",
    type=click.Choice(["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"], case_sensitive=False),
    default=None,
    help="Override the configured log level.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], log_level: Optional[str]) -> None:
    """
    offerguard: guardrail enforcement for negotiated offers.

    \b
    Commands:
      evaluate        Evaluate a fill against guardrails (or a bundle).
      encode          Encode guardrails + fill into a binary bundle.
      summarize       Print a guardrail document's summary.
      verify-journal  Verify every receipt signature in a journal.

    \b
    Quick start:
      offerguard evaluate guardrails.yaml fill.yaml
      offerguard encode guardrails.yaml fill.yaml -o payload.bin
      offerguard evaluate --bundle payload.bin --format json
      offerguard verify-journal receipts.jsonl
    """
    try:
        config = OfferGuardConfig.load_from(config_path)
        if log_level:
            config.log_level = log_level.upper()
        config.configure_logging()
    except OfferGuardError as e:
        raise click.UsageError(str(e))
    ctx.obj = config


cli.add_command(evaluate_command)
cli.add_command(encode_command)
cli.add_command(summarize_command)
cli.add_command(verify_journal_command)
