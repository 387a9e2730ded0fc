"""
offerguard/cli/summarize.py

offerguard summarize: one-line human summary of a guardrail document.
"""

import sys

import click

from offerguard.cli.output import EXIT_ERROR, emit_error
from offerguard.config import OfferGuardConfig, load_yaml_file
from offerguard.core.exceptions import OfferGuardError, ValidationError
from offerguard.core.models import GuardrailDocument


@click.command(name="summarize")
@click.argument("guardrails", type=click.Path())
@click.pass_obj
def summarize_command(config: OfferGuardConfig, guardrails: str) -> None:
    """Print the summary a maker sees for GUARDRAILS."""
    try:
        data = load_yaml_file(guardrails)
        if not isinstance(data, dict):
            raise ValidationError(f"{guardrails} must contain a mapping")
        doc = GuardrailDocument.from_dict(data, defaults=config.guardrail_defaults)
    except OfferGuardError as e:
        emit_error("summarize", str(e), "human")
        sys.exit(EXIT_ERROR)
    click.echo(doc.summary())
