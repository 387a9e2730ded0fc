"""
offerguard/cli/evaluate.py

offerguard evaluate / offerguard encode

Usage:
    offerguard evaluate guardrails.yaml fill.yaml              Human output
    offerguard evaluate guardrails.yaml fill.yaml --format json
    offerguard evaluate guardrails.yaml fill.yaml --at 1700000000
    offerguard evaluate --bundle payload.bin                   Sandbox path
    offerguard encode guardrails.yaml fill.yaml -o payload.bin

GUARDRAILS and EVIDENCE are YAML or JSON files holding the dict forms of
GuardrailDocument and FillEvidence. Omitted guardrail fields take the
configured guardrail_defaults.

Exit codes:
    0  fill accepted
    1  fill rejected
    2  error
"""

import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional, Tuple

import click

from offerguard.cli.output import (
    EXIT_ERROR,
    EXIT_OK,
    EXIT_REJECTED,
    Color,
    emit_error,
    row,
)
from offerguard.config import OfferGuardConfig, load_yaml_file
from offerguard.core.codec import encode_bundle
from offerguard.core.exceptions import OfferGuardError, ProofAborted, ValidationError
from offerguard.core.models import FillEvidence, GuardrailDocument
from offerguard.core.rejection import RejectionReason
from offerguard.engine import sandbox
from offerguard.engine.evaluate import evaluate


def load_inputs(
    config:          OfferGuardConfig,
    guardrails_path: str,
    evidence_path:   str,
) -> Tuple[GuardrailDocument, FillEvidence]:
    guardrails_data = load_yaml_file(Path(guardrails_path))
    evidence_data   = load_yaml_file(Path(evidence_path))
    if not isinstance(guardrails_data, dict):
        raise ValidationError(f"{guardrails_path} must contain a mapping")
    if not isinstance(evidence_data, dict):
        raise ValidationError(f"{evidence_path} must contain a mapping")
    guardrails = GuardrailDocument.from_dict(guardrails_data, defaults=config.guardrail_defaults)
    evidence   = FillEvidence.from_dict(evidence_data)
    return guardrails, evidence


# ── evaluate ──────────────────────────────────────────────────

@click.command(name="evaluate")
@click.argument("guardrails", required=False, type=click.Path())
@click.argument("evidence", required=False, type=click.Path())
@click.option(
    "--bundle",
    "bundle_path",
    type=click.Path(),
    default=None,
    metavar="FILE",
    help="Evaluate an encoded bundle through the proof-sandbox entry point.",
)
@click.option(
    "--format", "fmt",
    type=click.Choice(["human", "json"], case_sensitive=False),
    default="human",
    show_default=True,
    help="Output format.",
)
@click.option(
    "--at",
    "at_time",
    type=int,
    default=None,
    metavar="SECONDS",
    help="Override the evidence's evaluation_time (unix seconds).",
)
@click.option("--no-color", is_flag=True, default=False, help="Disable ANSI color output.")
@click.pass_obj
def evaluate_command(
    config:      OfferGuardConfig,
    guardrails:  Optional[str],
    evidence:    Optional[str],
    bundle_path: Optional[str],
    fmt:         str,
    at_time:     Optional[int],
    no_color:    bool,
) -> None:
    """
    Evaluate a fill against guardrails.

    \b
    Examples:
      offerguard evaluate guardrails.yaml fill.yaml
      offerguard evaluate guardrails.yaml fill.yaml --format json
      offerguard evaluate --bundle payload.bin
    """
    Color.configure(not no_color)

    if bundle_path:
        if guardrails or evidence or at_time is not None:
            emit_error("evaluate", "--bundle takes no GUARDRAILS/EVIDENCE/--at", fmt)
            sys.exit(EXIT_ERROR)
        _evaluate_bundle(Path(bundle_path), fmt)
        return

    if not guardrails or not evidence:
        emit_error("evaluate", "GUARDRAILS and EVIDENCE are required without --bundle", fmt)
        sys.exit(EXIT_ERROR)

    try:
        doc, fill = load_inputs(config, guardrails, evidence)
        if at_time is not None:
            fill = replace(fill, evaluation_time=at_time)
    except OfferGuardError as e:
        emit_error("evaluate", str(e), fmt)
        sys.exit(EXIT_ERROR)

    verdict = evaluate(doc, fill)
    _output(doc.offer_id_hex, verdict.reason, fmt, commitment=None)
    sys.exit(EXIT_OK if verdict else EXIT_REJECTED)


def _evaluate_bundle(path: Path, fmt: str) -> None:
    try:
        payload = path.read_bytes()
    except OSError as e:
        emit_error("evaluate", f"Cannot read bundle: {e}", fmt)
        sys.exit(EXIT_ERROR)

    try:
        commitment = sandbox.run(payload)
    except ProofAborted as e:
        _output(None, e.reason, fmt, commitment=None)
        sys.exit(EXIT_REJECTED)
    except OfferGuardError as e:
        emit_error("evaluate", str(e), fmt)
        sys.exit(EXIT_ERROR)

    offer_id = commitment[:-1].hex()
    _output(offer_id, None, fmt, commitment=commitment.hex())
    sys.exit(EXIT_OK)


def _output(
    offer_id:   Optional[str],
    reason:     Optional[RejectionReason],
    fmt:        str,
    commitment: Optional[str],
) -> None:
    if fmt == "json":
        click.echo(json.dumps({
            "offerguard_evaluate": {
                "accepted":   reason is None,
                "offer_id":   offer_id,
                "commitment": commitment,
                "reason":     reason.to_dict() if reason else None,
            }
        }, indent=2))
        return

    click.echo()
    if offer_id:
        click.echo(row("Offer", offer_id))
    if commitment:
        click.echo(row("Commitment", commitment))
    if reason is None:
        click.echo(row("Verdict", Color.green(Color.bold("ACCEPTED"))))
    else:
        click.echo(row("Verdict", Color.red(Color.bold("REJECTED"))))
        click.echo(row("Code", Color.yellow(reason.code)))
        click.echo(row("Reason", reason.message()))
    click.echo()


# ── encode ────────────────────────────────────────────────────

@click.command(name="encode")
@click.argument("guardrails", type=click.Path())
@click.argument("evidence", type=click.Path())
@click.option(
    "-o", "--output",
    "output_path",
    type=click.Path(),
    required=True,
    metavar="FILE",
    help="Where to write the encoded bundle.",
)
@click.pass_obj
def encode_command(
    config:      OfferGuardConfig,
    guardrails:  str,
    evidence:    str,
    output_path: str,
) -> None:
    """Encode GUARDRAILS and EVIDENCE into a binary evaluation bundle."""
    try:
        doc, fill = load_inputs(config, guardrails, evidence)
    except OfferGuardError as e:
        emit_error("encode", str(e), "human")
        sys.exit(EXIT_ERROR)

    payload = encode_bundle(doc, fill)
    try:
        Path(output_path).write_bytes(payload)
    except OSError as e:
        emit_error("encode", f"Cannot write {output_path}: {e}", "human")
        sys.exit(EXIT_ERROR)
    click.echo(f"Wrote {len(payload)} bytes to {output_path}")
