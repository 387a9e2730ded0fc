"""
offerguard/engine/sandbox.py

Proof-sandbox entry point.

Inside the proof environment the only input is an encoded bundle and the
only output is a public commitment. An accepted fill commits to

    offer_id (32 bytes) || 0x01

A rejected fill does not commit at all: run() raises ProofAborted, so no
proof can ever attest to a rejected evaluation.

evaluate_payload() is the host-side twin. It decodes the same bytes and
runs the same engine, so host and sandbox verdicts agree for every payload.
"""

from offerguard.core.codec import decode_bundle
from offerguard.core.exceptions import ProofAborted
from offerguard.engine.evaluate import Verdict, evaluate

ACCEPTED_FLAG = b"\x01"


def run(payload: bytes) -> bytes:
    """
    Decode, evaluate and commit.

    Raises DecodeError if the payload is malformed.
    Raises ProofAborted carrying the RejectionReason if the fill is rejected.
    """
    guardrails, evidence = decode_bundle(payload)
    verdict = evaluate(guardrails, evidence)
    if not verdict:
        raise ProofAborted(verdict.reason)
    return guardrails.offer_id + ACCEPTED_FLAG


def evaluate_payload(payload: bytes) -> Verdict:
    guardrails, evidence = decode_bundle(payload)
    return evaluate(guardrails, evidence)
