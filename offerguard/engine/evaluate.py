"""
offerguard/engine/evaluate.py

Guardrail Validation Engine.

═══════════════════════════════════════════════════════════════════
ENGINE CONTRACTS
═══════════════════════════════════════════════════════════════════

CONTRACT 1: Purity
    evaluate() reads only its two arguments. No clock, no logging, no I/O,
    no randomness. Same input, same Verdict, on any host.

CONTRACT 2: Fixed order, first failure wins
    1. expiry         OfferExpired
    2. taker          UnauthorizedTaker
    3. size           SizeExceedsMax
    4. debit          PriceExceedsLimit
    5. feeds          QuorumNotMet (count) → UnauthorizedSource / StaleFeed
                      per attestation → QuorumNotMet (spread)
    6. settlement     InvalidTransferPattern
    7. side payments  SidePaymentDetected

CONTRACT 3: Inclusive bounds
    A value sitting exactly on a limit is accepted.

CONTRACT 4: Exact arithmetic
    The quorum spread is computed over Fractions. It is skipped when the
    lowest attested price is zero; models reject negative prices upstream.
═══════════════════════════════════════════════════════════════════
"""

from dataclasses import dataclass
from fractions import Fraction
from typing import Optional

from offerguard.core.exceptions import GuardrailViolation
from offerguard.core.models import FillEvidence, GuardrailDocument
from offerguard.core.rejection import (
    InvalidTransferPattern,
    OfferExpired,
    PriceExceedsLimit,
    QuorumNotMet,
    RejectionReason,
    SidePaymentDetected,
    SizeExceedsMax,
    StaleFeed,
    UnauthorizedSource,
    UnauthorizedTaker,
)

# Atomic delivery-vs-payment: one leg each way.
DVP_LEG_COUNT = 2


@dataclass(frozen=True)
class Verdict:
    """
    Outcome of one evaluation.

    bool(verdict) is True iff the fill is accepted; reason is then None.
    """
    reason: Optional[RejectionReason] = None

    @property
    def accepted(self) -> bool:
        return self.reason is None

    def __bool__(self) -> bool:
        return self.accepted

    def to_dict(self) -> dict:
        return {
            "accepted": self.accepted,
            "reason":   self.reason.to_dict() if self.reason else None,
        }


ACCEPTED = Verdict()


def evaluate(guardrails: GuardrailDocument, evidence: FillEvidence) -> Verdict:
    """Run the seven guardrail checks in order. Returns the first failure."""
    reason = (
        _check_expiry(guardrails, evidence)
        or _check_taker(guardrails, evidence)
        or _check_size(guardrails, evidence)
        or _check_debit(guardrails, evidence)
        or _check_feeds(guardrails, evidence)
        or _check_transfer_pattern(guardrails, evidence)
        or _check_side_payments(guardrails, evidence)
    )
    if reason is None:
        return ACCEPTED
    return Verdict(reason=reason)


def enforce(guardrails: GuardrailDocument, evidence: FillEvidence) -> None:
    """evaluate(), raising GuardrailViolation instead of returning a rejection."""
    verdict = evaluate(guardrails, evidence)
    if not verdict:
        raise GuardrailViolation(verdict.reason)


# ── Checks ────────────────────────────────────────────────────
# Each returns a RejectionReason or None.

def _check_expiry(g: GuardrailDocument, e: FillEvidence) -> Optional[RejectionReason]:
    if e.evaluation_time > g.expiry_time:
        return OfferExpired(expired_at=g.expiry_time, attempted_at=e.evaluation_time)
    return None


def _check_taker(g: GuardrailDocument, e: FillEvidence) -> Optional[RejectionReason]:
    if not g.allows_taker(e.taker_id):
        return UnauthorizedTaker(taker=e.taker_id, allowed_takers=g.allowed_takers)
    return None


def _check_size(g: GuardrailDocument, e: FillEvidence) -> Optional[RejectionReason]:
    if e.fill_size > g.max_fill_size:
        return SizeExceedsMax(offered_size=e.fill_size, max_size=g.max_fill_size)
    return None


def _check_debit(g: GuardrailDocument, e: FillEvidence) -> Optional[RejectionReason]:
    if e.fill_price > g.max_debit:
        return PriceExceedsLimit(offered_price=e.fill_price, limit_price=g.max_debit)
    return None


def _check_feeds(g: GuardrailDocument, e: FillEvidence) -> Optional[RejectionReason]:
    feeds = e.feed_evidence

    if len(feeds) < g.quorum_count:
        return QuorumNotMet(
            sources_provided=      len(feeds),
            quorum_required=       g.quorum_count,
            price_spread_percent=  None,
            max_tolerance_percent= g.quorum_tolerance_percent,
        )

    for feed in feeds:
        if not g.allows_source(feed.source):
            return UnauthorizedSource(source=feed.source, allowed_sources=g.allowed_sources)
        # Attestations from the future count as age zero.
        age = max(0, e.evaluation_time - feed.observed_at)
        if age > g.max_staleness:
            return StaleFeed(
                source=          feed.source,
                observed_at=     feed.observed_at,
                evaluation_time= e.evaluation_time,
                max_staleness=   g.max_staleness,
            )

    if len(feeds) >= 2:
        prices = [feed.price for feed in feeds]
        low, high = min(prices), max(prices)
        if low > 0:
            spread = (high - low) / low * 100
            if spread > g.quorum_tolerance_percent:
                return QuorumNotMet(
                    sources_provided=      len(feeds),
                    quorum_required=       g.quorum_count,
                    price_spread_percent=  Fraction(spread),
                    max_tolerance_percent= g.quorum_tolerance_percent,
                )
    return None


def _check_transfer_pattern(g: GuardrailDocument, e: FillEvidence) -> Optional[RejectionReason]:
    if g.require_atomic_delivery_vs_payment and e.transfer_leg_count != DVP_LEG_COUNT:
        return InvalidTransferPattern(
            expected_legs= DVP_LEG_COUNT,
            actual_legs=   e.transfer_leg_count,
        )
    return None


def _check_side_payments(g: GuardrailDocument, e: FillEvidence) -> Optional[RejectionReason]:
    if g.forbid_side_payments and e.has_extra_transfers:
        return SidePaymentDetected(transfer_leg_count=e.transfer_leg_count)
    return None
