"""
tests/test_engine.py

Guardrail engine laws.

  SCENARIOS
    two attestations FeedA/FeedB at 1950/1951, 1s old   → accepted
    attestation from FeedMallory                        → UnauthorizedSource
    attestation 301s old against 300s freshness         → StaleFeed

  BOUNDARIES
    equality at expiry, size, debit, staleness and spread is accepted

  ORDER
    checks run expiry → taker → size → debit → feeds → legs → side payments,
    and the first failure is the one reported

  QUORUM
    count is checked before any attestation; spread is skipped when the
    lowest price is zero or only one attestation was supplied

  DETERMINISM
    same input, same verdict
"""

from fractions import Fraction

import pytest

from offerguard.core.exceptions import GuardrailViolation
from offerguard.core.rejection import (
    InvalidTransferPattern,
    OfferExpired,
    PriceExceedsLimit,
    QuorumNotMet,
    SidePaymentDetected,
    SizeExceedsMax,
    StaleFeed,
    UnauthorizedSource,
    UnauthorizedTaker,
)
from offerguard.engine.evaluate import ACCEPTED, Verdict, enforce, evaluate

from conftest import (
    FILL_PRICE,
    MAX_DEBIT,
    MAX_FILL_SIZE,
    T0,
    make_evidence,
    make_feed,
    make_guardrails,
)


# ─────────────────────────────────────────────────────────────
# Scenarios
# ─────────────────────────────────────────────────────────────

class TestScenarios:

    def test_two_fresh_agreeing_feeds_accepted(self, guardrails, evidence):
        verdict = evaluate(guardrails, evidence)
        assert verdict, f"Expected acceptance, got {verdict.reason}"
        assert verdict.reason is None
        assert verdict == ACCEPTED

    def test_unlisted_source_rejected(self):
        g = make_guardrails(quorum_count=1)
        e = make_evidence(feeds=[make_feed("FeedMallory", 1950)])
        verdict = evaluate(g, e)
        assert verdict.reason == UnauthorizedSource(
            source="FeedMallory", allowed_sources=("FeedA", "FeedB")
        )

    def test_stale_attestation_rejected(self):
        g = make_guardrails(quorum_count=1)
        e = make_evidence(feeds=[make_feed("FeedA", 1950, observed_at=T0 - 301)])
        reason = evaluate(g, e).reason
        assert isinstance(reason, StaleFeed)
        assert reason.age == 301
        assert reason.max_staleness == 300
        assert "301s old" in reason.message()


# ─────────────────────────────────────────────────────────────
# Boundaries: equality is accepted
# ─────────────────────────────────────────────────────────────

class TestBoundaries:

    def test_evaluation_at_expiry_accepted(self, guardrails):
        e = make_evidence(
            evaluation_time=T0 + 300,
            feeds=[make_feed("FeedA", 1950, T0 + 299), make_feed("FeedB", 1951, T0 + 299)],
        )
        verdict = evaluate(guardrails, e)
        assert verdict, f"Expected acceptance at expiry_time, got {verdict.reason}"

    def test_evaluation_after_expiry_rejected(self, guardrails):
        e = make_evidence(
            evaluation_time=T0 + 301,
            feeds=[make_feed("FeedA", 1950, T0 + 300), make_feed("FeedB", 1951, T0 + 300)],
        )
        assert evaluate(guardrails, e).reason == OfferExpired(
            expired_at=T0 + 300, attempted_at=T0 + 301
        )

    def test_fill_size_at_max_accepted(self, guardrails):
        assert evaluate(guardrails, make_evidence(fill_size=MAX_FILL_SIZE))

    def test_fill_size_over_max_rejected(self, guardrails):
        reason = evaluate(guardrails, make_evidence(fill_size=MAX_FILL_SIZE + 1)).reason
        assert reason == SizeExceedsMax(offered_size=MAX_FILL_SIZE + 1, max_size=MAX_FILL_SIZE)

    def test_price_at_max_debit_accepted(self, guardrails):
        assert evaluate(guardrails, make_evidence(fill_price=MAX_DEBIT))

    def test_price_over_max_debit_rejected(self, guardrails):
        reason = evaluate(guardrails, make_evidence(fill_price=MAX_DEBIT + 1)).reason
        assert reason == PriceExceedsLimit(offered_price=MAX_DEBIT + 1, limit_price=MAX_DEBIT)

    def test_staleness_at_limit_accepted(self):
        g = make_guardrails(quorum_count=1)
        e = make_evidence(feeds=[make_feed("FeedA", 1950, observed_at=T0 - 300)])
        assert evaluate(g, e)

    def test_attestation_from_the_future_has_zero_age(self):
        g = make_guardrails(quorum_count=1, max_staleness=0)
        e = make_evidence(feeds=[make_feed("FeedA", 1950, observed_at=T0 + 1000)])
        assert evaluate(g, e), "Future attestations must saturate to age 0, not wrap"

    def test_spread_equal_to_tolerance_accepted(self, guardrails):
        # (101 - 100) / 100 * 100 == 1 exactly
        e = make_evidence(feeds=[make_feed("FeedA", 100), make_feed("FeedB", 101)])
        assert evaluate(guardrails, e)

    def test_spread_over_tolerance_rejected(self, guardrails):
        e = make_evidence(feeds=[make_feed("FeedA", 1950), make_feed("FeedB", 1970)])
        reason = evaluate(guardrails, e).reason
        assert isinstance(reason, QuorumNotMet)
        assert reason.price_spread_percent == Fraction(40, 39)
        assert reason.max_tolerance_percent == Fraction(1)
        assert reason.sources_provided == 2

    def test_decimal_tolerance_is_exact(self):
        # 0.1 as a float would not equal the 1/10 spread below
        g = make_guardrails(quorum_tolerance_percent="0.1")
        e = make_evidence(feeds=[make_feed("FeedA", 1000), make_feed("FeedB", 1001)])
        assert evaluate(g, e), "A spread of exactly 0.1% must pass a 0.1% tolerance"


# ─────────────────────────────────────────────────────────────
# Taker allowlist
# ─────────────────────────────────────────────────────────────

class TestTakerAllowlist:

    def test_empty_allowlist_admits_anyone(self, guardrails):
        assert evaluate(guardrails, make_evidence(taker_id="anyone"))

    def test_listed_taker_admitted(self):
        g = make_guardrails(allowed_takers=("taker_bob",))
        assert evaluate(g, make_evidence(taker_id="taker_bob"))

    def test_unlisted_taker_rejected(self):
        g = make_guardrails(allowed_takers=("taker_bob",))
        reason = evaluate(g, make_evidence(taker_id="taker_eve")).reason
        assert reason == UnauthorizedTaker(taker="taker_eve", allowed_takers=("taker_bob",))


# ─────────────────────────────────────────────────────────────
# Feed evidence
# ─────────────────────────────────────────────────────────────

class TestFeedEvidence:

    def test_too_few_attestations(self, guardrails):
        reason = evaluate(guardrails, make_evidence(feeds=[make_feed("FeedA")])).reason
        assert reason == QuorumNotMet(
            sources_provided=      1,
            quorum_required=       2,
            price_spread_percent=  None,
            max_tolerance_percent= Fraction(1),
        )

    def test_count_checked_before_sources(self):
        g = make_guardrails(quorum_count=3)
        e = make_evidence(feeds=[make_feed("FeedMallory"), make_feed("FeedA")])
        assert isinstance(evaluate(g, e).reason, QuorumNotMet), (
            "Quorum count must be checked before any attestation is inspected"
        )

    def test_attestations_checked_in_order(self):
        e = make_evidence(feeds=[
            make_feed("FeedA", 1950, observed_at=T0 - 1000),
            make_feed("FeedMallory", 1950),
        ])
        assert isinstance(evaluate(make_guardrails(), e).reason, StaleFeed)

    def test_source_checked_before_staleness(self):
        e = make_evidence(feeds=[
            make_feed("FeedMallory", 1950, observed_at=T0 - 1000),
            make_feed("FeedA", 1950),
        ])
        assert isinstance(evaluate(make_guardrails(), e).reason, UnauthorizedSource)

    def test_staleness_checked_before_spread(self, guardrails):
        e = make_evidence(feeds=[
            make_feed("FeedA", 1000),
            make_feed("FeedB", 9000, observed_at=T0 - 1000),
        ])
        assert isinstance(evaluate(guardrails, e).reason, StaleFeed)

    def test_empty_source_allowlist_admits_any_source(self):
        g = make_guardrails(allowed_sources=(), quorum_count=1)
        assert evaluate(g, make_evidence(feeds=[make_feed("FeedMallory")]))

    def test_zero_price_skips_spread(self, guardrails):
        e = make_evidence(feeds=[make_feed("FeedA", 0), make_feed("FeedB", 5000)])
        assert evaluate(guardrails, e), "A zero lowest price must skip the spread check"

    def test_single_attestation_skips_spread(self):
        g = make_guardrails(quorum_count=1, quorum_tolerance_percent=0)
        assert evaluate(g, make_evidence(feeds=[make_feed("FeedA", 1950)]))

    def test_zero_quorum_with_no_attestations(self):
        g = make_guardrails(quorum_count=0)
        assert evaluate(g, make_evidence(feeds=[]))

    def test_spread_covers_all_attestations(self):
        g = make_guardrails(quorum_count=2, allowed_sources=())
        e = make_evidence(feeds=[
            make_feed("FeedA", 1000),
            make_feed("FeedB", 1005),
            make_feed("FeedC", 1020),
        ])
        reason = evaluate(g, e).reason
        assert reason.price_spread_percent == Fraction(2), "spread is (max - min) / min * 100"


# ─────────────────────────────────────────────────────────────
# Settlement shape
# ─────────────────────────────────────────────────────────────

class TestSettlementShape:

    def test_wrong_leg_count_rejected(self, guardrails):
        reason = evaluate(guardrails, make_evidence(transfer_leg_count=3)).reason
        assert reason == InvalidTransferPattern(expected_legs=2, actual_legs=3)

    def test_leg_count_ignored_without_atomic_dvp(self):
        g = make_guardrails(require_atomic_delivery_vs_payment=False)
        assert evaluate(g, make_evidence(transfer_leg_count=5))

    def test_side_payment_rejected(self, guardrails):
        reason = evaluate(guardrails, make_evidence(has_extra_transfers=True)).reason
        assert reason == SidePaymentDetected(transfer_leg_count=2)

    def test_side_payment_allowed_when_not_forbidden(self):
        g = make_guardrails(forbid_side_payments=False)
        assert evaluate(g, make_evidence(has_extra_transfers=True))


# ─────────────────────────────────────────────────────────────
# Order: first failure wins
# ─────────────────────────────────────────────────────────────

class TestCheckOrder:

    def test_failures_reported_in_fixed_order(self):
        """Peel off one violation at a time; the next check in order must report."""
        g = make_guardrails(allowed_takers=("taker_bob",))
        broken = dict(
            evaluation_time=     T0 + 301,
            taker_id=            "taker_eve",
            fill_size=           MAX_FILL_SIZE + 1,
            fill_price=          MAX_DEBIT + 1,
            feeds=               [make_feed("FeedA", 1950, observed_at=T0 - 10_000)],
            transfer_leg_count=  3,
            has_extra_transfers= True,
        )
        expected = [
            ("evaluation_time",     T0,                  OfferExpired),
            ("taker_id",            "taker_bob",         UnauthorizedTaker),
            ("fill_size",           MAX_FILL_SIZE,       SizeExceedsMax),
            ("fill_price",          FILL_PRICE,          PriceExceedsLimit),
            ("feeds",               None,                QuorumNotMet),
            ("transfer_leg_count",  2,                   InvalidTransferPattern),
            ("has_extra_transfers", False,               SidePaymentDetected),
        ]
        for name, fixed_value, reason_cls in expected:
            reason = evaluate(g, make_evidence(**broken)).reason
            assert isinstance(reason, reason_cls), (
                f"Expected {reason_cls.__name__} before fixing {name}, got {reason}"
            )
            broken[name] = fixed_value

        assert evaluate(g, make_evidence(**broken)), "All violations fixed must accept"


# ─────────────────────────────────────────────────────────────
# Verdict / enforce / determinism
# ─────────────────────────────────────────────────────────────

class TestVerdict:

    def test_verdict_truthiness(self):
        assert Verdict()
        assert not Verdict(reason=SidePaymentDetected(transfer_leg_count=3))

    def test_verdict_to_dict(self, guardrails):
        out = evaluate(guardrails, make_evidence(fill_price=MAX_DEBIT + 1)).to_dict()
        assert out["accepted"] is False
        assert out["reason"]["code"] == "PRICE_EXCEEDS_LIMIT"

    def test_enforce_passes_silently(self, guardrails, evidence):
        assert enforce(guardrails, evidence) is None

    def test_enforce_raises_with_reason(self, guardrails):
        with pytest.raises(GuardrailViolation) as exc_info:
            enforce(guardrails, make_evidence(fill_size=MAX_FILL_SIZE + 1))
        assert isinstance(exc_info.value.reason, SizeExceedsMax)
        assert exc_info.value.details["code"] == "SIZE_EXCEEDS_MAX"

    def test_same_input_same_verdict(self, guardrails):
        inputs = [
            make_evidence(),
            make_evidence(fill_size=MAX_FILL_SIZE + 1),
            make_evidence(feeds=[make_feed("FeedA", 1950), make_feed("FeedB", 1990)]),
        ]
        for e in inputs:
            first = evaluate(guardrails, e)
            for _ in range(50):
                assert evaluate(guardrails, e) == first
