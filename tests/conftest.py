"""
tests/conftest.py

Shared builders for the offerguard test suite.

The reference scenario: a maker offers dETH with a 2,000,000,000,000 debit
ceiling, feeds FeedA/FeedB, 300s freshness, quorum of 2 within 1%. The
default fill sits comfortably inside every guardrail.
"""

import logging
from fractions import Fraction

import pytest

from offerguard.core.logs import LOGGER_NAME
from offerguard.core.models import (
    FeedEvidence,
    FillEvidence,
    GuardrailDocument,
    OfferSpec,
    Side,
)

T0       = 1_700_000_000
OFFER_ID = bytes(range(32))

MAX_DEBIT     = 2_000_000_000_000
MAX_FILL_SIZE = 5 * 10 ** 18
FILL_SIZE     = 10 ** 18
FILL_PRICE    = 1_950_000_000_000


def make_guardrails(**overrides) -> GuardrailDocument:
    fields = dict(
        offer_id=                           OFFER_ID,
        max_debit=                          MAX_DEBIT,
        expiry_time=                        T0 + 300,
        max_fill_size=                      MAX_FILL_SIZE,
        allowed_sources=                    ("FeedA", "FeedB"),
        max_staleness=                      300,
        quorum_count=                       2,
        quorum_tolerance_percent=           Fraction(1),
        require_atomic_delivery_vs_payment= True,
        forbid_side_payments=               True,
    )
    fields.update(overrides)
    return GuardrailDocument(**fields)


def make_feed(source="FeedA", price=1950, observed_at=T0 - 1, asset="dETH") -> FeedEvidence:
    return FeedEvidence(
        source=      source,
        asset=       asset,
        price=       Fraction(price),
        observed_at= observed_at,
        signature=   f"sig-{source}",
    )


def make_evidence(feeds=None, **overrides) -> FillEvidence:
    if feeds is None:
        feeds = (make_feed("FeedA", 1950), make_feed("FeedB", 1951))
    fields = dict(
        taker_id=            "taker_bob",
        fill_size=           FILL_SIZE,
        fill_price=          FILL_PRICE,
        feed_evidence=       tuple(feeds),
        evaluation_time=     T0,
        transfer_leg_count=  2,
        has_extra_transfers= False,
    )
    fields.update(overrides)
    return FillEvidence(**fields)


def make_spec() -> OfferSpec:
    return OfferSpec(asset="dETH", size=FILL_SIZE, side=Side.SELL, currency="USDC")


class FakeClock:
    """Injected desk clock. Tests move time by assigning .now."""

    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture(autouse=True)
def _detach_log_handlers():
    """configure_logging() binds handlers to per-test streams; drop them after."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True


@pytest.fixture
def guardrails():
    return make_guardrails()


@pytest.fixture
def evidence():
    return make_evidence()


@pytest.fixture
def clock():
    return FakeClock()
