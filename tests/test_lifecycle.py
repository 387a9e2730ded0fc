"""
tests/test_lifecycle.py

Offer lifecycle: State Store and FillDesk.

  STORE
    unknown ids raise OfferNotFoundError
    ACTIVE offers read at or after expires_at are promoted to EXPIRED
    transition_to_filled() succeeds once; later calls see FILLED
    only the maker may cancel, and only an ACTIVE offer

  DESK
    every attempt yields exactly one receipt
    non-ACTIVE offers are rejected without running the engine
    a rejected fill leaves the offer ACTIVE
    accepted fills carry the mirrored SettlementIntent
    evidence is judged at the desk clock, never at a taker-chosen time
"""

import pytest

from offerguard.core.crypto import ReceiptSigner
from offerguard.core.exceptions import LifecycleError, OfferNotFoundError
from offerguard.core.models import Offer, OfferStatus, new_offer_id
from offerguard.core.time import wire_timestamp
from offerguard.core.rejection import (
    AlreadyFilled,
    OfferCancelled,
    OfferExpired,
    SizeExceedsMax,
    StaleFeed,
)
from offerguard.lifecycle.desk import FillDesk, blocked_reason
from offerguard.lifecycle.receipt import FillOutcome, FillReceipt
from offerguard.store.journal import ReceiptJournal
from offerguard.store.state import StateStore

from conftest import (
    FILL_PRICE,
    FILL_SIZE,
    MAX_FILL_SIZE,
    OFFER_ID,
    T0,
    make_evidence,
    make_feed,
    make_guardrails,
    make_spec,
)

EXPIRES = T0 + 300


def make_offer(offer_id: bytes = OFFER_ID, maker_id: str = "maker_alice") -> Offer:
    return Offer.create(
        spec=       make_spec(),
        guardrails= make_guardrails(offer_id=offer_id),
        maker_id=   maker_id,
        created_at= T0 - 10,
    )


@pytest.fixture
def store():
    s = StateStore()
    s.insert_offer(make_offer())
    return s


@pytest.fixture
def desk(clock):
    d = FillDesk(clock=clock)
    d.publish(make_spec(), make_guardrails(), "maker_alice", original_text="sell 1 dETH")
    return d


# ─────────────────────────────────────────────────────────────
# State Store
# ─────────────────────────────────────────────────────────────

class TestStateStore:

    def test_unknown_offer(self, store):
        with pytest.raises(OfferNotFoundError):
            store.get_offer(new_offer_id(), T0)
        with pytest.raises(OfferNotFoundError):
            store.transition_to_filled(new_offer_id(), T0)
        with pytest.raises(OfferNotFoundError):
            store.cancel(new_offer_id(), "maker_alice", T0)

    def test_active_before_expiry(self, store):
        assert store.get_offer(OFFER_ID, EXPIRES - 1).status is OfferStatus.ACTIVE

    def test_lazy_expiry_on_read(self, store):
        offer = store.get_offer(OFFER_ID, EXPIRES)
        assert offer.status is OfferStatus.EXPIRED
        assert offer.closed_at == EXPIRES
        # Promotion is persisted: an earlier clock cannot revive it.
        assert store.get_offer(OFFER_ID, T0).status is OfferStatus.EXPIRED

    def test_list_offers_applies_expiry(self, store):
        store.insert_offer(make_offer(offer_id=b"\x01" * 32))
        later = make_offer(offer_id=b"\x02" * 32)
        store.insert_offer(Offer.create(
            make_spec(),
            make_guardrails(offer_id=b"\x02" * 32, expiry_time=EXPIRES + 1000),
            "maker_alice",
            T0,
        ))
        assert len(store.list_offers(EXPIRES)) == 3
        active = store.list_offers(EXPIRES, active_only=True)
        assert [o.id for o in active] == [later.id]

    def test_fill_once(self, store):
        won, snapshot = store.transition_to_filled(OFFER_ID, T0)
        assert won and snapshot.status is OfferStatus.FILLED
        assert snapshot.closed_at == T0

        won, snapshot = store.transition_to_filled(OFFER_ID, T0 + 1)
        assert not won
        assert snapshot.status is OfferStatus.FILLED
        assert snapshot.closed_at == T0, "the loser sees the winner's snapshot"

    def test_fill_after_expiry_loses(self, store):
        won, snapshot = store.transition_to_filled(OFFER_ID, EXPIRES)
        assert not won
        assert snapshot.status is OfferStatus.EXPIRED

    def test_cancel_by_maker(self, store):
        offer = store.cancel(OFFER_ID, "maker_alice", T0)
        assert offer.status is OfferStatus.CANCELLED
        assert offer.closed_at == T0

    def test_cancel_by_stranger(self, store):
        with pytest.raises(LifecycleError, match="maker"):
            store.cancel(OFFER_ID, "maker_mallory", T0)
        assert store.get_offer(OFFER_ID, T0).status is OfferStatus.ACTIVE

    def test_insert_if_absent_refuses_existing_id(self, store):
        store.transition_to_filled(OFFER_ID, T0)
        with pytest.raises(LifecycleError, match="already published"):
            store.insert_if_absent(make_offer())
        assert store.get_offer(OFFER_ID, T0).status is OfferStatus.FILLED

    def test_cancel_terminal_offer(self, store):
        store.transition_to_filled(OFFER_ID, T0)
        with pytest.raises(LifecycleError, match="not active"):
            store.cancel(OFFER_ID, "maker_alice", T0)

    def test_receipts_grouped_by_offer(self, store):
        offer = store.get_offer(OFFER_ID, T0)
        for size in (1, 2):
            store.append_receipt(FillReceipt.record(
                offer, offer.guardrails, make_evidence(fill_size=size),
                FillOutcome.rejected(SizeExceedsMax(offered_size=size, max_size=0)),
            ))
        assert [r.fill_evidence.fill_size for r in store.list_receipts(OFFER_ID)] == [1, 2]
        assert store.list_receipts(b"\x09" * 32) == []
        assert len(store.list_receipts()) == 2

    def test_stats(self, store):
        store.insert_offer(make_offer(offer_id=b"\x01" * 32))
        store.transition_to_filled(OFFER_ID, T0)
        stats = store.stats()
        assert stats["total_offers"] == 2
        assert stats["offers_by_status"]["filled"] == 1
        assert stats["offers_by_status"]["active"] == 1
        assert stats["total_receipts"] == 0


# ─────────────────────────────────────────────────────────────
# FillDesk
# ─────────────────────────────────────────────────────────────

class TestFillDesk:

    def test_publish(self, desk, clock):
        offer = desk.get_offer(OFFER_ID)
        assert offer.status is OfferStatus.ACTIVE
        assert offer.created_at == clock.now
        assert offer.original_text == "sell 1 dETH"

    def test_publish_duplicate_refused(self, desk):
        with pytest.raises(LifecycleError, match="already published"):
            desk.publish(make_spec(), make_guardrails(), "maker_alice")

    def test_accepted_fill(self, desk):
        receipt = desk.submit(OFFER_ID, make_evidence())
        assert receipt.accepted
        assert receipt.receipt_id.startswith("rcpt-")
        assert receipt.settlement.maker_debit == FILL_PRICE
        assert receipt.settlement.taker_debit == FILL_SIZE
        assert receipt.offer_snapshot.status is OfferStatus.FILLED
        assert desk.get_offer(OFFER_ID).status is OfferStatus.FILLED

    def test_second_fill_already_filled(self, desk, clock):
        desk.submit(OFFER_ID, make_evidence())
        clock.now += 5
        receipt = desk.submit(OFFER_ID, make_evidence(taker_id="taker_carol"))
        assert not receipt.accepted
        assert receipt.reason == AlreadyFilled(filled_at=T0)

    def test_backdated_evaluation_time_ignored(self, desk, clock):
        hour_old = [
            make_feed("FeedA", 1950, observed_at=T0 - 3600),
            make_feed("FeedB", 1951, observed_at=T0 - 3600),
        ]
        receipt = desk.submit(OFFER_ID, make_evidence(feeds=hour_old, evaluation_time=T0 - 3599))
        assert not receipt.accepted, "Feeds an hour old must not pass a 300s freshness window"
        assert isinstance(receipt.reason, StaleFeed)
        assert receipt.reason.evaluation_time == clock.now
        assert receipt.fill_evidence.evaluation_time == clock.now
        assert desk.get_offer(OFFER_ID).status is OfferStatus.ACTIVE

    def test_stale_at_desk_time_despite_fresh_claim(self, desk, clock):
        clock.now = T0 + 295
        feeds = [make_feed("FeedA", 1950, T0 - 10), make_feed("FeedB", 1951, T0 - 10)]
        receipt = desk.submit(OFFER_ID, make_evidence(feeds=feeds, evaluation_time=T0))
        assert receipt.fill_evidence.evaluation_time == T0 + 295
        assert isinstance(receipt.reason, StaleFeed)

    def test_receipt_stamped_from_desk_clock(self, desk, clock):
        receipt = desk.submit(OFFER_ID, make_evidence())
        assert receipt.generated_at == wire_timestamp(clock.now)

    def test_rejected_fill_keeps_offer_active(self, desk):
        rejected = desk.submit(OFFER_ID, make_evidence(fill_size=MAX_FILL_SIZE + 1))
        assert isinstance(rejected.reason, SizeExceedsMax)
        assert rejected.settlement is None
        assert desk.get_offer(OFFER_ID).status is OfferStatus.ACTIVE
        assert desk.submit(OFFER_ID, make_evidence()).accepted

    def test_expired_offer_skips_engine(self, desk, clock):
        clock.now = EXPIRES
        # Evidence would fail the size check if the engine ran.
        receipt = desk.submit(OFFER_ID, make_evidence(fill_size=MAX_FILL_SIZE + 1))
        assert receipt.reason == OfferExpired(expired_at=EXPIRES, attempted_at=EXPIRES)
        assert receipt.offer_snapshot.status is OfferStatus.EXPIRED

    def test_cancelled_offer(self, desk, clock):
        desk.cancel(OFFER_ID, "maker_alice")
        receipt = desk.submit(OFFER_ID, make_evidence())
        assert receipt.reason == OfferCancelled(cancelled_at=clock.now)

    def test_cancel_by_taker_refused(self, desk):
        with pytest.raises(LifecycleError):
            desk.cancel(OFFER_ID, "taker_bob")

    def test_unknown_offer(self, desk):
        with pytest.raises(OfferNotFoundError):
            desk.submit(new_offer_id(), make_evidence())

    def test_one_receipt_per_attempt(self, desk):
        desk.submit(OFFER_ID, make_evidence(fill_size=MAX_FILL_SIZE + 1))
        desk.submit(OFFER_ID, make_evidence())
        desk.submit(OFFER_ID, make_evidence())
        outcomes = [r.accepted for r in desk.receipts(OFFER_ID)]
        assert outcomes == [False, True, False]

    def test_list_offers(self, desk, clock):
        assert len(desk.list_offers(active_only=True)) == 1
        clock.now = EXPIRES
        assert desk.list_offers(active_only=True) == []

    def test_signed_and_journaled(self, tmp_path, clock):
        signer  = ReceiptSigner.generate()
        journal = ReceiptJournal(tmp_path / "receipts.jsonl")
        desk    = FillDesk(signer=signer, journal=journal, clock=clock)
        desk.publish(make_spec(), make_guardrails(), "maker_alice")

        receipt = desk.submit(OFFER_ID, make_evidence())
        assert receipt.verify_signature()
        assert receipt.signer_public_key == signer.public_key_hex
        assert journal.read_all() == [receipt]


class TestBlockedReason:

    def test_active_offer_has_no_blocked_reason(self):
        with pytest.raises(LifecycleError):
            blocked_reason(make_offer(), T0)

    def test_reason_per_terminal_state(self):
        offer = make_offer()
        assert blocked_reason(offer.with_status(OfferStatus.FILLED, 7), T0) == AlreadyFilled(filled_at=7)
        assert blocked_reason(offer.with_status(OfferStatus.CANCELLED, 8), T0) == OfferCancelled(cancelled_at=8)
        assert blocked_reason(offer.with_status(OfferStatus.EXPIRED, EXPIRES), T0) == OfferExpired(
            expired_at=EXPIRES, attempted_at=T0
        )
