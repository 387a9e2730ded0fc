"""
offerguard/lifecycle/desk.py

FillDesk: drives offers through their lifecycle.

    publish()  ACTIVE offer into the store
    submit()   one fill attempt → one FillReceipt
    cancel()   maker withdraws an ACTIVE offer

submit() pipeline:

    1. read the offer (lazy expiry applies), stamp evidence with desk time
    2. not ACTIVE        → rejected receipt, engine never runs
    3. evaluate()        → rejected receipt on any guardrail failure
    4. CAS ACTIVE→FILLED → the loser of a race gets the winner's state
    5. SettlementIntent  → accepted receipt
    6. sign (optional), store, journal (optional)

The desk is the only place clock time is read on the fill path, through the
injected `clock`. Submitted evidence is re-stamped with that time before the
engine runs, so a taker cannot choose the evaluation_time its fill is judged
at. The receipt records the re-stamped evidence.
"""

import logging
from dataclasses import replace
from typing import Callable, List, Optional

from offerguard.core.crypto import ReceiptSigner
from offerguard.core.exceptions import LifecycleError
from offerguard.core.models import (
    FillEvidence,
    GuardrailDocument,
    Offer,
    OfferSpec,
    OfferStatus,
    SettlementIntent,
)
from offerguard.core.rejection import (
    AlreadyFilled,
    OfferCancelled,
    OfferExpired,
    RejectionReason,
)
from offerguard.core.time import unix_now, wire_timestamp
from offerguard.engine.evaluate import evaluate
from offerguard.lifecycle.receipt import FillOutcome, FillReceipt
from offerguard.store.journal import ReceiptJournal
from offerguard.store.state import StateStore

logger = logging.getLogger(__name__)


def blocked_reason(offer: Offer, attempted_at: int) -> RejectionReason:
    """Rejection for an attempt against an offer that is no longer ACTIVE."""
    if offer.status is OfferStatus.FILLED:
        return AlreadyFilled(filled_at=offer.closed_at)
    if offer.status is OfferStatus.CANCELLED:
        return OfferCancelled(cancelled_at=offer.closed_at)
    if offer.status is OfferStatus.EXPIRED:
        return OfferExpired(expired_at=offer.expires_at, attempted_at=attempted_at)
    raise LifecycleError(
        "Offer is active", details={"offer_id": offer.id.hex()}
    )


class FillDesk:

    def __init__(
        self,
        store:   Optional[StateStore]     = None,
        signer:  Optional[ReceiptSigner]  = None,
        journal: Optional[ReceiptJournal] = None,
        clock:   Callable[[], int]        = unix_now,
    ) -> None:
        self.store   = store if store is not None else StateStore()
        self.signer  = signer
        self.journal = journal
        self._clock  = clock

    # ── Offers ────────────────────────────────────────────────

    def publish(
        self,
        spec:          OfferSpec,
        guardrails:    GuardrailDocument,
        maker_id:      str,
        original_text: str = "",
    ) -> Offer:
        """
        Register a freshly compiled offer as ACTIVE.
        Raises LifecycleError if an offer with the same id already exists.
        """
        offer = Offer.create(
            spec=          spec,
            guardrails=    guardrails,
            maker_id=      maker_id,
            created_at=    self._clock(),
            original_text= original_text,
        )
        self.store.insert_if_absent(offer)
        logger.info(
            "Published offer %s by %s: %s",
            offer.id.hex()[:16], maker_id, guardrails.summary(),
        )
        return offer

    def get_offer(self, offer_id: bytes) -> Offer:
        return self.store.get_offer(offer_id, self._clock())

    def list_offers(self, active_only: bool = False) -> List[Offer]:
        return self.store.list_offers(self._clock(), active_only=active_only)

    def cancel(self, offer_id: bytes, maker_id: str) -> Offer:
        offer = self.store.cancel(offer_id, maker_id, self._clock())
        logger.info("Offer %s cancelled by %s", offer_id.hex()[:16], maker_id)
        return offer

    # ── Fills ─────────────────────────────────────────────────

    def submit(self, offer_id: bytes, evidence: FillEvidence) -> FillReceipt:
        """
        Attempt a fill. Always returns a receipt, accepted or rejected.
        Raises OfferNotFoundError for an unknown offer id.
        """
        now      = self._clock()
        offer    = self.store.get_offer(offer_id, now)
        evidence = replace(evidence, evaluation_time=now)

        if not offer.is_active(now):
            outcome = FillOutcome.rejected(blocked_reason(offer, now))
        else:
            verdict = evaluate(offer.guardrails, evidence)
            if not verdict:
                outcome = FillOutcome.rejected(verdict.reason)
            else:
                won, offer = self.store.transition_to_filled(offer_id, now)
                if won:
                    outcome = FillOutcome.accepted(SettlementIntent.for_fill(offer, evidence))
                else:
                    outcome = FillOutcome.rejected(blocked_reason(offer, now))

        receipt = FillReceipt.record(
            offer_snapshot=      offer,
            guardrails_snapshot= offer.guardrails,
            fill_evidence=       evidence,
            outcome=             outcome,
            generated_at=        wire_timestamp(now),
        )
        if self.signer is not None:
            receipt = receipt.signed(self.signer)

        self.store.append_receipt(receipt)
        if self.journal is not None:
            self.journal.append(receipt)

        if receipt.accepted:
            logger.info(
                "Fill accepted: offer=%s taker=%s size=%d price=%d",
                offer_id.hex()[:16], evidence.taker_id,
                evidence.fill_size, evidence.fill_price,
            )
        else:
            logger.info(
                "Fill rejected: offer=%s taker=%s code=%s",
                offer_id.hex()[:16], evidence.taker_id, receipt.reason.code,
            )
        return receipt

    def receipts(self, offer_id: Optional[bytes] = None) -> List[FillReceipt]:
        return self.store.list_receipts(offer_id)
