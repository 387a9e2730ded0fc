"""
offerguard/store/state.py

In-memory State Store for offers and fill receipts.

═══════════════════════════════════════════════════════════════════
STORE CONTRACTS
═══════════════════════════════════════════════════════════════════

CONTRACT 1: Two lock domains
    Offers and receipts each sit behind their own RWLock. No method holds
    both at once.

CONTRACT 2: Status moves only through named transitions
    There is no status setter. An offer leaves ACTIVE through exactly one
    of: lazy expiry on read, transition_to_filled(), cancel().

CONTRACT 3: Atomic fill
    transition_to_filled() checks and transitions under the offers write
    lock. For any offer, at most one caller ever gets won=True.

CONTRACT 4: Lazy expiry
    Any read at `now >= expires_at` of an ACTIVE offer promotes it to
    EXPIRED (closed_at = expires_at) before returning it.
═══════════════════════════════════════════════════════════════════
"""

import logging
from typing import Dict, List, Optional, Tuple

from offerguard.core.exceptions import LifecycleError, OfferNotFoundError
from offerguard.core.models import Offer, OfferStatus
from offerguard.lifecycle.receipt import FillReceipt
from offerguard.store.rwlock import RWLock

logger = logging.getLogger(__name__)


def _needs_expiry(offer: Offer, now: int) -> bool:
    return offer.status is OfferStatus.ACTIVE and not offer.is_active(now)


class StateStore:

    def __init__(self) -> None:
        self._offers:        Dict[bytes, Offer]              = {}
        self._receipts:      Dict[bytes, List[FillReceipt]]  = {}
        self._offers_lock:   RWLock = RWLock()
        self._receipts_lock: RWLock = RWLock()

    # ── Offers ────────────────────────────────────────────────

    def insert_offer(self, offer: Offer) -> None:
        """Insert, or replace the snapshot held under the same id."""
        with self._offers_lock.write():
            self._offers[offer.id] = offer

    def insert_if_absent(self, offer: Offer) -> None:
        """
        Insert a new offer. Raises LifecycleError if the id is already held,
        whatever that offer's status.
        """
        with self._offers_lock.write():
            if offer.id in self._offers:
                raise LifecycleError(
                    "Offer id already published",
                    details={"offer_id": offer.id.hex()},
                )
            self._offers[offer.id] = offer

    def get_offer(self, offer_id: bytes, now: int) -> Offer:
        """
        Current snapshot, expired lazily if its time has passed.
        Raises OfferNotFoundError for an unknown id.
        """
        with self._offers_lock.read():
            offer = self._offers.get(offer_id)
        if offer is None:
            raise OfferNotFoundError(
                "Offer not found", details={"offer_id": offer_id.hex()}
            )
        if _needs_expiry(offer, now):
            with self._offers_lock.write():
                offer = self._expire_locked(offer_id, now)
        return offer

    def list_offers(self, now: int, active_only: bool = False) -> List[Offer]:
        """All offers in insertion order, after lazy expiry."""
        with self._offers_lock.read():
            offers = list(self._offers.values())
        if any(_needs_expiry(o, now) for o in offers):
            with self._offers_lock.write():
                offers = [self._expire_locked(oid, now) for oid in list(self._offers)]
        if active_only:
            return [o for o in offers if o.is_active(now)]
        return offers

    def transition_to_filled(self, offer_id: bytes, now: int) -> Tuple[bool, Offer]:
        """
        Compare-and-transition ACTIVE → FILLED.

        Returns (True, filled snapshot) for the single winner, otherwise
        (False, snapshot) showing the state that blocked the transition.
        """
        with self._offers_lock.write():
            if offer_id not in self._offers:
                raise OfferNotFoundError(
                    "Offer not found", details={"offer_id": offer_id.hex()}
                )
            offer = self._expire_locked(offer_id, now)
            if offer.status is not OfferStatus.ACTIVE:
                return False, offer
            filled = offer.with_status(OfferStatus.FILLED, now)
            self._offers[offer_id] = filled
        logger.debug("Offer %s filled at %d", offer_id.hex()[:16], now)
        return True, filled

    def cancel(self, offer_id: bytes, maker_id: str, now: int) -> Offer:
        """
        ACTIVE → CANCELLED, on behalf of the offer's maker only.

        Raises OfferNotFoundError for an unknown id, LifecycleError if
        maker_id is not the offer's maker or the offer is no longer active.
        """
        with self._offers_lock.write():
            if offer_id not in self._offers:
                raise OfferNotFoundError(
                    "Offer not found", details={"offer_id": offer_id.hex()}
                )
            offer = self._expire_locked(offer_id, now)
            if offer.maker_id != maker_id:
                raise LifecycleError(
                    "Only the maker may cancel an offer",
                    details={"offer_id": offer_id.hex(), "maker_id": maker_id},
                )
            if offer.status is not OfferStatus.ACTIVE:
                raise LifecycleError(
                    "Offer is not active",
                    details={"offer_id": offer_id.hex(), "status": offer.status.value},
                )
            cancelled = offer.with_status(OfferStatus.CANCELLED, now)
            self._offers[offer_id] = cancelled
        return cancelled

    def _expire_locked(self, offer_id: bytes, now: int) -> Offer:
        # Caller holds the offers write lock.
        offer = self._offers[offer_id]
        if _needs_expiry(offer, now):
            offer = offer.with_status(OfferStatus.EXPIRED, offer.expires_at)
            self._offers[offer_id] = offer
            logger.info("Offer %s expired", offer_id.hex()[:16])
        return offer

    # ── Receipts ──────────────────────────────────────────────

    def append_receipt(self, receipt: FillReceipt) -> None:
        with self._receipts_lock.write():
            self._receipts.setdefault(receipt.offer_id, []).append(receipt)

    def list_receipts(self, offer_id: Optional[bytes] = None) -> List[FillReceipt]:
        """Receipts for one offer in append order, or all receipts if offer_id is None."""
        with self._receipts_lock.read():
            if offer_id is not None:
                return list(self._receipts.get(offer_id, ()))
            return [r for batch in self._receipts.values() for r in batch]

    # ── Stats ─────────────────────────────────────────────────

    def stats(self) -> dict:
        """Counts only. Does not apply lazy expiry."""
        with self._offers_lock.read():
            by_status = {status.value: 0 for status in OfferStatus}
            for offer in self._offers.values():
                by_status[offer.status.value] += 1
            total_offers = len(self._offers)

        with self._receipts_lock.read():
            receipts = [r for batch in self._receipts.values() for r in batch]

        accepted = sum(1 for r in receipts if r.accepted)
        return {
            "total_offers":       total_offers,
            "offers_by_status":   by_status,
            "total_receipts":     len(receipts),
            "accepted_receipts":  accepted,
            "rejected_receipts":  len(receipts) - accepted,
        }
