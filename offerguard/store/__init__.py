"""offerguard.store: offer/receipt state and the on-disk receipt journal."""

from offerguard.store.journal import JournalReport, JournalViolation, ReceiptJournal
from offerguard.store.rwlock import RWLock
from offerguard.store.state import StateStore

__all__ = [
    "JournalReport",
    "JournalViolation",
    "RWLock",
    "ReceiptJournal",
    "StateStore",
]
