"""
offerguard/__init__.py

offerguard: Guardrail Enforcement for Negotiated Offers

A maker publishes an offer together with a compiled GuardrailDocument.
Every fill a taker submits is checked against those guardrails by a pure,
deterministic engine; at most one fill per offer is ever accepted, and every
attempt leaves a (optionally signed) FillReceipt.

The same evaluation runs inside a proof sandbox over a versioned binary
bundle (offerguard.core.codec / offerguard.engine.sandbox), so host and
proof always agree on the verdict.
"""

__version__        = "0.1.0"
__format_version__ = 1

from offerguard.core.models import (
    FeedEvidence,
    FillEvidence,
    GuardrailDocument,
    Offer,
    OfferSpec,
    OfferStatus,
    SchemaValidationResult,
    SettlementIntent,
    Side,
    new_offer_id,
)
from offerguard.core.rejection import REJECTION_CODES, RejectionReason
from offerguard.core.exceptions import (
    DecodeError,
    GuardrailViolation,
    JournalError,
    LifecycleError,
    OfferGuardError,
    OfferNotFoundError,
    ProofAborted,
    ValidationError,
)
from offerguard.core.crypto import ReceiptSigner
from offerguard.engine.evaluate import Verdict, enforce, evaluate
from offerguard.lifecycle.receipt import FillOutcome, FillReceipt
from offerguard.store.state import StateStore
from offerguard.store.journal import ReceiptJournal
from offerguard.lifecycle.desk import FillDesk

__all__ = [
    # Model
    "FeedEvidence",
    "FillEvidence",
    "GuardrailDocument",
    "Offer",
    "OfferSpec",
    "OfferStatus",
    "SchemaValidationResult",
    "SettlementIntent",
    "Side",
    "new_offer_id",
    # Engine
    "Verdict",
    "evaluate",
    "enforce",
    "RejectionReason",
    "REJECTION_CODES",
    # Lifecycle
    "FillDesk",
    "FillOutcome",
    "FillReceipt",
    "ReceiptSigner",
    "StateStore",
    "ReceiptJournal",
    # Errors
    "OfferGuardError",
    "ValidationError",
    "DecodeError",
    "LifecycleError",
    "OfferNotFoundError",
    "JournalError",
    "GuardrailViolation",
    "ProofAborted",
]
