"""
offerguard/lifecycle/receipt.py

Fill Receipts: the audit record of every fill attempt.

═══════════════════════════════════════════════════════════════════
RECEIPT CONTRACTS
═══════════════════════════════════════════════════════════════════

CONTRACT 1: One receipt per attempt
    Accepted or rejected, every submitted fill yields exactly one receipt.
    FillReceipt.record() is the only constructor used by the desk.

CONTRACT 2: Snapshots, not references
    The receipt holds the offer and guardrail snapshots the decision was
    made against. Later transitions of the offer never alter it.

CONTRACT 3: What is signed
    to_signing_dict() is every field except `signature`, including the
    signer's public key. The signed bytes are JCS over that dict.
    Changing any signed field after signing makes verify_signature() False.
═══════════════════════════════════════════════════════════════════
"""

import uuid
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from offerguard.core.canonical import canonical_hash, canonicalize
from offerguard.core.crypto import ReceiptSigner
from offerguard.core.models import (
    FillEvidence,
    GuardrailDocument,
    Offer,
    SettlementIntent,
)
from offerguard.core.rejection import RejectionReason
from offerguard.core.time import wire_timestamp


@dataclass(frozen=True)
class FillOutcome:
    """Accepted with a settlement intent, or rejected with a reason. Never both."""
    settlement: Optional[SettlementIntent] = None
    reason:     Optional[RejectionReason]  = None

    def __post_init__(self):
        if (self.settlement is None) == (self.reason is None):
            raise ValueError("FillOutcome needs exactly one of settlement or reason")

    @classmethod
    def accepted(cls, settlement: SettlementIntent) -> "FillOutcome":
        return cls(settlement=settlement)

    @classmethod
    def rejected(cls, reason: RejectionReason) -> "FillOutcome":
        return cls(reason=reason)

    @property
    def is_accepted(self) -> bool:
        return self.settlement is not None

    def to_dict(self) -> Dict[str, Any]:
        if self.is_accepted:
            return {"status": "accepted", "settlement": self.settlement.to_dict()}
        return {"status": "rejected", "reason": self.reason.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FillOutcome":
        status = data.get("status")
        if status == "accepted":
            return cls.accepted(SettlementIntent.from_dict(data["settlement"]))
        if status == "rejected":
            return cls.rejected(RejectionReason.from_dict(data["reason"]))
        raise ValueError(f"Unknown outcome status {status!r}")


@dataclass(frozen=True)
class FillReceipt:
    receipt_id:          str
    offer_snapshot:      Offer
    guardrails_snapshot: GuardrailDocument
    fill_evidence:       FillEvidence
    outcome:             FillOutcome
    generated_at:        str
    signer_public_key:   Optional[str] = None
    signature:           Optional[str] = None

    # ── Constructor ───────────────────────────────────────────

    @classmethod
    def record(
        cls,
        offer_snapshot:      Offer,
        guardrails_snapshot: GuardrailDocument,
        fill_evidence:       FillEvidence,
        outcome:             FillOutcome,
        generated_at:        Optional[str] = None,
    ) -> "FillReceipt":
        """
        Capture an attempt. Stamps a fresh receipt id, and generated_at
        (wire format) if given, otherwise the current time.
        """
        return cls(
            receipt_id=          f"rcpt-{uuid.uuid4()}",
            offer_snapshot=      offer_snapshot,
            guardrails_snapshot= guardrails_snapshot,
            fill_evidence=       fill_evidence,
            outcome=             outcome,
            generated_at=        generated_at or wire_timestamp(),
        )

    # ── Accessors ─────────────────────────────────────────────

    @property
    def offer_id(self) -> bytes:
        return self.offer_snapshot.id

    @property
    def accepted(self) -> bool:
        return self.outcome.is_accepted

    @property
    def reason(self) -> Optional[RejectionReason]:
        return self.outcome.reason

    @property
    def settlement(self) -> Optional[SettlementIntent]:
        return self.outcome.settlement

    def is_signed(self) -> bool:
        return bool(self.signature)

    # ── Serialization ─────────────────────────────────────────

    def to_signing_dict(self) -> Dict[str, Any]:
        return {
            "receipt_id":          self.receipt_id,
            "offer_snapshot":      self.offer_snapshot.to_dict(),
            "guardrails_snapshot": self.guardrails_snapshot.to_dict(),
            "fill_evidence":       self.fill_evidence.to_dict(),
            "outcome":             self.outcome.to_dict(),
            "generated_at":        self.generated_at,
            "signer_public_key":   self.signer_public_key,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Full form, signature included. Used for journal lines."""
        d = self.to_signing_dict()
        d["signature"] = self.signature
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FillReceipt":
        return cls(
            receipt_id=          data["receipt_id"],
            offer_snapshot=      Offer.from_dict(data["offer_snapshot"]),
            guardrails_snapshot= GuardrailDocument.from_dict(data["guardrails_snapshot"]),
            fill_evidence=       FillEvidence.from_dict(data["fill_evidence"]),
            outcome=             FillOutcome.from_dict(data["outcome"]),
            generated_at=        data["generated_at"],
            signer_public_key=   data.get("signer_public_key"),
            signature=           data.get("signature"),
        )

    def canonical_bytes_for_signing(self) -> bytes:
        return canonicalize(self.to_signing_dict())

    def digest(self) -> str:
        """SHA-256 hex of the signed surface."""
        return canonical_hash(self.to_signing_dict())

    # ── Signing ───────────────────────────────────────────────

    def signed(self, signer: ReceiptSigner) -> "FillReceipt":
        """Return a copy stamped with signer's public key and signature."""
        stamped = replace(self, signer_public_key=signer.public_key_hex, signature=None)
        return replace(stamped, signature=signer.sign(stamped.canonical_bytes_for_signing()))

    def verify_signature(self, override_public_key_hex: Optional[str] = None) -> bool:
        """
        True iff the signature is valid over the current canonical bytes.
        Unsigned receipts, tampered fields and wrong keys all give False.
        """
        if not self.signature:
            return False
        public_key_hex = override_public_key_hex or self.signer_public_key
        return ReceiptSigner.verify_detached(
            self.canonical_bytes_for_signing(),
            self.signature,
            public_key_hex,
        )

    # ── Presentation ──────────────────────────────────────────

    def summary(self) -> Dict[str, Any]:
        """Flat projection for listings and dashboards."""
        spec = self.offer_snapshot.spec
        out: Dict[str, Any] = {
            "receipt_id":   self.receipt_id,
            "offer_id":     self.offer_id.hex(),
            "taker_id":     self.fill_evidence.taker_id,
            "asset":        spec.asset,
            "fill_size":    self.fill_evidence.fill_size,
            "fill_price":   self.fill_evidence.fill_price,
            "status":       "accepted" if self.accepted else "rejected",
            "reason_code":  None,
            "message":      None,
            "generated_at": self.generated_at,
            "signed":       self.is_signed(),
        }
        if self.reason is not None:
            out["reason_code"] = self.reason.code
            out["message"]     = self.reason.message()
        return out
