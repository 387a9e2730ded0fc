"""
offerguard/core/models.py

Offer / Guardrail / Fill Data Model

═══════════════════════════════════════════════════════════════════
MODEL CONTRACTS
═══════════════════════════════════════════════════════════════════

CONTRACT 1: Immutability
    Every model is a frozen dataclass. Collections are tuples.
    A GuardrailDocument is created once, at offer-compile time, and every
    evaluation reads that same snapshot. Offers change status only by the
    store swapping in a new snapshot.

CONTRACT 2: Exact numbers
    Amounts, sizes and instants are non-negative ints (unix seconds,
    smallest currency units) that fit in 64 bits.
    Prices and percentages are fractions.Fraction. Decimal literals are
    read through their string form, so 1.1 is exactly 11/10.
    No float ever reaches the engine.

CONTRACT 3: Structural validation
    validate_schema() returns a SchemaValidationResult listing every
    violation. Construction enforces it and raises ValidationError.
    Structural errors are never business rejections.

CONTRACT 4: Negative prices
    A negative attested price is a structural error. The quorum spread
    computation therefore only ever sees prices >= 0.
═══════════════════════════════════════════════════════════════════
"""

import secrets
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from fractions import Fraction
from typing import Any, Dict, Iterable, List, Optional, Tuple

from offerguard.core.exceptions import ValidationError

# ─────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────

OFFER_ID_LENGTH = 32
U64_MAX         = 2 ** 64 - 1

# Rationals travel as u16-length-prefixed magnitudes on the wire.
MAX_MAGNITUDE_BYTES = 0xFFFF

# Defaults for fields a compiled document may omit.
GUARDRAIL_DEFAULTS: Dict[str, Any] = {
    "min_credit":                         None,
    "allowed_sources":                    (),
    "max_staleness":                      60,
    "quorum_count":                       1,
    "quorum_tolerance_percent":           Fraction(1),
    "allowed_takers":                     (),
    "require_atomic_delivery_vs_payment": True,
    "forbid_side_payments":               True,
    "nonce":                              0,
}


def new_offer_id() -> bytes:
    """Fresh random 256-bit offer identifier."""
    return secrets.token_bytes(OFFER_ID_LENGTH)


def to_rational(value: Any) -> Fraction:
    """
    Convert a price or percentage literal to an exact Fraction.

    Accepts Fraction, int, Decimal, decimal strings ("1950.5", "39/20")
    and floats. Floats go through repr, so 0.1 becomes 1/10 rather than
    its binary expansion.
    """
    if isinstance(value, bool):
        raise ValueError(f"expected a number, got bool {value!r}")
    if isinstance(value, Fraction):
        return value
    if isinstance(value, (int, Decimal)):
        return Fraction(value)
    if isinstance(value, float):
        return Fraction(repr(value))
    if isinstance(value, str):
        return Fraction(value.strip())
    raise ValueError(f"expected a number, got {type(value).__name__}")


def _is_uint(value: Any) -> bool:
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and 0 <= value <= U64_MAX
    )


def _check_uint(errors: List[str], name: str, value: Any) -> None:
    if not _is_uint(value):
        errors.append(f"{name} must be an int in [0, 2^64), got {value!r}")


def _check_name(errors: List[str], name: str, value: Any) -> None:
    if not isinstance(value, str) or not value:
        errors.append(f"{name} must be a non-empty string, got {value!r}")


def _check_bool(errors: List[str], name: str, value: Any) -> None:
    if not isinstance(value, bool):
        errors.append(f"{name} must be a bool, got {value!r}")


def _check_rational(errors: List[str], name: str, value: Any) -> None:
    if not isinstance(value, Fraction):
        errors.append(f"{name} must be a rational number, got {value!r}")
    elif value < 0:
        errors.append(f"{name} must be non-negative, got {value}")
    elif max(abs(value.numerator), value.denominator).bit_length() > MAX_MAGNITUDE_BYTES * 8:
        errors.append(
            f"{name} numerator and denominator must each fit in "
            f"{MAX_MAGNITUDE_BYTES} bytes"
        )


def _names(values: Iterable[str]) -> Tuple[str, ...]:
    # First occurrence wins; declared order is kept for diagnostics.
    return tuple(dict.fromkeys(values))


def _enforce(result: "SchemaValidationResult", what: str) -> None:
    if not result:
        raise ValidationError(f"Invalid {what}", errors=result.errors)


# ─────────────────────────────────────────────────────────────
# SchemaValidationResult
# ─────────────────────────────────────────────────────────────

@dataclass
class SchemaValidationResult:
    """
    Result of validate_schema().

    Returned, not raised, so callers can report the exact violation.
    bool(result) is True iff valid.
    """
    valid:  bool
    errors: List[str]

    def __bool__(self) -> bool:
        return self.valid

    def __repr__(self) -> str:
        if self.valid:
            return "SchemaValidationResult(VALID)"
        return f"SchemaValidationResult(INVALID, errors={self.errors})"


# ─────────────────────────────────────────────────────────────
# Enumerations
# ─────────────────────────────────────────────────────────────

class OfferStatus(str, Enum):
    """Offer lifecycle states. Everything but ACTIVE is terminal."""
    ACTIVE    = "active"
    FILLED    = "filled"
    EXPIRED   = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not OfferStatus.ACTIVE


class Side(str, Enum):
    BUY  = "buy"
    SELL = "sell"


# ─────────────────────────────────────────────────────────────
# Feed evidence
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FeedEvidence:
    """
    One price attestation from an external feed.

    The signature is opaque here; checking it is the feed client's job.
    """
    source:      str
    asset:       str
    price:       Fraction
    observed_at: int
    signature:   str = ""

    def __post_init__(self):
        if not isinstance(self.price, Fraction):
            try:
                object.__setattr__(self, "price", to_rational(self.price))
            except (ValueError, ZeroDivisionError):
                pass
        _enforce(self.validate_schema(), "FeedEvidence")

    def validate_schema(self) -> SchemaValidationResult:
        errors: List[str] = []
        _check_name(errors, "source", self.source)
        _check_name(errors, "asset", self.asset)
        _check_rational(errors, "price", self.price)
        _check_uint(errors, "observed_at", self.observed_at)
        if not isinstance(self.signature, str):
            errors.append("signature must be a string")
        return SchemaValidationResult(valid=not errors, errors=errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source":      self.source,
            "asset":       self.asset,
            "price":       str(self.price),
            "observed_at": self.observed_at,
            "signature":   self.signature,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeedEvidence":
        try:
            return cls(
                source=      data["source"],
                asset=       data["asset"],
                price=       data["price"],
                observed_at= data["observed_at"],
                signature=   data.get("signature", ""),
            )
        except KeyError as exc:
            raise ValidationError(f"FeedEvidence missing field {exc}") from exc


# ─────────────────────────────────────────────────────────────
# Fill evidence: the evaluation input on the taker's side
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FillEvidence:
    """
    A taker's proposed fill plus the attestations backing its price.

    evaluation_time is the ONLY notion of "now" the engine ever sees.
    """
    taker_id:            str
    fill_size:           int
    fill_price:          int
    feed_evidence:       Tuple[FeedEvidence, ...]
    evaluation_time:     int
    transfer_leg_count:  int  = 2
    has_extra_transfers: bool = False

    def __post_init__(self):
        if not isinstance(self.feed_evidence, tuple):
            object.__setattr__(self, "feed_evidence", tuple(self.feed_evidence))
        _enforce(self.validate_schema(), "FillEvidence")

    def validate_schema(self) -> SchemaValidationResult:
        errors: List[str] = []
        _check_name(errors, "taker_id", self.taker_id)
        _check_uint(errors, "fill_size", self.fill_size)
        _check_uint(errors, "fill_price", self.fill_price)
        _check_uint(errors, "evaluation_time", self.evaluation_time)
        _check_uint(errors, "transfer_leg_count", self.transfer_leg_count)
        _check_bool(errors, "has_extra_transfers", self.has_extra_transfers)
        for i, item in enumerate(self.feed_evidence):
            if not isinstance(item, FeedEvidence):
                errors.append(
                    f"feed_evidence[{i}] must be FeedEvidence, "
                    f"got {type(item).__name__}"
                )
        return SchemaValidationResult(valid=not errors, errors=errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "taker_id":            self.taker_id,
            "fill_size":           self.fill_size,
            "fill_price":          self.fill_price,
            "feed_evidence":       [e.to_dict() for e in self.feed_evidence],
            "evaluation_time":     self.evaluation_time,
            "transfer_leg_count":  self.transfer_leg_count,
            "has_extra_transfers": self.has_extra_transfers,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FillEvidence":
        try:
            return cls(
                taker_id=            data["taker_id"],
                fill_size=           data["fill_size"],
                fill_price=          data["fill_price"],
                feed_evidence=       tuple(
                    FeedEvidence.from_dict(e) for e in data.get("feed_evidence", [])
                ),
                evaluation_time=     data["evaluation_time"],
                transfer_leg_count=  data.get("transfer_leg_count", 2),
                has_extra_transfers= data.get("has_extra_transfers", False),
            )
        except KeyError as exc:
            raise ValidationError(f"FillEvidence missing field {exc}") from exc


# ─────────────────────────────────────────────────────────────
# Guardrail document: the maker's side of the evaluation input
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GuardrailDocument:
    """
    The compiled constraint set attached to exactly one offer.

    Bounds are inclusive: a fill sitting exactly on max_debit, max_fill_size,
    expiry_time or max_staleness is accepted.
    """
    offer_id:                           bytes
    max_debit:                          int
    expiry_time:                        int
    max_fill_size:                      int
    min_credit:                         Optional[int]   = None
    allowed_sources:                    Tuple[str, ...] = ()
    max_staleness:                      int             = 60
    quorum_count:                       int             = 1
    quorum_tolerance_percent:           Fraction        = Fraction(1)
    allowed_takers:                     Tuple[str, ...] = ()
    require_atomic_delivery_vs_payment: bool            = True
    forbid_side_payments:               bool            = True
    nonce:                              int             = 0

    def __post_init__(self):
        if not isinstance(self.allowed_sources, tuple):
            object.__setattr__(self, "allowed_sources", _names(self.allowed_sources))
        if not isinstance(self.allowed_takers, tuple):
            object.__setattr__(self, "allowed_takers", _names(self.allowed_takers))
        if not isinstance(self.quorum_tolerance_percent, Fraction):
            try:
                object.__setattr__(
                    self,
                    "quorum_tolerance_percent",
                    to_rational(self.quorum_tolerance_percent),
                )
            except (ValueError, ZeroDivisionError):
                pass
        _enforce(self.validate_schema(), "GuardrailDocument")

    # ── Schema ────────────────────────────────────────────────

    def validate_schema(self) -> SchemaValidationResult:
        errors: List[str] = []

        if not isinstance(self.offer_id, bytes) or len(self.offer_id) != OFFER_ID_LENGTH:
            errors.append(f"offer_id must be {OFFER_ID_LENGTH} bytes")

        _check_uint(errors, "max_debit", self.max_debit)
        if self.min_credit is not None:
            _check_uint(errors, "min_credit", self.min_credit)
        _check_uint(errors, "expiry_time", self.expiry_time)
        _check_uint(errors, "max_staleness", self.max_staleness)
        _check_uint(errors, "quorum_count", self.quorum_count)
        _check_uint(errors, "nonce", self.nonce)
        _check_uint(errors, "max_fill_size", self.max_fill_size)

        _check_rational(errors, "quorum_tolerance_percent", self.quorum_tolerance_percent)

        for name in self.allowed_sources:
            _check_name(errors, "allowed_sources entry", name)
        for name in self.allowed_takers:
            _check_name(errors, "allowed_takers entry", name)

        _check_bool(
            errors,
            "require_atomic_delivery_vs_payment",
            self.require_atomic_delivery_vs_payment,
        )
        _check_bool(errors, "forbid_side_payments", self.forbid_side_payments)

        return SchemaValidationResult(valid=not errors, errors=errors)

    # ── Accessors ─────────────────────────────────────────────

    def allows_taker(self, taker_id: str) -> bool:
        return not self.allowed_takers or taker_id in self.allowed_takers

    def allows_source(self, source: str) -> bool:
        return not self.allowed_sources or source in self.allowed_sources

    @property
    def offer_id_hex(self) -> str:
        return self.offer_id.hex()

    def summary(self) -> str:
        """One-line human summary of the guardrails, for makers and logs."""
        from offerguard.core.time import wire_timestamp

        parts = [f"Max debit: {self.max_debit} units"]
        if self.min_credit is not None:
            parts.append(f"Min credit: {self.min_credit} units")
        parts.append(f"Expires: {wire_timestamp(self.expiry_time)}")
        if self.allowed_sources:
            parts.append(f"Allowed feeds: {', '.join(self.allowed_sources)}")
        parts.append(f"Feed freshness: <{self.max_staleness}s")
        if self.quorum_count > 1:
            tolerance = Decimal(self.quorum_tolerance_percent.numerator) / Decimal(
                self.quorum_tolerance_percent.denominator
            )
            parts.append(
                f"Quorum: {self.quorum_count} sources within {tolerance.normalize():f}%"
            )
        if self.allowed_takers:
            parts.append(f"Allowed takers: {', '.join(self.allowed_takers)}")
        parts.append(f"Max fill size: {self.max_fill_size}")
        if self.require_atomic_delivery_vs_payment:
            parts.append("Requires atomic DvP")
        if self.forbid_side_payments:
            parts.append("No side-payments allowed")
        return " | ".join(parts)

    # ── Serialization ─────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "offer_id":                           self.offer_id.hex(),
            "max_debit":                          self.max_debit,
            "min_credit":                         self.min_credit,
            "expiry_time":                        self.expiry_time,
            "allowed_sources":                    list(self.allowed_sources),
            "max_staleness":                      self.max_staleness,
            "quorum_count":                       self.quorum_count,
            "quorum_tolerance_percent":           str(self.quorum_tolerance_percent),
            "allowed_takers":                     list(self.allowed_takers),
            "require_atomic_delivery_vs_payment": self.require_atomic_delivery_vs_payment,
            "forbid_side_payments":               self.forbid_side_payments,
            "nonce":                              self.nonce,
            "max_fill_size":                      self.max_fill_size,
        }

    @classmethod
    def from_dict(
        cls,
        data:     Dict[str, Any],
        defaults: Optional[Dict[str, Any]] = None,
    ) -> "GuardrailDocument":
        """
        Build from the compiler's dict form.

        Missing optional fields fall back to `defaults`, then to
        GUARDRAIL_DEFAULTS. offer_id, max_debit, expiry_time and
        max_fill_size are required.
        """
        merged = dict(GUARDRAIL_DEFAULTS)
        merged.update(defaults or {})
        merged.update(data)

        raw_id = merged.get("offer_id")
        try:
            offer_id = bytes.fromhex(raw_id) if isinstance(raw_id, str) else raw_id
        except ValueError as exc:
            raise ValidationError(f"offer_id is not valid hex: {raw_id!r}") from exc

        try:
            return cls(
                offer_id=                           offer_id,
                max_debit=                          merged["max_debit"],
                min_credit=                         merged["min_credit"],
                expiry_time=                        merged["expiry_time"],
                allowed_sources=                    tuple(merged["allowed_sources"]),
                max_staleness=                      merged["max_staleness"],
                quorum_count=                       merged["quorum_count"],
                quorum_tolerance_percent=           merged["quorum_tolerance_percent"],
                allowed_takers=                     tuple(merged["allowed_takers"]),
                require_atomic_delivery_vs_payment= merged["require_atomic_delivery_vs_payment"],
                forbid_side_payments=               merged["forbid_side_payments"],
                nonce=                              merged["nonce"],
                max_fill_size=                      merged["max_fill_size"],
            )
        except KeyError as exc:
            raise ValidationError(f"GuardrailDocument missing field {exc}") from exc


# ─────────────────────────────────────────────────────────────
# Offer
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class OfferSpec:
    """What the maker wants to trade."""
    asset:       str
    size:        int
    side:        Side
    currency:    str
    limit_price: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset":       self.asset,
            "size":        self.size,
            "side":        self.side.value,
            "currency":    self.currency,
            "limit_price": self.limit_price,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OfferSpec":
        return cls(
            asset=       data["asset"],
            size=        data["size"],
            side=        Side(data["side"]),
            currency=    data["currency"],
            limit_price= data.get("limit_price"),
        )


@dataclass(frozen=True)
class Offer:
    """
    A maker's offer plus its compiled guardrails.

    Snapshots are immutable. The store moves an offer through its lifecycle
    by replacing the snapshot it holds (see with_status()).
    """
    id:            bytes
    spec:          OfferSpec
    guardrails:    GuardrailDocument
    status:        OfferStatus
    created_at:    int
    expires_at:    int
    maker_id:      str
    original_text: str           = ""
    closed_at:     Optional[int] = None

    def __post_init__(self):
        errors: List[str] = []
        if self.id != self.guardrails.offer_id:
            errors.append("guardrails.offer_id must equal the offer id")
        _check_name(errors, "maker_id", self.maker_id)
        _check_uint(errors, "created_at", self.created_at)
        _check_uint(errors, "expires_at", self.expires_at)
        if errors:
            raise ValidationError("Invalid Offer", errors=errors)

    @classmethod
    def create(
        cls,
        spec:          OfferSpec,
        guardrails:    GuardrailDocument,
        maker_id:      str,
        created_at:    int,
        original_text: str = "",
    ) -> "Offer":
        """A new ACTIVE offer that expires when its guardrails do."""
        return cls(
            id=            guardrails.offer_id,
            spec=          spec,
            guardrails=    guardrails,
            status=        OfferStatus.ACTIVE,
            created_at=    created_at,
            expires_at=    guardrails.expiry_time,
            maker_id=      maker_id,
            original_text= original_text,
        )

    def is_active(self, now: int) -> bool:
        return self.status is OfferStatus.ACTIVE and now < self.expires_at

    def with_status(self, status: OfferStatus, at: int) -> "Offer":
        return replace(self, status=status, closed_at=at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id":            self.id.hex(),
            "spec":          self.spec.to_dict(),
            "guardrails":    self.guardrails.to_dict(),
            "status":        self.status.value,
            "created_at":    self.created_at,
            "expires_at":    self.expires_at,
            "maker_id":      self.maker_id,
            "original_text": self.original_text,
            "closed_at":     self.closed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Offer":
        return cls(
            id=            bytes.fromhex(data["id"]),
            spec=          OfferSpec.from_dict(data["spec"]),
            guardrails=    GuardrailDocument.from_dict(data["guardrails"]),
            status=        OfferStatus(data["status"]),
            created_at=    data["created_at"],
            expires_at=    data["expires_at"],
            maker_id=      data["maker_id"],
            original_text= data.get("original_text", ""),
            closed_at=     data.get("closed_at"),
        )


# ─────────────────────────────────────────────────────────────
# Settlement intent: handed to the settlement pipeline
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SettlementIntent:
    """The two coupled legs an accepted fill asks the ledger to execute."""
    maker_debit:  int
    maker_credit: int
    taker_debit:  int
    taker_credit: int
    asset:        str
    currency:     str

    @classmethod
    def for_fill(cls, offer: Offer, evidence: FillEvidence) -> "SettlementIntent":
        """Maker pays the fill price and receives the fill size; taker mirrors it."""
        return cls(
            maker_debit=  evidence.fill_price,
            maker_credit= evidence.fill_size,
            taker_debit=  evidence.fill_size,
            taker_credit= evidence.fill_price,
            asset=        offer.spec.asset,
            currency=     offer.spec.currency,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "maker_debit":  self.maker_debit,
            "maker_credit": self.maker_credit,
            "taker_debit":  self.taker_debit,
            "taker_credit": self.taker_credit,
            "asset":        self.asset,
            "currency":     self.currency,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SettlementIntent":
        return cls(**{k: data[k] for k in (
            "maker_debit", "maker_credit", "taker_debit",
            "taker_credit", "asset", "currency",
        )})
