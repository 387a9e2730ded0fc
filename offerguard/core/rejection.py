"""
offerguard/core/rejection.py

Rejection Taxonomy: the closed set of reasons a fill can fail.

Every variant is a frozen dataclass carrying the exact numeric and identifier
fields needed to explain itself. Nothing is collapsed into a pre-rendered
string: message() renders text at the presentation boundary, code is a stable
machine identifier, to_dict()/from_dict() give a lossless JSON form.

The registry built at import time IS the closed set. from_dict() refuses any
code outside it, and the test suite walks it for exhaustiveness.
"""

from dataclasses import dataclass, field, fields
from decimal import Decimal
from fractions import Fraction
from typing import Any, ClassVar, Dict, Optional, Tuple, Type

_RATIONAL = {"kind": "rational"}
_NAMES    = {"kind": "names"}

_VARIANTS: Dict[str, Type["RejectionReason"]] = {}


def _variant(cls: Type["RejectionReason"]) -> Type["RejectionReason"]:
    if not cls.code or cls.code in _VARIANTS:
        raise TypeError(f"Rejection code {cls.code!r} is missing or duplicated")
    _VARIANTS[cls.code] = cls
    return cls


def _percent(value: Fraction) -> str:
    exact = Decimal(value.numerator) / Decimal(value.denominator)
    return f"{exact:.2f}"


def _names(values: Tuple[str, ...]) -> str:
    return "[" + ", ".join(values) + "]"


@dataclass(frozen=True)
class RejectionReason:
    """Base of the closed variant set. Never instantiated directly."""

    code: ClassVar[str] = ""

    def message(self) -> str:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"code": self.code}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Fraction):
                value = str(value)
            elif isinstance(value, tuple):
                value = list(value)
            out[f.name] = value
        return out

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "RejectionReason":
        """
        Rebuild a variant from its to_dict() form.
        Raises ValueError on an unknown code or a missing field.
        """
        code = data.get("code")
        cls = _VARIANTS.get(code)
        if cls is None:
            raise ValueError(
                f"Unknown rejection code {code!r}. Valid: {sorted(_VARIANTS)}"
            )
        kwargs = {}
        for f in fields(cls):
            if f.name not in data:
                raise ValueError(f"{code}: missing field '{f.name}'")
            value = data[f.name]
            kind = f.metadata.get("kind")
            if kind == "rational" and value is not None:
                value = Fraction(str(value))
            elif kind == "names":
                value = tuple(value)
            kwargs[f.name] = value
        return cls(**kwargs)


# ─────────────────────────────────────────────────────────────
# Lifecycle rejections: raised before the engine runs
# ─────────────────────────────────────────────────────────────

@_variant
@dataclass(frozen=True)
class OfferExpired(RejectionReason):
    code: ClassVar[str] = "OFFER_EXPIRED"

    expired_at:   int
    attempted_at: int

    def message(self) -> str:
        return (
            f"Offer expired at {self.expired_at} "
            f"(attempted at {self.attempted_at})"
        )


@_variant
@dataclass(frozen=True)
class AlreadyFilled(RejectionReason):
    code: ClassVar[str] = "ALREADY_FILLED"

    filled_at: Optional[int]

    def message(self) -> str:
        if self.filled_at is None:
            return "Offer was already filled"
        return f"Offer was already filled at {self.filled_at}"


@_variant
@dataclass(frozen=True)
class OfferCancelled(RejectionReason):
    code: ClassVar[str] = "OFFER_CANCELLED"

    cancelled_at: Optional[int]

    def message(self) -> str:
        if self.cancelled_at is None:
            return "Offer was cancelled by its maker"
        return f"Offer was cancelled by its maker at {self.cancelled_at}"


# ─────────────────────────────────────────────────────────────
# Guardrail rejections: produced by the engine
# ─────────────────────────────────────────────────────────────

@_variant
@dataclass(frozen=True)
class UnauthorizedTaker(RejectionReason):
    code: ClassVar[str] = "UNAUTHORIZED_TAKER"

    taker:          str
    allowed_takers: Tuple[str, ...] = field(metadata=_NAMES)

    def message(self) -> str:
        return (
            f"Taker '{self.taker}' not in allowlist. "
            f"Allowed: {_names(self.allowed_takers)}"
        )


@_variant
@dataclass(frozen=True)
class SizeExceedsMax(RejectionReason):
    code: ClassVar[str] = "SIZE_EXCEEDS_MAX"

    offered_size: int
    max_size:     int

    def message(self) -> str:
        return f"Offered size {self.offered_size} exceeds max {self.max_size}"


@_variant
@dataclass(frozen=True)
class PriceExceedsLimit(RejectionReason):
    code: ClassVar[str] = "PRICE_EXCEEDS_LIMIT"

    offered_price: int
    limit_price:   int

    def message(self) -> str:
        return f"Offered price {self.offered_price} exceeds limit {self.limit_price}"


@_variant
@dataclass(frozen=True)
class QuorumNotMet(RejectionReason):
    """
    Either too few attestations (price_spread_percent is None) or too much
    disagreement between them (price_spread_percent carries the spread).
    """
    code: ClassVar[str] = "QUORUM_NOT_MET"

    sources_provided:      int
    quorum_required:       int
    price_spread_percent:  Optional[Fraction] = field(metadata=_RATIONAL)
    max_tolerance_percent: Fraction           = field(metadata=_RATIONAL)

    def message(self) -> str:
        if self.price_spread_percent is not None:
            return (
                f"Price spread {_percent(self.price_spread_percent)}% exceeds "
                f"tolerance {_percent(self.max_tolerance_percent)}%"
            )
        return (
            f"Only {self.sources_provided} sources provided, "
            f"{self.quorum_required} required for quorum"
        )


@_variant
@dataclass(frozen=True)
class UnauthorizedSource(RejectionReason):
    code: ClassVar[str] = "UNAUTHORIZED_SOURCE"

    source:          str
    allowed_sources: Tuple[str, ...] = field(metadata=_NAMES)

    def message(self) -> str:
        return (
            f"Source '{self.source}' not in allowlist. "
            f"Allowed: {_names(self.allowed_sources)}"
        )


@_variant
@dataclass(frozen=True)
class StaleFeed(RejectionReason):
    code: ClassVar[str] = "STALE_FEED"

    source:          str
    observed_at:     int
    evaluation_time: int
    max_staleness:   int

    @property
    def age(self) -> int:
        return max(0, self.evaluation_time - self.observed_at)

    def message(self) -> str:
        return (
            f"Feed data from '{self.source}' is stale: {self.age}s old, "
            f"max allowed is {self.max_staleness}s"
        )


@_variant
@dataclass(frozen=True)
class InvalidTransferPattern(RejectionReason):
    code: ClassVar[str] = "INVALID_TRANSFER_PATTERN"

    expected_legs: int
    actual_legs:   int

    def message(self) -> str:
        return (
            f"Invalid transfer pattern. Expected: {self.expected_legs} legs "
            f"(atomic DvP), got: {self.actual_legs} legs"
        )


@_variant
@dataclass(frozen=True)
class SidePaymentDetected(RejectionReason):
    code: ClassVar[str] = "SIDE_PAYMENT_DETECTED"

    transfer_leg_count: int

    def message(self) -> str:
        return (
            "Side-payment detected: extra transfers outside the expected "
            f"pattern ({self.transfer_leg_count} legs)"
        )


REJECTION_CODES = frozenset(_VARIANTS)


def rejection_variants() -> Tuple[Type[RejectionReason], ...]:
    """Every variant of the closed set, in declaration order."""
    return tuple(_VARIANTS.values())
