"""
offerguard/core/codec.py

Evaluation Payload Codec: format version 1.

The host and the proof sandbox must agree byte-for-byte on what was
evaluated, so the payload is a fixed binary layout rather than JSON.

═══════════════════════════════════════════════════════════════════
LAYOUT
═══════════════════════════════════════════════════════════════════

    bundle    := MAGIC "OGEV" · u8 version · guardrails · evidence

    u64       := 8 bytes, big-endian, unsigned
    u32       := 4 bytes, big-endian, unsigned   (lengths, counts)
    bool      := u8, exactly 0 or 1
    optional  := u8 presence (0/1) · value if present
    string    := u32 length · UTF-8 bytes
    rational  := u8 sign (0 = non-negative, 1 = negative)
                 · u16 length · numerator magnitude, big-endian
                 · u16 length · denominator, big-endian
                 in lowest terms; zero has sign 0 and an empty numerator
    sequence  := u32 count · items
    offer_id  := 32 raw bytes

    guardrails := offer_id · max_debit u64 · min_credit optional<u64>
                  · expiry_time u64 · allowed_sources sequence<string>
                  · max_staleness u64 · quorum_count u64
                  · quorum_tolerance_percent rational
                  · allowed_takers sequence<string>
                  · require_atomic_delivery_vs_payment bool
                  · forbid_side_payments bool · nonce u64 · max_fill_size u64

    feed       := source string · asset string · price rational
                  · observed_at u64 · signature string

    evidence   := taker_id string · fill_size u64 · fill_price u64
                  · feed_evidence sequence<feed> · evaluation_time u64
                  · transfer_leg_count u64 · has_extra_transfers bool

Encoding is deterministic: equal models give equal bytes.
Decoding is strict: any non-canonical or trailing byte is a DecodeError.
═══════════════════════════════════════════════════════════════════
"""

import struct
from fractions import Fraction
from math import gcd
from typing import Callable, List, Tuple, TypeVar

from offerguard.core.exceptions import DecodeError, ValidationError
from offerguard.core.models import (
    OFFER_ID_LENGTH,
    FeedEvidence,
    FillEvidence,
    GuardrailDocument,
)

MAGIC          = b"OGEV"
FORMAT_VERSION = 1

_U8  = struct.Struct(">B")
_U16 = struct.Struct(">H")
_U32 = struct.Struct(">I")
_U64 = struct.Struct(">Q")

T = TypeVar("T")


# ─────────────────────────────────────────────────────────────
# Writer
# ─────────────────────────────────────────────────────────────

class _Writer:
    def __init__(self) -> None:
        self._parts: List[bytes] = []

    def getvalue(self) -> bytes:
        return b"".join(self._parts)

    def raw(self, data: bytes) -> None:
        self._parts.append(data)

    def u8(self, value: int) -> None:
        self._parts.append(_U8.pack(value))

    def u32(self, value: int) -> None:
        self._parts.append(_U32.pack(value))

    def u64(self, value: int) -> None:
        self._parts.append(_U64.pack(value))

    def boolean(self, value: bool) -> None:
        self.u8(1 if value else 0)

    def string(self, value: str) -> None:
        data = value.encode("utf-8")
        self.u32(len(data))
        self._parts.append(data)

    def magnitude(self, value: int) -> None:
        data = value.to_bytes((value.bit_length() + 7) // 8, "big")
        self._parts.append(_U16.pack(len(data)))
        self._parts.append(data)

    def rational(self, value: Fraction) -> None:
        self.u8(1 if value < 0 else 0)
        self.magnitude(abs(value.numerator))
        self.magnitude(value.denominator)

    def optional_u64(self, value) -> None:
        if value is None:
            self.u8(0)
        else:
            self.u8(1)
            self.u64(value)

    def sequence(self, items, write_item: Callable) -> None:
        self.u32(len(items))
        for item in items:
            write_item(item)


# ─────────────────────────────────────────────────────────────
# Reader
# ─────────────────────────────────────────────────────────────

class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = memoryview(data)
        self._pos  = 0

    def take(self, n: int, what: str) -> bytes:
        end = self._pos + n
        if end > len(self._data):
            raise DecodeError(
                f"Truncated payload reading {what}",
                details={"offset": self._pos, "needed": n},
            )
        chunk = bytes(self._data[self._pos:end])
        self._pos = end
        return chunk

    def u8(self, what: str) -> int:
        return _U8.unpack(self.take(1, what))[0]

    def u16(self, what: str) -> int:
        return _U16.unpack(self.take(2, what))[0]

    def u32(self, what: str) -> int:
        return _U32.unpack(self.take(4, what))[0]

    def u64(self, what: str) -> int:
        return _U64.unpack(self.take(8, what))[0]

    def boolean(self, what: str) -> bool:
        flag = self.u8(what)
        if flag > 1:
            raise DecodeError(f"{what}: boolean byte must be 0 or 1, got {flag}")
        return flag == 1

    def string(self, what: str) -> str:
        data = self.take(self.u32(what), what)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"{what}: invalid UTF-8") from exc

    def magnitude(self, what: str) -> int:
        data = self.take(self.u16(what), what)
        if data[:1] == b"\x00":
            raise DecodeError(f"{what}: magnitude has leading zero bytes")
        return int.from_bytes(data, "big")

    def rational(self, what: str) -> Fraction:
        sign        = self.u8(what)
        numerator   = self.magnitude(what)
        denominator = self.magnitude(what)
        if sign > 1:
            raise DecodeError(f"{what}: sign byte must be 0 or 1, got {sign}")
        if denominator == 0:
            raise DecodeError(f"{what}: zero denominator")
        if gcd(numerator, denominator) != 1:
            raise DecodeError(f"{what}: rational not in lowest terms")
        if sign == 1 and numerator == 0:
            raise DecodeError(f"{what}: negative zero")
        return Fraction(-numerator if sign else numerator, denominator)

    def optional_u64(self, what: str):
        if self.boolean(what):
            return self.u64(what)
        return None

    def sequence(self, what: str, read_item: Callable[[], T]) -> Tuple[T, ...]:
        count = self.u32(what)
        return tuple(read_item() for _ in range(count))

    def finish(self) -> None:
        remaining = len(self._data) - self._pos
        if remaining:
            raise DecodeError(
                f"{remaining} trailing byte(s) after payload",
                details={"offset": self._pos},
            )


# ─────────────────────────────────────────────────────────────
# Blocks
# ─────────────────────────────────────────────────────────────

def _write_guardrails(w: _Writer, g: GuardrailDocument) -> None:
    w.raw(g.offer_id)
    w.u64(g.max_debit)
    w.optional_u64(g.min_credit)
    w.u64(g.expiry_time)
    w.sequence(g.allowed_sources, w.string)
    w.u64(g.max_staleness)
    w.u64(g.quorum_count)
    w.rational(g.quorum_tolerance_percent)
    w.sequence(g.allowed_takers, w.string)
    w.boolean(g.require_atomic_delivery_vs_payment)
    w.boolean(g.forbid_side_payments)
    w.u64(g.nonce)
    w.u64(g.max_fill_size)


def _read_guardrails(r: _Reader) -> GuardrailDocument:
    offer_id        = r.take(OFFER_ID_LENGTH, "offer_id")
    max_debit       = r.u64("max_debit")
    min_credit      = r.optional_u64("min_credit")
    expiry_time     = r.u64("expiry_time")
    allowed_sources = r.sequence("allowed_sources", lambda: r.string("allowed_sources"))
    max_staleness   = r.u64("max_staleness")
    quorum_count    = r.u64("quorum_count")
    tolerance       = r.rational("quorum_tolerance_percent")
    allowed_takers  = r.sequence("allowed_takers", lambda: r.string("allowed_takers"))
    require_dvp     = r.boolean("require_atomic_delivery_vs_payment")
    forbid_side     = r.boolean("forbid_side_payments")
    nonce           = r.u64("nonce")
    max_fill_size   = r.u64("max_fill_size")
    return _build(
        GuardrailDocument,
        offer_id=                           offer_id,
        max_debit=                          max_debit,
        min_credit=                         min_credit,
        expiry_time=                        expiry_time,
        allowed_sources=                    allowed_sources,
        max_staleness=                      max_staleness,
        quorum_count=                       quorum_count,
        quorum_tolerance_percent=           tolerance,
        allowed_takers=                     allowed_takers,
        require_atomic_delivery_vs_payment= require_dvp,
        forbid_side_payments=               forbid_side,
        nonce=                              nonce,
        max_fill_size=                      max_fill_size,
    )


def _write_feed(w: _Writer, f: FeedEvidence) -> None:
    w.string(f.source)
    w.string(f.asset)
    w.rational(f.price)
    w.u64(f.observed_at)
    w.string(f.signature)


def _read_feed(r: _Reader) -> FeedEvidence:
    source      = r.string("feed.source")
    asset       = r.string("feed.asset")
    price       = r.rational("feed.price")
    observed_at = r.u64("feed.observed_at")
    signature   = r.string("feed.signature")
    return _build(
        FeedEvidence,
        source=      source,
        asset=       asset,
        price=       price,
        observed_at= observed_at,
        signature=   signature,
    )


def _write_evidence(w: _Writer, e: FillEvidence) -> None:
    w.string(e.taker_id)
    w.u64(e.fill_size)
    w.u64(e.fill_price)
    w.sequence(e.feed_evidence, lambda f: _write_feed(w, f))
    w.u64(e.evaluation_time)
    w.u64(e.transfer_leg_count)
    w.boolean(e.has_extra_transfers)


def _read_evidence(r: _Reader) -> FillEvidence:
    taker_id        = r.string("taker_id")
    fill_size       = r.u64("fill_size")
    fill_price      = r.u64("fill_price")
    feeds           = r.sequence("feed_evidence", lambda: _read_feed(r))
    evaluation_time = r.u64("evaluation_time")
    legs            = r.u64("transfer_leg_count")
    extra           = r.boolean("has_extra_transfers")
    return _build(
        FillEvidence,
        taker_id=            taker_id,
        fill_size=           fill_size,
        fill_price=          fill_price,
        feed_evidence=       feeds,
        evaluation_time=     evaluation_time,
        transfer_leg_count=  legs,
        has_extra_transfers= extra,
    )


def _build(cls, **kwargs):
    # Well-formed bytes can still describe an invalid model (negative price).
    try:
        return cls(**kwargs)
    except ValidationError as exc:
        raise DecodeError(
            f"Decoded {cls.__name__} is invalid", errors=exc.errors
        ) from exc


# ─────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────

def encode_guardrails(guardrails: GuardrailDocument) -> bytes:
    w = _Writer()
    _write_guardrails(w, guardrails)
    return w.getvalue()


def decode_guardrails(data: bytes) -> GuardrailDocument:
    r = _Reader(data)
    guardrails = _read_guardrails(r)
    r.finish()
    return guardrails


def encode_fill_evidence(evidence: FillEvidence) -> bytes:
    w = _Writer()
    _write_evidence(w, evidence)
    return w.getvalue()


def decode_fill_evidence(data: bytes) -> FillEvidence:
    r = _Reader(data)
    evidence = _read_evidence(r)
    r.finish()
    return evidence


def encode_bundle(guardrails: GuardrailDocument, evidence: FillEvidence) -> bytes:
    """The complete evaluation input, as handed to the proof sandbox."""
    w = _Writer()
    w.raw(MAGIC)
    w.u8(FORMAT_VERSION)
    _write_guardrails(w, guardrails)
    _write_evidence(w, evidence)
    return w.getvalue()


def decode_bundle(data: bytes) -> Tuple[GuardrailDocument, FillEvidence]:
    """
    Inverse of encode_bundle().

    Raises DecodeError on bad magic, an unknown version, truncation,
    trailing bytes or any malformed field.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise DecodeError(f"Payload must be bytes, got {type(data).__name__}")
    r = _Reader(bytes(data))
    magic = r.take(len(MAGIC), "magic")
    if magic != MAGIC:
        raise DecodeError("Bad magic: not an evaluation bundle", details={"magic": magic.hex()})
    version = r.u8("version")
    if version != FORMAT_VERSION:
        raise DecodeError(
            f"Unsupported bundle version {version}",
            details={"supported": FORMAT_VERSION},
        )
    guardrails = _read_guardrails(r)
    evidence   = _read_evidence(r)
    r.finish()
    return guardrails, evidence
