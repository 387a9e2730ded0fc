"""
offerguard: Basic Usage Example

Demonstrates:
- Publishing an offer with compiled guardrails
- Accepted and rejected fills, each with a signed receipt
- At-most-one fill per offer
- Re-running the evaluation through the proof-sandbox entry point
- Verifying the receipt journal
"""

import tempfile
from fractions import Fraction
from pathlib import Path

from offerguard import (
    FeedEvidence,
    FillDesk,
    FillEvidence,
    GuardrailDocument,
    OfferSpec,
    ProofAborted,
    ReceiptJournal,
    ReceiptSigner,
    Side,
    new_offer_id,
)
from offerguard.core.codec import encode_bundle
from offerguard.core.logs import configure_logging
from offerguard.core.time import unix_now
from offerguard.engine import sandbox


def fill(now: int, taker: str, price: int, feeds) -> FillEvidence:
    return FillEvidence(
        taker_id=        taker,
        fill_size=       10 ** 18,
        fill_price=      price,
        feed_evidence=   feeds,
        evaluation_time= now,
    )


def main():
    """Basic offerguard usage."""
    configure_logging("INFO")

    print("=" * 60)
    print("offerguard: Basic Usage Example")
    print("=" * 60)
    print()

    workdir = Path(tempfile.mkdtemp(prefix="offerguard-"))
    now     = unix_now()
    journal = ReceiptJournal(workdir / "receipts.jsonl")
    desk    = FillDesk(signer=ReceiptSigner.generate(), journal=journal)

    # 1. Maker publishes an offer
    guardrails = GuardrailDocument(
        offer_id=                 new_offer_id(),
        max_debit=                2_000_000_000_000,
        expiry_time=              now + 300,
        max_fill_size=            5 * 10 ** 18,
        allowed_sources=          ("FeedA", "FeedB"),
        max_staleness=            300,
        quorum_count=             2,
        quorum_tolerance_percent= Fraction(1),
    )
    offer = desk.publish(
        OfferSpec(asset="dETH", size=10 ** 18, side=Side.SELL, currency="USDC"),
        guardrails,
        maker_id="maker_alice",
        original_text="Sell 1 dETH, at most 2000 USDC, two feeds within 1%",
    )
    print(f"1. Published offer {offer.id.hex()[:16]}...")
    print(f"   {guardrails.summary()}")
    print()

    good_feeds = (
        FeedEvidence(source="FeedA", asset="dETH", price=Fraction(1950), observed_at=now - 1),
        FeedEvidence(source="FeedB", asset="dETH", price=Fraction(1951), observed_at=now - 1),
    )
    bad_feeds = (
        FeedEvidence(source="FeedA", asset="dETH", price=Fraction(1950), observed_at=now - 1),
        FeedEvidence(source="FeedMallory", asset="dETH", price=Fraction(1700), observed_at=now - 1),
    )

    # 2. A fill backed by an unlisted feed is rejected
    receipt = desk.submit(offer.id, fill(now, "taker_eve", 1_700_000_000_000, bad_feeds))
    print(f"2. taker_eve: {receipt.summary()['status']}  ({receipt.reason.message()})")

    # 3. A clean fill is accepted
    good = fill(now, "taker_bob", 1_950_000_000_000, good_feeds)
    receipt = desk.submit(offer.id, good)
    print(f"3. taker_bob: {receipt.summary()['status']}  settlement={receipt.settlement.to_dict()}")

    # 4. The offer cannot be filled twice
    receipt = desk.submit(offer.id, fill(now, "taker_carol", 1_950_000_000_000, good_feeds))
    print(f"4. taker_carol: {receipt.summary()['status']}  ({receipt.reason.code})")
    print()

    # 5. Same verdicts inside the proof sandbox
    commitment = sandbox.run(encode_bundle(guardrails, good))
    print(f"5. Sandbox commitment: {commitment.hex()[:16]}...{commitment.hex()[-2:]}")
    try:
        sandbox.run(encode_bundle(guardrails, fill(now, "taker_eve", 1, bad_feeds)))
    except ProofAborted as e:
        print(f"   Sandbox aborted: {e.reason.code}")
    print()

    # 6. Audit the journal
    report = journal.verify()
    print(f"6. Journal {journal.path}")
    print(f"   receipts={report.total_receipts}  valid signatures={report.valid_signatures}"
          f"  clean={report.clean}")
    print()


if __name__ == "__main__":
    main()
