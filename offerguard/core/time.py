"""
offerguard/core/time.py

THE ONLY CLOCK READS IN OFFERGUARD.

Two representations:
    unix seconds  : int, used by every guardrail, offer and fill field
    wire timestamp: YYYY-MM-DDTHH:MM:SS.mmmZ, used on receipts

The validation engine never imports this module. Evaluation time travels
inside FillEvidence so the same input always yields the same verdict.
"""

import time
from datetime import datetime, timezone
from typing import Optional


def unix_now() -> int:
    """Current UTC time as whole unix seconds."""
    return int(time.time())


def wire_timestamp(epoch_seconds: Optional[float] = None) -> str:
    """
    Return a UTC instant in wire format.
    Format: YYYY-MM-DDTHH:MM:SS.mmmZ  (exactly 3 fractional digits, Z suffix)

    Defaults to now.
    """
    if epoch_seconds is None:
        moment = datetime.now(timezone.utc)
    else:
        moment = datetime.fromtimestamp(epoch_seconds, timezone.utc)
    ms = moment.microsecond // 1000
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ms:03d}Z"
