"""
offerguard.lifecycle: offer lifecycle driver and fill receipts.

FillDesk lives in offerguard.lifecycle.desk; it is not imported here
because the store imports this package for FillReceipt.
"""

from offerguard.lifecycle.receipt import FillOutcome, FillReceipt

__all__ = ["FillOutcome", "FillReceipt"]
