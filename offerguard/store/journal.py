"""
offerguard/store/journal.py

Receipt Journal: append-only JSONL file of FillReceipts.

One receipt per line, written with FillReceipt.to_dict(). Appends are
serialized by a lock and fsync'd before returning, so a receipt the desk
has returned to its caller is on disk.

verify() re-checks every signature using only the public keys stored in
the lines themselves (or one pinned key), so an auditor needs nothing but
the file.
"""

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from offerguard.core.exceptions import JournalError, OfferGuardError
from offerguard.lifecycle.receipt import FillReceipt

logger = logging.getLogger(__name__)


@dataclass
class JournalViolation:
    line:       int
    receipt_id: Optional[str]
    detail:     str

    def to_dict(self) -> dict:
        return {"line": self.line, "receipt_id": self.receipt_id, "detail": self.detail}


@dataclass
class JournalReport:
    total_receipts:   int = 0
    valid_signatures: int = 0
    unsigned:         int = 0
    accepted:         int = 0
    rejected:         int = 0
    violations:       List[JournalViolation] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.violations

    def to_dict(self) -> dict:
        return {
            "clean":            self.clean,
            "total_receipts":   self.total_receipts,
            "valid_signatures": self.valid_signatures,
            "unsigned":         self.unsigned,
            "accepted":         self.accepted,
            "rejected":         self.rejected,
            "violations":       [v.to_dict() for v in self.violations],
        }


class ReceiptJournal:

    def __init__(self, path: Path) -> None:
        self.path  = Path(path)
        self._lock = threading.Lock()

    def append(self, receipt: FillReceipt) -> None:
        line = json.dumps(receipt.to_dict(), ensure_ascii=False, separators=(",", ":"))
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as exc:
                raise JournalError(
                    f"Failed to write receipt: {exc}",
                    details={"path": str(self.path), "receipt_id": receipt.receipt_id},
                ) from exc

    def _lines(self) -> Iterator[Tuple[int, str]]:
        if not self.path.exists():
            raise JournalError("Journal not found", details={"path": str(self.path)})
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, 1):
                    line = line.strip()
                    if line:
                        yield line_num, line
        except (OSError, UnicodeDecodeError) as exc:
            raise JournalError(f"Failed to read journal: {exc}") from exc

    def read_all(self) -> List[FillReceipt]:
        """
        Every receipt in file order.
        Raises JournalError on a missing file or a malformed line.
        """
        receipts = []
        for line_num, line in self._lines():
            try:
                receipts.append(FillReceipt.from_dict(json.loads(line)))
            except (ValueError, KeyError, TypeError, AttributeError, OfferGuardError) as exc:
                raise JournalError(
                    f"Invalid receipt at line {line_num}: {exc}",
                    details={"line": line_num},
                ) from exc
        return receipts

    def verify(
        self,
        public_key_hex: Optional[str] = None,
        require_signed: bool = False,
    ) -> JournalReport:
        """
        Check every line. Malformed lines and bad signatures become violations,
        not exceptions, so one bad line does not hide the rest.

        Unsigned receipts are counted, and reported as violations only when
        require_signed is set. A missing file still raises JournalError.
        """
        report = JournalReport()
        for line_num, line in self._lines():
            report.total_receipts += 1
            try:
                receipt = FillReceipt.from_dict(json.loads(line))
            except (ValueError, KeyError, TypeError, AttributeError, OfferGuardError) as exc:
                report.violations.append(
                    JournalViolation(line_num, None, f"malformed receipt: {exc}")
                )
                continue

            if receipt.accepted:
                report.accepted += 1
            else:
                report.rejected += 1

            if not receipt.is_signed():
                report.unsigned += 1
                if require_signed:
                    report.violations.append(
                        JournalViolation(line_num, receipt.receipt_id, "receipt is unsigned")
                    )
                continue

            if receipt.verify_signature(public_key_hex):
                report.valid_signatures += 1
            else:
                report.violations.append(
                    JournalViolation(line_num, receipt.receipt_id, "invalid signature")
                )

        if report.violations:
            logger.warning(
                "Journal %s has %d violation(s)", self.path, len(report.violations)
            )
        return report
