import hashlib
import threading
from typing import List, Tuple

from proofgate.disburse.base import Disburser, DisbursementError


class StubDisburser(Disburser):
    """
    Deterministic fake transfers for tests/dev. Records every call so tests
    can assert a claim paid out exactly once.
    """

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.transfers: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "stub"

    def disburse(self, recipient: str, amount: str) -> str:
        if self.fail:
            raise DisbursementError("stub disburser configured to fail")
        with self._lock:
            self.transfers.append((recipient, amount))
            n = len(self.transfers)
        h = hashlib.sha256(f"{recipient}:{amount}:{n}".encode("utf-8")).hexdigest()
        return "0x" + h
