import threading
import time
from typing import Dict, Optional

from proofgate.chain.base import ChainReader, ChainReadError, ChainTransaction
from proofgate.hexutil import normalize_tx_hash


class StubChainReader(ChainReader):
    """
    In-memory chain for tests/dev. `add` registers a transaction, mined
    unless mined=False; `mine` includes a pending one later.
    """

    def __init__(self):
        self._txs: Dict[str, ChainTransaction] = {}
        self._lock = threading.Lock()
        self._next_block = 1
        self.calls = 0
        self.fail_reads = False

    def add(
        self,
        tx_hash: str,
        *,
        sender: str,
        to: Optional[str],
        data: bytes = b"",
        value: int = 0,
        mined: bool = True,
        succeeded: bool = True,
        block_timestamp: Optional[int] = None,
    ) -> ChainTransaction:
        tx = ChainTransaction(
            tx_hash=normalize_tx_hash(tx_hash),
            sender=sender,
            to=to,
            value=value,
            data=data,
            block_number=None,
            succeeded=succeeded,
            block_timestamp=block_timestamp,
        )
        with self._lock:
            self._txs[tx.tx_hash] = tx
        if mined:
            return self.mine(tx_hash)
        return tx

    def mine(self, tx_hash: str) -> ChainTransaction:
        key = normalize_tx_hash(tx_hash)
        with self._lock:
            tx = self._txs[key]
            mined = ChainTransaction(
                tx_hash=tx.tx_hash,
                sender=tx.sender,
                to=tx.to,
                value=tx.value,
                data=tx.data,
                block_number=self._next_block,
                succeeded=tx.succeeded,
                block_timestamp=tx.block_timestamp if tx.block_timestamp is not None else int(time.time()),
            )
            self._next_block += 1
            self._txs[key] = mined
            return mined

    def get_transaction(self, tx_hash: str) -> Optional[ChainTransaction]:
        with self._lock:
            self.calls += 1
            if self.fail_reads:
                raise ChainReadError("stub chain unavailable")
            return self._txs.get(normalize_tx_hash(tx_hash))
