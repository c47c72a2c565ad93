import logging
from typing import Any, Mapping, Optional

import requests
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception

from proofgate.chain.base import ChainReader, ChainReadError, ChainTransaction
from proofgate.config import CHAIN_RPC_URL, RPC_TIMEOUT_SECS

logger = logging.getLogger(__name__)


class RpcChainReader(ChainReader):
    """
    Reads transaction, receipt and block through a web3 HTTP provider.
    Transport failures and replies that cannot be decoded raise
    ChainReadError; an unknown hash is None.
    """

    def __init__(self, rpc_url: str = CHAIN_RPC_URL, timeout: float = RPC_TIMEOUT_SECS, w3=None):
        if w3 is None:
            if not rpc_url:
                raise RuntimeError("CHAIN_RPC_URL is not set")
            w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self.w3 = w3

    def get_transaction(self, tx_hash: str) -> Optional[ChainTransaction]:
        try:
            return self._read(tx_hash)
        except (Web3Exception, requests.RequestException) as e:
            raise ChainReadError(f"chain read failed for {tx_hash}: {e}") from e
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ChainReadError(f"malformed chain reply for {tx_hash}: {e!r}") from e

    def _read(self, tx_hash: str) -> Optional[ChainTransaction]:
        try:
            tx = self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return None

        if tx.get("blockNumber") is None:
            return _to_transaction(tx_hash, tx)

        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            # Included per the tx lookup but the receipt is not indexed yet.
            logger.debug("receipt not available yet for %s", tx_hash)
            return _to_transaction(tx_hash, tx)

        block = self.w3.eth.get_block(tx["blockNumber"])
        return _to_transaction(tx_hash, tx, receipt=receipt, block=block)


def _to_transaction(
    tx_hash: str,
    tx: Mapping[str, Any],
    *,
    receipt: Optional[Mapping[str, Any]] = None,
    block: Optional[Mapping[str, Any]] = None,
) -> ChainTransaction:
    mined = receipt is not None
    return ChainTransaction(
        tx_hash=tx_hash,
        sender=str(tx["from"]),
        to=str(tx["to"]) if tx.get("to") else None,
        value=int(tx["value"]),
        data=bytes(tx.get("input") or b""),
        block_number=int(tx["blockNumber"]) if mined else None,
        succeeded=int(receipt["status"]) == 1 if mined else None,
        block_timestamp=int(block["timestamp"]) if mined and block is not None else None,
    )
