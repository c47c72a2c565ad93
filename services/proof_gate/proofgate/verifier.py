import logging
import time
from typing import Callable, Optional

from proofgate.chain.base import ChainReader
from proofgate.hexutil import is_valid_address, is_valid_tx_hash, normalize_address, normalize_tx_hash
from proofgate.matchers import PayloadMatcher
from proofgate.outcomes import VerificationResult

logger = logging.getLogger(__name__)


def verify(
    chain: ChainReader,
    *,
    tx_hash: str,
    expected_recipient: str,
    expected_sender: Optional[str],
    payload_matcher: PayloadMatcher,
    max_age_secs: int = 0,
    clock: Callable[[], float] = time.time,
) -> VerificationResult:
    """
    Check a proof transaction against the chain. Read-only.

    Pending  -> not mined yet (or unknown to the node); retry later.
    Invalid  -> mined but unusable as proof; the hash must not be retried.
    Confirmed-> sender + raw input data for the processor to interpret.

    ChainReadError from the reader propagates: a dead RPC says nothing
    about the transaction.
    """
    if not is_valid_tx_hash(tx_hash):
        return VerificationResult.invalid("malformed transaction hash")
    if not is_valid_address(expected_recipient):
        raise RuntimeError("expected recipient is not a valid address")

    tx = chain.get_transaction(normalize_tx_hash(tx_hash))
    if tx is None:
        return VerificationResult.pending("transaction not found yet")
    if not tx.mined:
        return VerificationResult.pending()

    if tx.succeeded is False:
        return VerificationResult.invalid("transaction reverted on-chain")

    if not tx.to or normalize_address(tx.to) != normalize_address(expected_recipient):
        return VerificationResult.invalid(
            f"wrong recipient: expected {expected_recipient}, got {tx.to}"
        )

    # Proof transactions carry no value; anything else is a payment, not a proof.
    if tx.value != 0:
        return VerificationResult.invalid(f"non-zero value: {tx.value}")

    if expected_sender and normalize_address(tx.sender) != normalize_address(expected_sender):
        return VerificationResult.invalid(
            f"wrong sender: expected {expected_sender}, got {tx.sender}"
        )

    if not payload_matcher(tx.data):
        return VerificationResult.invalid(
            f"payload does not match {getattr(payload_matcher, '__name__', 'matcher')}"
        )

    if max_age_secs and tx.block_timestamp is not None:
        age = clock() - tx.block_timestamp
        if age > max_age_secs:
            return VerificationResult.invalid(f"transaction too old ({int(age)}s > {max_age_secs}s)")

    logger.debug("verified proof %s from %s", tx_hash, tx.sender)
    return VerificationResult.confirmed(normalize_address(tx.sender), tx.data)
