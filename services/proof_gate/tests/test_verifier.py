import pytest

from conftest import ALICE, BOB, NOW, TREASURY, clock, tx_hash
from proofgate.chain.base import ChainReadError
from proofgate.matchers import starts_with
from proofgate.outcomes import VerificationStatus
from proofgate.verifier import verify


def _verify(chain, h, *, sender=ALICE, matcher=None, max_age=3600):
    return verify(
        chain,
        tx_hash=h,
        expected_recipient=TREASURY,
        expected_sender=sender,
        payload_matcher=matcher or starts_with("claim"),
        max_age_secs=max_age,
        clock=clock,
    )


def test_confirmed_returns_sender_and_payload(chain, send_proof):
    h = send_proof("claim:42")
    r = _verify(chain, h)
    assert r.status == VerificationStatus.CONFIRMED
    assert r.sender == ALICE
    assert r.payload == b"claim:42"


def test_sender_compared_case_insensitively(chain, send_proof):
    h = send_proof("claim", sender=ALICE.upper().replace("0X", "0x"))
    assert _verify(chain, h).status == VerificationStatus.CONFIRMED


def test_unknown_transaction_is_pending(chain):
    assert _verify(chain, tx_hash(999)).status == VerificationStatus.PENDING


def test_unmined_transaction_is_pending(chain, send_proof):
    h = send_proof("claim", mined=False)
    assert _verify(chain, h).status == VerificationStatus.PENDING
    chain.mine(h)
    assert _verify(chain, h).status == VerificationStatus.CONFIRMED


def test_wrong_recipient_invalid(chain, send_proof):
    h = send_proof("claim", to=BOB)
    r = _verify(chain, h)
    assert r.status == VerificationStatus.INVALID
    assert "recipient" in r.reason


@pytest.mark.parametrize("value", [1, 10**18])
def test_nonzero_value_invalid_even_with_good_payload(chain, send_proof, value):
    h = send_proof("claim", value=value)
    r = _verify(chain, h)
    assert r.status == VerificationStatus.INVALID
    assert "value" in r.reason


def test_wrong_sender_invalid(chain, send_proof):
    h = send_proof("claim", sender=BOB)
    assert _verify(chain, h).status == VerificationStatus.INVALID


def test_sender_not_checked_when_not_expected(chain, send_proof):
    h = send_proof("claim", sender=BOB)
    assert _verify(chain, h, sender=None).status == VerificationStatus.CONFIRMED


def test_payload_mismatch_invalid(chain, send_proof):
    h = send_proof("hello")
    assert _verify(chain, h).status == VerificationStatus.INVALID


def test_reverted_transaction_invalid(chain, send_proof):
    h = send_proof("claim", succeeded=False)
    assert _verify(chain, h).status == VerificationStatus.INVALID


def test_stale_transaction_invalid(chain, send_proof):
    h = send_proof("claim", block_timestamp=NOW - 7200)
    assert _verify(chain, h).status == VerificationStatus.INVALID
    assert _verify(chain, h, max_age=0).status == VerificationStatus.CONFIRMED


def test_malformed_hash_invalid_without_chain_read(chain):
    assert _verify(chain, "0x1234").status == VerificationStatus.INVALID
    assert chain.calls == 0


def test_chain_failure_propagates(chain, send_proof):
    h = send_proof("claim")
    chain.fail_reads = True
    with pytest.raises(ChainReadError):
        _verify(chain, h)
