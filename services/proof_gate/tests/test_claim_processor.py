import threading

import pytest

from conftest import ALICE, BOB, tx_hash
from proofgate.disburse.stub_disburser import StubDisburser
from proofgate.outcomes import ActionScope, ActionType, ErrorCode
from proofgate.processors import base
from proofgate.processors.claim import ClaimProcessor
from proofgate.schemas import ClaimSubmitRequest
from proofgate.store import block_user, check_eligibility, get_record, try_complete


def claim(user_id="1001", *, h, wallet=ALICE, scope=None):
    return ClaimSubmitRequest(user_id=user_id, tx_hash=h, wallet_address=wallet, scope=scope)


def test_status_before_claim(claim_processor, db_session):
    view = claim_processor.status(db_session, user_id="1001")
    assert view.can_act is True
    assert view.completed is False
    assert view.domain_context["scope"] == "42"
    assert view.domain_context["tokenAmount"] == "40000"
    assert view.domain_context["projectName"] == "ZORA"


def test_first_claim_disburses_once(claim_processor, db_session, send_proof, disburser):
    h1 = send_proof("claim")
    first = claim_processor.submit(db_session, claim(h=h1))

    assert first.success and not first.already_completed
    assert first.result["token_amount"] == "40000"
    assert first.result["project_id"] == "42"
    assert disburser.transfers == [(ALICE, "40000")]

    # different valid tx, same (user, project)
    h2 = send_proof("claim")
    second = claim_processor.submit(db_session, claim(h=h2))

    assert second.success and second.already_completed
    assert second.result == first.result
    assert len(disburser.transfers) == 1

    view = claim_processor.status(db_session, user_id="1001")
    assert view.completed and not view.can_act
    assert view.domain_context["payoutStatus"] == "sent"


def test_wallet_change_does_not_allow_second_claim(claim_processor, db_session, send_proof, disburser):
    claim_processor.submit(db_session, claim(h=send_proof("claim", sender=ALICE), wallet=ALICE))
    again = claim_processor.submit(db_session, claim(h=send_proof("claim", sender=BOB), wallet=BOB))

    assert again.already_completed
    assert again.result["wallet_address"] == ALICE
    assert len(disburser.transfers) == 1


def test_replay_does_not_touch_chain(claim_processor, db_session, send_proof, chain):
    claim_processor.submit(db_session, claim(h=send_proof("claim")))
    calls = chain.calls
    claim_processor.submit(db_session, claim(h=tx_hash(5000)))
    assert chain.calls == calls


def test_hash_reused_by_other_user_conflicts(claim_processor, db_session, send_proof):
    h = send_proof("claim")
    claim_processor.submit(db_session, claim(user_id="1", h=h))
    other = claim_processor.submit(db_session, claim(user_id="2", h=h))
    assert other.error_code == ErrorCode.CONFLICT
    assert not other.retry


def test_pending_transaction_is_retry_signal(claim_processor, db_session, send_proof, chain, disburser):
    h = send_proof("claim", mined=False)
    outcome = claim_processor.submit(db_session, claim(h=h))

    assert outcome.error_code == ErrorCode.PENDING
    assert outcome.retry
    assert claim_processor.status(db_session, user_id="1001").can_act
    assert disburser.transfers == []

    chain.mine(h)
    assert claim_processor.submit(db_session, claim(h=h)).success


def test_invalid_proof_is_terminal(claim_processor, db_session, send_proof):
    outcome = claim_processor.submit(db_session, claim(h=send_proof("claim", value=1)))
    assert outcome.error_code == ErrorCode.INVALID_PROOF
    assert not outcome.retry


def test_wrong_payload_tag(claim_processor, db_session, send_proof):
    outcome = claim_processor.submit(db_session, claim(h=send_proof("feedback")))
    assert outcome.error_code == ErrorCode.INVALID_PROOF


def test_chain_outage_is_retryable(claim_processor, db_session, send_proof, chain):
    h = send_proof("claim")
    chain.fail_reads = True
    outcome = claim_processor.submit(db_session, claim(h=h))
    assert outcome.error_code == ErrorCode.RPC_UNAVAILABLE
    assert outcome.retry


def test_wallet_required(claim_processor, db_session, send_proof, chain):
    outcome = claim_processor.submit(db_session, claim(h=send_proof("claim"), wallet=None))
    assert outcome.error_code == ErrorCode.VALIDATION
    assert chain.calls == 0


def test_unknown_project_is_closed(claim_processor, db_session, send_proof):
    outcome = claim_processor.submit(db_session, claim(h=send_proof("claim"), scope="999"))
    assert outcome.error_code == ErrorCode.SCOPE_CLOSED


def test_expired_campaign(common, disburser, db_session, send_proof):
    p = ClaimProcessor(disburser=disburser, **common)
    p.feature_project(db_session, project_id="7", name="OLD", featured_at="2020-01-01T00:00:00+00:00")

    view = p.status(db_session, user_id="1", scope="7")
    assert not view.can_act
    assert view.domain_context["expired"] is True

    outcome = p.submit(db_session, claim(user_id="1", h=send_proof("claim"), scope="7"))
    assert outcome.error_code == ErrorCode.SCOPE_CLOSED


def test_latest_featured_project_is_default_scope(claim_processor, db_session):
    claim_processor.feature_project(db_session, project_id="43", name="NEXT", featured_at="2025-10-09T09:00:00+00:00")
    assert claim_processor.default_scope(db_session) == "43"


def test_blocked_user(claim_processor, db_session, send_proof, chain):
    block_user(db_session, user_id="1001")
    outcome = claim_processor.submit(db_session, claim(h=send_proof("claim")))
    assert outcome.error_code == ErrorCode.BLOCKED
    assert chain.calls == 0
    assert claim_processor.status(db_session, user_id="1001").domain_context["reason"] == "blocked"


def test_failed_payout_keeps_claim_and_can_be_retried(common, db_session, send_proof):
    disburser = StubDisburser(fail=True)
    p = ClaimProcessor(disburser=disburser, token_amount="40000", **common)
    p.feature_project(db_session, project_id="42", name="ZORA")

    outcome = p.submit(db_session, claim(h=send_proof("claim")))
    assert outcome.success
    assert p.get_payout(db_session, user_id="1001", project_id="42")["status"] == "failed"

    disburser.fail = False
    results = p.retry_failed_payouts(db_session)
    assert results == [{"user_id": "1001", "project_id": "42", "status": "sent"}]
    assert disburser.transfers == [(ALICE, "40000")]
    assert p.retry_failed_payouts(db_session) == []


def test_token_amount_comes_from_campaign(common, disburser, db_session, send_proof):
    p = ClaimProcessor(disburser=disburser, **common)
    p.feature_project(db_session, project_id="50", name="BIG", token_amount="100000",
                      featured_at="2025-10-09T00:00:00")
    outcome = p.submit(db_session, claim(h=send_proof("claim"), scope="50"))
    assert outcome.result["token_amount"] == "100000"


def test_completed_payout_left_pending_is_sent_by_retry(claim_processor, db_session, send_proof, disburser,
                                                        monkeypatch):
    # process stops between the completing commit and the transfer
    monkeypatch.setattr(claim_processor, "after_complete", lambda *args: None)

    outcome = claim_processor.submit(db_session, claim(h=send_proof("claim")))
    assert outcome.success
    assert claim_processor.get_payout(db_session, user_id="1001", project_id="42")["status"] == "pending"
    assert disburser.transfers == []

    results = claim_processor.retry_failed_payouts(db_session)
    assert results == [{"user_id": "1001", "project_id": "42", "status": "sent"}]
    assert claim_processor.retry_failed_payouts(db_session) == []
    assert disburser.transfers == [(ALICE, "40000")]


def test_payout_row_rolls_back_with_failed_completion(claim_processor, db_session, send_proof, disburser, monkeypatch):
    record = claim_processor.record_side_effect
    failures = []

    def fail_after_insert(db, rec, request):
        record(db, rec, request)
        if not failures:
            failures.append(1)
            raise RuntimeError("db down")

    monkeypatch.setattr(claim_processor, "record_side_effect", fail_after_insert)
    h = send_proof("claim")

    with pytest.raises(RuntimeError):
        claim_processor.submit(db_session, claim(h=h))
    assert claim_processor.get_payout(db_session, user_id="1001", project_id="42") is None
    assert claim_processor.status(db_session, user_id="1001").can_act

    outcome = claim_processor.submit(db_session, claim(h=h))
    assert outcome.success and not outcome.already_completed
    assert disburser.transfers == [(ALICE, "40000")]


def test_same_proof_completed_concurrently_is_replay(claim_processor, db_session, session_factory, send_proof,
                                                     disburser, monkeypatch):
    h = send_proof("claim")
    scope = ActionScope(ActionType.CLAIM, "42")
    won = {"token_amount": "40000", "project_id": "42", "wallet_address": ALICE}

    def read_then_lose_race(db, *, user_id, scope):
        stale = check_eligibility(db, user_id=user_id, scope=scope)
        other = session_factory()
        try:
            try_complete(other, user_id=user_id, scope=scope, proof_tx_hash=h, result_payload=won)
        finally:
            other.close()
        return stale

    monkeypatch.setattr(base, "check_eligibility", read_then_lose_race)

    outcome = claim_processor.submit(db_session, claim(h=h))
    assert outcome.success
    assert outcome.already_completed
    assert outcome.result == won
    assert get_record(db_session, user_id="1001", scope=scope).proof_tx_hash == h
    assert disburser.transfers == []


def test_concurrent_claims_pay_once(claim_processor, session_factory, send_proof, disburser):
    n = 6
    proofs = [send_proof("claim") for _ in range(n)]
    barrier = threading.Barrier(n)
    outcomes = [None] * n

    def worker(i):
        db = session_factory()
        try:
            barrier.wait()
            outcomes[i] = claim_processor.submit(db, claim(h=proofs[i]))
        finally:
            db.close()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert all(o.success for o in outcomes)
    first = [o for o in outcomes if not o.already_completed]
    replays = [o for o in outcomes if o.already_completed]
    assert len(first) == 1
    assert len(replays) == n - 1
    assert all(o.result == first[0].result for o in replays)
    assert disburser.transfers == [(ALICE, "40000")]
