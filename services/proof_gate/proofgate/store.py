from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from proofgate.hexutil import normalize_tx_hash
from proofgate.outcomes import (
    ActionScope,
    ActionType,
    CompletionResult,
    CompletionStatus,
    EligibilityRecord,
    EligibilityState,
)

logger = logging.getLogger(__name__)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _scope_params(user_id: str, scope: ActionScope) -> Dict[str, Any]:
    return {"uid": user_id, "at": scope.action_type.value, "sk": scope.scope_key}


def _row_to_record(row) -> EligibilityRecord:
    user_id, action_type, scope_key, state, tx_hash, payload, completed_at = row
    return EligibilityRecord(
        user_id=str(user_id),
        scope=ActionScope(ActionType(action_type), str(scope_key)),
        state=EligibilityState(state),
        proof_tx_hash=tx_hash,
        completed_at=completed_at,
        result_payload=json.loads(payload) if payload else None,
    )


_SELECT_RECORD = """
    SELECT user_id, action_type, scope_key, state, proof_tx_hash, result_payload, completed_at
    FROM eligibility
"""


def _ensure_record(db: Session, user_id: str, scope: ActionScope) -> None:
    db.execute(
        text(
            """
            INSERT INTO eligibility (user_id, action_type, scope_key, state, created_at)
            VALUES (:uid, :at, :sk, 'eligible', :now)
            ON CONFLICT DO NOTHING
            """
        ),
        {**_scope_params(user_id, scope), "now": utc_now()},
    )


# -------------------------------------------------------------------
# Eligibility records
# -------------------------------------------------------------------

def get_record(db: Session, *, user_id: str, scope: ActionScope) -> Optional[EligibilityRecord]:
    row = db.execute(
        text(_SELECT_RECORD + " WHERE user_id = :uid AND action_type = :at AND scope_key = :sk"),
        _scope_params(user_id, scope),
    ).fetchone()
    return _row_to_record(row) if row else None


def check_eligibility(db: Session, *, user_id: str, scope: ActionScope) -> EligibilityRecord:
    """
    Returns the record for (user_id, scope), creating an Eligible one on
    first sight. Commits so no transaction stays open afterwards.
    """
    _ensure_record(db, user_id, scope)
    db.commit()

    record = get_record(db, user_id=user_id, scope=scope)
    if record is None:
        raise RuntimeError("eligibility record missing after insert")
    return record


def try_complete(
    db: Session,
    *,
    user_id: str,
    scope: ActionScope,
    proof_tx_hash: str,
    result_payload: Dict[str, Any],
    on_complete: Optional[Callable[[Session, EligibilityRecord], None]] = None,
) -> CompletionResult:
    """
    Atomic compare-and-set Eligible -> Completed.

      - Completed          this call made the transition
      - AlreadyCompleted   record was already Completed; original result returned
      - Conflict           proof_tx_hash is attached to another record

    The row is written before anything is read so that on SQLite the
    transaction takes the write lock up front.

    `on_complete` runs inside the same transaction, only when this call made
    the transition. If it raises, the transition is rolled back with it and
    the exception propagates.
    """
    tx_hash = normalize_tx_hash(proof_tx_hash)
    params = {
        **_scope_params(user_id, scope),
        "h": tx_hash,
        "payload": json.dumps(result_payload, sort_keys=True),
        "now": utc_now(),
    }

    try:
        _ensure_record(db, user_id, scope)
        res = db.execute(
            text(
                """
                UPDATE eligibility
                SET state = 'completed',
                    proof_tx_hash = :h,
                    result_payload = :payload,
                    completed_at = :now
                WHERE user_id = :uid
                  AND action_type = :at
                  AND scope_key = :sk
                  AND state <> 'completed'
                """
            ),
            params,
        )
    except IntegrityError:
        db.rollback()
        owner = find_proof_owner(db, tx_hash)
        logger.warning(
            "proof %s rejected for user=%s scope=%s: already attached to %s",
            tx_hash, user_id, scope, owner,
        )
        return CompletionResult(
            CompletionStatus.CONFLICT,
            reason="transaction already used for another action",
        )

    transitioned = res.rowcount == 1
    try:
        if transitioned and on_complete is not None:
            on_complete(db, get_record(db, user_id=user_id, scope=scope))
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("side effect failed for user=%s scope=%s; completion rolled back", user_id, scope)
        raise

    record = get_record(db, user_id=user_id, scope=scope)
    if transitioned:
        logger.info("completed %s/%s for user=%s with %s", scope.action_type.value, scope.scope_key, user_id, tx_hash)
        return CompletionResult(CompletionStatus.COMPLETED, record=record)

    logger.info("replay for user=%s scope=%s", user_id, scope)
    return CompletionResult(CompletionStatus.ALREADY_COMPLETED, record=record)


def find_proof_owner(db: Session, tx_hash: str) -> Optional[Tuple[str, ActionScope]]:
    row = db.execute(
        text("SELECT user_id, action_type, scope_key FROM eligibility WHERE proof_tx_hash = :h"),
        {"h": normalize_tx_hash(tx_hash)},
    ).fetchone()
    if not row:
        return None
    return str(row[0]), ActionScope(ActionType(row[1]), str(row[2]))


def completed_records(db: Session, *, action_type: ActionType, scope_key: str) -> List[EligibilityRecord]:
    rows = db.execute(
        text(
            _SELECT_RECORD
            + " WHERE action_type = :at AND scope_key = :sk AND state = 'completed' ORDER BY completed_at"
        ),
        {"at": action_type.value, "sk": scope_key},
    ).fetchall()
    return [_row_to_record(r) for r in rows]


# -------------------------------------------------------------------
# Blocked users
# -------------------------------------------------------------------

def is_blocked(db: Session, user_id: str) -> bool:
    row = db.execute(
        text("SELECT 1 FROM blocked_user WHERE user_id = :uid"),
        {"uid": user_id},
    ).fetchone()
    return row is not None


def block_user(db: Session, *, user_id: str, reason: Optional[str] = None) -> bool:
    res = db.execute(
        text(
            """
            INSERT INTO blocked_user (user_id, reason, blocked_at)
            VALUES (:uid, :reason, :now)
            ON CONFLICT DO NOTHING
            """
        ),
        {"uid": user_id, "reason": reason, "now": utc_now()},
    )
    db.commit()
    return res.rowcount == 1


def unblock_user(db: Session, *, user_id: str) -> bool:
    res = db.execute(text("DELETE FROM blocked_user WHERE user_id = :uid"), {"uid": user_id})
    db.commit()
    return res.rowcount == 1
