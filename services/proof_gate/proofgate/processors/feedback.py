from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from proofgate.config import FEEDBACK_MAX_LENGTH, FEEDBACK_PAYLOAD_TAG, FEEDBACK_SCOPE
from proofgate.hexutil import message_digest
from proofgate.matchers import PayloadMatcher, starts_with
from proofgate.outcomes import ActionType, EligibilityRecord, VerificationResult
from proofgate.processors.base import ActionProcessor
from proofgate.schemas import FeedbackSubmitRequest
from proofgate.store import utc_now

logger = logging.getLogger(__name__)

FEEDBACK_STATUSES = ("unread", "acknowledged", "flagged", "archived")


class FeedbackProcessor(ActionProcessor):
    """
    One free-text message per user, kept for manual review.
    """

    action_type = ActionType.FEEDBACK

    def __init__(
        self,
        *,
        max_length: int = FEEDBACK_MAX_LENGTH,
        scope_key: str = FEEDBACK_SCOPE,
        payload_tag: str = FEEDBACK_PAYLOAD_TAG,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.max_length = max_length
        self.scope_key = scope_key
        self.payload_tag = payload_tag

    def default_scope(self, db: Session) -> Optional[str]:
        return self.scope_key

    def resolve_scope(self, db: Session, scope: Optional[str]) -> Optional[str]:
        # single allowance; a client-sent scope is ignored
        return self.scope_key

    def validate(self, request: FeedbackSubmitRequest) -> Optional[str]:
        message = (request.message or "").strip()
        if not message:
            return "message cannot be empty"
        if len(message) > self.max_length:
            return f"message too long (max {self.max_length} characters)"
        if not request.wallet_address:
            return "walletAddress is required"
        return None

    def payload_matcher(self, request: FeedbackSubmitRequest) -> PayloadMatcher:
        return starts_with(self.payload_tag)

    def build_result(
        self, db: Session, scope_key: str, request: FeedbackSubmitRequest, verification: VerificationResult
    ) -> Dict[str, Any]:
        message = request.message.strip()
        millis = int(self.clock() * 1000)
        return {
            "feedback_id": f"{millis}_{request.user_id.strip()}",
            "message_length": len(message),
            "message_digest": message_digest(message),
        }

    def record_side_effect(self, db: Session, record: EligibilityRecord, request: FeedbackSubmitRequest) -> None:
        payload = record.result_payload
        db.execute(
            text(
                """
                INSERT INTO feedback
                  (feedback_id, user_id, wallet_address, message, proof_tx_hash, status, created_at)
                VALUES
                  (:fid, :uid, :wallet, :msg, :h, 'unread', :now)
                ON CONFLICT DO NOTHING
                """
            ),
            {
                "fid": payload["feedback_id"],
                "uid": record.user_id,
                "wallet": request.wallet_address,
                "msg": request.message.strip(),
                "h": record.proof_tx_hash,
                "now": record.completed_at or utc_now(),
            },
        )
        logger.info("stored feedback %s (%d chars)", payload["feedback_id"], payload["message_length"])

    def status_context(self, db: Session, scope_key: str, record: EligibilityRecord) -> Dict[str, Any]:
        return {"maxLength": self.max_length}

    # -----------------------------------------------------------------
    # Review
    # -----------------------------------------------------------------

    def list_feedback(self, db: Session, *, status: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        sql = """
            SELECT feedback_id, user_id, wallet_address, message, proof_tx_hash, status, created_at
            FROM feedback
        """
        params: Dict[str, Any] = {"limit": limit}
        if status:
            sql += " WHERE status = :status"
            params["status"] = status
        sql += " ORDER BY created_at DESC LIMIT :limit"

        keys = ("feedback_id", "user_id", "wallet_address", "message", "tx_hash", "status", "created_at")
        return [dict(zip(keys, row)) for row in db.execute(text(sql), params).fetchall()]

    def set_feedback_status(self, db: Session, *, feedback_id: str, status: str) -> bool:
        if status not in FEEDBACK_STATUSES:
            raise ValueError(f"unknown feedback status {status!r}")
        res = db.execute(
            text("UPDATE feedback SET status = :status WHERE feedback_id = :fid"),
            {"status": status, "fid": feedback_id},
        )
        db.commit()
        return res.rowcount == 1
