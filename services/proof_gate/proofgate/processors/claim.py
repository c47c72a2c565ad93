from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from proofgate.config import CLAIM_PAYLOAD_TAG, CLAIM_TOKEN_AMOUNT, CLAIM_WINDOW_HOURS
from proofgate.disburse.base import Disburser, DisbursementError
from proofgate.matchers import PayloadMatcher, starts_with
from proofgate.outcomes import ActionType, EligibilityRecord, VerificationResult
from proofgate.processors.base import ActionProcessor
from proofgate.schemas import SubmitRequest
from proofgate.store import utc_now

logger = logging.getLogger(__name__)


class ClaimProcessor(ActionProcessor):
    """
    One token claim per user per featured project, whatever wallet they use.
    The claim scope is the project id; tokens go to the wallet that signed
    the proof transaction.
    """

    action_type = ActionType.CLAIM

    def __init__(
        self,
        *,
        disburser: Disburser,
        token_amount: str = CLAIM_TOKEN_AMOUNT,
        window_hours: int = CLAIM_WINDOW_HOURS,
        payload_tag: str = CLAIM_PAYLOAD_TAG,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.disburser = disburser
        self.token_amount = token_amount
        self.window = timedelta(hours=window_hours)
        self.payload_tag = payload_tag

    # -----------------------------------------------------------------
    # Campaigns
    # -----------------------------------------------------------------

    def feature_project(
        self,
        db: Session,
        *,
        project_id: str,
        name: str,
        token_amount: Optional[str] = None,
        featured_at: Optional[str] = None,
    ) -> Dict[str, Any]:
        at = datetime.fromisoformat(featured_at) if featured_at else self.now()
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        params = {
            "pid": project_id,
            "name": name,
            "amount": token_amount or self.token_amount,
            "at": at.astimezone(timezone.utc).isoformat(),
        }
        db.execute(
            text(
                """
                INSERT INTO claim_campaign (project_id, name, token_amount, featured_at)
                VALUES (:pid, :name, :amount, :at)
                ON CONFLICT (project_id) DO UPDATE
                SET name = excluded.name,
                    token_amount = excluded.token_amount,
                    featured_at = excluded.featured_at
                """
            ),
            params,
        )
        db.commit()
        logger.info("featured project %s (%s)", project_id, name)
        return self.get_campaign(db, project_id)

    def get_campaign(self, db: Session, project_id: str) -> Optional[Dict[str, Any]]:
        row = db.execute(
            text(
                """
                SELECT project_id, name, token_amount, featured_at
                FROM claim_campaign
                WHERE project_id = :pid
                """
            ),
            {"pid": project_id},
        ).fetchone()
        if not row:
            return None

        featured_at = datetime.fromisoformat(row[3])
        expires_at = featured_at + self.window
        return {
            "project_id": str(row[0]),
            "name": str(row[1]),
            "token_amount": str(row[2]),
            "featured_at": featured_at.isoformat(),
            "expires_at": expires_at.isoformat(),
            "expired": self.now() > expires_at,
        }

    # -----------------------------------------------------------------
    # Domain hooks
    # -----------------------------------------------------------------

    def default_scope(self, db: Session) -> Optional[str]:
        row = db.execute(
            text("SELECT project_id FROM claim_campaign ORDER BY featured_at DESC LIMIT 1")
        ).fetchone()
        return str(row[0]) if row else None

    def check_open(self, db: Session, scope_key: str) -> Optional[str]:
        campaign = self.get_campaign(db, scope_key)
        if campaign is None:
            return f"project {scope_key} is not featured"
        if campaign["expired"]:
            return "claim window has closed"
        return None

    def validate(self, request: SubmitRequest) -> Optional[str]:
        if not request.wallet_address:
            return "walletAddress is required"
        return None

    def payload_matcher(self, request: SubmitRequest) -> PayloadMatcher:
        return starts_with(self.payload_tag)

    def build_result(
        self, db: Session, scope_key: str, request: SubmitRequest, verification: VerificationResult
    ) -> Dict[str, Any]:
        campaign = self.get_campaign(db, scope_key)
        return {
            "project_id": scope_key,
            "project_name": campaign["name"],
            "token_amount": campaign["token_amount"],
            "wallet_address": verification.sender,
        }

    def record_side_effect(self, db: Session, record: EligibilityRecord, request: SubmitRequest) -> None:
        payload = record.result_payload
        db.execute(
            text(
                """
                INSERT INTO claim_payout
                  (user_id, project_id, wallet_address, token_amount, status, updated_at)
                VALUES
                  (:uid, :pid, :wallet, :amount, 'pending', :now)
                ON CONFLICT DO NOTHING
                """
            ),
            {
                "uid": record.user_id,
                "pid": payload["project_id"],
                "wallet": payload["wallet_address"],
                "amount": payload["token_amount"],
                "now": utc_now(),
            },
        )

    def after_complete(self, db: Session, record: EligibilityRecord, request: SubmitRequest) -> None:
        payload = record.result_payload
        self._send(
            db, record.user_id, payload["project_id"], payload["wallet_address"], payload["token_amount"],
            from_status="pending",
        )

    def status_context(self, db: Session, scope_key: str, record: EligibilityRecord) -> Dict[str, Any]:
        campaign = self.get_campaign(db, scope_key) or {}
        context: Dict[str, Any] = {
            "projectName": campaign.get("name"),
            "tokenAmount": campaign.get("token_amount", self.token_amount),
            "expiresAt": campaign.get("expires_at"),
            "expired": campaign.get("expired", True),
        }
        payout = self.get_payout(db, user_id=record.user_id, project_id=scope_key)
        if payout:
            context["payoutStatus"] = payout["status"]
            context["transferTxHash"] = payout["transfer_tx_hash"]
        return context

    # -----------------------------------------------------------------
    # Payouts
    # -----------------------------------------------------------------

    def _send(
        self, db: Session, user_id: str, project_id: str, wallet: str, amount: str, *, from_status: str
    ) -> Optional[str]:
        """
        Move the payout from_status -> sending, then transfer. Returns None if
        another caller took the row first. A row left in `sending` means the
        process died mid-transfer and needs manual reconciliation.
        """
        res = db.execute(
            text(
                """
                UPDATE claim_payout
                SET status = 'sending', updated_at = :now
                WHERE user_id = :uid AND project_id = :pid AND status = :from_status
                """
            ),
            {"now": utc_now(), "uid": user_id, "pid": project_id, "from_status": from_status},
        )
        db.commit()
        if res.rowcount != 1:
            return None

        try:
            transfer_hash = self.disburser.disburse(wallet, amount)
        except DisbursementError as e:
            logger.error("payout failed for user=%s project=%s: %s", user_id, project_id, e)
            self._set_payout(db, user_id, project_id, status="failed", error=str(e))
            return "failed"

        self._set_payout(db, user_id, project_id, status="sent", transfer_hash=transfer_hash)
        logger.info("paid %s to user=%s project=%s tx=%s", amount, user_id, project_id, transfer_hash)
        return "sent"

    def _set_payout(self, db: Session, user_id: str, project_id: str, *, status: str, transfer_hash=None, error=None):
        db.execute(
            text(
                """
                UPDATE claim_payout
                SET status = :status,
                    transfer_tx_hash = :h,
                    last_error = :err,
                    updated_at = :now
                WHERE user_id = :uid AND project_id = :pid
                """
            ),
            {"status": status, "h": transfer_hash, "err": error, "now": utc_now(), "uid": user_id, "pid": project_id},
        )
        db.commit()

    def get_payout(self, db: Session, *, user_id: str, project_id: str) -> Optional[Dict[str, Any]]:
        row = db.execute(
            text(
                """
                SELECT user_id, project_id, wallet_address, token_amount, status, transfer_tx_hash, last_error
                FROM claim_payout
                WHERE user_id = :uid AND project_id = :pid
                """
            ),
            {"uid": user_id, "pid": project_id},
        ).fetchone()
        if not row:
            return None
        keys = ("user_id", "project_id", "wallet_address", "token_amount", "status", "transfer_tx_hash", "last_error")
        return dict(zip(keys, row))

    def retry_failed_payouts(self, db: Session) -> List[Dict[str, Any]]:
        """
        Send payouts that failed, or that were recorded but never attempted
        (process stopped between completion and transfer).
        """
        rows = db.execute(
            text(
                """
                SELECT user_id, project_id, wallet_address, token_amount, status
                FROM claim_payout
                WHERE status IN ('failed', 'pending')
                ORDER BY updated_at
                """
            )
        ).fetchall()

        results = []
        for user_id, project_id, wallet, amount, status in rows:
            outcome = self._send(db, user_id, project_id, wallet, amount, from_status=status)
            if outcome is None:
                continue
            results.append({"user_id": user_id, "project_id": project_id, "status": outcome})
        return results
