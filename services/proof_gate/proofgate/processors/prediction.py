from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.orm import Session

from proofgate.config import PREDICTION_PAYLOAD_TAG
from proofgate.matchers import PayloadMatcher, names_token
from proofgate.outcomes import ActionType, EligibilityRecord, ErrorCode, VerificationResult
from proofgate.processors.base import ActionProcessor, DomainError
from proofgate.schemas import PredictionSubmitRequest
from proofgate.store import completed_records

logger = logging.getLogger(__name__)


def percentages(counts: Dict[str, int]) -> Dict[str, float]:
    """
    Share of each candidate in the round, in percent. An empty round is 0%
    for everyone.
    """
    total = sum(counts.values())
    if total == 0:
        return {cid: 0.0 for cid in counts}
    return {cid: round(100.0 * n / total, 2) for cid, n in counts.items()}


class PredictionProcessor(ActionProcessor):
    """
    One pick per user per round. Rounds are UTC days unless the caller
    names one explicitly; only the current round accepts picks.
    """

    action_type = ActionType.PREDICTION

    def __init__(self, *, payload_tag: str = PREDICTION_PAYLOAD_TAG, **kwargs):
        super().__init__(**kwargs)
        self.payload_tag = payload_tag

    def current_round(self) -> str:
        return self.now().date().isoformat()

    # -----------------------------------------------------------------
    # Candidates and tally
    # -----------------------------------------------------------------

    def register_candidates(self, db: Session, *, round_id: str, candidates: Iterable[Tuple[str, str]]) -> int:
        n = 0
        for candidate_id, name in candidates:
            db.execute(
                text(
                    """
                    INSERT INTO prediction_candidate (round_id, candidate_id, name)
                    VALUES (:r, :c, :name)
                    ON CONFLICT (round_id, candidate_id) DO UPDATE SET name = excluded.name
                    """
                ),
                {"r": round_id, "c": candidate_id, "name": name},
            )
            n += 1
        db.commit()
        logger.info("registered %d candidates for round %s", n, round_id)
        return n

    def candidates(self, db: Session, round_id: str) -> Dict[str, str]:
        rows = db.execute(
            text("SELECT candidate_id, name FROM prediction_candidate WHERE round_id = :r ORDER BY candidate_id"),
            {"r": round_id},
        ).fetchall()
        return {str(cid): str(name) for cid, name in rows}

    def tally(self, db: Session, round_id: str) -> Dict[str, int]:
        counts = {cid: 0 for cid in self.candidates(db, round_id)}
        rows = db.execute(
            text("SELECT candidate_id, count FROM prediction_tally WHERE round_id = :r"),
            {"r": round_id},
        ).fetchall()
        for cid, n in rows:
            counts[str(cid)] = int(n)
        return counts

    def _increment(self, db: Session, round_id: str, candidate_id: str) -> None:
        db.execute(
            text(
                """
                INSERT INTO prediction_tally (round_id, candidate_id, count)
                VALUES (:r, :c, 1)
                ON CONFLICT (round_id, candidate_id) DO UPDATE
                SET count = prediction_tally.count + 1
                """
            ),
            {"r": round_id, "c": candidate_id},
        )

    def rebuild_tally(self, db: Session, round_id: str) -> Dict[str, int]:
        """
        Recount the round from completed eligibility records.
        """
        records = completed_records(db, action_type=self.action_type, scope_key=round_id)
        db.execute(text("DELETE FROM prediction_tally WHERE round_id = :r"), {"r": round_id})
        for record in records:
            self._increment(db, round_id, record.result_payload["candidate_id"])
        db.commit()
        logger.info("rebuilt tally for round %s from %d records", round_id, len(records))
        return self.tally(db, round_id)

    # -----------------------------------------------------------------
    # Domain hooks
    # -----------------------------------------------------------------

    def default_scope(self, db: Session) -> Optional[str]:
        return self.current_round()

    def check_open(self, db: Session, scope_key: str) -> Optional[str]:
        if scope_key != self.current_round():
            return f"round {scope_key} is not open"
        if not self.candidates(db, scope_key):
            return f"round {scope_key} has no candidates"
        return None

    def validate(self, request: PredictionSubmitRequest) -> Optional[str]:
        if not (request.candidate_id or "").strip():
            return "candidateId is required"
        return None

    def validate_domain(self, db: Session, scope_key: str, request: PredictionSubmitRequest) -> Optional[DomainError]:
        if request.candidate_id.strip() not in self.candidates(db, scope_key):
            return ErrorCode.VALIDATION, f"unknown candidate {request.candidate_id!r}"
        return None

    def payload_matcher(self, request: PredictionSubmitRequest) -> PayloadMatcher:
        return names_token(self.payload_tag, request.candidate_id.strip())

    def build_result(
        self, db: Session, scope_key: str, request: PredictionSubmitRequest, verification: VerificationResult
    ) -> Dict[str, Any]:
        candidate_id = request.candidate_id.strip()
        return {
            "round_id": scope_key,
            "candidate_id": candidate_id,
            "candidate_name": self.candidates(db, scope_key)[candidate_id],
            "current_rank": request.current_rank,
        }

    def record_side_effect(self, db: Session, record: EligibilityRecord, request: PredictionSubmitRequest) -> None:
        payload = record.result_payload
        self._increment(db, payload["round_id"], payload["candidate_id"])

    def status_context(self, db: Session, scope_key: str, record: EligibilityRecord) -> Dict[str, Any]:
        counts = self.tally(db, scope_key)
        return {
            "candidates": self.candidates(db, scope_key),
            "counts": counts,
            "percentages": percentages(counts),
            "prediction": record.result_payload,
        }

    def round_summary(self, db: Session, round_id: str) -> List[Dict[str, Any]]:
        counts = self.tally(db, round_id)
        shares = percentages(counts)
        names = self.candidates(db, round_id)
        return [
            {"candidate_id": cid, "name": names.get(cid, cid), "count": n, "percentage": shares[cid]}
            for cid, n in sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
        ]
