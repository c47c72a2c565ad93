from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from proofgate.chain.base import ChainReader, ChainReadError
from proofgate.config import PROOF_MAX_AGE_SECS
from proofgate.hexutil import is_valid_address, is_valid_tx_hash, normalize_tx_hash
from proofgate.matchers import PayloadMatcher
from proofgate.outcomes import (
    ActionScope,
    ActionType,
    CompletionStatus,
    EligibilityRecord,
    ErrorCode,
    StatusView,
    SubmitOutcome,
    VerificationResult,
    VerificationStatus,
)
from proofgate.schemas import SubmitRequest
from proofgate.store import check_eligibility, find_proof_owner, get_record, is_blocked, try_complete
from proofgate.verifier import verify

logger = logging.getLogger(__name__)

DomainError = Tuple[ErrorCode, str]


class ActionProcessor(ABC):
    """
    Shared proof-gated request sequence. Subclasses supply the domain rules:
    which scope a request targets, what payload counts as proof, what the
    stored result is and which side effect follows the first completion.
    """

    action_type: ActionType

    def __init__(
        self,
        *,
        chain: ChainReader,
        treasury_address: str,
        max_age_secs: int = PROOF_MAX_AGE_SECS,
        clock: Callable[[], float] = time.time,
    ):
        if not is_valid_address(treasury_address):
            raise RuntimeError("TREASURY_ADDRESS is not a valid address")
        self.chain = chain
        self.treasury_address = treasury_address
        self.max_age_secs = max_age_secs
        self.clock = clock

    def now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), timezone.utc)

    # -----------------------------------------------------------------
    # Domain hooks
    # -----------------------------------------------------------------

    @abstractmethod
    def default_scope(self, db: Session) -> Optional[str]:
        ...

    def check_open(self, db: Session, scope_key: str) -> Optional[str]:
        """Reason the scope is not accepting actions, or None."""
        return None

    def validate(self, request: SubmitRequest) -> Optional[str]:
        """Request-only checks; run before any database or chain access."""
        return None

    def validate_domain(self, db: Session, scope_key: str, request: SubmitRequest) -> Optional[DomainError]:
        return None

    @abstractmethod
    def payload_matcher(self, request: SubmitRequest) -> PayloadMatcher:
        ...

    @abstractmethod
    def build_result(
        self, db: Session, scope_key: str, request: SubmitRequest, verification: VerificationResult
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    def record_side_effect(self, db: Session, record: EligibilityRecord, request: SubmitRequest) -> None:
        """
        Durable part of the side effect. Runs inside the completing
        transaction, so it happens exactly when the record becomes Completed.
        Must not commit.
        """
        ...

    def after_complete(self, db: Session, record: EligibilityRecord, request: SubmitRequest) -> None:
        """External part of the side effect, once, after the commit."""
        return None

    def status_context(self, db: Session, scope_key: str, record: EligibilityRecord) -> Dict[str, Any]:
        return {}

    # -----------------------------------------------------------------
    # Protocol
    # -----------------------------------------------------------------

    def resolve_scope(self, db: Session, scope: Optional[str]) -> Optional[str]:
        if scope is not None and scope.strip():
            return scope.strip()
        return self.default_scope(db)

    def status(self, db: Session, *, user_id: str, scope: Optional[str] = None) -> StatusView:
        scope_key = self.resolve_scope(db, scope)
        if scope_key is None:
            return StatusView(False, False, {"reason": f"no open {self.action_type.value} scope"})

        record = check_eligibility(db, user_id=user_id, scope=ActionScope(self.action_type, scope_key))
        context = {"scope": scope_key, **self.status_context(db, scope_key, record)}
        if record.completed:
            context["result"] = record.result_payload
            context["completedAt"] = record.completed_at
            return StatusView(False, True, context)

        reason = "blocked" if is_blocked(db, user_id) else self.check_open(db, scope_key)
        if reason:
            context["reason"] = reason
        return StatusView(reason is None, False, context)

    def submit(self, db: Session, request: SubmitRequest) -> SubmitOutcome:
        user_id = (request.user_id or "").strip()
        if not user_id:
            return SubmitOutcome.error(ErrorCode.VALIDATION, "userId is required")
        if not is_valid_tx_hash(request.tx_hash):
            return SubmitOutcome.error(ErrorCode.VALIDATION, "malformed transaction hash")
        if request.wallet_address and not is_valid_address(request.wallet_address):
            return SubmitOutcome.error(ErrorCode.VALIDATION, "malformed wallet address")
        problem = self.validate(request)
        if problem:
            return SubmitOutcome.error(ErrorCode.VALIDATION, problem)

        if is_blocked(db, user_id):
            logger.warning("blocked user=%s attempted %s", user_id, self.action_type.value)
            return SubmitOutcome.error(ErrorCode.BLOCKED, "account is blocked")

        scope_key = self.resolve_scope(db, request.scope)
        if scope_key is None:
            return SubmitOutcome.error(ErrorCode.SCOPE_CLOSED, f"no open {self.action_type.value} scope")
        scope = ActionScope(self.action_type, scope_key)

        record = check_eligibility(db, user_id=user_id, scope=scope)
        if record.completed:
            return self._replay(record)

        reason = self.check_open(db, scope_key)
        if reason:
            return SubmitOutcome.error(ErrorCode.SCOPE_CLOSED, reason)
        domain_problem = self.validate_domain(db, scope_key, request)
        if domain_problem:
            return SubmitOutcome.error(*domain_problem)

        tx_hash = normalize_tx_hash(request.tx_hash)
        owner = find_proof_owner(db, tx_hash)
        if owner == (user_id, scope):
            # same proof already completed this record in a concurrent request
            return self._replay(get_record(db, user_id=user_id, scope=scope))
        if owner is not None:
            return SubmitOutcome.error(ErrorCode.CONFLICT, "transaction already used for another action")

        # No transaction is open here; the chain read may block.
        try:
            verification = verify(
                self.chain,
                tx_hash=tx_hash,
                expected_recipient=self.treasury_address,
                expected_sender=request.wallet_address,
                payload_matcher=self.payload_matcher(request),
                max_age_secs=self.max_age_secs,
                clock=self.clock,
            )
        except ChainReadError as e:
            logger.warning("chain read failed for %s: %s", tx_hash, e)
            return SubmitOutcome.error(ErrorCode.RPC_UNAVAILABLE, "chain temporarily unavailable, retry later")

        if verification.status == VerificationStatus.PENDING:
            return SubmitOutcome.error(ErrorCode.PENDING, verification.reason or "transaction pending")
        if verification.status == VerificationStatus.INVALID:
            logger.info("invalid proof %s for user=%s: %s", tx_hash, user_id, verification.reason)
            return SubmitOutcome.error(ErrorCode.INVALID_PROOF, verification.reason or "invalid proof")

        result = self.build_result(db, scope_key, request, verification)
        completion = try_complete(
            db,
            user_id=user_id,
            scope=scope,
            proof_tx_hash=tx_hash,
            result_payload=result,
            on_complete=lambda session, record: self.record_side_effect(session, record, request),
        )

        if completion.status == CompletionStatus.COMPLETED:
            self.after_complete(db, completion.record, request)
            return SubmitOutcome.ok(completion.record.result_payload)
        if completion.status == CompletionStatus.ALREADY_COMPLETED:
            return self._replay(completion.record)
        return SubmitOutcome.error(ErrorCode.CONFLICT, completion.reason or "transaction already used")

    def _replay(self, record: EligibilityRecord) -> SubmitOutcome:
        return SubmitOutcome.ok(record.result_payload, already_completed=True)
