from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class ActionType(str, Enum):
    CLAIM = "claim"
    FEEDBACK = "feedback"
    PREDICTION = "prediction"


@dataclass(frozen=True)
class ActionScope:
    action_type: ActionType
    scope_key: str


class EligibilityState(str, Enum):
    ELIGIBLE = "eligible"
    # Never persisted: the broadcast/confirmation window lives on the client.
    PENDING = "pending"
    COMPLETED = "completed"


@dataclass(frozen=True)
class EligibilityRecord:
    user_id: str
    scope: ActionScope
    state: EligibilityState
    proof_tx_hash: Optional[str] = None
    completed_at: Optional[str] = None
    result_payload: Optional[Dict[str, Any]] = None

    @property
    def completed(self) -> bool:
        return self.state == EligibilityState.COMPLETED


class VerificationStatus(str, Enum):
    CONFIRMED = "confirmed"
    PENDING = "pending"
    INVALID = "invalid"


@dataclass(frozen=True)
class VerificationResult:
    status: VerificationStatus
    sender: Optional[str] = None
    payload: bytes = b""
    reason: Optional[str] = None

    @classmethod
    def confirmed(cls, sender: str, payload: bytes) -> "VerificationResult":
        return cls(VerificationStatus.CONFIRMED, sender=sender, payload=payload)

    @classmethod
    def pending(cls, reason: str = "transaction not yet mined") -> "VerificationResult":
        return cls(VerificationStatus.PENDING, reason=reason)

    @classmethod
    def invalid(cls, reason: str) -> "VerificationResult":
        return cls(VerificationStatus.INVALID, reason=reason)


class CompletionStatus(str, Enum):
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class CompletionResult:
    status: CompletionStatus
    record: Optional[EligibilityRecord] = None
    reason: Optional[str] = None


class ErrorCode(str, Enum):
    VALIDATION = "validation_error"
    BLOCKED = "blocked"
    SCOPE_CLOSED = "scope_closed"
    INVALID_PROOF = "invalid_proof"
    CONFLICT = "conflict"
    PENDING = "pending"
    RPC_UNAVAILABLE = "rpc_unavailable"
    INTERNAL = "internal_error"
    # client-side only: the request never got a structured answer
    TRANSPORT = "transport_error"


# Errors the client should answer with a backoff and the same submission.
RETRYABLE_CODES = frozenset(
    {ErrorCode.PENDING, ErrorCode.RPC_UNAVAILABLE, ErrorCode.INTERNAL, ErrorCode.TRANSPORT}
)


@dataclass(frozen=True)
class SubmitOutcome:
    success: bool
    result: Optional[Dict[str, Any]] = None
    already_completed: bool = False
    error_code: Optional[ErrorCode] = None
    message: Optional[str] = None

    @property
    def retry(self) -> bool:
        return self.error_code in RETRYABLE_CODES

    @classmethod
    def ok(cls, result: Dict[str, Any], *, already_completed: bool = False) -> "SubmitOutcome":
        return cls(True, result=result, already_completed=already_completed)

    @classmethod
    def error(cls, code: ErrorCode, message: str) -> "SubmitOutcome":
        return cls(False, error_code=code, message=message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": self.success,
            "retry": self.retry,
            "already_completed": self.already_completed,
        }
        if self.success:
            body["result"] = self.result
        else:
            body["error"] = {"code": self.error_code.value, "message": self.message}
        return body


@dataclass
class StatusView:
    can_act: bool
    completed: bool
    domain_context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "canAct": self.can_act,
            "completed": self.completed,
            "domainContext": self.domain_context,
        }
