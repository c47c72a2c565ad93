"""
Client-side driver for a proof-gated action:

    Idle -> AwaitingSignature -> AwaitingConfirmation -> SubmittingProof -> Done

Each event has its own transition method; `run()` wires them to a Wallet
and a ProofGateClient. Done is terminal; a new attempt needs a new flow.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from proofgate.client.wallet import BroadcastError, Confirmation, UserRejected, Wallet
from proofgate.outcomes import ActionType, ErrorCode, SubmitOutcome

logger = logging.getLogger(__name__)


class FlowState(str, Enum):
    IDLE = "idle"
    AWAITING_SIGNATURE = "awaiting_signature"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    SUBMITTING_PROOF = "submitting_proof"
    DONE = "done"


class FlowError(str, Enum):
    PRECONDITION_FAILED = "precondition_failed"
    CANCELLED = "cancelled"
    BROADCAST_FAILED = "broadcast_failed"
    TRANSACTION_FAILED = "transaction_failed"
    CONFIRMATION_TIMEOUT = "confirmation_timeout"
    INVALID_PROOF = "invalid_proof"
    CONFLICT = "conflict"
    REJECTED = "rejected"
    RETRIES_EXHAUSTED = "retries_exhausted"
    BUSY = "busy"


_SERVER_ERRORS = {
    ErrorCode.INVALID_PROOF: FlowError.INVALID_PROOF,
    ErrorCode.CONFLICT: FlowError.CONFLICT,
}


class InvalidTransition(RuntimeError):
    pass


@dataclass
class FlowResult:
    success: bool
    error: Optional[FlowError] = None
    message: Optional[str] = None
    tx_hash: Optional[str] = None
    result: Dict[str, Any] = field(default_factory=dict)
    already_completed: bool = False


# (user_id, action, scope) currently submitting proof in this process
_submitting = set()
_submitting_lock = threading.Lock()


def _acquire(key: Tuple[str, str, str]) -> bool:
    with _submitting_lock:
        if key in _submitting:
            return False
        _submitting.add(key)
        return True


def _release(key: Tuple[str, str, str]) -> None:
    with _submitting_lock:
        _submitting.discard(key)


class ActionFlow:
    def __init__(
        self,
        *,
        action: ActionType,
        user_id: str,
        wallet: Wallet,
        client,
        treasury_address: str,
        payload: bytes,
        fields: Optional[Dict[str, Any]] = None,
        scope: Optional[str] = None,
        in_host: bool = True,
        validate: Optional[Callable[[], Optional[str]]] = None,
        confirmation_timeout: float = 120.0,
        confirmation_interval: float = 2.0,
        max_submit_attempts: int = 6,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.action = action
        self.user_id = user_id
        self.wallet = wallet
        self.client = client
        self.treasury_address = treasury_address
        self.payload = payload
        self.fields = fields or {}
        self.scope = scope
        self.in_host = in_host
        self.validate = validate
        self.confirmation_timeout = confirmation_timeout
        self.confirmation_interval = confirmation_interval
        self.max_submit_attempts = max_submit_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.sleep = sleep
        self.clock = clock

        self.state = FlowState.IDLE
        self.reason: Optional[str] = None
        self.tx_hash: Optional[str] = None
        self.outcome: Optional[FlowResult] = None
        self._guard_key = (user_id, action.value, scope or "")
        self._guarded = False

    # -----------------------------------------------------------------
    # Transitions
    # -----------------------------------------------------------------

    def _expect(self, state: FlowState) -> None:
        if self.state != state:
            raise InvalidTransition(f"expected {state.value}, flow is {self.state.value}")

    def _finish(self, result: FlowResult) -> FlowResult:
        self.state = FlowState.DONE
        self.outcome = result
        if self._guarded:
            _release(self._guard_key)
            self._guarded = False
        return result

    def _fail(self, error: FlowError, message: str) -> FlowResult:
        logger.info("%s flow for user=%s ended: %s (%s)", self.action.value, self.user_id, error.value, message)
        return self._finish(FlowResult(False, error=error, message=message, tx_hash=self.tx_hash))

    def start(self) -> bool:
        """
        User asked to act. On a failed precondition the flow stays Idle with
        `reason` set and nothing is sent anywhere.
        """
        self._expect(FlowState.IDLE)
        if not self.in_host:
            self.reason = "open inside the host app to continue"
        elif not self.wallet.address:
            self.reason = "connect a wallet to continue"
        elif not self.treasury_address:
            self.reason = "destination address unavailable"
        else:
            self.reason = self.validate() if self.validate else None

        if self.reason:
            return False
        self.state = FlowState.AWAITING_SIGNATURE
        return True

    def on_signature(
        self, tx_hash: Optional[str] = None, *, rejected: bool = False, error: Optional[str] = None
    ) -> None:
        self._expect(FlowState.AWAITING_SIGNATURE)
        if tx_hash:
            self.tx_hash = tx_hash
            self.state = FlowState.AWAITING_CONFIRMATION
        elif rejected:
            self._fail(FlowError.CANCELLED, "cancelled")
        else:
            self._fail(FlowError.BROADCAST_FAILED, error or "transaction failed to send")

    def on_confirmation(self, status: Confirmation) -> None:
        self._expect(FlowState.AWAITING_CONFIRMATION)
        if status == Confirmation.PENDING:
            return
        if status == Confirmation.FAILED:
            self._fail(FlowError.TRANSACTION_FAILED, "transaction failed on-chain")
            return

        if not _acquire(self._guard_key):
            self._fail(FlowError.BUSY, "another submission for this action is in progress")
            return
        self._guarded = True
        self.state = FlowState.SUBMITTING_PROOF

    def on_proof_response(self, outcome: SubmitOutcome) -> bool:
        """
        Returns True if the same proof should be submitted again after a backoff.
        """
        self._expect(FlowState.SUBMITTING_PROOF)
        if outcome.success:
            self._finish(
                FlowResult(
                    True,
                    tx_hash=self.tx_hash,
                    result=outcome.result or {},
                    already_completed=outcome.already_completed,
                )
            )
            return False
        if outcome.retry:
            return True
        self._fail(_SERVER_ERRORS.get(outcome.error_code, FlowError.REJECTED), outcome.message or "rejected")
        return False

    def cancel(self, reason: str = "abandoned") -> FlowResult:
        if self.state == FlowState.DONE:
            return self.outcome
        return self._fail(FlowError.CANCELLED, reason)

    # -----------------------------------------------------------------
    # Driver
    # -----------------------------------------------------------------

    def submission_body(self) -> Dict[str, Any]:
        body = {
            "userId": self.user_id,
            "walletAddress": self.wallet.address,
            "txHash": self.tx_hash,
            **self.fields,
        }
        if self.scope:
            body["scope"] = self.scope
        return body

    def run(self) -> FlowResult:
        if not self.start():
            return FlowResult(False, error=FlowError.PRECONDITION_FAILED, message=self.reason)

        try:
            tx_hash = self.wallet.broadcast(self.treasury_address, self.payload, value=0)
        except UserRejected:
            self.on_signature(rejected=True)
            return self.outcome
        except BroadcastError as e:
            self.on_signature(error=str(e))
            return self.outcome
        self.on_signature(tx_hash)

        deadline = self.clock() + self.confirmation_timeout
        while self.state == FlowState.AWAITING_CONFIRMATION:
            self.on_confirmation(self.wallet.wait_for_confirmation(self.tx_hash))
            if self.state != FlowState.AWAITING_CONFIRMATION:
                break
            if self.clock() >= deadline:
                return self._fail(FlowError.CONFIRMATION_TIMEOUT, "transaction not confirmed in time")
            self.sleep(self.confirmation_interval)

        if self.state == FlowState.DONE:
            return self.outcome

        try:
            for attempt in range(self.max_submit_attempts):
                outcome = self.client.submit(self.action, self.submission_body())
                if not self.on_proof_response(outcome):
                    return self.outcome
                delay = min(self.backoff_max, self.backoff_base * (2 ** attempt))
                logger.debug("retrying %s proof in %.1fs (%s)", self.action.value, delay, outcome.error_code)
                self.sleep(delay)
        except BaseException:
            # leave the flow Done so the submission guard is released
            self.cancel("aborted")
            raise

        return self._fail(FlowError.RETRIES_EXHAUSTED, "server kept asking to retry")
