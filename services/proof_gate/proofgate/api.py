import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security.api_key import APIKeyHeader
from sqlalchemy.orm import Session

import proofgate.config as config
from proofgate.chain.provider import get_chain_reader
from proofgate.db import get_db
from proofgate.disburse.provider import get_disburser
from proofgate.outcomes import ErrorCode, SubmitOutcome
from proofgate.processors.base import ActionProcessor
from proofgate.processors.claim import ClaimProcessor
from proofgate.processors.feedback import FeedbackProcessor
from proofgate.processors.prediction import PredictionProcessor
from proofgate.schemas import (
    BlockUserRequest,
    CampaignRequest,
    CandidatesRequest,
    ClaimSubmitRequest,
    FeedbackStatusRequest,
    FeedbackSubmitRequest,
    PredictionSubmitRequest,
)
from proofgate.store import block_user, unblock_user

logger = logging.getLogger(__name__)

app = FastAPI(title="Proof Gate")

ADMIN_KEY_HEADER = APIKeyHeader(name="X-Admin-Key", auto_error=False)


# ---------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------

@dataclass
class Processors:
    claim: ClaimProcessor
    feedback: FeedbackProcessor
    prediction: PredictionProcessor


_processors: Optional[Processors] = None


def get_processors() -> Processors:
    global _processors
    if _processors is not None:
        return _processors

    if not config.TREASURY_ADDRESS:
        raise RuntimeError("TREASURY_ADDRESS is not set")

    common = {
        "chain": get_chain_reader(),
        "treasury_address": config.TREASURY_ADDRESS,
        "max_age_secs": config.PROOF_MAX_AGE_SECS,
    }
    _processors = Processors(
        claim=ClaimProcessor(disburser=get_disburser(), **common),
        feedback=FeedbackProcessor(**common),
        prediction=PredictionProcessor(**common),
    )
    return _processors


def require_admin(key: Optional[str] = Security(ADMIN_KEY_HEADER)) -> None:
    if not config.ADMIN_API_KEY:
        raise HTTPException(status_code=403, detail="admin API disabled")
    if not key or not secrets.compare_digest(key, config.ADMIN_API_KEY):
        raise HTTPException(status_code=403, detail="invalid admin key")


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

_STATUS_CODES = {
    ErrorCode.VALIDATION: 400,
    ErrorCode.INVALID_PROOF: 400,
    ErrorCode.SCOPE_CLOSED: 400,
    ErrorCode.BLOCKED: 403,
    ErrorCode.CONFLICT: 409,
    ErrorCode.PENDING: 202,
    ErrorCode.RPC_UNAVAILABLE: 202,
    ErrorCode.INTERNAL: 500,
}


def http_status(outcome: SubmitOutcome) -> int:
    if outcome.success:
        return 200
    return _STATUS_CODES[outcome.error_code]


def run_submit(processor: ActionProcessor, db: Session, req) -> JSONResponse:
    try:
        outcome = processor.submit(db, req)
    except Exception:
        logger.exception("%s submit failed", processor.action_type.value)
        outcome = SubmitOutcome.error(ErrorCode.INTERNAL, "internal error")
    return JSONResponse(status_code=http_status(outcome), content=outcome.to_dict())


def run_status(processor: ActionProcessor, db: Session, user_id: str, scope: Optional[str]):
    try:
        return processor.status(db, user_id=user_id.strip(), scope=scope).to_dict()
    except Exception:
        logger.exception("%s status failed", processor.action_type.value)
        body = {"error": {"code": ErrorCode.INTERNAL.value, "message": "internal error"}}
        return JSONResponse(status_code=500, content=body)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    detail = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
    )
    body = SubmitOutcome.error(ErrorCode.VALIDATION, detail).to_dict()
    return JSONResponse(status_code=400, content=body)


# ---------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------

@app.get("/health")
def health():
    return {"ok": True}


@app.get("/payment/treasury-address")
def treasury_address():
    if not config.TREASURY_ADDRESS:
        return JSONResponse(status_code=500, content={"error": "Treasury address not configured"})
    return {"treasuryAddress": config.TREASURY_ADDRESS}


# --- claim ---

@app.get("/claim/status")
def claim_status(
    user_id: str = Query(..., alias="userId", min_length=1),
    scope: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    procs: Processors = Depends(get_processors),
):
    return run_status(procs.claim, db, user_id, scope)


@app.post("/claim/submit")
def claim_submit(
    req: ClaimSubmitRequest,
    db: Session = Depends(get_db),
    procs: Processors = Depends(get_processors),
):
    return run_submit(procs.claim, db, req)


# --- feedback ---

@app.get("/feedback/status")
def feedback_status(
    user_id: str = Query(..., alias="userId", min_length=1),
    db: Session = Depends(get_db),
    procs: Processors = Depends(get_processors),
):
    return run_status(procs.feedback, db, user_id, None)


@app.post("/feedback/submit")
def feedback_submit(
    req: FeedbackSubmitRequest,
    db: Session = Depends(get_db),
    procs: Processors = Depends(get_processors),
):
    return run_submit(procs.feedback, db, req)


# --- prediction ---

@app.get("/prediction/status")
def prediction_status(
    user_id: str = Query(..., alias="userId", min_length=1),
    scope: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    procs: Processors = Depends(get_processors),
):
    return run_status(procs.prediction, db, user_id, scope)


@app.post("/prediction/submit")
def prediction_submit(
    req: PredictionSubmitRequest,
    db: Session = Depends(get_db),
    procs: Processors = Depends(get_processors),
):
    return run_submit(procs.prediction, db, req)


@app.get("/prediction/rounds/{round_id}")
def prediction_round(
    round_id: str,
    db: Session = Depends(get_db),
    procs: Processors = Depends(get_processors),
):
    return {"roundId": round_id, "results": procs.prediction.round_summary(db, round_id)}


# ---------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------

@app.put("/claim/campaigns/{project_id}", dependencies=[Depends(require_admin)])
def feature_project(
    project_id: str,
    req: CampaignRequest,
    db: Session = Depends(get_db),
    procs: Processors = Depends(get_processors),
):
    try:
        return procs.claim.feature_project(
            db,
            project_id=project_id,
            name=req.name,
            token_amount=req.token_amount,
            featured_at=req.featured_at,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@app.post("/claim/payouts/retry", dependencies=[Depends(require_admin)])
def retry_payouts(db: Session = Depends(get_db), procs: Processors = Depends(get_processors)):
    return {"results": procs.claim.retry_failed_payouts(db)}


@app.get("/feedback", dependencies=[Depends(require_admin)])
def list_feedback(
    status: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    procs: Processors = Depends(get_processors),
):
    return {"feedback": procs.feedback.list_feedback(db, status=status, limit=limit)}


@app.post("/feedback/{feedback_id}/status", dependencies=[Depends(require_admin)])
def set_feedback_status(
    feedback_id: str,
    req: FeedbackStatusRequest,
    db: Session = Depends(get_db),
    procs: Processors = Depends(get_processors),
):
    try:
        updated = procs.feedback.set_feedback_status(db, feedback_id=feedback_id, status=req.status)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if not updated:
        raise HTTPException(status_code=404, detail="Feedback not found")
    return {"success": True, "feedbackId": feedback_id, "status": req.status}


@app.put("/prediction/rounds/{round_id}/candidates", dependencies=[Depends(require_admin)])
def register_candidates(
    round_id: str,
    req: CandidatesRequest,
    db: Session = Depends(get_db),
    procs: Processors = Depends(get_processors),
):
    n = procs.prediction.register_candidates(
        db,
        round_id=round_id,
        candidates=[(c.candidate_id, c.name) for c in req.candidates],
    )
    return {"roundId": round_id, "registered": n}


@app.post("/prediction/rounds/{round_id}/rebuild", dependencies=[Depends(require_admin)])
def rebuild_tally(
    round_id: str,
    db: Session = Depends(get_db),
    procs: Processors = Depends(get_processors),
):
    return {"roundId": round_id, "counts": procs.prediction.rebuild_tally(db, round_id)}


@app.post("/admin/blocked-users", dependencies=[Depends(require_admin)])
def add_blocked_user(req: BlockUserRequest, db: Session = Depends(get_db)):
    created = block_user(db, user_id=req.user_id.strip(), reason=req.reason)
    return {"userId": req.user_id, "blocked": True, "created": created}


@app.delete("/admin/blocked-users/{user_id}", dependencies=[Depends(require_admin)])
def remove_blocked_user(user_id: str, db: Session = Depends(get_db)):
    if not unblock_user(db, user_id=user_id):
        raise HTTPException(status_code=404, detail="User not blocked")
    return {"userId": user_id, "blocked": False}
