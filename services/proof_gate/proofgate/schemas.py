from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Body(BaseModel):
    # Clients send camelCase (userId, txHash); numeric fids arrive as ints.
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )


class SubmitRequest(_Body):
    user_id: str
    tx_hash: str
    wallet_address: Optional[str] = None
    # project id for claims, round id for predictions; feedback ignores it
    scope: Optional[str] = None


class ClaimSubmitRequest(SubmitRequest):
    pass


class FeedbackSubmitRequest(SubmitRequest):
    message: str = ""


class PredictionSubmitRequest(SubmitRequest):
    candidate_id: str = ""
    current_rank: Optional[int] = None


# ---------------------------------------------------------------------
# Admin bodies
# ---------------------------------------------------------------------

class CampaignRequest(_Body):
    name: str = Field(min_length=1)
    token_amount: Optional[str] = None
    featured_at: Optional[str] = None


class Candidate(_Body):
    candidate_id: str = Field(min_length=1)
    name: str = Field(min_length=1)


class CandidatesRequest(_Body):
    candidates: List[Candidate] = Field(min_length=1, max_length=200)


class FeedbackStatusRequest(_Body):
    status: str


class BlockUserRequest(_Body):
    user_id: str
    reason: Optional[str] = None
