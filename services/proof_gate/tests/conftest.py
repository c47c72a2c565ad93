from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from proofgate.chain.stub_reader import StubChainReader
from proofgate.db import init_schema
from proofgate.disburse.stub_disburser import StubDisburser
from proofgate.processors.claim import ClaimProcessor
from proofgate.processors.feedback import FeedbackProcessor
from proofgate.processors.prediction import PredictionProcessor

TREASURY = "0x" + "ab" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20

# 2025-10-09T08:53:20Z
NOW = 1_760_000_000
TODAY = datetime.fromtimestamp(NOW, timezone.utc).date().isoformat()


def tx_hash(n: int) -> str:
    return "0x" + format(n, "064x")


def clock():
    return float(NOW)


@pytest.fixture()
def engine(tmp_path):
    """
    File-backed SQLite so that worker threads get their own connections.
    """
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'proofgate.db'}",
        future=True,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    init_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture()
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def chain():
    return StubChainReader()


@pytest.fixture()
def disburser():
    return StubDisburser()


@pytest.fixture()
def send_proof(chain):
    """
    Put a zero-value proof transaction on the stub chain and return its hash.
    """
    counter = {"n": 0}

    def _send(data: str, *, sender: str = ALICE, to: str = TREASURY, value: int = 0, mined: bool = True,
              succeeded: bool = True, block_timestamp: int = NOW) -> str:
        counter["n"] += 1
        h = tx_hash(counter["n"])
        chain.add(
            h,
            sender=sender,
            to=to,
            data=data.encode("utf-8"),
            value=value,
            mined=mined,
            succeeded=succeeded,
            block_timestamp=block_timestamp,
        )
        return h

    return _send


@pytest.fixture()
def common(chain):
    return {"chain": chain, "treasury_address": TREASURY, "max_age_secs": 3600, "clock": clock}


@pytest.fixture()
def claim_processor(common, disburser, db_session):
    p = ClaimProcessor(disburser=disburser, token_amount="40000", **common)
    p.feature_project(db_session, project_id="42", name="ZORA")
    return p


@pytest.fixture()
def feedback_processor(common):
    return FeedbackProcessor(**common)


@pytest.fixture()
def prediction_processor(common, db_session):
    p = PredictionProcessor(**common)
    p.register_candidates(db_session, round_id=TODAY, candidates=[("x", "App X"), ("y", "App Y"), ("z", "App Z")])
    return p
