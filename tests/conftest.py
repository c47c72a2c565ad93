from __future__ import annotations

import os
from pathlib import Path

import pytest
from dotenv import load_dotenv


def _try_load_env() -> None:
    """
    Load the repo-level .env if present so running tests locally is easy.
    """
    repo_root = Path(__file__).resolve().parents[1]
    env_path = repo_root / ".env"
    if env_path.exists():
        load_dotenv(env_path, override=False)


_try_load_env()


@pytest.fixture(scope="session")
def proof_gate_url() -> str:
    # These tests talk to a running service; without one they skip.
    url = os.getenv("PROOF_GATE_URL")
    if not url:
        pytest.skip("PROOF_GATE_URL not set")
    return url
