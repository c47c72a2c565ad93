import logging
from typing import Any, Dict, Optional

import requests

from proofgate.outcomes import ActionType, ErrorCode, SubmitOutcome

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 8.0


class ProofGateClient:
    """
    HTTP client for the status/submit endpoints. Submissions always come
    back as a SubmitOutcome; transport failures become a retryable one.
    """

    def __init__(self, base_url: str, *, timeout: float = DEFAULT_TIMEOUT, session=None):
        if not base_url:
            raise ValueError("base url is empty")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _url(self, path: str) -> str:
        if not path.startswith("/"):
            path = "/" + path
        return self.base_url + path

    def treasury_address(self) -> str:
        r = self.session.get(self._url("/payment/treasury-address"), timeout=self.timeout)
        r.raise_for_status()
        return r.json()["treasuryAddress"]

    def status(self, action: ActionType, user_id: str, scope: Optional[str] = None) -> Dict[str, Any]:
        params = {"userId": user_id}
        if scope:
            params["scope"] = scope
        r = self.session.get(self._url(f"/{action.value}/status"), params=params, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def submit(self, action: ActionType, body: Dict[str, Any]) -> SubmitOutcome:
        try:
            r = self.session.post(self._url(f"/{action.value}/submit"), json=body, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("submit %s failed in transport: %s", action.value, e)
            return SubmitOutcome.error(ErrorCode.TRANSPORT, str(e))

        try:
            data = r.json()
        except ValueError:
            data = None
        if not isinstance(data, dict) or "success" not in data:
            return SubmitOutcome.error(ErrorCode.TRANSPORT, f"HTTP {r.status_code}: {(r.text or '')[:200]}")

        return parse_outcome(data)


def parse_outcome(data: Dict[str, Any]) -> SubmitOutcome:
    if data.get("success"):
        return SubmitOutcome.ok(data.get("result") or {}, already_completed=bool(data.get("already_completed")))

    error = data.get("error") or {}
    try:
        code = ErrorCode(error.get("code"))
    except ValueError:
        code = ErrorCode.TRANSPORT if data.get("retry") else ErrorCode.VALIDATION
    return SubmitOutcome.error(code, error.get("message") or "request failed")
