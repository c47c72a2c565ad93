from __future__ import annotations

import os
import time
from typing import Any, Dict, Optional, Tuple

import requests


DEFAULT_TIMEOUT = float(os.getenv("PG_TEST_HTTP_TIMEOUT_SECS", "8.0"))
RETRY_SECS = float(os.getenv("PG_TEST_RETRY_SECS", "0.5"))
RETRY_MAX = int(os.getenv("PG_TEST_RETRY_MAX", "20"))

# Well-formed but never broadcast.
UNKNOWN_TX_HASH = "0x" + "0" * 63 + "1"
SOME_WALLET = "0x" + "1" * 40


class HttpError(RuntimeError):
    pass


def join(base: str, path: str) -> str:
    if not base:
        raise ValueError("base url is empty")
    if not path.startswith("/"):
        path = "/" + path
    return base.rstrip("/") + path


def http_get_json(url: str, *, params: Optional[Dict[str, Any]] = None, timeout: float = DEFAULT_TIMEOUT) -> Dict[str, Any]:
    r = requests.get(url, params=params, timeout=timeout)
    if r.status_code >= 400:
        raise HttpError(f"GET {url} -> {r.status_code}: {r.text[:300]}")
    return r.json()


def http_post_json(url: str, payload: Dict[str, Any], *, timeout: float = DEFAULT_TIMEOUT) -> Tuple[int, Any, str]:
    r = requests.post(url, json=payload, timeout=timeout)
    text = r.text or ""
    try:
        body = r.json()
    except ValueError:
        body = None
    return r.status_code, body, text


def wait_for_health(base_url: str, health_path: str = "/health") -> None:
    url = join(base_url, health_path)
    last_err: Optional[str] = None
    for _ in range(RETRY_MAX):
        try:
            r = requests.get(url, timeout=DEFAULT_TIMEOUT)
            if r.status_code < 400:
                return
            last_err = f"{r.status_code}: {r.text[:200]}"
        except requests.RequestException as e:
            last_err = str(e)
        time.sleep(RETRY_SECS)
    raise HttpError(f"Service not healthy at {url}. Last error: {last_err}")


def assert_structured_outcome(status_code: int, body: Any, raw: str) -> None:
    """
    Every submit answer, good or bad, is the outcome envelope and never a 5xx.
    """
    assert status_code < 500, f"Unexpected 5xx: {status_code} {raw[:200]}"
    assert isinstance(body, dict), f"not JSON: {raw[:200]}"
    assert {"success", "retry", "already_completed"} <= set(body)
    if not body["success"]:
        assert body["error"]["code"]
