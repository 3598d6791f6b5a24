"""HTTP session shared by the drive client and the OAuth token refresh."""

from __future__ import annotations

import os
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

DEFAULT_TIMEOUT = float(os.environ.get("SALES_HTTP_TIMEOUT", "60"))
DEFAULT_RETRIES = int(os.environ.get("SALES_HTTP_RETRIES", "3"))
USER_AGENT = "sales-sync/0.1"

# 401/403 are handled by the caller (token refresh), never retried here
RETRY_STATUSES = (429, 500, 502, 503, 504)


def make_session(
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
    backoff: float = 0.8,
) -> requests.Session:
    """Build the Session used for every drive and token request.

    Transient failures (connection errors, 429 and 5xx) are retried with
    exponential backoff; requests without an explicit ``timeout`` get the
    session default.

    Args:
        timeout: Default timeout in seconds ($SALES_HTTP_TIMEOUT, 60).
        retries: Retry attempts per request ($SALES_HTTP_RETRIES, 3).
        backoff: Backoff factor between attempts.

    Returns:
        Configured requests.Session object.
    """
    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})
    policy = Retry(
        total=retries,
        connect=retries,
        read=retries,
        status=retries,
        backoff_factor=backoff,
        status_forcelist=RETRY_STATUSES,
        allowed_methods=frozenset({"GET", "POST"}),
        raise_on_status=False,
    )
    session.mount("https://", HTTPAdapter(max_retries=policy))
    send = session.request

    def request_with_timeout(method: str, url: str, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("timeout", timeout)
        return send(method, url, **kwargs)

    session.request = request_with_timeout  # type: ignore[method-assign,assignment]
    return session
