from __future__ import annotations

import logging
import time
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)


class VenueFetchError(RuntimeError):
    pass


def get_json(
    url: str,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: float = 10.0,
    retries: int = 3,
    backoff: float = 0.5,
) -> Any:
    last_error = "no attempts made"
    for attempt in range(retries):
        try:
            resp = requests.get(url, params=params, headers=headers, timeout=timeout)
        except requests.RequestException as exc:
            last_error = f"{type(exc).__name__}: {exc}"
            logger.warning("GET %s failed attempt=%d error=%s", url, attempt + 1, last_error)
            if attempt < retries - 1:
                time.sleep(backoff * (2 ** attempt))
            continue
        if resp.status_code >= 500:
            last_error = f"HTTP {resp.status_code}"
            logger.warning("GET %s failed attempt=%d status=%d", url, attempt + 1, resp.status_code)
            if attempt < retries - 1:
                time.sleep(backoff * (2 ** attempt))
            continue
        if resp.status_code >= 400:
            raise VenueFetchError(f"GET {url} returned HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as exc:
            raise VenueFetchError(f"GET {url} returned a non-JSON body") from exc
    raise VenueFetchError(f"GET {url} failed after {retries} attempts: {last_error}")
