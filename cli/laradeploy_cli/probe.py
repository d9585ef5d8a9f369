from __future__ import annotations

import logging

import httpx

from . import console

logger = logging.getLogger(__name__)


def probe_site(url: str, *, timeout: float = 10.0) -> bool:
    """GET the freshly deployed site; anything but a 5xx or a transport error passes."""
    try:
        resp = httpx.get(url, timeout=timeout, follow_redirects=True)
    except httpx.RequestError as exc:
        logger.debug("probe of %s failed", url, exc_info=True)
        console.warn(f"Could not reach {url}: {exc}")
        return False
    if resp.status_code >= 500:
        console.warn(f"{url} answered HTTP {resp.status_code}.")
        return False
    console.ok(f"{url} answered HTTP {resp.status_code}.")
    return True
