"""HTTP calls issued by ``http_call`` records."""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional

import httpx

from .config import RunConfig
from .errors import HttpCallFailed

log = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


def build_http_client(config: RunConfig, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=config.http_timeout, transport=transport, follow_redirects=True)


def _with_content_type(headers: Mapping[str, str], body: Optional[str]) -> Dict[str, str]:
    merged = dict(headers)
    if body is not None and not any(name.lower() == "content-type" for name in merged):
        merged["Content-Type"] = JSON_CONTENT_TYPE
    return merged


async def send_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    body: Optional[str] = None,
    headers: Optional[Mapping[str, str]] = None,
) -> httpx.Response:
    """Issue one request; anything outside 2xx raises :class:`HttpCallFailed`."""

    method = method.upper()
    request_headers = _with_content_type(headers or {}, body)
    log.info("HTTP %s %s", method, url)
    try:
        response = await client.request(method, url, content=body, headers=request_headers)
    except httpx.HTTPError as exc:
        raise HttpCallFailed(f"HTTP {method} {url} failed: {exc}", details={"method": method, "url": url}) from exc

    if not response.is_success:
        raise HttpCallFailed(
            f"HTTP {method} {url} returned status {response.status_code}",
            details={"method": method, "url": url, "status": response.status_code, "body": response.text[:500]},
        )
    log.debug("HTTP %s %s -> %d", method, url, response.status_code)
    return response
