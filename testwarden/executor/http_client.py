"""HTTP helpers shared by the executor, side-effect checks and error scenarios."""

import base64
import json
import logging
import time
from typing import Any, Dict, Optional

import httpx

from testwarden.executor.models import AuthConfig, AuthType, HttpExchange, HttpRequestSpec

logger = logging.getLogger(__name__)

REDACTED = "***"


def resolve_url(url: str, base_url: str = "") -> str:
    if base_url and not url.startswith(("http://", "https://")):
        return base_url.rstrip("/") + "/" + url.lstrip("/")
    return url


def auth_headers(auth: Optional[AuthConfig]) -> Dict[str, str]:
    if auth is None or auth.type == AuthType.NONE:
        return {}
    if auth.type == AuthType.BEARER:
        return {"Authorization": f"Bearer {auth.value}"}
    if auth.type == AuthType.BASIC:
        token = base64.b64encode(auth.value.encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {token}"}
    return {auth.header_name or "X-API-Key": auth.value}


def redact_headers(headers: Dict[str, str], auth: Optional[AuthConfig]) -> Dict[str, str]:
    """Copy of ``headers`` with credential values replaced."""
    secret_names = {name.lower() for name in auth_headers(auth)} | {"authorization"}
    return {k: (REDACTED if k.lower() in secret_names else v) for k, v in headers.items()}


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


async def send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    headers: Optional[Dict[str, str]] = None,
    body: Any = None,
    content: Optional[bytes] = None,
    timeout: Optional[float] = None,
    logged_headers: Optional[Dict[str, str]] = None,
) -> HttpExchange:
    """Send one request and capture the exchange.

    ``body`` is sent as JSON; ``content`` sends raw bytes instead. Transport
    errors propagate.
    """
    kwargs: Dict[str, Any] = {"headers": headers or {}}
    if content is not None:
        kwargs["content"] = content
    elif body is not None:
        kwargs["json"] = body
    if timeout is not None:
        kwargs["timeout"] = timeout

    started = time.perf_counter()
    response = await client.request(method, url, **kwargs)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.debug(f"{method} {url} -> {response.status_code} in {elapsed_ms:.0f}ms")

    sent_body: Any = body
    if content is not None:
        sent_body = content.decode("utf-8", errors="replace")
    return HttpExchange(
        method=method,
        url=url,
        request_headers=logged_headers if logged_headers is not None else dict(headers or {}),
        request_body=sent_body,
        status_code=response.status_code,
        reason=response.reason_phrase,
        headers=dict(response.headers),
        body=_decode_body(response),
        raw_body=response.text,
        elapsed_ms=elapsed_ms,
    )


async def send_spec(
    client: httpx.AsyncClient,
    spec: HttpRequestSpec,
    base_url: str = "",
    timeout: Optional[float] = None,
) -> HttpExchange:
    """Send a declared request with its auth applied and redacted from the log."""
    headers = {**spec.headers, **auth_headers(spec.auth)}
    return await send(
        client,
        spec.method.value,
        resolve_url(spec.url, base_url),
        headers=headers,
        body=spec.body,
        timeout=spec.timeout or timeout,
        logged_headers=redact_headers(headers, spec.auth),
    )


def dumps(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)
