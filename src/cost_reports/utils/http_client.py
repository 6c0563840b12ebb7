"""HTTP client utilities for provider REST APIs"""

from typing import Any

import httpx

DEFAULT_TIMEOUT = 60.0


def build_async_client(
    timeout: float = DEFAULT_TIMEOUT,
    auth: httpx.Auth | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    headers: dict[str, str] | None = None,
) -> httpx.AsyncClient:
    """Create an AsyncClient; ``transport`` lets tests swap in a MockTransport"""
    kwargs: dict[str, Any] = {"timeout": timeout, "headers": headers or {}}
    if auth is not None:
        kwargs["auth"] = auth
    if transport is not None:
        kwargs["transport"] = transport
    return httpx.AsyncClient(**kwargs)
