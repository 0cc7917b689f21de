"""HTTP helpers for webhook sinks and notifiers.

Responses from webhook endpoints are read with a size bound so a
misbehaving endpoint cannot exhaust memory.

Note:
    This module depends only on ``aiohttp`` and the standard library, so it
    is importable from every layer above ``models``.
"""

from __future__ import annotations

import json
from typing import Any

import aiohttp


async def _read_bounded(response: aiohttp.ClientResponse, max_size: int) -> bytes:
    """Read an entire response body, raising ``ValueError`` past *max_size* bytes.

    Accumulates chunks until EOF so chunked transfer-encoding is handled
    correctly.
    """
    chunks: list[bytes] = []
    total = 0
    while True:
        chunk = await response.content.read(max_size + 1 - total)
        if not chunk:
            break
        total += len(chunk)
        if total > max_size:
            raise ValueError(f"Response body too large: >{max_size} bytes")
        chunks.append(chunk)
    return b"".join(chunks)


async def post_json(
    url: str,
    body: dict[str, Any],
    *,
    headers: dict[str, str] | None = None,
    timeout: float = 10.0,  # noqa: ASYNC109
    max_response_size: int = 64 * 1024,
) -> tuple[int, Any]:
    """POST *body* as JSON and return ``(status, parsed_response)``.

    The response body is parsed as JSON when it is non-empty and declared
    as JSON; otherwise it is returned as text (``None`` when empty). Status
    codes are returned, not raised, so callers decide what a ``409``
    means.

    Raises:
        aiohttp.ClientError: On connection failure.
        TimeoutError: If the request exceeds *timeout*.
        ValueError: If the response body exceeds *max_response_size*.
    """
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    async with (
        aiohttp.ClientSession(timeout=client_timeout) as session,
        session.post(url, json=body, headers=headers) as response,
    ):
        raw = await _read_bounded(response, max_response_size)
        if not raw:
            return response.status, None
        if response.content_type == "application/json":
            try:
                return response.status, json.loads(raw)
            except json.JSONDecodeError:
                pass
        return response.status, raw.decode("utf-8", errors="replace")
