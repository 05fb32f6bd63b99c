from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Any, Mapping

import httpx


SIGNATURE_HEADER = "X-Webhook-Signature"


@dataclass(frozen=True)
class HttpResult:
    ok: bool
    status_code: int | None

    error_code: str | None = None
    error_message: str | None = None
    retryable: bool = False

    elapsed_ms: int | None = None


def sign_body(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def encode_body(body: dict[str, Any]) -> bytes:
    # the exact bytes that are signed are the bytes that are sent
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False, default=str).encode("utf-8")


class WebhookHttpClient:
    """
    Shared HTTP client for webhook deliveries.

    - Uses one AsyncClient instance (connection pooling).
    - Timeout is per request (each subscription has its own).
    - Does NOT retry; the dispatcher owns retries and backoff.
    - Every failed attempt is retryable: non-2xx and transport errors alike.
    """

    def __init__(
        self,
        *,
        user_agent: str = "dispatch-hub-webhooks",
        default_headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._default_headers = {"User-Agent": user_agent, "Content-Type": "application/json"}
        self._default_headers.update(dict(default_headers or {}))
        self._client = httpx.AsyncClient(transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def post_json(
        self,
        *,
        url: str,
        body: dict[str, Any],
        timeout_seconds: float,
        headers: Mapping[str, str] | None = None,
        secret: str | None = None,
    ) -> HttpResult:
        # Merge headers (caller wins)
        h = dict(self._default_headers)
        if headers:
            h.update(dict(headers))

        content = encode_body(body)
        if secret:
            h[SIGNATURE_HEADER] = sign_body(secret, content)

        try:
            resp = await self._client.post(url, content=content, headers=h, timeout=httpx.Timeout(timeout_seconds))
        except httpx.TimeoutException as e:
            return HttpResult(
                ok=False,
                status_code=None,
                error_code="TIMEOUT",
                error_message=str(e) or "timeout",
                retryable=True,
            )
        except httpx.RequestError as e:
            # DNS errors, connection refused, TLS, etc.
            return HttpResult(
                ok=False,
                status_code=None,
                error_code="REQUEST_ERROR",
                error_message=str(e) or type(e).__name__,
                retryable=True,
            )

        elapsed_ms = _elapsed_ms(resp)

        if 200 <= resp.status_code < 300:
            return HttpResult(ok=True, status_code=resp.status_code, elapsed_ms=elapsed_ms)

        return HttpResult(
            ok=False,
            status_code=resp.status_code,
            error_code=f"HTTP_{resp.status_code}",
            error_message=f"HTTP {resp.status_code}",
            retryable=True,
            elapsed_ms=elapsed_ms,
        )


def _elapsed_ms(resp: httpx.Response) -> int | None:
    # .elapsed is only set once the response is closed; mock transports may skip it
    try:
        return int(resp.elapsed.total_seconds() * 1000)
    except RuntimeError:
        return None
