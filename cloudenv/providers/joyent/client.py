"""Minimal HTTP client for CloudAPI and Manta.

Non-2xx responses become BackendError carrying the ``code`` field of the
JSON error body (``ResourceNotFound``, ``InvalidArgument``, ...), or the
HTTP status when the body has none.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from cloudenv.exceptions import BackendError

log = logger.bind(component="joyent")

API_VERSION = "~8"
NOT_FOUND = "ResourceNotFound"


def _error_code(resp: httpx.Response) -> tuple[str, str]:
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    code = body.get("code") or (NOT_FOUND if resp.status_code == 404 else str(resp.status_code))
    return code, body.get("message") or resp.reason_phrase


class JoyentClient:
    """Signed JSON requests against one Joyent endpoint."""

    def __init__(
        self,
        base_url: str,
        auth: httpx.Auth,
        *,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url,
            auth=auth,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json", "X-Api-Version": API_VERSION},
        )

    def request(self, method: str, path: str, operation: str, **kwargs: Any) -> httpx.Response:
        log.trace("{method} {path}", method=method, path=path)
        try:
            resp = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise BackendError(type(e).__name__, str(e), operation) from e
        if resp.is_error:
            code, message = _error_code(resp)
            raise BackendError(code, message, operation)
        return resp

    def json(self, method: str, path: str, operation: str, **kwargs: Any) -> Any:
        resp = self.request(method, path, operation, **kwargs)
        return resp.json() if resp.content else None

    def close(self) -> None:
        self._client.close()
