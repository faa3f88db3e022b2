"""Shared HTTP plumbing for the Cognitive Services REST clients."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import httpx

from facefinder.config import ServiceConfig
from facefinder.errors import NotFoundError, ServiceError

LOGGER = logging.getLogger("facefinder.services.http")

SUBSCRIPTION_HEADER = "Ocp-Apim-Subscription-Key"
OCTET_STREAM = "application/octet-stream"


def create_http_client(
    config: ServiceConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Build an AsyncClient bound to one service endpoint and key."""
    return httpx.AsyncClient(
        base_url=config.endpoint.rstrip("/"),
        headers={SUBSCRIPTION_HEADER: config.key},
        timeout=config.timeout_s,
        limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        transport=transport,
    )


def _error_details(response: httpx.Response) -> tuple:
    """Return (code, message) from a Cognitive Services error body."""
    try:
        body = response.json()
    except ValueError:
        return None, response.text.strip() or response.reason_phrase
    if isinstance(body, dict):
        err = body.get("error", body)
        if isinstance(err, dict):
            return err.get("code"), err.get("message") or response.reason_phrase
    return None, response.reason_phrase


@contextmanager
def parsing(operation: str) -> Iterator[None]:
    """Re-raise a malformed response body as a ServiceError for ``operation``."""
    try:
        yield
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise ServiceError(operation, f"Unexpected response: {exc!r}") from exc


class ServiceClient:
    """Thin request helper; subclasses implement the service operations."""

    service_name = "service"

    def __init__(self, http: httpx.AsyncClient) -> None:
        self.http = http

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        content: Optional[bytes] = None,
    ) -> httpx.Response:
        headers = {"Content-Type": OCTET_STREAM} if content is not None else None
        LOGGER.debug("%s %s %s (%s)", self.service_name, method, path, operation)
        try:
            response = await self.http.request(
                method, path, params=params, json=json, content=content, headers=headers
            )
        except httpx.HTTPError as exc:
            raise ServiceError(operation, f"{type(exc).__name__}: {exc}") from exc

        if response.is_success:
            return response
        code, message = _error_details(response)
        error_cls = NotFoundError if response.status_code == 404 else ServiceError
        raise error_cls(operation, message, status_code=response.status_code, code=code)

    async def request_json(self, operation: str, method: str, path: str, **kwargs) -> Any:
        response = await self.request(operation, method, path, **kwargs)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ServiceError(operation, "Response body is not valid JSON") from exc
