"""Shared plumbing for backends reached over HTTP.

Status mapping:
- transport errors and 5xx -> TransientBackendError (retried)
- client-side timeout -> RequestTimeoutError
- 401/403 -> 'unauthorized' response
- 404 -> 'not_supported' response
- other 4xx -> 'failed' response with VALIDATION_ERROR
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from home_orchestrator.core.errors import (
    ErrorKind,
    RequestTimeoutError,
    TransientBackendError,
)
from home_orchestrator.core.models.capability import CapabilityDescriptor
from home_orchestrator.core.models.message import AgentRequest, AgentResponse, ResponseStatus

logger = logging.getLogger(__name__)


class HttpBackendAdapter:
    """Base class for HTTP backends. Subclasses implement describe() and invoke()."""

    health_path = "/"

    def __init__(
        self,
        descriptor: CapabilityDescriptor,
        base_url: str,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize HTTP adapter.

        Args:
            descriptor: Declared capabilities of this backend
            base_url: Service base URL
            timeout: Upper bound for a single HTTP call in seconds
            headers: Headers sent with every call
            transport: Custom httpx transport (e.g. httpx.MockTransport in tests)
        """
        self.descriptor = descriptor
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = headers or {}
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def backend_id(self) -> str:
        return self.descriptor.backend_id

    def describe(self) -> CapabilityDescriptor:
        return self.descriptor

    @property
    def client(self) -> httpx.AsyncClient:
        """HTTP client, created on first use."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self.headers,
                transport=self._transport,
            )
        return self._client

    async def connect(self) -> bool:
        """Open the HTTP client and check the service answers."""
        _ = self.client
        healthy = await self.health_check()
        if healthy:
            logger.info(f"[{self.backend_id}] Connected to {self.base_url}")
        else:
            logger.warning(f"[{self.backend_id}] {self.base_url} is not answering yet")
        return healthy

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info(f"[{self.backend_id}] Disconnected")

    async def health_check(self) -> bool:
        try:
            response = await self.client.get(self.health_path)
            return response.status_code < 400
        except httpx.HTTPError as e:
            logger.warning(f"[{self.backend_id}] Health check failed: {type(e).__name__}: {e}")
            return False

    async def _request(
        self,
        method: str,
        url: str,
        deadline: float,
        **kwargs: Any,
    ) -> httpx.Response:
        """Perform one HTTP call bounded by the deadline.

        Raises:
            RequestTimeoutError: If the call timed out
            TransientBackendError: For transport errors and 5xx answers
        """
        timeout = min(self.timeout, deadline - time.time())
        if timeout <= 0:
            raise RequestTimeoutError("Deadline passed before the call", backend=self.backend_id)

        try:
            response = await self.client.request(method, url, timeout=timeout, **kwargs)
        except httpx.TimeoutException:
            raise RequestTimeoutError(
                f"{method} {url} timed out after {timeout:.2f}s", backend=self.backend_id
            ) from None
        except httpx.TransportError as e:
            raise TransientBackendError(
                f"{method} {url} failed: {type(e).__name__}: {e}", backend=self.backend_id
            ) from e

        if response.status_code >= 500:
            raise TransientBackendError(
                f"{method} {url} answered {response.status_code}", backend=self.backend_id
            )
        return response

    def _error_reply(self, request: AgentRequest, response: httpx.Response) -> AgentResponse | None:
        """Map a 4xx answer to a response, or None if the call succeeded."""
        code = response.status_code
        if code < 400:
            return None

        detail = f"HTTP {code}: {response.text[:200]}"
        if code in (401, 403):
            logger.error(f"[{self.backend_id}] Unauthorized: check credentials")
            return request.reply(
                ResponseStatus.UNAUTHORIZED,
                error_message=detail,
                error_kind=ErrorKind.BACKEND_ERROR,
            )
        if code == 404:
            return request.reply(
                ResponseStatus.NOT_SUPPORTED,
                error_message=detail,
                error_kind=ErrorKind.CAPABILITY_NOT_SUPPORTED,
            )
        return request.reply(
            ResponseStatus.FAILED,
            error_message=detail,
            error_kind=ErrorKind.VALIDATION_ERROR,
        )

    def _unsupported(self, request: AgentRequest) -> AgentResponse:
        return request.reply(
            ResponseStatus.NOT_SUPPORTED,
            error_message=f"Action '{request.action}' is not supported by {self.backend_id}",
            error_kind=ErrorKind.CAPABILITY_NOT_SUPPORTED,
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(backend_id='{self.backend_id}', base_url='{self.base_url}')>"
