"""Device control through the Home Assistant REST API.

Actions:
    <domain>.<service>  -> POST /api/services/<domain>/<service> with the parameters
    state.get           -> GET /api/states/<entity_id>
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

import httpx

from home_orchestrator.adapters.http import HttpBackendAdapter
from home_orchestrator.core.errors import ErrorKind
from home_orchestrator.core.models.capability import (
    BackendKind,
    CapabilityDescriptor,
    PrivacyClass,
)
from home_orchestrator.core.models.message import AgentRequest, AgentResponse, ResponseStatus

logger = logging.getLogger(__name__)

STATE_ACTION = "state.get"

DEFAULT_SERVICES = (
    "light.turn_on",
    "light.turn_off",
    "switch.turn_on",
    "switch.turn_off",
    "scene.turn_on",
    "climate.set_temperature",
    "media_player.media_play",
    "media_player.media_pause",
    "cover.open_cover",
    "cover.close_cover",
    STATE_ACTION,
)


class HomeAssistantAdapter(HttpBackendAdapter):
    """Calls Home Assistant services for device control."""

    health_path = "/api/"

    def __init__(
        self,
        base_url: str,
        token: str | None,
        backend_id: str = "home_assistant",
        services: Sequence[str] = DEFAULT_SERVICES,
        substitutes: Mapping[str, Sequence[str]] | None = None,
        latency_ms: float = 200.0,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize Home Assistant adapter.

        Args:
            base_url: Home Assistant URL (e.g. http://homeassistant.local:8123)
            token: Long-lived access token
            backend_id: Registry id
            services: Declared '<domain>.<service>' capabilities
            substitutes: Capability -> declared services that can stand in for it
            latency_ms: Declared latency estimate
            timeout: HTTP timeout in seconds
            transport: Custom httpx transport

        Raises:
            ValueError: If no token is given
        """
        if not token:
            raise ValueError("HA_TOKEN is required for the Home Assistant backend")

        descriptor = CapabilityDescriptor(
            backend_id=backend_id,
            capabilities=frozenset(services),
            substitutes={k: tuple(v) for k, v in (substitutes or {}).items()},
            cost_per_call=0.0,
            latency_ms=latency_ms,
            privacy_class=PrivacyClass.LOCAL_ONLY,
            kind=BackendKind.DEVICE_CONTROL,
        )
        super().__init__(
            descriptor,
            base_url,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    async def invoke(self, request: AgentRequest, deadline: float) -> AgentResponse:
        action = request.action or ""
        if not self.descriptor.has_capability(action) or "." not in action:
            return self._unsupported(request)

        parameters = request.parameters
        if action == STATE_ACTION:
            entity_id = parameters.get("entity_id")
            if not entity_id:
                return request.reply(
                    ResponseStatus.FAILED,
                    error_message="'entity_id' is required",
                    error_kind=ErrorKind.VALIDATION_ERROR,
                )
            response = await self._request("GET", f"/api/states/{entity_id}", deadline)
        else:
            domain, service = action.split(".", 1)
            logger.info(f"[{self.backend_id}] Calling {domain}.{service} with {parameters}")
            response = await self._request(
                "POST",
                f"/api/services/{domain}/{service}",
                deadline,
                json=parameters,
            )

        error = self._error_reply(request, response)
        if error is not None:
            return error

        body = response.json() if response.content else None
        if isinstance(body, list):
            data = {"changed_states": body}
        elif isinstance(body, dict):
            data = body
        else:
            data = {}
        return request.reply(ResponseStatus.SUCCESS, data=data)
