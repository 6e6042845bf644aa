"""Tests for HomeAssistantAdapter."""

from __future__ import annotations

import json
import time

import httpx
import pytest

from home_orchestrator.adapters.homeassistant import HomeAssistantAdapter
from home_orchestrator.core.errors import ErrorKind, TransientBackendError
from home_orchestrator.core.models.capability import BackendKind, PrivacyClass
from home_orchestrator.core.models.message import ResponseStatus
from tests.helpers import make_request


def make_adapter(handler) -> HomeAssistantAdapter:
    return HomeAssistantAdapter(
        base_url="http://test-ha:8123",
        token="test_token_123",
        transport=httpx.MockTransport(handler),
    )


class TestHomeAssistantAdapter:
    """Tests for HomeAssistantAdapter."""

    def test_requires_token(self) -> None:
        """Test the adapter refuses to start without a token."""
        with pytest.raises(ValueError, match="HA_TOKEN"):
            HomeAssistantAdapter(base_url="http://test-ha:8123", token="")

    def test_descriptor(self) -> None:
        """Test Home Assistant is a local device-control backend."""
        adapter = HomeAssistantAdapter(base_url="http://test-ha:8123/", token="t")
        descriptor = adapter.describe()

        assert adapter.base_url == "http://test-ha:8123"
        assert descriptor.kind == BackendKind.DEVICE_CONTROL
        assert descriptor.privacy_class == PrivacyClass.LOCAL_ONLY
        assert descriptor.has_capability("light.turn_on")

    @pytest.mark.asyncio
    async def test_call_service(self) -> None:
        """Test actions become service calls carrying the parameters."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[{"entity_id": "light.kitchen", "state": "on"}])

        adapter = make_adapter(handler)
        response = await adapter.invoke(
            make_request("home_assistant", "light.turn_on", entity_id="light.kitchen", brightness=200),
            time.time() + 5,
        )

        assert response.status == ResponseStatus.SUCCESS
        assert response.data == {"changed_states": [{"entity_id": "light.kitchen", "state": "on"}]}
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/api/services/light/turn_on"
        assert seen[0].headers["Authorization"] == "Bearer test_token_123"
        assert json.loads(seen[0].content) == {"entity_id": "light.kitchen", "brightness": 200}

    @pytest.mark.asyncio
    async def test_get_state(self) -> None:
        """Test state.get reads one entity."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/states/sensor.living_room_temperature"
            return httpx.Response(200, json={"entity_id": "sensor.living_room_temperature", "state": "21.5"})

        adapter = make_adapter(handler)
        response = await adapter.invoke(
            make_request("home_assistant", "state.get", entity_id="sensor.living_room_temperature"),
            time.time() + 5,
        )

        assert response.data["state"] == "21.5"

    @pytest.mark.asyncio
    async def test_get_state_requires_entity(self) -> None:
        """Test state.get without entity_id fails validation."""
        adapter = make_adapter(lambda request: httpx.Response(200))

        response = await adapter.invoke(make_request("home_assistant", "state.get"), time.time() + 5)

        assert response.status == ResponseStatus.FAILED
        assert response.error_kind == ErrorKind.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_undeclared_service(self) -> None:
        """Test services outside the declared set are not called."""
        adapter = make_adapter(lambda request: httpx.Response(200))

        response = await adapter.invoke(make_request("home_assistant", "lock.unlock"), time.time() + 5)

        assert response.status == ResponseStatus.NOT_SUPPORTED

    @pytest.mark.asyncio
    async def test_unknown_entity(self) -> None:
        """Test 404 answers map to NotSupported."""
        adapter = make_adapter(lambda request: httpx.Response(404, text="Entity not found"))

        response = await adapter.invoke(
            make_request("home_assistant", "state.get", entity_id="light.ghost"), time.time() + 5
        )

        assert response.status == ResponseStatus.NOT_SUPPORTED
        assert "404" in response.error_message

    @pytest.mark.asyncio
    async def test_bad_request(self) -> None:
        """Test other 4xx answers map to a validation failure."""
        adapter = make_adapter(lambda request: httpx.Response(400, text="bad brightness"))

        response = await adapter.invoke(
            make_request("home_assistant", "light.turn_on", brightness=-1), time.time() + 5
        )

        assert response.status == ResponseStatus.FAILED
        assert response.error_kind == ErrorKind.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_server_error(self) -> None:
        """Test 5xx answers are transient."""
        adapter = make_adapter(lambda request: httpx.Response(502))

        with pytest.raises(TransientBackendError):
            await adapter.invoke(make_request("home_assistant", "light.turn_off"), time.time() + 5)

    @pytest.mark.asyncio
    async def test_health_check(self) -> None:
        """Test the API root is used for health checks."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/"
            return httpx.Response(200, json={"message": "API running."})

        adapter = make_adapter(handler)

        assert await adapter.health_check() is True
        await adapter.disconnect()
