"""Tests for the control surface: every request answers with one response."""

from __future__ import annotations

import pytest
from pydantic import TypeAdapter

from marksync.errors import NetworkError
from marksync.models.control import ControlMessage
from marksync.sync.control import ControlSurface

MESSAGES = TypeAdapter(ControlMessage)


@pytest.fixture
def control(stack) -> ControlSurface:
    return ControlSurface(stack.scheduler, stack.registry)


class TestControlSurface:
    @pytest.mark.asyncio
    async def test_sync_provider_success(self, stack, control, make_item) -> None:
        await stack.registry.initialize()
        await stack.enable("alpha")
        stack.providers["alpha"].items = [make_item("alpha", "1")]

        response = await control.sync_provider("alpha")

        assert response.success
        assert response.error is None
        assert response.result["added"] == 1
        assert response.result["provider_id"] == "alpha"

    @pytest.mark.asyncio
    async def test_sync_provider_failure_is_a_response(self, stack, control) -> None:
        await stack.registry.initialize()
        await stack.enable("alpha")
        stack.providers["alpha"].fetch_error = NetworkError("API down", status_code=502)

        response = await control.sync_provider("alpha")

        assert not response.success
        assert response.error == "API down"

    @pytest.mark.asyncio
    async def test_unknown_provider(self, control) -> None:
        response = await control.sync_provider("nope")
        assert not response.success
        assert "nope" in response.error

    @pytest.mark.asyncio
    async def test_unexpected_error_is_a_response(self, stack, control) -> None:
        await stack.registry.initialize()
        await stack.enable("alpha")
        stack.providers["alpha"].fetch_error = RuntimeError("kaboom")

        response = await control.sync_provider("alpha")

        assert not response.success
        assert response.error == "kaboom"

    @pytest.mark.asyncio
    async def test_sync_all(self, stack, control, make_item) -> None:
        await stack.registry.initialize()
        await stack.enable("alpha")
        stack.providers["alpha"].items = [make_item("alpha", "1")]

        response = await control.sync_all()

        assert response.success
        assert response.result == {
            "total": 1,
            "successful": 1,
            "failed": 0,
            "skipped": False,
            "errors": {},
        }

    @pytest.mark.asyncio
    async def test_status_includes_providers(self, stack, control) -> None:
        await stack.registry.initialize()
        await stack.scheduler.initialize(startup_sweep=False)

        response = await control.get_sync_status()

        assert response.success
        assert response.status["periodic"]["name"] == "periodic-sync"
        assert response.status["sync_in_progress"] is False
        assert [p["provider_id"] for p in response.status["providers"]] == ["alpha", "beta"]

    @pytest.mark.asyncio
    async def test_update_interval(self, stack, control) -> None:
        await stack.scheduler.initialize(startup_sweep=False)

        response = await control.update_sync_interval(15 * 60_000)

        assert response.success
        assert response.result["periodic"]["period_minutes"] == 15
        assert (await stack.storage.get_settings()).sync_interval == 15 * 60_000

    @pytest.mark.asyncio
    async def test_update_interval_rejects_non_positive(self, stack, control) -> None:
        await stack.scheduler.initialize(startup_sweep=False)

        response = await control.update_sync_interval(0)

        assert not response.success
        assert "positive" in response.error


class TestHandle:
    @pytest.mark.asyncio
    async def test_dispatches_sync_provider(self, stack, control, make_item) -> None:
        await stack.registry.initialize()
        await stack.enable("beta")
        stack.providers["beta"].items = [make_item("beta", "1")]

        message = MESSAGES.validate_python({"type": "SYNC_PROVIDER", "providerId": "beta"})
        response = await control.handle(message)

        assert response.success
        assert response.result["provider_id"] == "beta"

    @pytest.mark.asyncio
    async def test_dispatches_status_and_interval(self, stack, control) -> None:
        await stack.scheduler.initialize(startup_sweep=False)

        status = await control.handle(MESSAGES.validate_python({"type": "GET_SYNC_STATUS"}))
        assert status.success and status.status is not None

        update = await control.handle(
            MESSAGES.validate_python({"type": "UPDATE_SYNC_INTERVAL", "interval": 120_000})
        )
        assert update.success
        assert update.result["periodic"]["period_minutes"] == 2

    @pytest.mark.asyncio
    async def test_dispatches_sync_all(self, control) -> None:
        response = await control.handle(MESSAGES.validate_python({"type": "SYNC_ALL"}))
        assert response.success
        assert response.result["total"] == 0
