from __future__ import annotations

import asyncio

import pytest

from app.services.investors import providers


@pytest.mark.asyncio
async def test_shutdown_waits_for_route_cache_writes():
    finished: list[str] = []

    async def slow_write() -> None:
        await asyncio.sleep(0.01)
        finished.append("cache_all")

    providers.api_background.spawn(slow_write(), "cache_all")

    await providers.shutdown_services()

    assert finished == ["cache_all"]
    assert len(providers.api_background) == 0
