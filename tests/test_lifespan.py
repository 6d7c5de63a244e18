"""
tests/test_lifespan.py -- Startup and shutdown of api.main.lifespan.

Covers:
  - Startup wires settings, stores and the service onto app.state
  - Shutdown waits for an in-flight purge before the stores are closed
  - Shutdown returns promptly while the loops are only sleeping
"""

from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path

import pytest
from fastapi import FastAPI

import api.main as api_main
from auth.service import AuthService
from conftest import make_settings


@pytest.fixture
def lifespan_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    settings = make_settings(
        database_url=f"sqlite:///{tmp_path / 'lifespan.db'}",
        session_purge_interval_seconds=1,
        store_timeout_seconds=2.0,
    )
    monkeypatch.setattr(api_main, "get_settings", lambda: settings)
    return settings


def test_startup_populates_app_state(lifespan_settings) -> None:
    app = FastAPI()

    async def run() -> None:
        async with api_main.lifespan(app):
            assert app.state.settings is lifespan_settings
            assert isinstance(app.state.auth_service, AuthService)
            assert app.state.stores.users.ping()
            assert len(app.state.maintenance_tasks) == 2

    asyncio.run(run())
    assert all(task.done() for task in app.state.maintenance_tasks)


def test_shutdown_waits_for_in_flight_purge(lifespan_settings, monkeypatch: pytest.MonkeyPatch) -> None:
    started = threading.Event()
    finished = threading.Event()
    closed_after_purge: list[bool] = []

    def slow_purge(self) -> int:
        started.set()
        time.sleep(0.3)
        finished.set()
        return 0

    monkeypatch.setattr(AuthService, "purge_expired_sessions", slow_purge)
    app = FastAPI()

    async def run() -> None:
        async with api_main.lifespan(app):
            original_close = app.state.stores.close

            def close() -> None:
                closed_after_purge.append(finished.is_set())
                original_close()

            app.state.stores.close = close
            while not started.is_set():
                await asyncio.sleep(0.05)

    asyncio.run(run())
    assert closed_after_purge == [True]
    assert all(task.done() and not task.cancelled() for task in app.state.maintenance_tasks)


def test_shutdown_does_not_wait_out_the_interval(lifespan_settings) -> None:
    app = FastAPI()
    elapsed: list[float] = []

    async def run() -> None:
        lifespan = api_main.lifespan(app)
        await lifespan.__aenter__()
        started = time.perf_counter()
        await lifespan.__aexit__(None, None, None)
        elapsed.append(time.perf_counter() - started)

    asyncio.run(run())
    assert elapsed[0] < 0.5
