"""Pytest configuration and shared fixtures.

Fixtures are organized by category:
    - Settings Fixtures: VaultSettings for the in-process ``local`` provider
    - Backend Fixtures: in-memory backend shared by every engine of a test
    - Engine Fixtures: StorageEngine instances stopped on teardown

Engines are built with ``background_jobs=False`` so that tests drive sweeps
explicitly instead of waiting for timers. Helpers for building settings and
requests live in ``tests.utils``.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

import pytest

from vault_service.core.settings import StorageProvider
from vault_service.infra.storage import StorageEngine

from tests.utils import FlakyBackend, make_settings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from vault_service.core.settings import VaultSettings

# Never pick up a developer's conf/vault.yaml or conf/logging.yaml
os.environ["VAULT_CONFIG_DIR"] = "/nonexistent/vault-test-conf"
os.environ["LOGGING_CONFIG_DIR"] = "/nonexistent/vault-test-conf"


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture
def vault_settings() -> VaultSettings:
    return make_settings()


# ============================================================================
# Backend Fixtures
# ============================================================================


@pytest.fixture
def backend() -> FlakyBackend:
    return FlakyBackend()


# ============================================================================
# Engine Fixtures
# ============================================================================


@pytest.fixture
async def engine_factory(
    backend: FlakyBackend,
) -> AsyncIterator[Callable[..., StorageEngine]]:
    """Factory building engines wired to the shared ``backend``.

    Engines are not initialized; every engine created is stopped on teardown.

    Example:
        async def test_something(engine_factory):
            engine = engine_factory(make_settings(max_sweep_attempts=2))
            await engine.initialize()
    """
    engines: list[StorageEngine] = []

    def factory(settings: VaultSettings | None = None, **kwargs: Any) -> StorageEngine:
        kwargs.setdefault("backends", {StorageProvider.LOCAL: backend})
        kwargs.setdefault("background_jobs", False)
        engine = StorageEngine(settings or make_settings(), **kwargs)
        engines.append(engine)
        return engine

    yield factory

    for engine in engines:
        await engine.stop()


@pytest.fixture
async def engine(engine_factory: Callable[..., StorageEngine]) -> StorageEngine:
    """Initialized engine over two local regions."""
    engine = engine_factory()
    await engine.initialize()
    return engine
