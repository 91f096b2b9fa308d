"""
Shared pytest fixtures and configuration for entityspine tests.

This module provides:
- A fixed request time (``now``) and helpers to offset it
- In-memory and SQLite-backed document stores
- A governance config factory and repositories wired to a store
- Settings cache isolation

Usage:
    Fixtures are auto-discovered by pytest::

        @pytest.mark.asyncio
        async def test_create(entities, now):
            record = await entities.create({"_kind": "book"}, now=now)
"""

import sys
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

# Ensure entityspine package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from entityspine.config.rules import FamilyRules, GovernanceConfig
from entityspine.config.settings import clear_settings_cache
from entityspine.core.enums import RecordFamily
from entityspine.core.timestamps import to_iso8601
from entityspine.repositories import (
    EntityReactionRepository,
    EntityRepository,
    ListReactionRepository,
    ListRepository,
    RelationRepository,
)
from entityspine.store.memory import InMemoryDocumentStore
from entityspine.store.sql import SqlDocumentStore

NOW = datetime(2026, 3, 15, 12, 0, 0, tzinfo=UTC)


def iso(moment: datetime) -> str:
    return to_iso8601(moment)


# =============================================================================
# Markers
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark SQL store tests as integration, everything else as unit."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if markers.intersection({"unit", "integration"}):
            continue
        if "sql" in item.name.lower() or "sql" in Path(str(item.fspath)).name:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def clean_settings_cache() -> Generator[None, None, None]:
    """Every test sees freshly loaded settings."""
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Time
# =============================================================================


@pytest.fixture
def now() -> datetime:
    """Fixed request time shared by a test."""
    return NOW


@pytest.fixture
def at():
    """ISO string ``delta`` away from :data:`NOW` (``at(hours=-1)``)."""

    def _at(**delta: float) -> str:
        return iso(NOW + timedelta(**delta))

    return _at


# =============================================================================
# Stores and config
# =============================================================================


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def sql_store() -> Generator[SqlDocumentStore, None, None]:
    store = SqlDocumentStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def make_config():
    """Build a GovernanceConfig from per-family keyword arguments.

    Example::

        config = make_config(entity={"allowed_kinds": {"book"}}, lookup_max_depth=3)
    """

    def _make(lookup_max_depth: int = 5, **families: dict) -> GovernanceConfig:
        rules = {}
        for name, kwargs in families.items():
            family = RecordFamily(name.replace("_", "-"))
            rules[family] = FamilyRules(family, **kwargs)
        return GovernanceConfig(rules, lookup_max_depth=lookup_max_depth)

    return _make


@pytest.fixture
def config(make_config) -> GovernanceConfig:
    """Unrestricted defaults for every family."""
    return make_config()


# =============================================================================
# Repositories
# =============================================================================


@pytest.fixture
def entities(store, config) -> EntityRepository:
    return EntityRepository(store, config)


@pytest.fixture
def lists(store, config) -> ListRepository:
    return ListRepository(store, config)


@pytest.fixture
def relations(store, config, entities, lists) -> RelationRepository:
    return RelationRepository(store, config, entities=entities, lists=lists)


@pytest.fixture
def entity_reactions(store, config) -> EntityReactionRepository:
    return EntityReactionRepository(store, config)


@pytest.fixture
def list_reactions(store, config) -> ListReactionRepository:
    return ListReactionRepository(store, config)
