"""Tests for the dependency container."""

import os

import pytest

from entityspine import EntitySpineContainer, InMemoryDocumentStore, RecordFamily, SqlDocumentStore
from entityspine.config.settings import EntitySpineSettings
from entityspine.repositories import EntityReactionRepository, RelationRepository


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("ENTITYSPINE_"):
            monkeypatch.delenv(name)


class TestWiring:
    def test_defaults_to_memory_store(self):
        container = EntitySpineContainer()
        assert isinstance(container.store, InMemoryDocumentStore)
        assert container.config.lookup_max_depth == 5

    def test_settings_drive_config(self, monkeypatch):
        monkeypatch.setenv("ENTITYSPINE_ENTITIES__ALLOWED_KINDS", '["book"]')
        container = EntitySpineContainer()
        assert container.entities.rules.allowed_kinds == frozenset({"book"})

    def test_repositories_share_collaborators(self, store, config):
        container = EntitySpineContainer(store=store, config=config)
        entities = container.entities
        assert entities is container.repository(RecordFamily.ENTITY)
        assert isinstance(container.relations, RelationRepository)
        assert isinstance(container.entity_reactions, EntityReactionRepository)
        assert container.relations.entities is entities
        assert container.relations.lists is container.lists
        assert container.lists.gate is entities.gate
        assert container.list_reactions.resolver is entities.resolver
        assert all(repo.store is store for repo in (entities, container.lists, container.list_reactions))

    def test_close_keeps_injected_store(self, store, config):
        with EntitySpineContainer(store=store, config=config) as container:
            assert container.entities.store is store
        assert container.store is store


class TestSqlBackend:
    @pytest.mark.asyncio
    async def test_sql_store_from_settings(self, tmp_path, now):
        settings = EntitySpineSettings(store_backend="sql", database_url=f"sqlite:///{tmp_path / 'spine.db'}")
        with EntitySpineContainer(settings) as container:
            assert isinstance(container.store, SqlDocumentStore)
            shelf = await container.lists.create({"_name": "Shelf"}, now=now)
            book = await container.entities.create({"_kind": "book", "_name": "Dune"}, now=now)
            await container.relations.create({"_listId": shelf["_id"], "_entityId": book["_id"]}, now=now)

            found = await container.relations.find_entities_of_list(shelf["_id"], now=now)
            assert [record["_name"] for record in found] == ["Dune"]
