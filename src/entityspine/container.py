"""
Lazy-initialised wiring of store, configuration and repositories.

:class:`EntitySpineContainer` builds the document store and the frozen
:class:`~entityspine.config.rules.GovernanceConfig` from settings on
first access. The five repositories share one store, one resolver and
one admission gate.

Usage::

    from entityspine.container import EntitySpineContainer

    container = EntitySpineContainer()
    book = await container.entities.create({"_kind": "book", "_name": "Dune"})

    # Or with an explicit store and config (tests, embedding):
    container = EntitySpineContainer(store=InMemoryDocumentStore(), config=config)
"""

from __future__ import annotations

from entityspine.admission.gate import AdmissionGate
from entityspine.config.rules import GovernanceConfig
from entityspine.config.settings import EntitySpineSettings, get_settings
from entityspine.core.enums import RecordFamily
from entityspine.lookup.resolver import LookupResolver
from entityspine.repositories.base import RecordRepository
from entityspine.repositories.entities import EntityRepository, ListRepository
from entityspine.repositories.reactions import EntityReactionRepository, ListReactionRepository
from entityspine.repositories.relations import RelationRepository
from entityspine.store.memory import InMemoryDocumentStore
from entityspine.store.protocols import DocumentStore
from entityspine.store.sql import SqlDocumentStore


class EntitySpineContainer:
    """Lazy dependency container.

    Components are created on first property access. :meth:`close`
    (or the context-manager protocol) releases the SQL engine when the
    container created one.
    """

    def __init__(
        self,
        settings: EntitySpineSettings | None = None,
        *,
        store: DocumentStore | None = None,
        config: GovernanceConfig | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._owns_store = store is None
        self._config = config
        self._repositories: dict[RecordFamily, RecordRepository] = {}

    # ── Properties (lazy) ────────────────────────────────────────

    @property
    def settings(self) -> EntitySpineSettings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def config(self) -> GovernanceConfig:
        if self._config is None:
            self._config = self.settings.to_config()
        return self._config

    @property
    def store(self) -> DocumentStore:
        if self._store is None:
            if self.settings.store_backend == "sql":
                self._store = SqlDocumentStore(self.settings.database_url)
            else:
                self._store = InMemoryDocumentStore()
        return self._store

    @property
    def entities(self) -> EntityRepository:
        return self.repository(RecordFamily.ENTITY)  # type: ignore[return-value]

    @property
    def lists(self) -> ListRepository:
        return self.repository(RecordFamily.LIST)  # type: ignore[return-value]

    @property
    def relations(self) -> RelationRepository:
        return self.repository(RecordFamily.RELATION)  # type: ignore[return-value]

    @property
    def entity_reactions(self) -> EntityReactionRepository:
        return self.repository(RecordFamily.ENTITY_REACTION)  # type: ignore[return-value]

    @property
    def list_reactions(self) -> ListReactionRepository:
        return self.repository(RecordFamily.LIST_REACTION)  # type: ignore[return-value]

    def repository(self, family: RecordFamily) -> RecordRepository:
        """Repository for ``family``; all five are built together on first use."""
        if not self._repositories:
            self._build_repositories()
        return self._repositories[family]

    def _build_repositories(self) -> None:
        store, config = self.store, self.config
        shared = {"resolver": LookupResolver(store, config), "gate": AdmissionGate(store)}
        entities = EntityRepository(store, config, **shared)
        lists = ListRepository(store, config, **shared)
        self._repositories = {
            RecordFamily.ENTITY: entities,
            RecordFamily.LIST: lists,
            RecordFamily.RELATION: RelationRepository(store, config, entities=entities, lists=lists, **shared),
            RecordFamily.ENTITY_REACTION: EntityReactionRepository(store, config, **shared),
            RecordFamily.LIST_REACTION: ListReactionRepository(store, config, **shared),
        }

    # ── Lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        """Dispose of the SQL engine this container created, if any."""
        if self._owns_store and isinstance(self._store, SqlDocumentStore):
            self._store.close()
        self._repositories = {}

    def __enter__(self) -> EntitySpineContainer:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


__all__ = ["EntitySpineContainer"]
