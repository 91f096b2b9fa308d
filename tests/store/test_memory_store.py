"""Tests for the in-memory document store."""

import pytest

from entityspine.store.memory import InMemoryDocumentStore
from entityspine.store.protocols import DocumentStore
from entityspine.store.query import OrderKey, StoreQuery


class TestInMemoryDocumentStore:
    """CRUD, predicates and copy semantics."""

    def test_satisfies_protocol(self, store):
        assert isinstance(store, DocumentStore)

    @pytest.mark.asyncio
    async def test_insert_assigns_id(self, store):
        saved = await store.insert("entities", {"_kind": "book"})
        assert saved["_id"]
        assert await store.get("entities", saved["_id"]) == saved

    @pytest.mark.asyncio
    async def test_insert_keeps_given_id(self, store):
        saved = await store.insert("entities", {"_id": "fixed", "_kind": "book"})
        assert saved["_id"] == "fixed"

    @pytest.mark.asyncio
    async def test_collections_are_separate(self, store):
        await store.insert("entities", {"_id": "x"})
        assert await store.get("lists", "x") is None
        assert store.collection_sizes == {"entities": 1, "lists": 0}

    @pytest.mark.asyncio
    async def test_copies_in_and_out(self, store):
        source = {"_id": "x", "tags": ["a"]}
        await store.insert("entities", source)
        source["tags"].append("b")
        fetched = await store.get("entities", "x")
        fetched["tags"].append("c")
        assert (await store.get("entities", "x"))["tags"] == ["a"]

    @pytest.mark.asyncio
    async def test_find_and_count(self, store):
        for index, kind in enumerate(["book", "author", "book"]):
            await store.insert("entities", {"_id": f"r{index}", "_kind": kind, "n": index})
        query = StoreQuery(where={"_kind": "book"}, order=(OrderKey("n", True),))
        assert [doc["_id"] for doc in await store.find("entities", query)] == ["r2", "r0"]
        assert await store.count("entities", {"_kind": "book"}) == 2
        assert await store.count("entities") == 3

    @pytest.mark.asyncio
    async def test_find_by_ids_keeps_insertion_order(self, store):
        for record_id in ("a", "b", "c"):
            await store.insert("entities", {"_id": record_id})
        found = await store.find("entities", StoreQuery(where={"_id": {"inq": ["c", "a"]}}))
        assert [doc["_id"] for doc in found] == ["a", "c"]

    @pytest.mark.asyncio
    async def test_replace_and_delete(self, store):
        await store.insert("entities", {"_id": "x", "v": 1})
        assert await store.replace("entities", "x", {"v": 2})
        assert await store.get("entities", "x") == {"_id": "x", "v": 2}
        assert not await store.replace("entities", "missing", {"v": 3})
        assert await store.delete("entities", "x")
        assert not await store.delete("entities", "x")

    @pytest.mark.asyncio
    async def test_fresh_store_is_empty(self):
        assert await InMemoryDocumentStore().count("entities") == 0
