"""Tests for the document store adapter and its in-memory backend."""
from __future__ import annotations

import pytest

from locallink.core.exceptions import ConditionFailed, TransientStoreError
from locallink.domain.value_objects import Collection
from locallink.infra.store import check_expected, create_store, merge_document, strip_unset
from locallink.infra.store.memory import InMemoryDocumentStore


class TestHelpers:
    """Tests for the pure merge/condition helpers."""

    def test_strip_unset_drops_none_recursively(self):
        assert strip_unset({"a": 1, "b": None, "c": {"d": None, "e": [1, {"f": None}]}}) == {
            "a": 1,
            "c": {"e": [1, {}]},
        }

    def test_strip_unset_converts_enums(self):
        assert strip_unset({"collection": Collection.ORDERS}) == {"collection": "orders"}

    def test_merge_overwrites_only_given_fields(self):
        merged = merge_document({"a": 1, "b": {"x": 1, "y": 2}}, {"b": {"y": 3}, "c": 4})
        assert merged == {"a": 1, "b": {"x": 1, "y": 3}, "c": 4}

    def test_missing_field_compares_equal_to_none(self):
        check_expected("orders", "o1", {"id": "o1"}, {"delivery_partner_id": None})
        check_expected("orders", "o1", None, {"id": None})

    def test_mismatch_raises_condition_failed(self):
        with pytest.raises(ConditionFailed) as exc_info:
            check_expected("orders", "o1", {"status": "assigned"}, {"status": "pending_assignment"})
        assert exc_info.value.field == "status"
        assert exc_info.value.actual == "assigned"

    def test_create_store_defaults_to_memory(self):
        assert isinstance(create_store("memory"), InMemoryDocumentStore)
        with pytest.raises(ValueError):
            create_store("redis")


class TestInMemoryDocumentStore:
    """Tests for InMemoryDocumentStore."""

    @pytest.mark.asyncio
    async def test_merge_write_keeps_other_fields(self, store):
        await store.write("offers", "o1", {"id": "o1", "price": 10, "status": "pending"})
        stored = await store.write("offers", "o1", {"status": "rejected"})
        assert stored == {"id": "o1", "price": 10, "status": "rejected"}

    @pytest.mark.asyncio
    async def test_replace_write(self, store):
        await store.write("offers", "o1", {"id": "o1", "price": 10})
        stored = await store.write("offers", "o1", {"id": "o1"}, merge=False)
        assert stored == {"id": "o1"}

    @pytest.mark.asyncio
    async def test_none_values_are_not_stored(self, store):
        stored = await store.write("users", "u1", {"id": "u1", "address": None})
        assert "address" not in stored

    @pytest.mark.asyncio
    async def test_create_if_absent(self, store):
        await store.write("orders", "o1", {"id": "o1"}, expected={"id": None})
        with pytest.raises(ConditionFailed):
            await store.write("orders", "o1", {"id": "o1", "x": 1}, expected={"id": None})
        assert await store.get("orders", "o1") == {"id": "o1"}

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self, store):
        await store.write("orders", "o1", {"id": "o1", "tags": ["a"]})
        doc = await store.get("orders", "o1")
        doc["tags"].append("b")
        assert (await store.get("orders", "o1"))["tags"] == ["a"]

    @pytest.mark.asyncio
    async def test_fail_next_targets_one_collection(self, store):
        store.fail_next("write", collection="offers")
        await store.write("orders", "o1", {"id": "o1"})
        with pytest.raises(TransientStoreError) as exc_info:
            await store.write("offers", "x", {"id": "x"})
        assert exc_info.value.operation == "write"
        await store.write("offers", "x", {"id": "x"})

    @pytest.mark.asyncio
    async def test_fail_next_load_all(self, store):
        store.fail_next("load_all", count=2)
        for _ in range(2):
            with pytest.raises(TransientStoreError):
                await store.load_all("requests")
        assert await store.load_all("requests") == []

    @pytest.mark.asyncio
    async def test_subscribe_delivers_current_state_then_changes(self, store):
        batches = []

        async def on_change(docs):
            batches.append(sorted(d["id"] for d in docs))

        await store.write("requests", "r1", {"id": "r1"})
        sub = await store.subscribe("requests", on_change)
        await store.flush()
        assert batches == [["r1"]]

        await store.write("requests", "r2", {"id": "r2"})
        await store.write("requests", "r3", {"id": "r3"})
        await store.flush()
        # consecutive writes may coalesce, but the last batch is always current
        assert batches[-1] == ["r1", "r2", "r3"]

        sub.close()
        sub.close()
        assert sub.closed
        await store.write("requests", "r4", {"id": "r4"})
        await store.flush()
        assert batches[-1] == ["r1", "r2", "r3"]

    @pytest.mark.asyncio
    async def test_failing_subscriber_keeps_receiving(self, store):
        calls = []

        async def on_change(docs):
            calls.append(len(docs))
            if len(calls) == 1:
                raise RuntimeError("handler bug")

        await store.subscribe("updates", on_change)
        await store.flush()
        await store.write("updates", "u1", {"id": "u1"})
        await store.flush()
        assert calls == [0, 1]

    @pytest.mark.asyncio
    async def test_subscribe_failure(self, store):
        store.fail_next("subscribe")

        async def on_change(docs):
            pass

        with pytest.raises(TransientStoreError):
            await store.subscribe("orders", on_change)
