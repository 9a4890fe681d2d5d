"""Tests for the Redis-backed document store."""

from __future__ import annotations

import asyncio
import json
from contextlib import aclosing

import pytest

from wikirace.errors import StoreUnavailable
from wikirace.store.documents import (
    DocumentNotFound,
    DocumentStore,
    Mutation,
    flatten,
    key_for,
    plan_update,
    unflatten,
)


class TestFlattening:
    def test_nested_paths(self):
        doc = {"code": "12345", "players": {"p_1": {"nick": "ana", "clicks": 3}}}
        fields = flatten(doc)
        assert fields == {
            "code": '"12345"',
            "players/p_1/nick": '"ana"',
            "players/p_1/clicks": "3",
        }
        assert unflatten(fields) == doc

    def test_none_and_empty_dicts_vanish(self):
        assert flatten({"a": None, "b": {}, "c": False}) == {"c": "false"}

    def test_leaf_under_leaf_is_corrupt(self):
        with pytest.raises(ValueError):
            unflatten({"winner": '"x"', "winner/nick": '"y"'})

    def test_key_for(self):
        assert key_for("rooms/12345") == "rooms:12345"
        assert key_for("/rooms/12345/") == "rooms:12345"


class TestPlanUpdate:
    def test_subtree_replace_removes_stale_leaves(self):
        existing = ["players/p_1/nick", "players/p_1/clicks", "players/p_1/timeMs", "code"]
        removals, writes = plan_update(existing, {"players/p_1": {"nick": "ana", "clicks": 0}})
        assert removals == ["players/p_1/timeMs"]
        assert writes == {"players/p_1/nick": '"ana"', "players/p_1/clicks": "0"}

    def test_none_deletes_subtree_only(self):
        existing = ["players/p_1/nick", "players/p_10/nick", "code"]
        removals, writes = plan_update(existing, {"players/p_1": None})
        assert removals == ["players/p_1/nick"]
        assert writes == {}

    def test_ancestor_leaf_is_replaced(self):
        removals, writes = plan_update(["winner"], {"winner/nick": "ana"})
        assert removals == ["winner"]
        assert writes == {"winner/nick": '"ana"'}


@pytest.mark.asyncio
class TestDocumentStore:
    async def test_set_get_roundtrip(self, store: DocumentStore):
        await store.set("rooms/11111", {"code": "11111", "players": {"p_1": {"clicks": 0}}})
        assert await store.get("rooms/11111") == {"code": "11111", "players": {"p_1": {"clicks": 0}}}

    async def test_get_missing(self, store: DocumentStore):
        assert await store.get("rooms/00000") is None

    async def test_set_replaces_whole_document(self, store: DocumentStore):
        await store.set("rooms/11111", {"a": 1, "b": 2})
        await store.set("rooms/11111", {"c": 3})
        assert await store.get("rooms/11111") == {"c": 3}

    async def test_update_touches_only_named_fields(self, store: DocumentStore):
        await store.set("rooms/11111", {"name": "x", "players": {"p_1": {"clicks": 1}}})
        await store.update("rooms/11111", {"players/p_2": {"clicks": 0}, "lastActivityAt": 5})
        assert await store.get("rooms/11111") == {
            "name": "x",
            "lastActivityAt": 5,
            "players": {"p_1": {"clicks": 1}, "p_2": {"clicks": 0}},
        }

    async def test_update_never_recreates_deleted_document(self, store: DocumentStore):
        with pytest.raises(DocumentNotFound):
            await store.update("rooms/22222", {"players/p_1/clicks": 4})
        assert await store.get("rooms/22222") is None

    async def test_removing_last_field_deletes_document(self, store: DocumentStore, redis_client):
        await store.set("rooms/11111", {"players": {"p_1": {"clicks": 1}}})
        await store.update("rooms/11111", {"players/p_1": None})
        assert await redis_client.exists("rooms:11111") == 0

    async def test_create_only_if_absent(self, store: DocumentStore):
        assert await store.create("rooms/33333", {"name": "first"}) is True
        assert await store.create("rooms/33333", {"name": "second"}) is False
        assert await store.get("rooms/33333") == {"name": "first"}

    async def test_remove(self, store: DocumentStore):
        await store.set("rooms/11111", {"a": 1})
        assert await store.remove("rooms/11111") is True
        assert await store.remove("rooms/11111") is False

    async def test_transact_noop_writes_nothing(self, store: DocumentStore, redis_client):
        result = await store.transact("rooms/44444", lambda current: Mutation(result=current))
        assert result is None
        assert await redis_client.exists("rooms:44444") == 0

    async def test_transact_abort_propagates(self, store: DocumentStore):
        await store.set("rooms/11111", {"a": 1})

        def _boom(_current):
            raise LookupError("nope")

        with pytest.raises(LookupError):
            await store.transact("rooms/11111", _boom)
        assert await store.get("rooms/11111") == {"a": 1}

    async def test_concurrent_disjoint_updates_all_land(self, store: DocumentStore):
        await store.set("rooms/55555", {"name": "busy"})
        await asyncio.gather(*(
            store.update("rooms/55555", {f"players/p_{i}": {"clicks": i}})
            for i in range(10)
        ))
        doc = await store.get("rooms/55555")
        assert set(doc["players"]) == {f"p_{i}" for i in range(10)}

    async def test_concurrent_counter_increments_serialize(self, store: DocumentStore):
        await store.set("rooms/66666", {"count": 0})

        def _incr(current):
            return Mutation(update={"count": current["count"] + 1})

        await asyncio.gather(*(store.transact("rooms/66666", _incr) for _ in range(8)))
        assert (await store.get("rooms/66666"))["count"] == 8

    async def test_writes_publish_change_notifications(self, store: DocumentStore, redis_client):
        pubsub = redis_client.pubsub()
        await pubsub.subscribe("watch:rooms:77777")
        await pubsub.get_message(timeout=1.0)  # subscribe confirmation

        await store.set("rooms/77777", {"a": 1})
        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
        assert json.loads(message["data"]) == {"key": "rooms:77777", "deleted": False}

        await store.remove("rooms/77777")
        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
        assert json.loads(message["data"])["deleted"] is True
        await pubsub.aclose()


@pytest.mark.asyncio
class TestWatch:
    async def test_first_snapshot_is_current_value(self, store: DocumentStore):
        await store.set("rooms/12121", {"phase": "waiting"})
        async with aclosing(store.watch("rooms/12121", poll_timeout=0.05)) as snapshots:
            assert await anext(snapshots) == {"phase": "waiting"}

    async def test_changes_then_terminal_none(self, store: DocumentStore):
        await store.set("rooms/12121", {"phase": "waiting"})
        seen = []

        async def _consume():
            async with aclosing(store.watch("rooms/12121", poll_timeout=0.05)) as snapshots:
                async for snapshot in snapshots:
                    seen.append(snapshot)

        task = asyncio.create_task(_consume())
        await asyncio.sleep(0.1)
        await store.update("rooms/12121", {"phase": "playing"})
        await asyncio.sleep(0.1)
        await store.remove("rooms/12121")
        await asyncio.wait_for(task, timeout=2)

        assert seen[0] == {"phase": "waiting"}
        assert {"phase": "playing"} in seen
        assert seen[-1] is None

    async def test_watch_missing_document_ends_immediately(self, store: DocumentStore):
        snapshots = [s async for s in store.watch("rooms/99999", poll_timeout=0.05)]
        assert snapshots == [None]

    async def test_subscribe_callback_and_unsubscribe(self, store: DocumentStore):
        await store.set("rooms/13131", {"n": 0})
        received = []
        subscription = store.subscribe("rooms/13131", received.append, poll_timeout=0.05)
        await asyncio.sleep(0.1)
        await store.update("rooms/13131", {"n": 1})
        await asyncio.sleep(0.2)
        await subscription.unsubscribe()

        assert received[0] == {"n": 0}
        assert received[-1] == {"n": 1}
        assert not subscription.active


@pytest.mark.asyncio
async def test_connection_failure_is_store_unavailable():
    import redis.asyncio as aioredis

    dead = aioredis.from_url("redis://127.0.0.1:1/0", decode_responses=True, socket_connect_timeout=0.2)
    store = DocumentStore(dead)
    with pytest.raises(StoreUnavailable):
        await store.get("rooms/12345")
    await dead.aclose()
