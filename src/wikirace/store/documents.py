"""Document store over Redis hashes.

A document lives at a slash path such as ``rooms/12345`` and is stored as the
hash ``rooms:12345``. Nested objects are flattened into leaf fields
(``players/p_1a2b/clicks``) holding JSON values, so a partial update only
touches the leaves it names and writers on disjoint subtrees commute.

Every write runs under WATCH on the document key. A write that loses a race
is re-read and re-applied, a partial update never recreates a deleted
document, and a subtree replace is a single atomic commit. Each commit also
publishes on ``watch:<key>`` inside the same MULTI; watchers re-read the
document and hand out the full snapshot.
"""

from __future__ import annotations

import asyncio
import inspect
import json
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import aclosing, asynccontextmanager, suppress
from dataclasses import dataclass
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from wikirace.errors import StoreUnavailable

logger = structlog.get_logger()

SEP = "/"

Document = dict[str, Any]
Snapshot = Document | None


class DocumentNotFound(LookupError):
    """Raised by ``update`` when the target document does not exist."""


@dataclass
class Mutation:
    """What a transaction wants to commit after reading the current document.

    ``update`` maps relative paths to new values; a ``None`` value deletes
    that subtree. ``replace`` writes a whole new document, ``delete`` removes
    it. ``result`` is handed back to the caller of ``transact``.
    """

    update: dict[str, Any] | None = None
    replace: Document | None = None
    delete: bool = False
    result: Any = None

    @property
    def is_noop(self) -> bool:
        return not self.update and self.replace is None and not self.delete


def key_for(path: str) -> str:
    """Map a slash path to its Redis key: ``rooms/12345`` -> ``rooms:12345``."""
    return path.strip(SEP).replace(SEP, ":")


def channel_for(key: str) -> str:
    """Pub/sub channel carrying change notifications for one document."""
    return f"watch:{key}"


def flatten(value: Document, prefix: str = "") -> dict[str, str]:
    """Flatten nested dicts into ``path -> JSON leaf``. None and empty dicts vanish."""
    fields: dict[str, str] = {}
    for name, item in value.items():
        path = f"{prefix}{name}"
        if isinstance(item, dict):
            fields.update(flatten(item, path + SEP))
        elif item is not None:
            fields[path] = json.dumps(item)
    return fields


def unflatten(fields: dict[str, str]) -> Document:
    """Rebuild the nested document from its flattened hash fields."""
    doc: Document = {}
    for field in sorted(fields):
        parts = field.split(SEP)
        node = doc
        for part in parts[:-1]:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise ValueError(f"Field {field!r} nests under leaf {part!r}")
            node = child
        if isinstance(node.get(parts[-1]), dict):
            raise ValueError(f"Field {field!r} collides with a subtree")
        node[parts[-1]] = json.loads(fields[field])
    return doc


def plan_update(
    existing: Iterable[str], updates: dict[str, Any],
) -> tuple[list[str], dict[str, str]]:
    """Turn a partial update into (fields to delete, fields to write).

    Writing a path replaces its whole subtree: stale leaves below it and any
    leaf sitting on one of its ancestors are removed.
    """
    existing = set(existing)
    removals: set[str] = set()
    writes: dict[str, str] = {}

    for raw_path, value in updates.items():
        path = raw_path.strip(SEP)
        prefix = path + SEP
        removals.update(f for f in existing if f == path or f.startswith(prefix))

        parts = path.split(SEP)
        for depth in range(1, len(parts)):
            ancestor = SEP.join(parts[:depth])
            if ancestor in existing:
                removals.add(ancestor)

        if isinstance(value, dict):
            writes.update(flatten(value, prefix))
        elif value is not None:
            writes[path] = json.dumps(value)

    removals -= writes.keys()
    return sorted(removals), writes


class Subscription:
    """Handle returned by ``DocumentStore.subscribe``."""

    def __init__(self, task: asyncio.Task[None]) -> None:
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    async def unsubscribe(self) -> None:
        """Stop delivery. Re-raises the error that ended the watch, if any."""
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task


class DocumentStore:
    """get / set / update / remove / watch over Redis hashes."""

    def __init__(self, redis: aioredis.Redis, max_retries: int = 25) -> None:
        self.redis = redis
        self.max_retries = max_retries

    @asynccontextmanager
    async def _guard(self, key: str) -> AsyncIterator[None]:
        """Translate connectivity failures into StoreUnavailable."""
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError) as exc:
            logger.warning("store_unavailable", key=key, error=str(exc))
            raise StoreUnavailable() from exc

    # ── Reads ──

    async def get(self, path: str) -> Snapshot:
        """Point read. Returns None when the document does not exist."""
        key = key_for(path)
        async with self._guard(key):
            raw = await self.redis.hgetall(key)
        return unflatten(raw) if raw else None

    async def scan(self, namespace: str) -> AsyncIterator[str]:
        """Yield the ids of every document directly under ``namespace``."""
        prefix = key_for(namespace) + ":"
        async with self._guard(prefix):
            async for key in self.redis.scan_iter(match=f"{prefix}*", count=200):
                child = key[len(prefix):]
                if child and ":" not in child:
                    yield child

    # ── Writes ──

    async def transact(self, path: str, fn: Callable[[Snapshot], Mutation]) -> Any:
        """Optimistic read-modify-write of one document.

        ``fn`` receives the current snapshot and returns a Mutation; it may
        raise to abort without writing. When another writer commits between
        the read and the write, ``fn`` runs again against the fresh state.
        """
        key = key_for(path)
        async with self._guard(key):
            async with self.redis.pipeline(transaction=True) as pipe:
                for attempt in range(1, self.max_retries + 1):
                    try:
                        await pipe.watch(key)
                        raw = await pipe.hgetall(key)
                        mutation = fn(unflatten(raw) if raw else None)
                        if mutation.is_noop:
                            await pipe.reset()
                            return mutation.result
                        pipe.multi()
                        self._stage(pipe, key, raw.keys(), mutation)
                        await pipe.execute()
                        return mutation.result
                    except WatchError:
                        logger.debug("store_write_conflict", key=key, attempt=attempt)
                        continue

        logger.warning("store_contention_exhausted", key=key, attempts=self.max_retries)
        raise StoreUnavailable(f"Too many concurrent writers on {path}, please retry")

    @staticmethod
    def _stage(
        pipe: aioredis.client.Pipeline, key: str, existing: Iterable[str], mutation: Mutation,
    ) -> None:
        """Queue the commands of a mutation plus its change notification."""
        existing = set(existing)
        if mutation.delete:
            pipe.delete(key)
            deleted = True
        elif mutation.replace is not None:
            fields = flatten(mutation.replace)
            pipe.delete(key)
            if fields:
                pipe.hset(key, mapping=fields)
            deleted = not fields
        else:
            removals, writes = plan_update(existing, mutation.update or {})
            if removals:
                pipe.hdel(key, *removals)
            if writes:
                pipe.hset(key, mapping=writes)
            deleted = not ((existing - set(removals)) | writes.keys())

        pipe.publish(channel_for(key), json.dumps({"key": key, "deleted": deleted}))

    async def set(self, path: str, value: Document) -> None:
        """Full replace."""
        await self.transact(path, lambda _current: Mutation(replace=value))

    async def create(self, path: str, value: Document) -> bool:
        """Write ``value`` only if no document exists at ``path``."""

        def _create(current: Snapshot) -> Mutation:
            if current is not None:
                return Mutation(result=False)
            return Mutation(replace=value, result=True)

        return await self.transact(path, _create)

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        """Atomic multi-field partial write. Raises DocumentNotFound if absent."""

        def _update(current: Snapshot) -> Mutation:
            if current is None:
                raise DocumentNotFound(path)
            return Mutation(update=fields)

        await self.transact(path, _update)

    async def remove(self, path: str) -> bool:
        """Delete the document. Returns whether it existed."""

        def _remove(current: Snapshot) -> Mutation:
            if current is None:
                return Mutation(result=False)
            return Mutation(delete=True, result=True)

        return await self.transact(path, _remove)

    # ── Watch ──

    async def watch(self, path: str, poll_timeout: float = 1.0) -> AsyncIterator[Snapshot]:
        """Yield the full document now and after every change.

        A ``None`` snapshot means the document no longer exists; it is the
        last item. Consecutive snapshots may be identical.
        """
        key = key_for(path)
        channel = channel_for(key)
        pubsub = self.redis.pubsub()
        try:
            async with self._guard(key):
                await pubsub.subscribe(channel)
            snapshot = await self.get(path)
            yield snapshot
            while snapshot is not None:
                async with self._guard(key):
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True,
                        timeout=poll_timeout,
                    )
                if message is None:
                    continue
                snapshot = await self.get(path)
                yield snapshot
        finally:
            with suppress(RedisConnectionError, RedisTimeoutError):
                await pubsub.unsubscribe(channel)
            await pubsub.aclose()

    def subscribe(
        self,
        path: str,
        callback: Callable[[Snapshot], Awaitable[None] | None],
        poll_timeout: float = 1.0,
    ) -> Subscription:
        """Callback flavour of ``watch``: run ``callback`` for every snapshot."""

        async def _pump() -> None:
            async with aclosing(self.watch(path, poll_timeout)) as snapshots:
                async for snapshot in snapshots:
                    outcome = callback(snapshot)
                    if inspect.isawaitable(outcome):
                        await outcome

        return Subscription(asyncio.create_task(_pump()))
