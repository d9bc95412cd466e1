"""
Record store abstraction.
A hierarchical key-value store addressed by slash-separated paths
(messages/{id}, users/{uid}, ...) with subscribe-on-change, plus the
atomic counter capability used by the rate limiter.
"""
import asyncio
import copy
import inspect
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union
from uuid import uuid4

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Any], Union[None, Awaitable[None]]]


def split_path(path: str) -> List[str]:
    parts = [p for p in path.strip("/").split("/") if p]
    if not parts:
        raise ValueError(f"Invalid record path: {path!r}")
    return parts


def join_path(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p)


def _related(a: str, b: str) -> bool:
    """True when one path equals or contains the other."""
    return a == b or a.startswith(b + "/") or b.startswith(a + "/")


@dataclass
class _Subscription:
    path: str
    callback: ChangeCallback
    active: bool = True


class RecordStore(ABC):
    """
    Base class for record stores.
    Subclasses implement storage; change fan-out to subscribers lives here.
    """

    def __init__(self):
        self._subscriptions: List[_Subscription] = []

    @abstractmethod
    async def read(self, path: str) -> Optional[Any]:
        """Value at path (a dict of children for collections), or None."""

    @abstractmethod
    async def _write(self, path: str, value: Any, merge: bool) -> None:
        pass

    @abstractmethod
    async def _delete(self, path: str) -> None:
        pass

    async def write(self, path: str, value: Any, merge: bool = False) -> None:
        """Replace the value at path, or shallow-merge a dict into it (None removes a key)."""
        await self._write(path, value, merge)
        await self._notify(path)

    async def delete(self, path: str) -> None:
        await self._delete(path)
        await self._notify(path)

    async def append(self, prefix: str, value: Any = None) -> str:
        """Create a unique child key under prefix; store value there when given."""
        key = self._new_key()
        if value is not None:
            await self.write(join_path(prefix, key), value)
        return key

    async def read_children(self, prefix: str) -> Dict[str, Any]:
        data = await self.read(prefix)
        return data if isinstance(data, dict) else {}

    async def subscribe(self, path: str, on_change: ChangeCallback) -> Callable[[], None]:
        """
        Deliver the current value at path now and after every change under it.
        Returns an unsubscribe handle.
        """
        subscription = _Subscription(path="/".join(split_path(path)), callback=on_change)
        self._subscriptions.append(subscription)
        await self._deliver(subscription)

        def unsubscribe() -> None:
            subscription.active = False
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    async def close(self) -> None:
        self._subscriptions.clear()

    async def _notify(self, path: str) -> None:
        changed = "/".join(split_path(path))
        for subscription in list(self._subscriptions):
            if subscription.active and _related(subscription.path, changed):
                await self._deliver(subscription)

    async def _deliver(self, subscription: _Subscription) -> None:
        value = await self.read(subscription.path)
        try:
            result = subscription.callback(value)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            # A failing subscriber must not break the writer
            logger.error(f"Subscriber for {subscription.path} failed: {e}")

    @staticmethod
    def _new_key() -> str:
        # Time-prefixed so keys sort in creation order
        return f"{int(time.time() * 1000):012x}{uuid4().hex[:8]}"


class InMemoryRecordStore(RecordStore):
    """
    Process-local record store backed by a nested dict tree.
    Used for tests, simulations and single-node development.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        super().__init__()
        self._root: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def read(self, path: str) -> Optional[Any]:
        node: Any = self._root
        for part in split_path(path):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return copy.deepcopy(node)

    async def _write(self, path: str, value: Any, merge: bool) -> None:
        if merge and isinstance(value, dict):
            current = await self.read(path)
            merged = current if isinstance(current, dict) else {}
            for key, item in value.items():
                if item is None:
                    merged.pop(key, None)
                else:
                    merged[key] = copy.deepcopy(item)
            value = merged
        if value is None:
            self._remove(path)
            return
        parent, leaf = self._parent_of(path, create=True)
        parent[leaf] = copy.deepcopy(value)

    async def _delete(self, path: str) -> None:
        self._remove(path)

    def _parent_of(self, path: str, create: bool) -> Tuple[Optional[Dict[str, Any]], str]:
        parts = split_path(path)
        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                if not create:
                    return None, parts[-1]
                child = {}
                node[part] = child
            node = child
        return node, parts[-1]

    def _remove(self, path: str) -> None:
        parts = split_path(path)
        trail = [self._root]
        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                return
            trail.append(child)
            node = child
        node.pop(parts[-1], None)
        # Prune empty parents
        for depth in range(len(parts) - 1, 0, -1):
            if trail[depth]:
                break
            trail[depth - 1].pop(parts[depth - 1], None)


class CounterStore(ABC):
    """Atomic increment-and-expire counters shared across instances."""

    @abstractmethod
    async def incr(self, key: str, ttl_seconds: int) -> int:
        """Increment key (creating it with the TTL) and return the new count."""

    @abstractmethod
    async def incr_if_below(self, key: str, limit: int, ttl_seconds: int) -> Optional[int]:
        """
        Atomically increment key only while its live count is below limit.
        Returns the new count, or None when the key is already at the limit.
        """

    @abstractmethod
    async def get(self, key: str) -> int:
        pass

    @abstractmethod
    async def purge_expired(self) -> int:
        """Drop expired counters; returns how many were removed."""


class InMemoryCounterStore(CounterStore):
    """Single-process counters; every increment also sweeps expired keys."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._counters: Dict[str, Tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def incr(self, key: str, ttl_seconds: int) -> int:
        async with self._lock:
            now = self._clock()
            self._sweep(now)
            return self._bump(key, ttl_seconds, now)

    async def incr_if_below(self, key: str, limit: int, ttl_seconds: int) -> Optional[int]:
        async with self._lock:
            now = self._clock()
            self._sweep(now)
            count, _ = self._counters.get(key, (0, 0.0))
            if count >= limit:
                return None
            return self._bump(key, ttl_seconds, now)

    async def get(self, key: str) -> int:
        count, expires_at = self._counters.get(key, (0, 0.0))
        if expires_at <= self._clock():
            self._counters.pop(key, None)
            return 0
        return count

    async def purge_expired(self) -> int:
        async with self._lock:
            return self._sweep(self._clock())

    def _bump(self, key: str, ttl_seconds: int, now: float) -> int:
        # Expired keys were swept, so a missing key starts a fresh TTL
        count, expires_at = self._counters.get(key, (0, now + ttl_seconds))
        count += 1
        self._counters[key] = (count, expires_at)
        return count

    def _sweep(self, now: float) -> int:
        expired = [key for key, (_, expires_at) in self._counters.items() if expires_at <= now]
        for key in expired:
            del self._counters[key]
        return len(expired)


def create_store(config=None) -> Tuple[RecordStore, CounterStore]:
    """Build the record and counter stores selected by configuration."""
    from chatmod.lib.config import settings as default_settings

    config = config or default_settings
    if config.store_backend == "postgres":
        from chatmod.lib.database import DatabaseConnection, PostgresCounterStore, PostgresRecordStore

        db = DatabaseConnection(config)
        logger.info("Using PostgreSQL record store")
        return PostgresRecordStore(db), PostgresCounterStore(db)
    if config.store_backend != "memory":
        raise ValueError(f"Unknown store backend: {config.store_backend}")
    logger.info("Using in-memory record store")
    return InMemoryRecordStore(), InMemoryCounterStore()
