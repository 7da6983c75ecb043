"""
Storage Layer - durable engine state
=====================================
File store  : one JSON document, written atomically (temp file + rename)
Redis store : same document under a single key

Both stores honour the same contract:
    load() -> dict | None     (missing or corrupt -> None, never raises)
    save(doc) -> bool         (failure -> False + log, never raises)

DebouncedWriter sits in front of a store: mutations call request(), writes
coalesce inside the debounce window, and at most one write is in flight.
"""

import os
import time
import asyncio
import logging
import tempfile
import contextlib
from pathlib import Path
from typing import Callable, Optional

import orjson
import redis

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class StateStore:
    """Opaque durable blob store for the engine document."""

    def __init__(self):
        self._consecutive_failures = 0
        self._MAX_FAILURES = 5

    def load(self) -> Optional[dict]:
        raise NotImplementedError

    def save(self, doc: dict) -> bool:
        raise NotImplementedError

    def _record_failure(self, what: str, exc: Exception):
        self._consecutive_failures += 1
        logger.error(f"[STORE] {what} failed: {exc}")
        if self._consecutive_failures >= self._MAX_FAILURES:
            logger.critical(
                f"[STORE] {self._consecutive_failures} consecutive failures! "
                "In-memory state is authoritative until a write succeeds."
            )
            self._consecutive_failures = 0

    def _record_success(self):
        self._consecutive_failures = 0


# ─────────────────────────────────────────────────────────────────────
# File Store
# ─────────────────────────────────────────────────────────────────────

class FileStateStore(StateStore):

    def __init__(self, path):
        super().__init__()
        self.path = Path(path)

    def load(self) -> Optional[dict]:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error(f"[STORE] Cannot read {self.path}: {e}")
            return None

        try:
            doc = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            logger.warning(f"[STORE] Corrupt state file {self.path}: {e}")
            self._quarantine()
            return None
        if not isinstance(doc, dict):
            logger.warning(f"[STORE] Unexpected state payload type {type(doc).__name__}")
            self._quarantine()
            return None
        return doc

    def _quarantine(self):
        """Keep the corrupt payload around for inspection, out of the load path."""
        target = self.path.with_name(f"{self.path.name}.corrupt-{_now_ms()}")
        try:
            os.replace(self.path, target)
            logger.warning(f"[STORE] Corrupt payload preserved at {target}")
        except OSError as e:
            logger.error(f"[STORE] Could not preserve corrupt payload: {e}")

    def save(self, doc: dict) -> bool:
        try:
            payload = orjson.dumps(doc, option=orjson.OPT_INDENT_2)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp, self.path)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(tmp)
                raise
        except (OSError, TypeError) as e:
            self._record_failure(f"write {self.path}", e)
            return False
        self._record_success()
        return True


# ─────────────────────────────────────────────────────────────────────
# Redis Store
# ─────────────────────────────────────────────────────────────────────

class RedisStateStore(StateStore):

    def __init__(self, client: Optional[redis.Redis] = None,
                 url: str = "redis://localhost:6379/0",
                 key: str = "paper:state"):
        super().__init__()
        self.r = client if client is not None else redis.Redis.from_url(
            url, socket_connect_timeout=5
        )
        self.key = key

    def load(self) -> Optional[dict]:
        try:
            raw = self.r.get(self.key)
        except redis.RedisError as e:
            logger.error(f"[STORE] Redis GET {self.key} failed: {e}")
            return None
        if raw is None:
            return None
        try:
            doc = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            logger.warning(f"[STORE] Corrupt state under {self.key}: {e}")
            self._quarantine(raw)
            return None
        if not isinstance(doc, dict):
            self._quarantine(raw)
            return None
        return doc

    def _quarantine(self, raw):
        target = f"{self.key}:corrupt:{_now_ms()}"
        try:
            self.r.set(target, raw)
            self.r.delete(self.key)
            logger.warning(f"[STORE] Corrupt payload preserved at {target}")
        except redis.RedisError as e:
            logger.error(f"[STORE] Could not preserve corrupt payload: {e}")

    def save(self, doc: dict) -> bool:
        try:
            self.r.set(self.key, orjson.dumps(doc))
        except (redis.RedisError, TypeError) as e:
            self._record_failure(f"Redis SET {self.key}", e)
            return False
        self._record_success()
        return True


def build_store(config) -> StateStore:
    if config.state_backend == "redis":
        logger.info(f"[STORE] Using redis {config.redis_url} key={config.redis_key}")
        return RedisStateStore(url=config.redis_url, key=config.redis_key)
    logger.info(f"[STORE] Using file {config.state_path}")
    return FileStateStore(config.state_path)


# ─────────────────────────────────────────────────────────────────────
# Debounced Writer
# ─────────────────────────────────────────────────────────────────────

class DebouncedWriter:
    """
    Write queue of depth 1 in front of a StateStore.

    - request(): mark dirty; schedule one write after `delay_ms`
    - request(immediate=True): write as soon as the lock allows
    - the document is rendered when the write starts (latest wins)
    - writes never overlap (asyncio.Lock); failures leave the dirty flag set
    - `async with writer:` flushes pending state on exit

    Without a running event loop (plain scripts, sync tests) immediate
    requests write synchronously and debounced ones wait for flush_sync().
    """

    def __init__(self, store: StateStore, render: Callable[[], dict],
                 delay_ms: int = 500):
        self.store = store
        self.render = render
        self.delay = delay_ms / 1000
        self._dirty = False
        self._lock = asyncio.Lock()
        self._timer: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()
        self.writes = 0

    @property
    def dirty(self) -> bool:
        return self._dirty

    def request(self, immediate: bool = False):
        self._dirty = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if immediate:
                self.flush_sync()
            return

        if immediate:
            self._spawn(loop, self.flush())
        elif self._timer is None or self._timer.done():
            self._timer = self._spawn(loop, self._delayed_flush())

    def _spawn(self, loop, coro) -> asyncio.Task:
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _delayed_flush(self):
        # request() made while this timer is mid-write does not arm a new
        # one, so keep going until a write leaves nothing dirty.
        while True:
            await asyncio.sleep(self.delay)
            # Shielded so cancelling the timer never abandons a write mid-flight.
            ok = await asyncio.shield(self.flush())
            if not ok or not self._dirty:
                return

    async def flush(self) -> bool:
        async with self._lock:
            if not self._dirty:
                return True
            self._dirty = False
            doc = self.render()
            ok = await asyncio.to_thread(self.store.save, doc)
            if ok:
                self.writes += 1
            else:
                self._dirty = True
            return ok

    def flush_sync(self) -> bool:
        if not self._dirty:
            return True
        self._dirty = False
        ok = self.store.save(self.render())
        if ok:
            self.writes += 1
        else:
            self._dirty = True
        return ok

    async def save_now(self) -> bool:
        self._dirty = True
        return await self.flush()

    async def close(self) -> bool:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        return await self.flush()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
