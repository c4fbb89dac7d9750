"""Generic reconciliation over a Kubernetes watch stream.

A watch stream delivers newline-delimited ``{"type": ..., "object": ...}``
events and terminates periodically. When a new stream is opened the API
server replays ADDED for every resource that still exists, so a resource
that is not replayed within one full restart cycle is treated as deleted.

Subclasses implement ``get_stream`` and the async ``on_added`` /
``on_modified`` / ``on_deleted`` callbacks. Callbacks for one watcher run
strictly one at a time, in the order events were received.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import random
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from . import metrics

logger = logging.getLogger(__name__)

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"


class WatcherState(enum.Enum):
    READY = "READY"
    RUNNING = "RUNNING"
    ENDED = "ENDED"


class WatchStream(Protocol):
    """An abortable source of raw watch lines."""

    def __aiter__(self) -> AsyncIterator[bytes | str | dict[str, Any]]: ...

    def abort(self) -> None: ...


@dataclass
class TrackedResource:
    resource_version: str | None
    resource: dict[str, Any]
    end_event: bool = False


Callback = Callable[[dict[str, Any]], Awaitable[None]]


def resource_id(resource: dict[str, Any]) -> str:
    metadata = resource.get("metadata") or {}
    return f"{metadata.get('namespace')}/{metadata.get('name')}"


def resource_version(resource: dict[str, Any]) -> str | None:
    return (resource.get("metadata") or {}).get("resourceVersion")


class Watcher:
    """Turns a restart-prone change feed into ordered add/modify/delete callbacks."""

    # Reopen delay after a transport error: initial * 2**(n-1), capped, with jitter.
    restart_backoff_initial_seconds: float = 1.0
    restart_backoff_max_seconds: float = 30.0

    def __init__(self) -> None:
        self._active_resources: dict[str, TrackedResource] = {}
        self._state = WatcherState.READY
        self._stream: WatchStream | None = None
        self._stream_task: asyncio.Task[None] | None = None
        self._queue: asyncio.Queue[tuple[Callback, dict[str, Any]] | None] = asyncio.Queue()
        self._dispatcher: asyncio.Task[None] | None = None
        self._error_streak = 0

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def active_resources(self) -> dict[str, TrackedResource]:
        return self._active_resources

    # -- subclass hooks -----------------------------------------------------

    def get_stream(self) -> WatchStream:
        raise NotImplementedError

    async def on_added(self, resource: dict[str, Any]) -> None:
        raise NotImplementedError

    async def on_modified(self, resource: dict[str, Any]) -> None:
        raise NotImplementedError

    async def on_deleted(self, resource: dict[str, Any]) -> None:
        raise NotImplementedError

    # -- lifecycle ----------------------------------------------------------

    def start(self) -> None:
        """Open a fresh watch stream and start consuming it."""
        self._state = WatcherState.RUNNING
        self._ensure_dispatcher()

        previous = self._stream_task
        if previous is not None and previous is not asyncio.current_task() and not previous.done():
            if self._stream is not None:
                self._stream.abort()
            previous.cancel()

        stream = self.get_stream()
        self._stream = stream
        self._stream_task = asyncio.get_running_loop().create_task(
            self._consume(stream), name=f"watch:{self.name}"
        )

    def stop(self) -> None:
        """Abort the stream and synthesize a delete for every tracked resource."""
        self._state = WatcherState.ENDED
        self._abort_stream()

        for tracked in list(self._active_resources.values()):
            self._on_deleted(tracked.resource)

        if self._dispatcher is not None:
            self._queue.put_nowait(None)

    def shutdown(self) -> None:
        """Abort the stream without reporting tracked resources as deleted.

        Used when the process exits: the resources still exist, so nothing
        persisted on their behalf may be torn down.
        """
        self._state = WatcherState.ENDED
        self._abort_stream()
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        if self._dispatcher is not None:
            self._queue.put_nowait(None)

    def _log_fields(self, resource: dict[str, Any] | None = None) -> dict[str, str]:
        extra = {"gd_watcher": self.name}
        if resource is not None:
            extra["gd_resource_id"] = resource_id(resource)
        return extra

    def _abort_stream(self) -> None:
        stream, task = self._stream, self._stream_task
        self._stream = None
        self._stream_task = None
        if stream is not None:
            stream.abort()
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def drain(self) -> None:
        """Wait until every queued callback has completed."""
        await self._queue.join()

    # -- stream consumption -------------------------------------------------

    async def _consume(self, stream: WatchStream) -> None:
        failed = False
        try:
            async for line in stream:
                self._handle_line(line)
        except asyncio.CancelledError:
            raise
        except Exception:
            failed = True
            metrics.increment("watch_errors")
            logger.warning("%s: Watch stream failed", self.name, exc_info=True, extra=self._log_fields())

        await self._on_end(failed=failed)

    def _handle_line(self, line: bytes | str | dict[str, Any]) -> None:
        if isinstance(line, dict):
            event = line
        else:
            if isinstance(line, bytes):
                line = line.decode("utf-8")
            line = line.strip()
            if not line:
                return
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                logger.warning(
                    "%s: Ignoring undecodable watch line: %.200s", self.name, line, extra=self._log_fields()
                )
                return

        self._error_streak = 0

        event_type = event.get("type")
        resource = event.get("object")
        if not isinstance(resource, dict):
            logger.warning(
                "%s: Ignoring %s event without object", self.name, event_type, extra=self._log_fields()
            )
            return

        if event_type == ADDED:
            self._on_added(resource)
        elif event_type == MODIFIED:
            self._on_modified(resource)
        elif event_type == DELETED:
            self._on_deleted(resource)
        else:
            logger.debug("%s: Ignoring %s event", self.name, event_type, extra=self._log_fields())

    async def _on_end(self, failed: bool = False) -> None:
        # A resource already flagged was not replayed by the last stream, so it
        # was deleted while no stream was open. Others get one more cycle.
        for tracked in list(self._active_resources.values()):
            if tracked.end_event:
                self._on_deleted(tracked.resource)
            else:
                tracked.end_event = True

        if self._state is WatcherState.ENDED:
            return

        delay = self._restart_delay(failed)
        if delay > 0:
            logger.info("%s: Reopening watch stream in %.1fs", self.name, delay, extra=self._log_fields())
            await asyncio.sleep(delay)
            if self._state is WatcherState.ENDED:
                return

        metrics.increment("watch_restarts")
        self.start()

    def _restart_delay(self, failed: bool) -> float:
        if not failed:
            self._error_streak = 0
            return 0.0
        self._error_streak += 1
        delay = min(
            self.restart_backoff_max_seconds,
            self.restart_backoff_initial_seconds * 2 ** (self._error_streak - 1),
        )
        return delay / 2 + random.uniform(0, delay / 2)

    # -- event bookkeeping --------------------------------------------------

    def _on_added(self, resource: dict[str, Any]) -> None:
        rid = resource_id(resource)
        version = resource_version(resource)
        tracked = self._active_resources.get(rid)
        if tracked is not None:
            # Replayed after a stream restart. The object may have changed in
            # the gap between streams.
            tracked.end_event = False
            if version != tracked.resource_version:
                self._on_modified(resource)
            return

        self._active_resources[rid] = TrackedResource(version, resource)
        self._enqueue(self.on_added, resource)

    def _on_modified(self, resource: dict[str, Any]) -> None:
        self._active_resources[resource_id(resource)] = TrackedResource(
            resource_version(resource), resource
        )
        self._enqueue(self.on_modified, resource)

    def _on_deleted(self, resource: dict[str, Any]) -> None:
        self._active_resources.pop(resource_id(resource), None)
        self._enqueue(self.on_deleted, resource)

    # -- serialized dispatch ------------------------------------------------

    def _enqueue(self, callback: Callback, resource: dict[str, Any]) -> None:
        self._ensure_dispatcher()
        self._queue.put_nowait((callback, resource))

    def _ensure_dispatcher(self) -> None:
        if self._dispatcher is None or self._dispatcher.done():
            self._dispatcher = asyncio.get_running_loop().create_task(
                self._dispatch(), name=f"dispatch:{self.name}"
            )

    async def _dispatch(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    # Stop marker; a watcher restarted since keeps its dispatcher.
                    if self._state is WatcherState.ENDED:
                        return
                    continue
                callback, resource = item
                try:
                    await callback(resource)
                except Exception:
                    metrics.increment("callback_errors")
                    logger.exception(
                        "%s: Error handling %s for %s",
                        self.name,
                        callback.__name__,
                        resource_id(resource),
                        extra=self._log_fields(resource),
                    )
            finally:
                self._queue.task_done()
