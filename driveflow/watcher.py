"""Polling change detection for remote folders.

A `WatchSession` owns its baseline snapshot and runs one tick at a time:
fetch, diff against the baseline, deliver events, replace the baseline.
Fetch failures are reported and the session keeps polling.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from driveflow.config import validate_folder_id, validate_interval
from driveflow.errors import ConfigurationError, TransportError
from driveflow.models import ChangeEvent, Snapshot
from driveflow.snapshot import DirectoryLister, fetch_snapshot, fetch_snapshot_deep
from driveflow.status_service import diff


logger = logging.getLogger(__name__)

EventCallback = Callable[[ChangeEvent], "Awaitable[Any] | Any"]
ErrorCallback = Callable[[Exception], "Awaitable[Any] | Any"]


class SessionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class WatchSession:
    def __init__(
        self,
        lister: DirectoryLister,
        folder_id: str,
        interval_seconds: float,
        on_event: EventCallback,
        *,
        deep: bool = False,
        on_error: ErrorCallback | None = None,
        fetch_timeout: float | None = None,
        max_depth: int | None = None,
    ) -> None:
        self.folder_id = validate_folder_id(folder_id)
        self.interval = validate_interval(interval_seconds)
        if fetch_timeout is not None and fetch_timeout <= 0:
            raise ConfigurationError(f"Fetch timeout must be positive, got {fetch_timeout}")
        if max_depth is not None and max_depth < 1:
            raise ConfigurationError(f"max_depth must be at least 1, got {max_depth}")
        self.deep = deep
        self.fetch_timeout = fetch_timeout
        self.max_depth = max_depth
        self.state = SessionState.IDLE
        self.tick_count = 0
        self._lister = lister
        self._on_event = on_event
        self._on_error = on_error
        self._baseline: Snapshot | None = None
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._tick_owner: asyncio.Task[Any] | None = None
        self._halted = False

    @property
    def baseline(self) -> Snapshot | None:
        return self._baseline

    async def __aenter__(self) -> "WatchSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def _fetch_sync(self, report: Callable[[Exception], None]) -> Snapshot:
        if self.deep:
            return fetch_snapshot_deep(self._lister, self.folder_id, on_error=report, max_depth=self.max_depth)
        return fetch_snapshot(self._lister, self.folder_id, on_error=report)

    async def _fetch(self) -> Snapshot:
        malformed: list[Exception] = []
        fetch = asyncio.to_thread(self._fetch_sync, malformed.append)
        try:
            if self.fetch_timeout is None:
                snapshot = await fetch
            else:
                snapshot = await asyncio.wait_for(fetch, self.fetch_timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(f"Listing {self.folder_id} timed out after {self.fetch_timeout}s") from exc
        for exc in malformed:
            await self._report(exc, log=False)
        return snapshot

    async def _report(self, exc: Exception, *, log: bool = True) -> None:
        if log:
            logger.warning("Watch %s: %s", self.folder_id, exc)
        if self._on_error is None:
            return
        try:
            await _maybe_await(self._on_error(exc))
        except Exception:
            logger.exception("Watch %s: error callback failed", self.folder_id)

    async def start(self) -> "WatchSession":
        """Seed the baseline and begin polling.

        Configuration errors (including a folder cycle found while seeding)
        are raised here. Any other seed failure is reported and the next
        successful tick seeds the baseline instead.
        """
        if self.state is not SessionState.IDLE:
            raise ConfigurationError(f"Watch session for {self.folder_id} was already started")
        try:
            self._baseline = await self._fetch()
        except ConfigurationError:
            self.state = SessionState.STOPPED
            raise
        except Exception as exc:
            await self._report(exc)

        self.state = SessionState.RUNNING
        self._task = asyncio.create_task(self._run(), name=f"watch:{self.folder_id}")
        logger.info(
            "Watching %s (%s, every %.1fs, %d item(s) in baseline)",
            self.folder_id,
            "deep" if self.deep else "shallow",
            self.interval,
            len(self._baseline or {}),
        )
        return self

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            if self._stop_event.is_set():
                break
            await self.tick()

    async def tick(self) -> list[ChangeEvent]:
        """Run one fetch/diff/deliver/swap cycle. Returns the delivered events."""
        async with self._lock:
            if self.state is not SessionState.RUNNING:
                return []
            self._tick_owner = asyncio.current_task()
            try:
                return await self._tick_locked()
            finally:
                self._tick_owner = None

    async def _tick_locked(self) -> list[ChangeEvent]:
        self.tick_count += 1
        try:
            current = await self._fetch()
        except Exception as exc:
            await self._report(exc)
            return []

        if self._baseline is None:
            self._baseline = current
            logger.info("Watch %s: baseline seeded with %d item(s)", self.folder_id, len(current))
            return []

        delivered: list[ChangeEvent] = []
        for event in diff(self._baseline, current):
            # stop() called from a callback ends delivery immediately
            if self._halted:
                break
            delivered.append(event)
            try:
                await _maybe_await(self._on_event(event))
            except Exception as exc:
                logger.exception("Watch %s: event callback failed", self.folder_id)
                await self._report(exc, log=False)
        if self.state is SessionState.RUNNING:
            self._baseline = current
        logger.debug("Watch %s: tick %d, %d event(s)", self.folder_id, self.tick_count, len(delivered))
        return delivered

    async def wait(self) -> None:
        """Block until the session stops."""
        if self._task is not None:
            await asyncio.shield(self._task)

    async def stop(self) -> None:
        """Stop polling. A tick already in flight finishes; no new tick starts.

        Called from an event callback, the current tick stops delivering and
        stop() returns without waiting for it.
        """
        if self.state is SessionState.STOPPED:
            return
        self.state = SessionState.STOPPED
        self._stop_event.set()
        current = asyncio.current_task()
        if self._tick_owner is not None and self._tick_owner is current:
            self._halted = True
        else:
            task = self._task
            if task is not None and task is not current:
                await task
            # wait out a tick started outside the polling task
            async with self._lock:
                pass
        self._baseline = None
        logger.info("Stopped watching %s", self.folder_id)


async def watch_folder(
    lister: DirectoryLister,
    folder_id: str,
    interval_ms: float,
    on_event: EventCallback,
    **options: Any,
) -> WatchSession:
    """Watch the direct children of `folder_id`; returns the running session."""
    session = WatchSession(lister, folder_id, _interval_seconds(interval_ms), on_event, deep=False, **options)
    return await session.start()


async def watch_folder_deep(
    lister: DirectoryLister,
    folder_id: str,
    interval_ms: float,
    on_event: EventCallback,
    **options: Any,
) -> WatchSession:
    """Watch the whole subtree under `folder_id`; returns the running session."""
    session = WatchSession(lister, folder_id, _interval_seconds(interval_ms), on_event, deep=True, **options)
    return await session.start()


def _interval_seconds(interval_ms: float) -> float:
    return validate_interval(interval_ms) / 1000.0
