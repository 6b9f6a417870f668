"""Debounced watch mode over the source and test directories.

Modification times are polled in a worker thread. Bursts of changes are
collapsed into one run once the tree has been quiet for the debounce window,
and runs never overlap: changes seen while a run is in progress are queued
and trigger exactly one follow-up run.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path

import structlog

from failure_triage.config.schema import WatchConfig
from failure_triage.utils.fs import iter_source_files, to_relative

log = structlog.get_logger()

ChangeHandler = Callable[[list[str]], Awaitable[None]]


class Watcher:
    """Polls watched files and invokes a handler after quiet periods.

    Example:
        watcher = Watcher(config.watch, config.paths.root, on_change)
        await watcher.run(stop_event)
    """

    def __init__(self, config: WatchConfig, root: Path, on_change: ChangeHandler) -> None:
        self._config = config
        self._root = root
        self._on_change = on_change
        self._runs = 0

    @property
    def runs(self) -> int:
        """Handler invocations so far."""
        return self._runs

    def snapshot(self) -> dict[str, float]:
        """Modification time of every watched file, keyed by relative path."""
        mtimes: dict[str, float] = {}
        for path in iter_source_files(
            self._root,
            self._config.paths,
            self._config.extensions,
            skip_dirs=self._config.ignore,
        ):
            try:
                mtimes[to_relative(path, self._root)] = path.stat().st_mtime
            except OSError:
                continue
        return mtimes

    @staticmethod
    def detect_changes(previous: dict[str, float], current: dict[str, float]) -> set[str]:
        """Files added, removed or modified between two snapshots."""
        changed = {path for path, mtime in current.items() if previous.get(path) != mtime}
        changed.update(path for path in previous if path not in current)
        return changed

    async def run(self, stop: asyncio.Event) -> None:
        """Watch until ``stop`` is set; an in-flight run is awaited on exit."""
        loop = asyncio.get_running_loop()
        debounce = self._config.debounce_ms / 1000
        previous = await asyncio.to_thread(self.snapshot)
        pending: set[str] = set()
        last_change = 0.0
        task: asyncio.Task[None] | None = None

        log.info(
            "watch_started",
            paths=self._config.paths,
            files=len(previous),
            debounce_ms=self._config.debounce_ms,
        )

        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._config.poll_interval)
            except TimeoutError:
                pass

            current = await asyncio.to_thread(self.snapshot)
            changed = self.detect_changes(previous, current)
            previous = current
            if changed:
                pending.update(changed)
                last_change = loop.time()
                log.debug("watch_changes_detected", files=sorted(changed))

            if task is not None and task.done():
                task = None
            if task is None and pending and loop.time() - last_change >= debounce:
                batch = sorted(pending)
                pending.clear()
                task = asyncio.create_task(self._dispatch(batch))

        if task is not None:
            await task
        log.info("watch_stopped", runs=self._runs)

    async def _dispatch(self, files: list[str]) -> None:
        self._runs += 1
        log.info("watch_run_started", run=self._runs, changed=len(files))
        try:
            await self._on_change(files)
        except Exception:
            # a failed run must not end watch mode
            log.exception("watch_run_failed", run=self._runs)
