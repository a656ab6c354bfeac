from __future__ import annotations

import logging
import queue
import threading
import time
import traceback
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from explainy.config import settings
from explainy.errors import ExtractionError, WatchSubscriptionError
from explainy.parsers import Extractor, extract_text, is_supported, placeholder_text
from explainy.store import DocumentRecord, DocumentStore


def _build_ingest_logger() -> logging.Logger:
    logger = logging.getLogger("explainy.ingest")
    logger.setLevel(logging.INFO)
    logger.propagate = False
    if logger.handlers:
        return logger
    log_path = Path(settings.log_dir) / "log.txt"
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
    logger.addHandler(handler)
    return logger


INGEST_LOGGER = _build_ingest_logger()


class WatcherState(str, Enum):
    IDLE = "idle"
    BOOTSTRAPPING = "bootstrapping"
    WATCHING = "watching"
    RESTARTING = "restarting"
    STOPPED = "stopped"


class _QueueingHandler(FileSystemEventHandler):
    """Turns watchdog callbacks into paths on the ingestion queue."""

    def __init__(self, events: "queue.Queue[Path]") -> None:
        super().__init__()
        self.events = events

    def _push(self, raw: Any) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="surrogateescape")
        if raw and is_supported(raw):
            self.events.put(Path(raw))

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._push(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._push(event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._push(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._push(event.src_path)
            self._push(getattr(event, "dest_path", ""))


class DocumentWatcher:
    """Keeps a ``DocumentStore`` in sync with one directory of documents.

    ``start`` scans the directory once, then subscribes to filesystem events.
    Events land on a queue drained by a single ingestion thread, which waits
    ``settle_delay`` seconds after the last event for a path before reading it,
    so half-written uploads are not extracted. A supervisor thread re-subscribes
    with exponential backoff whenever the observer fails.
    """

    def __init__(
        self,
        store: DocumentStore,
        directory: Path | str,
        *,
        extractors: Mapping[str, Extractor] | None = None,
        settle_delay: float = 1.0,
        restart_initial: float = 1.0,
        restart_max: float = 30.0,
        poll_interval: float = 1.0,
        observer_factory: Callable[[], Any] = Observer,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.directory = Path(directory)
        self.extractors = extractors
        self.settle_delay = max(0.0, float(settle_delay))
        self.restart_initial = max(0.05, float(restart_initial))
        self.restart_max = max(self.restart_initial, float(restart_max))
        self.poll_interval = max(0.05, float(poll_interval))
        self._observer_factory = observer_factory
        self._clock = clock

        self._events: queue.Queue[Path] = queue.Queue()
        self._handler = _QueueingHandler(self._events)
        self._pending: dict[Path, float] = {}
        self._pending_lock = threading.Lock()
        self._state = WatcherState.IDLE
        self._state_lock = threading.Lock()
        self._stop = threading.Event()
        self._observer: Any = None
        self._threads: list[threading.Thread] = []
        self.restart_count = 0

    @property
    def state(self) -> WatcherState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: WatcherState) -> None:
        with self._state_lock:
            previous = self._state
            self._state = state
        if previous != state:
            INGEST_LOGGER.info("watcher_state | from=%s | to=%s", previous.value, state.value)

    def start(self) -> None:
        if self._threads:
            return
        self._stop.clear()
        self.bootstrap()
        self._subscribe_or_log()
        for target, name in ((self._ingest_loop, "explainy-ingest"), (self._supervise, "explainy-watch")):
            thread = threading.Thread(target=target, name=name, daemon=True)
            thread.start()
            self._threads.append(thread)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        self._close_observer()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        self._set_state(WatcherState.STOPPED)

    def bootstrap(self) -> int:
        self._set_state(WatcherState.BOOTSTRAPPING)
        started = time.perf_counter()
        try:
            entries = sorted(p for p in self.directory.iterdir() if p.is_file())
        except OSError as exc:
            INGEST_LOGGER.error("bootstrap_failed | dir=%s | error=%s", self.directory, exc)
            return 0

        ingested = 0
        for path in entries:
            if not is_supported(path):
                continue
            if self.ingest_path(path) is not None:
                ingested += 1
        INGEST_LOGGER.info(
            "bootstrap_done | dir=%s | files=%s | ingested=%s | elapsed_sec=%.2f",
            self.directory,
            len(entries),
            ingested,
            time.perf_counter() - started,
        )
        return ingested

    def ingest_path(self, path: Path | str) -> DocumentRecord | None:
        path = Path(path)
        if not is_supported(path):
            INGEST_LOGGER.info("file_skip_unsupported | name=%s", path.name)
            return None
        started = time.perf_counter()
        try:
            text = extract_text(path, self.extractors)
        except ExtractionError as exc:
            INGEST_LOGGER.error(
                "file_failed | name=%s | error=%s | traceback=%s",
                path.name,
                exc.cause,
                traceback.format_exc(),
            )
            return None

        if text == placeholder_text(path.name):
            INGEST_LOGGER.warning("file_empty | name=%s | stored placeholder", path.name)
        record = self.store.new_record(path.name, text)
        stale = self.store.replace(record)
        if any(r.id == record.id for r in stale):
            current = self.store.latest(record.name)
            INGEST_LOGGER.info(
                "file_superseded | name=%s | id=%s | kept=%s",
                path.name,
                record.id,
                current.id if current else None,
            )
            return current
        INGEST_LOGGER.info(
            "file_done | name=%s | id=%s | chars=%s | replaced=%s | documents=%s | elapsed_sec=%.2f",
            path.name,
            record.id,
            len(text),
            len(stale),
            len(self.store),
            time.perf_counter() - started,
        )
        return record

    def remove_path(self, path: Path | str) -> DocumentRecord | None:
        name = Path(path).name
        removed = self.store.remove_by_file_name(name)
        if removed is not None:
            INGEST_LOGGER.info("file_removed | name=%s | id=%s | documents=%s", name, removed.id, len(self.store))
        return removed

    def notify(self, path: Path | str) -> None:
        self._events.put(Path(path))

    def pending_paths(self) -> list[Path]:
        with self._pending_lock:
            return list(self._pending)

    def drain_events(self) -> int:
        """Move queued events into the settle table; a repeat event pushes the due time back."""
        moved = 0
        while True:
            try:
                path = self._events.get_nowait()
            except queue.Empty:
                return moved
            self._settle(path)
            moved += 1

    def _settle(self, path: Path) -> None:
        with self._pending_lock:
            self._pending[path] = self._clock() + self.settle_delay

    def process_due(self, now: float | None = None) -> int:
        now = self._clock() if now is None else now
        with self._pending_lock:
            due = [p for p, at in self._pending.items() if at <= now]
            for p in due:
                del self._pending[p]
        for path in due:
            try:
                self._apply(path)
            except Exception as exc:
                INGEST_LOGGER.error(
                    "event_failed | path=%s | error=%s | traceback=%s",
                    path,
                    exc,
                    traceback.format_exc(),
                )
        return len(due)

    def _apply(self, path: Path) -> None:
        if path.exists():
            if path.is_file():
                self.ingest_path(path)
            return
        self.remove_path(path)

    def _next_wait(self) -> float:
        with self._pending_lock:
            if not self._pending:
                return self.poll_interval
            soonest = min(self._pending.values())
        return min(self.poll_interval, max(0.0, soonest - self._clock()))

    def _ingest_loop(self) -> None:
        while not self._stop.is_set():
            try:
                path = self._events.get(timeout=max(0.01, self._next_wait()))
            except queue.Empty:
                path = None
            if path is not None:
                self._settle(path)
                self.drain_events()
            self.process_due()

    def _subscribe(self) -> None:
        try:
            observer = self._observer_factory()
            observer.schedule(self._handler, str(self.directory), recursive=False)
            observer.start()
        except Exception as exc:
            raise WatchSubscriptionError(f"cannot watch {self.directory}: {exc}") from exc
        self._observer = observer
        self._set_state(WatcherState.WATCHING)
        INGEST_LOGGER.info("watch_subscribed | dir=%s", self.directory)

    def _subscribe_or_log(self) -> bool:
        try:
            self._subscribe()
            return True
        except WatchSubscriptionError as exc:
            self._set_state(WatcherState.RESTARTING)
            INGEST_LOGGER.error("watch_subscribe_failed | error=%s", exc)
            return False

    def _observer_alive(self) -> bool:
        observer = self._observer
        return observer is not None and bool(observer.is_alive())

    def _close_observer(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        try:
            observer.stop()
            observer.join(timeout=2.0)
        except Exception as exc:
            INGEST_LOGGER.warning("watch_close_failed | error=%s", exc)

    def _supervise(self) -> None:
        delay = self.restart_initial
        while not self._stop.is_set():
            if self._observer_alive():
                delay = self.restart_initial
                self._stop.wait(self.poll_interval)
                continue
            if self._stop.is_set():
                break
            if self._observer is not None:
                INGEST_LOGGER.error("watch_observer_died | dir=%s", self.directory)
            self._close_observer()
            self._set_state(WatcherState.RESTARTING)
            INGEST_LOGGER.warning("watch_restart_scheduled | delay_sec=%.2f | restarts=%s", delay, self.restart_count)
            if self._stop.wait(delay):
                break
            self.restart_count += 1
            if not self._subscribe_or_log():
                delay = min(delay * 2, self.restart_max)
