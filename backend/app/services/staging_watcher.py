from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from threading import Condition, Event, Thread
from typing import Any, Literal

from pymongo.errors import PyMongoError

from app.core.config import Settings
from app.repositories.staging_documents import StagingDocumentStore
from app.services.staging_sync import StagingSyncService

RunState = Literal["idle", "running", "running_with_pending"]
FeedState = Literal["stopped", "connecting", "connected", "disconnected"]


class StagingWatcherService:
    """Turns staging insert notifications into coalesced sync runs.

    At most one run is active. Notifications that arrive during a run collapse
    into a single follow-up run, no matter how many there were.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        document_store: StagingDocumentStore,
        sync_service: StagingSyncService,
    ) -> None:
        self._settings = settings
        self._document_store = document_store
        self._sync_service = sync_service
        self._logger = logging.getLogger("app.staging_watcher")
        self._stop_event = Event()
        self._condition = Condition()
        self._feed_thread: Thread | None = None
        self._periodic_thread: Thread | None = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="staging-sync-run")
        self._executor_closed = False

        self._running = False
        self._run_state: RunState = "idle"
        self._feed_state: FeedState = "stopped"
        self._notifications_received = 0
        self._notifications_coalesced = 0
        self._runs_started = 0
        self._last_trigger_source: str | None = None
        self._last_run_finished_ts: datetime | None = None
        self._last_error: str | None = None
        self._last_feed_error: str | None = None

    def start(self) -> None:
        with self._condition:
            if self._running:
                return
            self._running = True
        self._stop_event.clear()
        if self._executor_closed:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="staging-sync-run")
            self._executor_closed = False

        self._feed_thread = Thread(target=self._feed_loop, name="staging-watcher", daemon=True)
        self._feed_thread.start()
        if self._settings.staging_sync_interval_seconds > 0:
            self._periodic_thread = Thread(
                target=self._periodic_loop,
                name="staging-sync-periodic",
                daemon=True,
            )
            self._periodic_thread.start()
        self._logger.info(
            "started staging watcher collection=%s periodic_seconds=%s reconnect_seconds=%s",
            self._document_store.name,
            self._settings.staging_sync_interval_seconds,
            self._settings.staging_watcher_reconnect_seconds,
        )

    def stop(self, *, run_wait_seconds: float = 30.0) -> None:
        self._stop_event.set()
        for thread in (self._feed_thread, self._periodic_thread):
            if thread and thread.is_alive():
                thread.join(timeout=5.0)
        if not self.wait_until_idle(timeout=run_wait_seconds):
            self._logger.warning("staging sync run still active at shutdown; leaving it to finish")
        self._executor.shutdown(wait=False, cancel_futures=False)
        self._executor_closed = True
        with self._condition:
            self._running = False
            self._feed_state = "stopped"

    def trigger(self, source: str) -> bool:
        """Request a run. Returns True when this call started one."""
        with self._condition:
            self._notifications_received += 1
            self._last_trigger_source = source
            if self._run_state != "idle":
                self._run_state = "running_with_pending"
                self._notifications_coalesced += 1
                return False
            self._run_state = "running"

        try:
            self._executor.submit(self._run_worker, source)
        except RuntimeError:
            # executor already shut down
            self._logger.warning("staging sync trigger ignored after shutdown source=%s", source)
            self._set_idle()
            return False
        return True

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        with self._condition:
            return self._condition.wait_for(lambda: self._run_state == "idle", timeout=timeout)

    def get_status_snapshot(self) -> dict[str, Any]:
        with self._condition:
            return {
                "enabled": self._settings.staging_watcher_enabled,
                "running": self._running and not self._stop_event.is_set(),
                "feed_state": self._feed_state,
                "run_state": self._run_state,
                "notifications_received": self._notifications_received,
                "notifications_coalesced": self._notifications_coalesced,
                "runs_started": self._runs_started,
                "last_trigger_source": self._last_trigger_source,
                "last_run_finished_ts": _to_iso(self._last_run_finished_ts),
                "last_error": self._last_error,
                "last_feed_error": self._last_feed_error,
                "periodic_seconds": self._settings.staging_sync_interval_seconds,
            }

    def _run_worker(self, source: str) -> None:
        while True:
            with self._condition:
                self._runs_started += 1
            self._logger.debug("staging sync run starting source=%s", source)
            error: str | None = None
            try:
                self._sync_service.run_once()
            except Exception as exc:
                self._logger.exception("staging sync run failed source=%s", source)
                error = str(exc)

            with self._condition:
                self._last_error = error
                self._last_run_finished_ts = datetime.now(timezone.utc)
                if self._run_state == "running_with_pending" and not self._stop_event.is_set():
                    self._run_state = "running"
                    source = "pending"
                    continue
                self._run_state = "idle"
                self._condition.notify_all()
                return

    def _set_idle(self) -> None:
        with self._condition:
            self._run_state = "idle"
            self._condition.notify_all()

    def _feed_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self._consume_feed()
            except PyMongoError as exc:
                self._set_feed_state("disconnected", error=str(exc))
                self._logger.error(
                    "staging change stream failed; reconnecting in %ss error=%s",
                    self._settings.staging_watcher_reconnect_seconds,
                    exc,
                )
            except Exception as exc:
                self._set_feed_state("disconnected", error=str(exc))
                self._logger.exception("staging change stream crashed; reconnecting")
            else:
                if self._stop_event.is_set():
                    break
                self._set_feed_state("disconnected", error=None)
                self._logger.warning("staging change stream closed by server; reopening")
            self._stop_event.wait(self._settings.staging_watcher_reconnect_seconds)

        self._set_feed_state("stopped", error=None)
        self._logger.info("staging change stream stopped")

    def _consume_feed(self) -> None:
        self._set_feed_state("connecting", error=None)
        with self._document_store.watch_inserts(
            max_await_time_ms=self._settings.staging_watcher_max_await_ms,
        ) as stream:
            self._set_feed_state("connected", error=None)
            self._logger.info("staging change stream open collection=%s", self._document_store.name)
            while stream.alive and not self._stop_event.is_set():
                change = stream.try_next()
                if change is None:
                    continue
                document_key = change.get("documentKey") or {}
                self._logger.info(
                    "staging insert detected id=%s; triggering sync",
                    document_key.get("_id"),
                )
                self.trigger("change_stream")

    def _periodic_loop(self) -> None:
        interval = self._settings.staging_sync_interval_seconds
        while not self._stop_event.is_set():
            self.trigger("periodic")
            self._stop_event.wait(interval)

    def _set_feed_state(self, state: FeedState, *, error: str | None) -> None:
        with self._condition:
            self._feed_state = state
            if error is not None or state == "connected":
                self._last_feed_error = error


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
