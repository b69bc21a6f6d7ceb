from __future__ import annotations

import enum
import logging
import queue
import threading
from typing import Any, Protocol

import msgspec
import requests

from .config import StatusEndpoint
from .errors import JobTerminated

logger = logging.getLogger("JobStatus")

DEFAULT_MAX_PENDING = 256
TERMINAL_ENQUEUE_TIMEOUT_SECONDS = 5.0


class JobState(str, enum.Enum):
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not JobState.RUNNING


class StatusUpdate(msgspec.Struct, frozen=True):
    state: JobState
    progress: int
    message: str = ""

    def __post_init__(self) -> None:
        if not 0 <= self.progress <= 100:
            raise ValueError(f"progress must be within 0-100, got {self.progress}")

    def to_payload(self) -> dict[str, Any]:
        return {"status": self.state.value, "progress": int(self.progress), "message": self.message}


def running(progress: int, message: str) -> StatusUpdate:
    return StatusUpdate(state=JobState.RUNNING, progress=progress, message=message)


class StatusSink(Protocol):
    def report(self, update: StatusUpdate) -> None:
        ...

    def close(self, timeout: float | None = None) -> None:
        ...


_STOP = object()


class StatusReporter:
    """
    Fire-and-forget status delivery to the control plane.

    ``report`` never raises and never waits on the network: updates are logged
    and queued, and a single background thread POSTs them in order. Without an
    endpoint (or job id) updates are only logged. Once a terminal update has
    been accepted every later update is dropped.
    """

    def __init__(
        self,
        *,
        job_id: str,
        endpoint: StatusEndpoint,
        session: requests.Session | None = None,
        max_pending: int = DEFAULT_MAX_PENDING,
    ) -> None:
        self._job_id = (job_id or "").strip()
        self._endpoint = endpoint
        self._url = ""
        if endpoint.enabled() and self._job_id:
            self._url = f"{endpoint.base_url.rstrip('/')}/internal/jobs/{self._job_id}/status"
        self._session = session
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=max(1, int(max_pending)))
        self._lock = threading.Lock()
        self._terminal: StatusUpdate | None = None
        self._closed = False
        self._thread: threading.Thread | None = None
        if self._url:
            self._thread = threading.Thread(target=self._deliver_loop, daemon=True, name="status-reporter")
            self._thread.start()

    @property
    def url(self) -> str:
        return self._url

    @property
    def terminal(self) -> StatusUpdate | None:
        return self._terminal

    def report(self, update: StatusUpdate) -> None:
        try:
            self._accept(update)
        except JobTerminated:
            raise
        except Exception:
            logger.exception("status.report failed for %s", update)

    def _accept(self, update: StatusUpdate) -> None:
        with self._lock:
            if self._terminal is not None:
                logger.warning(
                    "status.dropped after terminal %s: %s (%d%%) - %s",
                    self._terminal.state.value,
                    update.state.value,
                    update.progress,
                    update.message,
                )
                return
            if update.state.is_terminal:
                self._terminal = update
            logger.info("Status Update: %s (%d%%) - %s", update.state.value, update.progress, update.message)
            if not self._url or self._closed:
                return
            try:
                if update.state.is_terminal:
                    self._queue.put(update, timeout=TERMINAL_ENQUEUE_TIMEOUT_SECONDS)
                else:
                    self._queue.put_nowait(update)
            except queue.Full:
                logger.warning("status.queue full; dropping %s (%d%%)", update.state.value, update.progress)

    def close(self, timeout: float | None = None) -> None:
        """Stop accepting network deliveries and wait for queued updates to drain."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self._thread is None:
            return
        wait = self._endpoint.timeout_seconds * 2 if timeout is None else timeout
        try:
            self._queue.put(_STOP, timeout=wait)
        except queue.Full:
            logger.warning("status.close could not enqueue stop marker; abandoning pending updates")
            return
        self._thread.join(timeout=wait)
        if self._thread.is_alive():
            logger.warning("status.close timed out after %.1fs with updates still pending", wait)

    def _deliver_loop(self) -> None:
        session = self._session or requests.Session()
        try:
            while True:
                item = self._queue.get()
                if item is _STOP:
                    return
                self._post(session, item)
        finally:
            if self._session is None:
                session.close()

    def _post(self, session: requests.Session, update: StatusUpdate) -> None:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._endpoint.token}",
        }
        body = msgspec.json.encode(update.to_payload())
        try:
            resp = session.post(self._url, data=body, headers=headers, timeout=self._endpoint.timeout_seconds)
        except requests.Timeout:
            logger.warning("status.post timeout for job %s (%s)", self._job_id, update.state.value)
            return
        except requests.RequestException as exc:
            logger.warning("status.post error for job %s: %s", self._job_id, exc)
            return
        except Exception:
            logger.exception("status.post unexpected failure for job %s", self._job_id)
            return
        if resp.status_code < 200 or resp.status_code >= 300:
            logger.warning(
                "status.post rejected for job %s: status=%s body=%s",
                self._job_id,
                resp.status_code,
                (resp.text or "")[:200],
            )


__all__ = ["JobState", "StatusReporter", "StatusSink", "StatusUpdate", "running"]
