"""
Sequential background work queue with cooperative abort.

Units run one at a time, in the order they were added, on a single worker
thread. Callers poll `is_aborting` from inside a unit to stop early.
"""

import queue
import threading
import traceback
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from reporting import ProgressReporter


@dataclass
class WorkItem:
    id: int
    description: str
    callback: Callable[["WorkItem"], None]
    on_discard: Optional[Callable[["WorkItem"], None]] = None
    completed: bool = False
    discarded: bool = False
    error: Optional[BaseException] = None


@dataclass
class WorkFailure:
    """An exception that escaped a work unit"""

    item: WorkItem
    exception: BaseException
    formatted: str = field(default="", repr=False)


class WorkQueue:
    def __init__(self, reporter: Optional[ProgressReporter] = None):
        self.reporter = reporter or ProgressReporter(quiet=True)
        self._queue: "queue.Queue[WorkItem]" = queue.Queue()
        self._abort = threading.Event()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._next_id = 1
        self._last_status = ""
        self._errors: List[str] = []
        self.failures: List[WorkFailure] = []

    # -------- public API -----------------------------------------------------

    def add_last(
        self,
        callback: Callable[[WorkItem], None],
        description: str = "",
        on_discard: Optional[Callable[[WorkItem], None]] = None,
    ) -> WorkItem:
        """
        Queue `callback(work_item)` behind everything already queued.

        `on_discard(work_item)` runs instead if the queue is aborting by the
        time the unit is reached.
        """
        with self._lock:
            item = WorkItem(
                id=self._next_id,
                description=description,
                callback=callback,
                on_discard=on_discard,
            )
            self._next_id += 1
            self._queue.put(item)
            self._ensure_worker()
        return item

    @property
    def is_aborting(self) -> bool:
        return self._abort.is_set()

    def abort(self):
        """Ask the running unit to stop; queued units will not start"""
        self._abort.set()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every queued unit has finished or been discarded.

        Returns False if `timeout` (seconds) elapsed first.
        """
        if timeout is None:
            self._queue.join()
            return True

        with self._queue.all_tasks_done:
            return self._queue.all_tasks_done.wait_for(
                lambda: self._queue.unfinished_tasks == 0, timeout
            )

    def set_status(self, status: str):
        with self._lock:
            self._last_status = status

    @property
    def last_status(self) -> str:
        with self._lock:
            return self._last_status

    def report_error(self, message: str):
        """Record a non-fatal error for the caller to surface"""
        with self._lock:
            self._errors.append(message)

    def get_errors(self) -> List[str]:
        with self._lock:
            return list(self._errors)

    # -------- internals ------------------------------------------------------

    def _ensure_worker(self):
        if self._thread is None or not self._thread.is_alive():
            self._thread = threading.Thread(
                target=self._run, name="work-queue", daemon=True
            )
            self._thread.start()

    def _run(self):
        while True:
            item = self._queue.get()
            try:
                if self.is_aborting:
                    self.reporter.write_line(f"Discarding work: {item.description}")
                    item.discarded = True
                    if item.on_discard is not None:
                        self._execute(item, item.on_discard)
                    continue
                self._execute(item, item.callback)
            finally:
                self._queue.task_done()

    def _execute(self, item: WorkItem, callback: Callable[[WorkItem], None]):
        try:
            callback(item)
            item.completed = not item.discarded
        except Exception as e:
            item.error = e
            message = f"Work '{item.description}' failed: {type(e).__name__}: {e}"
            self.failures.append(
                WorkFailure(item=item, exception=e, formatted=traceback.format_exc())
            )
            self.reporter.error(message)
            self.report_error(message)
