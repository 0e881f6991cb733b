import threading
from typing import Dict, Optional

from .reminder_scheduler import JobHandle


class ReminderJobRegistry:
    """
    Process-wide map of appointment id -> active reminder job.

    The registry never cancels anything itself: callers cancel the previous
    handle before calling put(). Not persisted; rebuilt at startup by
    AppointmentService.reconcile_reminders().
    """

    def __init__(self):
        self._jobs: Dict[str, JobHandle] = {}
        self._lock = threading.Lock()

    def put(self, appointment_id: str, handle: JobHandle) -> None:
        with self._lock:
            self._jobs[str(appointment_id)] = handle

    def get(self, appointment_id: str) -> Optional[JobHandle]:
        with self._lock:
            return self._jobs.get(str(appointment_id))

    def remove(self, appointment_id: str, handle: Optional[JobHandle] = None) -> Optional[JobHandle]:
        """
        Drop the entry for appointment_id and return it.

        With `handle`, the entry is only dropped if it is still that handle,
        so a late firing cannot evict a newer job.
        """
        key = str(appointment_id)
        with self._lock:
            current = self._jobs.get(key)
            if current is None:
                return None
            if handle is not None and current is not handle:
                return None
            return self._jobs.pop(key)

    def snapshot(self) -> Dict[str, JobHandle]:
        with self._lock:
            return dict(self._jobs)

    def clear(self) -> None:
        with self._lock:
            self._jobs.clear()

    def __contains__(self, appointment_id) -> bool:
        with self._lock:
            return str(appointment_id) in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
