"""
One-shot appointment reminders on top of APScheduler.

Each reminder is a `date`-trigger job wrapped in a JobHandle. The handle
owns the job's state (Scheduled -> Fired | Cancelled) so that a reminder
fires at most once and cancellation is idempotent. A run that APScheduler
drops after its misfire grace time ends the handle as Cancelled.
"""

import enum
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from apscheduler.events import EVENT_JOB_MISSED
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from ..core.exceptions import TransientNotificationError, ValidationError
from ..utils.date_utils import compute_fire_time
from .notification_service import NotificationGateway, render_reminder

logger = logging.getLogger(__name__)

DEFAULT_LEAD = timedelta(hours=1)


class ReminderJobState(str, enum.Enum):
    SCHEDULED = "Scheduled"
    FIRED = "Fired"
    CANCELLED = "Cancelled"


@dataclass(frozen=True)
class ReminderPayload:
    phone: str
    doctor: str
    specialization: str
    date: object  # date or date string, as stored on the appointment
    time: str


class JobHandle:
    """A scheduled reminder for one appointment."""

    def __init__(self, appointment_id: str, fire_time: datetime, payload: ReminderPayload):
        self.appointment_id = str(appointment_id)
        self.fire_time = fire_time
        self.payload = payload
        self.job_id = f"reminder_{self.appointment_id}_{uuid.uuid4().hex[:8]}"
        self._state = ReminderJobState.SCHEDULED
        self._lock = threading.Lock()

    @property
    def state(self) -> ReminderJobState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state == ReminderJobState.SCHEDULED

    def transition_to(self, new_state: ReminderJobState) -> bool:
        """Leave Scheduled exactly once; False if already fired or cancelled."""
        with self._lock:
            if self._state != ReminderJobState.SCHEDULED:
                return False
            self._state = new_state
            return True

    def __repr__(self):
        return f"<JobHandle(appointment_id={self.appointment_id}, fire_time='{self.fire_time}', state={self._state.value})>"


class ReminderScheduler:
    def __init__(
        self,
        gateway: NotificationGateway,
        scheduler: Optional[BackgroundScheduler] = None,
        lead: timedelta = DEFAULT_LEAD,
        clock: Optional[Callable[[], datetime]] = None,
        misfire_grace_seconds: int = 300,
        on_fired: Optional[Callable[[JobHandle], None]] = None,
    ):
        self.gateway = gateway
        self.scheduler = scheduler or BackgroundScheduler()
        self.lead = lead
        self.clock = clock or datetime.now
        self.misfire_grace_seconds = misfire_grace_seconds
        # called once a handle leaves the scheduler, whether it fired or missed its run time
        self.on_fired = on_fired
        self._handles = {}
        self._handles_lock = threading.Lock()
        self.scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)

    # Lifecycle of the underlying APScheduler instance
    def start(self):
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Reminder scheduler started")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Reminder scheduler stopped")

    def now(self) -> datetime:
        return self.clock()

    def schedule(self, appointment_id: str, fire_time: datetime, payload: ReminderPayload) -> Optional[JobHandle]:
        """
        Register a one-shot reminder at `fire_time`.

        Returns None (and schedules nothing) when fire_time is missing or
        not strictly in the future.
        """
        if fire_time is None:
            logger.warning(f"No reminder time for appointment {appointment_id}, not scheduling")
            return None
        if fire_time <= self.now():
            logger.info(f"Reminder time {fire_time.isoformat()} for appointment {appointment_id} is in the past, not scheduling")
            return None

        handle = JobHandle(appointment_id, fire_time, payload)
        self.scheduler.add_job(
            self.run_reminder,
            trigger="date",
            run_date=fire_time,
            args=[handle],
            id=handle.job_id,
            misfire_grace_time=self.misfire_grace_seconds,
            replace_existing=True,
        )
        with self._handles_lock:
            self._handles[handle.job_id] = handle
        logger.info(f"Scheduled reminder for appointment {appointment_id} at {fire_time.isoformat()}")
        return handle

    def schedule_reminder(self, appointment_id: str, payload: ReminderPayload) -> Optional[JobHandle]:
        """Derive the fire time from the payload's date and time, then schedule."""
        try:
            fire_time = compute_fire_time(payload.date, payload.time, self.lead)
        except ValidationError as e:
            logger.warning(f"Not scheduling reminder for appointment {appointment_id}: {e}")
            return None
        return self.schedule(appointment_id, fire_time, payload)

    def cancel(self, handle: Optional[JobHandle]) -> bool:
        """Cancel a pending reminder. No-op for None, fired or cancelled handles."""
        if handle is None:
            return False
        if not handle.transition_to(ReminderJobState.CANCELLED):
            return False
        self._forget(handle)
        try:
            self.scheduler.remove_job(handle.job_id)
        except JobLookupError:
            # already dispatched to the executor; the state check in run_reminder drops it
            pass
        logger.info(f"Cancelled reminder for appointment {handle.appointment_id}")
        return True

    def run_reminder(self, handle: JobHandle):
        """Job callback: send the reminder unless the handle was cancelled."""
        self._forget(handle)
        if not handle.transition_to(ReminderJobState.FIRED):
            logger.info(f"Reminder for appointment {handle.appointment_id} was cancelled, skipping")
            return

        payload = handle.payload
        body = render_reminder(payload.doctor, payload.specialization, payload.date, payload.time)
        try:
            self.gateway.send(payload.phone, body)
            logger.info(f"Reminder sent to {payload.phone} for appointment {handle.appointment_id}")
        except TransientNotificationError as e:
            logger.error(f"Failed to send reminder SMS for appointment {handle.appointment_id}: {e}")
        except Exception:
            logger.exception(f"Unexpected error sending reminder for appointment {handle.appointment_id}")
        finally:
            if self.on_fired is not None:
                self.on_fired(handle)

    def _forget(self, handle: JobHandle):
        with self._handles_lock:
            self._handles.pop(handle.job_id, None)

    def _on_job_missed(self, event):
        """APScheduler dropped a job past its misfire grace time: retire its handle."""
        with self._handles_lock:
            handle = self._handles.pop(event.job_id, None)
        if handle is None or not handle.transition_to(ReminderJobState.CANCELLED):
            return
        logger.warning(
            f"Reminder for appointment {handle.appointment_id} missed its run time "
            f"{handle.fire_time.isoformat()}, dropping it"
        )
        if self.on_fired is not None:
            self.on_fired(handle)
