from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from apscheduler.schedulers.background import BackgroundScheduler

from .config import settings
from ..services.notification_service import NotificationGateway, TwilioNotificationGateway
from ..services.reminder_registry import ReminderJobRegistry
from ..services.reminder_scheduler import ReminderScheduler

# Process-wide reminder state, shared by all requests
reminder_registry = ReminderJobRegistry()

notification_gateway = TwilioNotificationGateway()

if settings.SCHEDULER_TIMEZONE:
    _tz = ZoneInfo(settings.SCHEDULER_TIMEZONE)
    _background = BackgroundScheduler(timezone=settings.SCHEDULER_TIMEZONE)

    def _clock() -> datetime:
        # naive wall-clock time in the scheduler's zone, like stored appointment times
        return datetime.now(_tz).replace(tzinfo=None)
else:
    _background = BackgroundScheduler()
    _clock = datetime.now

reminder_scheduler = ReminderScheduler(
    gateway=notification_gateway,
    scheduler=_background,
    lead=timedelta(minutes=settings.REMINDER_LEAD_MINUTES),
    clock=_clock,
    misfire_grace_seconds=settings.REMINDER_MISFIRE_GRACE_SECONDS,
    on_fired=lambda handle: reminder_registry.remove(handle.appointment_id, handle),
)

# Dependencies
def get_reminder_registry() -> ReminderJobRegistry:
    """Get the reminder job registry."""
    return reminder_registry

def get_reminder_scheduler() -> ReminderScheduler:
    """Get the reminder scheduler."""
    return reminder_scheduler

def get_notification_gateway() -> NotificationGateway:
    """Get the SMS gateway."""
    return notification_gateway
