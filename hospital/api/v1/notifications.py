from fastapi import APIRouter, Depends, HTTPException, status
from typing import List

from ...core.exceptions import TransientNotificationError
from ...core.reminders import get_notification_gateway, get_reminder_registry
from ...schemas.appointment import ReminderResponse, SMSTestRequest
from ...services.notification_service import NotificationGateway, TEST_MESSAGE
from ...services.reminder_registry import ReminderJobRegistry
from .appointments import reminder_response

router = APIRouter(tags=["Notifications"])

@router.get("/reminders", response_model=List[ReminderResponse])
async def list_reminders(
    registry: ReminderJobRegistry = Depends(get_reminder_registry)
):
    """Reminders currently waiting to fire, soonest first."""
    handles = [h for h in registry.snapshot().values() if h.is_active]
    return [reminder_response(h) for h in sorted(handles, key=lambda h: h.fire_time)]

@router.post("/notifications/test-sms")
def send_test_sms(
    request_data: SMSTestRequest,
    gateway: NotificationGateway = Depends(get_notification_gateway)
):
    """Send a test SMS to check the Twilio configuration."""
    try:
        sid = gateway.send(request_data.phone_number, TEST_MESSAGE)
    except TransientNotificationError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"SMS could not be sent: {e}"
        )
    return {"message": "Test SMS sent", "sid": sid}
