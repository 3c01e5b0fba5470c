"""Request-scoped access to the background workers owned by the app lifespan."""

from fastapi import Request

from clinicbook.notifications.dispatcher import NotificationDispatcher
from clinicbook.scheduler import ReminderScheduler


def get_dispatcher(request: Request) -> NotificationDispatcher | None:
    return getattr(request.app.state, 'dispatcher', None)


def get_scheduler(request: Request) -> ReminderScheduler | None:
    return getattr(request.app.state, 'scheduler', None)
