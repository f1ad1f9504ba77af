"""Collaborator dependencies resolved from application state."""
from fastapi import Request

from exam_api.services.events import LifecycleEvents
from exam_api.services.scheduler import SchedulerClient


def get_scheduler(request: Request) -> SchedulerClient:
    """Scheduler client created by the application factory."""
    return request.app.state.scheduler


def get_events(request: Request) -> LifecycleEvents:
    """Notification and analytics hooks created by the application factory."""
    return request.app.state.events
