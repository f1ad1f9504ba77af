"""FastAPI dependencies."""
from exam_api.dependencies.services import get_events, get_scheduler

__all__ = ["get_events", "get_scheduler"]
