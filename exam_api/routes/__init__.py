"""API route modules."""
from exam_api.routes import attempts, grading, questions, tests

__all__ = ["attempts", "grading", "questions", "tests"]
