"""Main FastAPI application with modularized routes."""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from exam_api.config import LOG_LEVEL
from exam_api.database import SessionLocal, init_db
from exam_api.errors import AssessmentError
from exam_api.logging_setup import setup_console_logging
from exam_api.routes import attempts, grading, questions, tests
from exam_api.services.events import LifecycleEvents
from exam_api.services.lifecycle_service import AttemptLifecycleService, rearm_timers
from exam_api.services.scheduler import InProcessScheduler, JobDispatcher


def create_app(
    scheduler: InProcessScheduler | None = None,
    events: LifecycleEvents | None = None,
) -> FastAPI:
    """Build the application with its scheduler and event collaborators."""
    setup_console_logging(LOG_LEVEL)

    app = FastAPI(title="Assessment Engine API")
    app.state.scheduler = scheduler or InProcessScheduler()
    app.state.events = events or LifecycleEvents()

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AssessmentError)
    async def assessment_error_handler(request: Request, exc: AssessmentError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "kind": exc.kind},
        )

    @app.on_event("startup")
    def startup_events() -> None:
        """Initialize database and start the lifecycle scheduler."""
        init_db()
        lifecycle = AttemptLifecycleService(SessionLocal, app.state.events)
        db = SessionLocal()
        try:
            rearm_timers(db, app.state.scheduler)
        finally:
            db.close()
        app.state.scheduler.start(JobDispatcher(lifecycle))

    @app.on_event("shutdown")
    def shutdown_events() -> None:
        app.state.scheduler.stop()

    # Include routers
    app.include_router(questions.router)
    app.include_router(tests.router)
    app.include_router(attempts.router)
    app.include_router(grading.router)

    return app


app = create_app()
