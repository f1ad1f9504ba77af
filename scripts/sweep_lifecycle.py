#!/usr/bin/env python3
"""
Catch-up script for lifecycle timers that were missed while the API was down.

This script:
1. Rebuilds go-live, auto-complete, auto-submit and section timers from the database
2. Runs every timer that is already due (scheduled tests go live, ended tests
   complete, expired attempts are auto-submitted, expired sections lock)
3. Reports timers that are still in the future; the API re-arms them on startup

Usage:
    python scripts/sweep_lifecycle.py
"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from exam_api.database import SessionLocal, init_db
from exam_api.services.lifecycle_service import AttemptLifecycleService, rearm_timers
from exam_api.services.scheduler import InProcessScheduler, JobDispatcher


def sweep():
    """Main sweep function."""
    scheduler = InProcessScheduler(max_attempts=1)
    db = SessionLocal()
    try:
        armed = rearm_timers(db, scheduler)
        print(f"Found {armed} lifecycle timers")
    except Exception as e:
        print(f"ERROR: Could not read lifecycle state: {e}")
        return False
    finally:
        db.close()

    dispatcher = JobDispatcher(AttemptLifecycleService(SessionLocal))
    ran = scheduler.run_due_jobs(dispatcher)
    print(f"Ran {ran} due timers")

    for job in scheduler.failed_jobs:
        print(f"  FAILED: {job.kind.value} {job.payload}")

    pending = scheduler.pending_jobs
    print(f"{len(pending)} timers still pending")
    for job in pending:
        print(f"  {job.run_at.isoformat()}  {job.kind.value} {job.payload}")

    return not scheduler.failed_jobs


if __name__ == "__main__":
    print("=== Lifecycle Sweep ===\n")
    init_db()
    success = sweep()
    sys.exit(0 if success else 1)
