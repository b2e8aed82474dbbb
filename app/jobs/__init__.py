"""
Background Jobs Module

Handles:
- Reconciliation after count saves
- Periodic reconciliation sweep of open references
"""

from app.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler, get_job_status
from app.jobs.reconciliation_jobs import reconcile_in_background, sweep_open_references

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "get_job_status",
    "reconcile_in_background",
    "sweep_open_references",
]
