"""Pickup worker service.

Background process that runs the periodic expiry sweep, auto-canceling
pickup requests the pharmacy did not answer within their response budget.

Usage:
    # Run as module
    python -m pharmapickup.worker

    # Or via the console script
    pharmapickup-worker
"""

from pharmapickup.worker.main import Worker, WorkerConfig, run

__all__ = ["Worker", "WorkerConfig", "run"]
