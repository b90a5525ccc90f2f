"""Periodic job handlers for the pickup worker.

- expiry: auto-cancel unanswered requests past their response deadline
"""

from pharmapickup.worker.handlers.expiry import sweep_expired_handler

__all__ = ["sweep_expired_handler"]
