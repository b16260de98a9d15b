"""Small helpers shared by the long-running components."""

from src.utils.tasks import cancel_task

__all__ = ["cancel_task"]
