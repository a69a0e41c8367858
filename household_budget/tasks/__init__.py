# Tasks package
from .adjustment_tasks import apply_due_adjustments_task

__all__ = [
    "apply_due_adjustments_task",
]
