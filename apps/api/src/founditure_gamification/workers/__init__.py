"""Background workers supporting async processing."""

from .points_reconciliation import PointsReconciliationWorker

__all__ = ["PointsReconciliationWorker"]
