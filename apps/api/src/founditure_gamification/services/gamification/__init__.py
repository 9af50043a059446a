"""Points ledger and achievement progress exports."""

from .achievements import AchievementRegistry  # noqa: F401
from .criteria import evaluate_criteria, validate_criteria  # noqa: F401
from .errors import (  # noqa: F401
    ConsistencyWarning,
    GamificationError,
    StorageError,
    ValidationError,
)
from .events import (  # noqa: F401
    EventPublisher,
    GamificationEvent,
    GamificationEventType,
    get_event_publisher,
)
from .levels import LevelProgress, calculate_level, level_progress, points_for_level  # noqa: F401
from .points_service import PointsLedgerService, TransactionPage  # noqa: F401
from .progress_tracker import AchievementProgressTracker, ProgressUpdate  # noqa: F401
from .reconciliation import (  # noqa: F401
    PointsReconciliationService,
    ReconciliationSummary,
    UserReconciliation,
)
from .store import LedgerStore  # noqa: F401
