"""SQLAlchemy models package."""

from .achievement import (  # noqa: F401
    AchievementCategory,
    AchievementDefinition,
    AchievementTier,
    UserAchievementProgress,
)
from .points import (  # noqa: F401
    TYPE_STAT_COLUMNS,
    PointsSource,
    PointsTransaction,
    PointsTransactionType,
    UserPointsAccount,
    UserPointsSourceStat,
)
