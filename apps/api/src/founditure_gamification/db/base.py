from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

# Keeps ORM-emitted constraint names in step with the uq_/ck_/ix_ names used by migrations.
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_N_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
}


class Base(DeclarativeBase):
    """Declarative base shared by the ledger and achievement models."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# Register every mapped table on Base.metadata for create_all and Alembic.
try:  # pragma: no cover - import side effects only
    import founditure_gamification.models  # noqa: F401
except ImportError:  # pragma: no cover - models importing this module first
    pass
