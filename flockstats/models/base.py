"""Base model classes and mixins for all database models."""
import enum
from datetime import date, datetime, timezone

from loguru import logger
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite

from ..extensions import db


class TimestampMixin:
    """Mixin for models that need created_at/updated_at timestamps.

    Use this for source records that can be edited (battles, roster members).
    Don't use for derived rollup rows: a regenerated rollup must come out
    identical to the one it replaced.
    """
    created_at = db.Column(db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))


class BaseModel(db.Model):
    """Abstract base model providing common functionality.

    All models should inherit from this to get:
    - Automatic serialization (to_dict)
    - Primary key lookup helper
    - Consistent __repr__
    """
    __abstract__ = True  # Don't create a table for this class

    def to_dict(self, exclude=None):
        """Convert model instance to dictionary.

        Args:
            exclude: List of column names to exclude from output

        Returns:
            Dictionary of column_name: value
        """
        exclude = exclude or []
        result = {}

        for column in self.__table__.columns:
            if column.name in exclude:
                continue
            value = getattr(self, column.key)
            # Convert dates to ISO format strings, enums to their stored value
            if isinstance(value, (datetime, date)):
                value = value.isoformat()
            elif isinstance(value, enum.Enum):
                value = value.value
            result[column.name] = value

        return result

    @classmethod
    def primary_key_names(cls):
        """Names of the primary key attributes, in table order."""
        return [col.key for col in cls.__table__.primary_key.columns]

    def __repr__(self):
        """Default repr showing primary key(s)."""
        pk_values = []
        for pk_col in self.__table__.primary_key.columns:
            pk_values.append(f"{pk_col.name}={getattr(self, pk_col.key)}")

        return f"<{self.__class__.__name__}({', '.join(pk_values)})>"


def _dialect_insert(model):
    """Dialect-specific INSERT construct supporting ON CONFLICT."""
    dialect = db.session.get_bind().dialect.name
    if dialect == 'postgresql':
        return postgresql.insert(model)
    if dialect == 'sqlite':
        return sqlite.insert(model)
    raise RuntimeError(f"insert_or_fetch needs ON CONFLICT support, unavailable on the {dialect!r} dialect")


def insert_or_fetch(model, values):
    """Create a row unless one with the same primary key exists, then return the stored row.

    Two readers materializing the same absent rollup both reach this point;
    the primary key makes the second INSERT a no-op and both get the row the
    first writer created.

    Args:
        model: Mapped class whose primary key identifies the row
        values: Column values for the new row (must include the primary key)

    Returns:
        The persisted model instance (ours or the concurrent writer's)
    """
    key_names = model.primary_key_names()
    statement = (
        _dialect_insert(model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=key_names)
    )
    result = db.session.execute(statement)
    if result.rowcount == 0:
        logger.debug(f"{model.__name__} {[values[k] for k in key_names]} already created by another writer")

    lookup = select(model).filter_by(**{k: values[k] for k in key_names})
    return db.session.execute(lookup.execution_options(populate_existing=True)).scalar_one()
