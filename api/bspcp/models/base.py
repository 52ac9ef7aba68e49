"""Declarative base, shared column types and the timestamp mixin."""

from datetime import UTC, datetime

from sqlalchemy import JSON, DateTime, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always comes back in UTC.

    SQLite drops tzinfo on the way in; values are normalised to UTC before
    binding and re-tagged on load so comparisons with ``utcnow()`` work on
    every backend.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC)
            if dialect.name == "sqlite":
                value = value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class AppendOnlyViolation(RuntimeError):
    """Raised when code tries to update or delete an audit row."""


def make_append_only(model) -> None:
    """Refuse ORM updates and deletes on ``model``."""

    @event.listens_for(model, "before_update")
    def _no_update(mapper, connection, target):
        raise AppendOnlyViolation(f"{model.__tablename__} rows are append-only")

    @event.listens_for(model, "before_delete")
    def _no_delete(mapper, connection, target):
        raise AppendOnlyViolation(f"{model.__tablename__} rows are append-only")
