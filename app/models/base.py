# app/models/base.py
"""
Base model with common fields and functionality (SQLAlchemy 2.x, DeclarativeBase).

- utc_now(): naive UTC, used by every DateTime column in the project.
- Naming conventions shared with Alembic.
- BaseModel: id/created_at/updated_at + serialization helpers.
- SoftDeleteMixin: the all-or-nothing soft-delete record
  (deleted_at, deleted_by, deleted_by_name, deletion_reason).
"""

from __future__ import annotations

import enum
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, Optional, Type

from sqlalchemy import DateTime, Enum as SQLEnum, Integer, MetaData, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    """Naive UTC "now"; DateTime columns are stored without timezone."""
    return datetime.now(UTC).replace(tzinfo=None)


NAMING_CONVENTIONS: dict[str, str] = {
    "ix": "ix__%(table_name)s__%(column_0_N_name)s",
    "uq": "uq__%(table_name)s__%(column_0_N_name)s",
    "ck": "ck__%(table_name)s__%(constraint_name)s",
    "fk": "fk__%(table_name)s__%(column_0_N_name)s__%(referred_table_name)s",
    "pk": "pk__%(table_name)s",
}


class Base(DeclarativeBase):
    """Root declarative base with naming conventions."""

    metadata = MetaData(naming_convention=NAMING_CONVENTIONS)


def enum_column(enum_cls: Type[enum.Enum], length: int = 40) -> SQLEnum:
    """Portable enum type storing the member *value* (VARCHAR + CHECK)."""
    return SQLEnum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda e: [m.value for m in e],
        validate_strings=True,
    )


def _jsonable(v: Any) -> Any:
    if isinstance(v, (datetime, date)):
        return v.isoformat()
    if isinstance(v, Decimal):
        return str(v)
    if isinstance(v, enum.Enum):
        return v.value
    return v


class BaseModel(Base):
    """Common base class for all project models."""

    __abstract__ = True

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    def touch(self) -> None:
        self.updated_at = utc_now()

    def __repr__(self) -> str:  # pragma: no cover
        return f"<{self.__class__.__name__}(id={getattr(self, 'id', None)})>"

    def to_dict(self) -> dict[str, Any]:
        """Column snapshot with JSON-safe values (dates isoformat, Decimal as str)."""
        return {col.name: _jsonable(getattr(self, col.name)) for col in self.__table__.columns}  # type: ignore[attr-defined]


class SoftDeleteMixin:
    """Soft delete; the four fields are set and cleared together."""

    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    deleted_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    deleted_by_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    deletion_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


__all__ = ["Base", "BaseModel", "SoftDeleteMixin", "NAMING_CONVENTIONS", "enum_column", "utc_now"]
