"""
Module: fleet_kernel.db.base
Responsibility: Declarative base classes for all ORM models.  Provides the
    UUID primary key convention, the portable column types and the
    TrackedBase mixin for audit stamps.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel; MUST NOT import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - UUID primary keys (uuid4) on every row.
    - Decimal maps to DecimalType: Numeric(38, 9) on PostgreSQL, exact
      string storage on SQLite.  Money and litres never pass through float.
    - datetime maps to TZDateTime: always timezone-aware on load.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as String(36) for cross-database portability."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class DecimalType(TypeDecorator):
    """
    Exact decimal column.

    PostgreSQL stores Numeric(38, 9).  SQLite has no decimal type and would
    round-trip through REAL, so there the value is kept as its string form.
    """

    impl = Numeric(38, 9)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(64))
        return dialect.type_descriptor(Numeric(38, 9))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = Decimal(value)
        if dialect.name == "sqlite":
            return str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value) if not isinstance(value, Decimal) else value


class TZDateTime(TypeDecorator):
    """DateTime that always loads as timezone-aware (UTC when the store drops it)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is None:
            raise ValueError(f"naive datetime not allowed: {value!r}")
        if value is not None and dialect.name == "sqlite":
            return value.astimezone(UTC).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class Base(DeclarativeBase):
    """Declarative base for all fleet models: uuid4 primary key plus type map."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: DecimalType(),
        datetime: TZDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with creation and modification stamps.

    Actor identifiers come from the external identity provider and are kept
    as opaque strings.  Services set the timestamps from the injected clock;
    the server default only covers rows written outside a service.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        TZDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        TZDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    updated_by_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    def touch(self, actor_id: str, now: datetime) -> None:
        """
        Stamp the row as modified by ``actor_id`` at ``now``.

        The row is always flagged dirty, so a write that leaves every value
        as it was still issues an UPDATE and bumps ``version``.
        """
        self.updated_by_id = actor_id
        self.updated_at = now
        flag_modified(self, "updated_by_id")


UUID = PyUUID
