"""
Declarative base for every back-office table.

Conventions carried by ``Base``:

* ``id`` is a uuid4 primary key, stored as ``String(36)`` so the same
  schema runs on PostgreSQL and on the in-memory SQLite used in tests.
* ``Decimal`` annotations map to ``Numeric(38, 9)``; money never touches
  a float column.
* ``datetime`` annotations are timezone-aware.

``TrackedBase`` adds who/when columns.  Master data and run artefacts use it;
the append-only audit log uses plain ``Base``.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, ClassVar

from sqlalchemy import BigInteger, Date, DateTime, Numeric, String, func
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """``uuid.UUID`` in Python, 36-character text in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Dialect) -> str | None:
        return None if value is None else str(value)

    def process_result_value(self, value: Any, dialect: Dialect) -> uuid.UUID | None:
        return None if value is None else uuid.UUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        date: Date,
        uuid.UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[uuid.UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid.uuid4)


class TrackedBase(Base):
    """Adds ``created_at``/``updated_at`` and the acting user for each."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())
    created_by_id: Mapped[uuid.UUID]
    updated_by_id: Mapped[uuid.UUID | None]
