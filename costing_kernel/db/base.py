"""
Module: costing_kernel.db.base
Responsibility: Declarative base for the costing schema.  Every table gets a
    uuid4 primary key; annotated columns pick up the kernel's exact decimal
    and aware-UTC timestamp types without repeating them per model.
Architecture position: Kernel > DB.  Imported by models/ and by the sequence
    counter table.  MUST NOT import from models/, services/ or selectors/.

Invariants enforced:
    - A bare ``Mapped[Decimal]`` is ExactNumeric(38, 9).  Quantity columns
      declare ExactNumeric(38, 4) explicitly.
    - A bare ``Mapped[datetime]`` is UTCDateTime.
    - created_at never changes after INSERT; updated_at follows every UPDATE.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from costing_kernel.db.types import ExactNumeric, UTCDateTime


class UUIDString(TypeDecorator):
    """UUID kept as its 36-char text form, so SQLite and PostgreSQL agree."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: ExactNumeric(38, 9),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TrackedBase(Base):
    """Base plus created_at / updated_at audit columns."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, nullable=False
    )


UUID = PyUUID
