"""
Module: costing_kernel.db.types
Responsibility: Column type decorators shared by every model.  Rounding
    helpers live in costing_kernel.domain.values so that the pure engines can
    use them without importing SQLAlchemy.
Architecture position: Kernel > DB.  May be imported by models/ and db/base.py.
    MUST NOT import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - No floats.  ExactNumeric binds Decimal values as NUMERIC on PostgreSQL
      and as canonical strings on SQLite, so a stored 10.333333333 reads back
      as exactly Decimal("10.333333333") on every backend.
    - Quantity columns use scale 4; cost and value columns use scale 9.
    - UTCDateTime rejects naive datetimes and always returns aware UTC values.

Failure modes:
    - ValueError when binding a naive datetime.
"""

from datetime import UTC
from decimal import Decimal

from sqlalchemy import DateTime, Numeric, String
from sqlalchemy.types import TypeDecorator


class ExactNumeric(TypeDecorator):
    """
    Fixed-point decimal column that never round-trips through float.

    Contract:
        PostgreSQL gets a native NUMERIC(precision, scale).  SQLite has no
        fixed-point storage, so the value is bound as its canonical string
        and parsed back into Decimal on load.

    Guarantees:
        - Bound values are quantized to `scale` places.
        - Loaded values are always Decimal (never float).
    """

    impl = Numeric
    cache_ok = True

    def __init__(self, precision: int = 38, scale: int = 9):
        super().__init__(precision=precision, scale=scale, asdecimal=True)
        self.precision = precision
        self.scale = scale

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(self.precision + 2))
        return dialect.type_descriptor(
            Numeric(precision=self.precision, scale=self.scale, asdecimal=True)
        )

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        quantized = Decimal(value).quantize(Decimal(1).scaleb(-self.scale))
        if dialect.name == "sqlite":
            return format(quantized, "f")
        return quantized

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(str(value)) if not isinstance(value, Decimal) else value


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp, stored in UTC.

    SQLite drops tzinfo on the way out; this decorator normalizes to UTC on
    the way in and re-attaches UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value.isoformat()}")
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

