"""
SequenceService -- strictly increasing numbers from locked counter rows.

Responsibility:
    Numbers receipt layers.  FIFO consumes layers ordered by
    (received_at, sequence), so two layers received at the same instant are
    consumed in the order they were recorded.

Architecture position:
    Kernel > Services.  Called by ReceivingService inside its transaction;
    never commits.

Invariants enforced:
    - The counter row is read with SELECT ... FOR UPDATE and incremented in
      the caller's transaction; a rollback gives the number back.
    - MAX(sequence) + 1 is never used.

Failure modes:
    - IntegrityError if two sessions create the same unseeded counter at
      once.  create_tables() seeds every name in KNOWN_SEQUENCES, so only
      ad-hoc names can hit this.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from costing_kernel.db.base import Base
from costing_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """Current value of one named sequence."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """Allocates sequence numbers; the caller owns the transaction."""

    RECEIPT_LAYER = "receipt_layer"

    KNOWN_SEQUENCES = (RECEIPT_LAYER,)

    def __init__(self, session: Session):
        self._session = session

    def _counter(self, name: str, lock: bool) -> SequenceCounter | None:
        stmt = select(SequenceCounter).where(SequenceCounter.name == name)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def next_value(self, name: str = RECEIPT_LAYER) -> int:
        """Next number of `name` (first value is 1); the row stays locked until commit."""
        counter = self._counter(name, lock=True)
        if counter is None:
            counter = SequenceCounter(name=name, current_value=0)
            self._session.add(counter)

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, name: str = RECEIPT_LAYER) -> int | None:
        """Last number handed out, or None for an unseeded sequence."""
        counter = self._counter(name, lock=False)
        return counter.current_value if counter is not None else None

    def initialize_sequences(self) -> None:
        """Seed a zero counter for every name in KNOWN_SEQUENCES."""
        for name in self.KNOWN_SEQUENCES:
            if self._counter(name, lock=False) is None:
                self._session.add(SequenceCounter(name=name, current_value=0))
        self._session.flush()
