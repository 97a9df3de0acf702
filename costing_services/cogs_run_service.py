"""
CogsRunService -- batch COGS runs over a list of shipped order lines.

Responsibility:
    Cost a batch of shipment lines (e.g. the end-of-day feed) one line at a
    time through CogsAllocationEngine, and keep a durable log of the run: a
    header with the counts and one item row per line with its outcome.

Architecture position:
    Services -- a caller of the COGS engine, not a batching primitive in it.

Invariants enforced:
    - Each line is costed in its own transaction; one failing line never
      rolls back another.
    - Line outcome is successful, skipped or failed; never partial.
    - The run header is committed before the first line, so a run that
      dies half-way is still visible with finished_at unset.
    - total == successful + skipped + failed.

Failure modes:
    - Typed CostingKernelError from a line is recorded as that line's
      failure reason (its code) and the run continues.
    - Any other exception aborts the run and propagates.
    - CogsRunNotFoundError from get_run.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from costing_config.schema import CostingConfig
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.dtos import (
    CogsRunSummary,
    CostingMethod,
    CostingStatus,
    RunItemStatus,
    ShipmentLine,
)
from costing_kernel.domain.values import ZERO, quantize_qty, to_decimal
from costing_kernel.exceptions import (
    CogsRunNotFoundError,
    CostingKernelError,
    InvalidQuantityError,
    ValidationError,
)
from costing_kernel.logging_config import LogContext, get_logger
from costing_kernel.models.cogs_run import CogsRunItemModel, CogsRunModel
from costing_services.cogs_engine import CogsAllocationEngine

logger = get_logger("services.cogs_run")

OUT_OF_RANGE = "OUT_OF_RANGE"


def _recorded_qty(value: object) -> Decimal:
    """Line quantity as stored on the run item; unparseable input is kept as 0."""
    try:
        return quantize_qty(to_decimal(value, "qty"))
    except InvalidQuantityError:
        return ZERO


class CogsRunService:
    """
    Batch runner and run log.

    Contract:
        run() always returns a summary of every line it was given.  Each
        line's costing and its item row are committed before the next line
        starts.
    """

    def __init__(
        self,
        session: Session,
        config: CostingConfig,
        clock: Clock | None = None,
    ):
        self._session = session
        self._config = config
        self._clock = clock or SystemClock()
        self._engine = CogsAllocationEngine(session, config, clock=self._clock)

    def run(
        self,
        lines: Sequence[ShipmentLine],
        method: CostingMethod | str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> CogsRunSummary:
        """
        Cost every line and record the outcome.

        Lines whose shipped_at falls outside start_date..end_date (inclusive,
        reporting-timezone days) are skipped with reason OUT_OF_RANGE.  A
        line that was already costed is skipped with reason ALREADY_COSTED.

        Raises:
            ValidationError: end_date before start_date.
        """
        resolved = (
            CostingMethod.parse(method) if method is not None else self._config.default_method
        )
        if start_date is not None and end_date is not None and end_date < start_date:
            raise ValidationError(f"end_date {end_date} is before start_date {start_date}")

        try:
            run = CogsRunModel(
                method=resolved.value,
                start_date=start_date,
                end_date=end_date,
                started_at=self._clock.now_utc(),
                total=0,
                successful=0,
                skipped=0,
                failed=0,
            )
            self._session.add(run)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        with LogContext.bind(run_id=str(run.id)):
            logger.info(
                "cogs_run_started",
                extra={"method": resolved.value, "line_count": len(lines)},
            )

            items: list[CogsRunItemModel] = []
            for line_no, line in enumerate(lines, start=1):
                status, reason = self._cost_line(line, resolved, start_date, end_date)

                try:
                    item = CogsRunItemModel(
                        run_id=run.id,
                        line_no=line_no,
                        order_id=line.order_id,
                        sku=line.sku,
                        qty=_recorded_qty(line.qty),
                        status=status.value,
                        reason=reason,
                    )
                    self._session.add(item)
                    run.total += 1
                    if status == RunItemStatus.SUCCESSFUL:
                        run.successful += 1
                    elif status == RunItemStatus.SKIPPED:
                        run.skipped += 1
                    else:
                        run.failed += 1
                    self._session.commit()
                except Exception:
                    self._session.rollback()
                    raise
                items.append(item)

            try:
                run.finished_at = self._clock.now_utc()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "cogs_run_completed",
                extra={
                    "total": run.total,
                    "successful": run.successful,
                    "skipped": run.skipped,
                    "failed": run.failed,
                },
            )
        return CogsRunSummary.from_model(run, items)

    def _cost_line(
        self,
        line: ShipmentLine,
        method: CostingMethod,
        start_date: date | None,
        end_date: date | None,
    ) -> tuple[RunItemStatus, str | None]:
        if not self._in_range(line, start_date, end_date):
            return RunItemStatus.SKIPPED, OUT_OF_RANGE

        try:
            result = self._engine.apply_shipment(line, method)
        except CostingKernelError as exc:
            logger.warning(
                "cogs_run_line_failed",
                extra={
                    "order_id": line.order_id,
                    "sku": line.sku,
                    "error_code": exc.code,
                },
            )
            return RunItemStatus.FAILED, exc.code

        if result.status == CostingStatus.ALREADY_COSTED:
            return RunItemStatus.SKIPPED, CostingStatus.ALREADY_COSTED.value
        return RunItemStatus.SUCCESSFUL, None

    def _in_range(
        self,
        line: ShipmentLine,
        start_date: date | None,
        end_date: date | None,
    ) -> bool:
        if start_date is None and end_date is None:
            return True
        if line.shipped_at is None or line.shipped_at.tzinfo is None:
            # Left to the engine, which rejects it with a typed error
            return True
        day = line.shipped_at.astimezone(self._config.tzinfo).date()
        if start_date is not None and day < start_date:
            return False
        if end_date is not None and day > end_date:
            return False
        return True

    def get_run(self, run_id: UUID) -> CogsRunSummary:
        """Summary of a recorded run with its items in line order."""
        run = self._session.get(CogsRunModel, run_id)
        if run is None:
            raise CogsRunNotFoundError(str(run_id))
        items = list(
            self._session.scalars(
                select(CogsRunItemModel)
                .where(CogsRunItemModel.run_id == run_id)
                .order_by(CogsRunItemModel.line_no)
            )
        )
        return CogsRunSummary.from_model(run, items)
