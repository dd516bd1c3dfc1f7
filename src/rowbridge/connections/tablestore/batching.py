"""Entity-group batching for table-store writes.

A batch transaction may only touch one partition and hold at most 100
operations. ``BatchWriter`` keeps one open batch per partition key and
submits each as its own task as soon as it is full; ``finish`` submits the
remainder and waits for every task. Batches are independent: there is no
ordering between them and a failed batch does not undo the others.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from azure.data.tables import UpdateMode

from rowbridge.connections.base import is_cancelled
from rowbridge.core.config import TABLE_STORE_MAX_BATCH
from rowbridge.core.logging import get_logger, increment_batch

logger = get_logger(__name__)


@dataclass
class BatchOutcome:
    """What happened to the batches a writer submitted."""

    rows_committed: int = 0
    batches_submitted: int = 0
    errors: list[BaseException] = field(default_factory=list)
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return not self.errors and not self.cancelled


class BatchWriter:
    """Accumulates write operations per partition and submits full batches.

    Args:
        table_client: Async table client exposing ``submit_transaction``
        operation: ``create``, ``upsert``, ``update`` or ``delete``
        batch_size: Operations per batch, capped at the store maximum
        cancel: Checked before each batch is submitted
    """

    def __init__(
        self,
        table_client: Any,
        operation: str = "create",
        batch_size: int = TABLE_STORE_MAX_BATCH,
        cancel: asyncio.Event | None = None,
    ):
        self.table_client = table_client
        self.operation = operation
        self.batch_size = max(1, min(batch_size, TABLE_STORE_MAX_BATCH))
        self.cancel = cancel
        self._pending: dict[str, list[tuple[Any, ...]]] = defaultdict(list)
        self._tasks: list[asyncio.Task[int]] = []
        self._cancelled = False

    def _operation(self, entity: dict[str, Any]) -> tuple[Any, ...]:
        if self.operation in ("update", "upsert"):
            return (self.operation, entity, {"mode": UpdateMode.REPLACE})
        return (self.operation, entity)

    async def _submit_batch(self, operations: list[tuple[Any, ...]]) -> int:
        await self.table_client.submit_transaction(operations)
        return len(operations)

    def _submit(self, partition: str) -> None:
        operations = self._pending.pop(partition, [])
        if not operations:
            return
        if is_cancelled(self.cancel):
            self._cancelled = True
            return
        self._tasks.append(asyncio.create_task(self._submit_batch(operations)))
        increment_batch()
        logger.debug(
            "batch_submitted",
            operation=self.operation,
            partition=partition,
            size=len(operations),
        )

    def add(self, entity: dict[str, Any]) -> None:
        """Queue one entity; submits its partition's batch once full."""
        partition = entity["PartitionKey"]
        self._pending[partition].append(self._operation(entity))
        if len(self._pending[partition]) >= self.batch_size:
            self._submit(partition)

    @property
    def batches_submitted(self) -> int:
        return len(self._tasks)

    def mark_cancelled(self) -> None:
        """Drop every pending operation; submitted batches still complete."""
        self._pending.clear()
        self._cancelled = True

    async def finish(self) -> BatchOutcome:
        """Submit what is left and wait for all batches."""
        if not self._cancelled:
            for partition in list(self._pending):
                self._submit(partition)
        self._pending.clear()

        outcome = BatchOutcome(batches_submitted=len(self._tasks), cancelled=self._cancelled)
        if not self._tasks:
            return outcome
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                outcome.errors.append(result)
            else:
                outcome.rows_committed += result
        if outcome.errors:
            logger.warning(
                "batches_failed",
                operation=self.operation,
                failed=len(outcome.errors),
                submitted=outcome.batches_submitted,
            )
        return outcome
