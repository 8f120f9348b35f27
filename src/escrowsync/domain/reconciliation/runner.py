"""Drive the engine from the notification feed: catch-up first, then live."""

from __future__ import annotations

import asyncio
import zlib
from collections import defaultdict
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from escrowsync.domain.errors import StoreWriteFailure
from escrowsync.domain.notifications import Checkpoint

from .retry import Backoff

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from escrowsync.config.sync import ReconcileSettings
    from escrowsync.domain.notifications import Notification
    from escrowsync.domain.ports import IndexUnitOfWork, NotificationFeed

    from .engine import ReconciliationEngine

log = getLogger(__name__)


class ReconciliationRunner:
    """Feeds notifications to the engine with one writer per partition.

    The global feed cursor only moves after every notification at or below it has
    been reconciled (applied, deduplicated or quarantined), so a crash at any point
    resumes from a position that loses nothing.
    """

    def __init__(
        self,
        *,
        engine: ReconciliationEngine,
        feed: NotificationFeed,
        unit_of_work_factory: Callable[[], IndexUnitOfWork],
        settings: ReconcileSettings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._engine = engine
        self._feed = feed
        self._unit_of_work_factory = unit_of_work_factory
        self._settings = settings
        self._sleep = sleep
        self._backoff = Backoff(
            initial=settings.backoff_factor,
            maximum=settings.max_backoff_wait,
        )
        self._stop = asyncio.Event()
        self._worker_error: BaseException | None = None

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Ask ``run``/``follow`` to wind down; safe to call from a signal handler."""

        self._stop.set()

    def cursor_position(self) -> int:
        with self._unit_of_work_factory() as uow:
            return uow.repositories.progress.cursor(self._settings.feed_name).position

    async def run(self) -> None:
        await self.catch_up()
        if not self.stopping:
            await self.follow()

    async def catch_up(self) -> int:
        """Replay from ``cursor + 1`` to the head in capped batches."""

        cursor = self.cursor_position()
        head = await self._feed.head()
        log.info("Catching up from %s to head %s", cursor + 1, head)
        while cursor < head and not self.stopping:
            upper = min(head, cursor + self._settings.replay_batch_size)
            notifications = await self._feed.list_notifications(cursor + 1, upper)
            await self.reconcile_batch(notifications)
            self._commit_cursor(upper)
            log.info("Reconciled %s notification(s) up to %s", len(notifications), upper)
            cursor = upper
            if cursor >= head:
                head = await self._feed.head()
        return cursor

    async def reconcile_batch(self, notifications: Sequence[Notification]) -> None:
        """Reconcile a batch: partitions in parallel, each one in ledger order."""

        by_partition: dict[str, list[Notification]] = defaultdict(list)
        for notification in sorted(notifications, key=lambda item: item.sort_key):
            by_partition[notification.partition].append(notification)

        limit = asyncio.Semaphore(self._settings.workers)

        async def drain(items: list[Notification]) -> None:
            async with limit:
                for item in items:
                    await self._reconcile(item)

        async with asyncio.TaskGroup() as group:
            for items in by_partition.values():
                group.create_task(drain(items))

    async def follow(self) -> None:
        """Consume the live subscription until ``stop`` is called."""

        cursor = self.cursor_position()
        queues: list[asyncio.Queue[Notification]] = [
            asyncio.Queue(maxsize=self._settings.queue_size) for _ in range(self._settings.workers)
        ]
        workers = [asyncio.create_task(self._work(queue)) for queue in queues]
        subscription = aiter(self._feed.subscribe(cursor + 1))
        stop_wait = asyncio.create_task(self._stop.wait())
        log.info("Following live notifications from %s", cursor + 1)
        try:
            while True:
                next_item = asyncio.ensure_future(anext(subscription))
                done, _ = await asyncio.wait(
                    {next_item, stop_wait}, return_when=asyncio.FIRST_COMPLETED
                )
                if next_item not in done:
                    next_item.cancel()
                    await asyncio.wait({next_item})
                    break
                try:
                    item = next_item.result()
                except StopAsyncIteration:
                    break
                if isinstance(item, Checkpoint):
                    await asyncio.gather(*(queue.join() for queue in queues))
                    self._raise_worker_error()
                    if item.position > cursor:
                        self._commit_cursor(item.position)
                        cursor = item.position
                    continue
                await queues[self._slot(item.partition)].put(item)
                self._raise_worker_error()
        finally:
            stop_wait.cancel()
            await self._drain(queues, workers)
            aclose = getattr(subscription, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _work(self, queue: asyncio.Queue[Notification]) -> None:
        while True:
            notification = await queue.get()
            try:
                await self._reconcile(notification)
            except Exception as exc:  # noqa: BLE001
                log.exception("Worker failed on %s", notification.idempotency_key)
                self._worker_error = exc
            finally:
                queue.task_done()

    async def _reconcile(self, notification: Notification) -> None:
        attempt = 0
        while True:
            attempt += 1
            try:
                await self._engine.reconcile(notification)
            except StoreWriteFailure:
                if attempt >= self._settings.max_attempts or self.stopping:
                    raise
                delay = self._backoff.delay(attempt)
                log.warning(
                    "Store unavailable for %s (attempt %s); retrying in %.2fs",
                    notification.idempotency_key,
                    attempt,
                    delay,
                )
                await self._sleep(delay)
            else:
                return

    async def _drain(
        self,
        queues: list[asyncio.Queue[Notification]],
        workers: list[asyncio.Task[None]],
    ) -> None:
        pending = asyncio.gather(*(queue.join() for queue in queues))
        try:
            await asyncio.wait_for(pending, timeout=self._settings.shutdown_grace_seconds)
        except TimeoutError:
            remaining = sum(queue.qsize() for queue in queues)
            log.warning("Shutdown grace expired; abandoning %s queued notification(s)", remaining)
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

    def _raise_worker_error(self) -> None:
        if self._worker_error is not None:
            error, self._worker_error = self._worker_error, None
            raise error

    def _commit_cursor(self, position: int) -> None:
        with self._unit_of_work_factory() as uow:
            cursor = uow.repositories.progress.cursor(self._settings.feed_name)
            if position > cursor.position:
                cursor.position = position
                cursor.updated_at = datetime.now(UTC)
            uow.commit()

    def _slot(self, partition: str) -> int:
        return zlib.crc32(partition.encode()) % self._settings.workers


__all__ = ["ReconciliationRunner"]
