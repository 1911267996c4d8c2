"""
Restock Fan-Out Dispatcher — "back in stock" emails for a variant.

dispatch() sends one notice per pending subscription. Attempts run
concurrently (bounded by a semaphore) and independently: a failed or raising
send leaves that subscription pending and does not affect the others. Only a
confirmed send marks a subscription notified. Nothing propagates to the
caller; there is no automatic retry. Dispatches for one variant run one at a
time and re-read the pending list once they hold the variant lock, so
overlapping restocks never mail the same subscriber twice.

schedule() is the hand-off used by the Variant Store after its write commits:
the dispatch runs as a tracked asyncio task in its own session, and the number
of in-flight dispatches is capped.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from notifications.email import send_restock_notice
from notifications.subscriptions import list_pending, mark_notified

logger = structlog.get_logger()

RestockSender = Callable[[str, str, int], Awaitable[bool]]
SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class RestockDispatcher:
    """Fans out restock notices and tracks background dispatch tasks."""

    def __init__(
        self,
        session_factory: SessionFactory,
        sender: RestockSender = send_restock_notice,
        max_concurrency: int = 10,
        max_pending: int = 100,
    ):
        self.session_factory = session_factory
        self.sender = sender
        self.max_concurrency = max(1, max_concurrency)
        self.max_pending = max(1, max_pending)
        self._tasks: set[asyncio.Task] = set()
        self._variant_locks: dict[str, asyncio.Lock] = {}

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    # ── Fan-out ───────────────────────────────────────────────────────

    def _lock_for(self, variant_id: uuid.UUID) -> asyncio.Lock:
        return self._variant_locks.setdefault(str(variant_id), asyncio.Lock())

    async def dispatch(self, db: AsyncSession, variant_id: uuid.UUID) -> dict[str, Any]:
        """
        Notify every pending subscriber of a variant once.

        Returns a summary dict; never raises. "skipped" counts sends whose
        subscription was already claimed by another dispatcher (another
        worker process) by the time the send finished.
        """
        summary: dict[str, Any] = {
            "variant_id": str(variant_id),
            "pending": 0,
            "notified": 0,
            "failed": 0,
            "skipped": 0,
            "status": "success",
        }
        try:
            async with self._lock_for(variant_id):
                await self._fan_out(db, variant_id, summary)
        except Exception as exc:  # noqa: BLE001
            summary["status"] = "failed"
            logger.error(
                "restock.dispatch_failed",
                variant_id=str(variant_id),
                error=str(exc),
                exc_info=True,
            )
            return summary

        if summary["failed"]:
            summary["status"] = "partial"
        logger.info("restock.dispatch_complete", **summary)
        return summary

    async def _fan_out(self, db: AsyncSession, variant_id: uuid.UUID, summary: dict[str, Any]) -> None:
        subscriptions = await list_pending(db, variant_id)
        summary["pending"] = len(subscriptions)
        if not subscriptions:
            logger.info("restock.no_pending", variant_id=str(variant_id))
            return

        semaphore = asyncio.Semaphore(self.max_concurrency)
        db_lock = asyncio.Lock()

        async def _attempt(subscription) -> str:
            # Snapshot before any await: the session is shared between attempts.
            notification_id = subscription.notification_id
            email = subscription.email
            label = subscription.variant_label
            quantity = subscription.variant_qty
            try:
                async with semaphore:
                    sent = await self.sender(email, label, quantity)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "restock.send_failed",
                    variant_id=str(variant_id),
                    notification_id=str(notification_id),
                    error=str(exc),
                )
                return "failed"
            if sent is not True:
                logger.warning(
                    "restock.send_unconfirmed",
                    variant_id=str(variant_id),
                    notification_id=str(notification_id),
                )
                return "failed"

            async with db_lock:
                claimed = await mark_notified(db, notification_id)
                await db.commit()
            if not claimed:
                logger.warning(
                    "restock.already_notified",
                    variant_id=str(variant_id),
                    notification_id=str(notification_id),
                )
                return "skipped"
            return "notified"

        outcomes = await asyncio.gather(
            *(_attempt(subscription) for subscription in subscriptions),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                logger.error(
                    "restock.attempt_crashed",
                    variant_id=str(variant_id),
                    error=str(outcome),
                )
                summary["failed"] += 1
            else:
                summary[outcome] += 1

    # ── Background hand-off ───────────────────────────────────────────

    async def _run(self, variant_id: uuid.UUID) -> dict[str, Any]:
        try:
            async with self.session_factory() as db:
                return await self.dispatch(db, variant_id)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "restock.session_failed",
                variant_id=str(variant_id),
                error=str(exc),
                exc_info=True,
            )
            return {"variant_id": str(variant_id), "status": "failed"}

    def schedule(self, variant_id: uuid.UUID) -> asyncio.Task | None:
        """
        Start a dispatch for variant_id without waiting for it.

        Returns the task, or None when the in-flight cap is reached (the
        subscriptions stay pending for a later re-dispatch).
        """
        if len(self._tasks) >= self.max_pending:
            logger.warning(
                "restock.dispatch_rejected",
                variant_id=str(variant_id),
                pending=len(self._tasks),
                max_pending=self.max_pending,
            )
            return None

        task = asyncio.get_running_loop().create_task(self._run(variant_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("restock.dispatch_scheduled", variant_id=str(variant_id), pending=len(self._tasks))
        return task

    async def drain(self) -> list[dict[str, Any]]:
        """Wait for every in-flight dispatch to finish."""
        results: list[dict[str, Any]] = []
        while self._tasks:
            done, _ = await asyncio.wait(list(self._tasks))
            for task in done:
                self._tasks.discard(task)
                if not task.cancelled() and task.exception() is None:
                    results.append(task.result())
        return results
