"""Restock notification re-dispatch for subscriptions a fan-out left pending."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.notifications.redispatch_pending_notifications",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def redispatch_pending_notifications(self, variant_id: str | None = None):
    """
    Re-run the restock fan-out for one variant, or for every available
    variant that still has unsent subscriptions.
    """
    from core.config import get_settings
    from notifications import email as email_service
    from notifications.dispatcher import RestockDispatcher
    from notifications.subscriptions import variants_with_pending

    run_id = self.request.id or "manual"

    async def _redispatch():
        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            dispatcher = RestockDispatcher(
                session_factory=session_factory,
                sender=email_service.send_restock_notice,
                max_concurrency=getattr(settings, "restock_max_concurrency", 10),
            )

            if variant_id:
                targets = [uuid.UUID(str(variant_id))]
            else:
                async with session_factory() as db:
                    targets = await variants_with_pending(db)

            results = []
            for target in targets:
                async with session_factory() as db:
                    results.append(await dispatcher.dispatch(db, target))

            summary = {
                "status": "success",
                "variant_count": len(targets),
                "notified": sum(r["notified"] for r in results),
                "failed": sum(r["failed"] for r in results),
                "results": results,
                "triggered_at": datetime.now(timezone.utc).isoformat(),
                "run_id": run_id,
            }
            if any(r["status"] != "success" for r in results):
                summary["status"] = "partial"
            logger.info(
                "notifications.redispatch_complete",
                variant_count=summary["variant_count"],
                notified=summary["notified"],
                failed=summary["failed"],
                run_id=run_id,
            )
            return summary
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_redispatch())
    except Exception as exc:  # noqa: BLE001
        logger.error("notifications.redispatch_failed", variant_id=variant_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
