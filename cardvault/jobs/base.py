"""Task base class with notification hooks for import jobs."""

from __future__ import annotations

import asyncio
import logging

from celery import Task

from cardvault.db.session import shared_engine
from cardvault.ingest.shopify import ShopifyError
from cardvault.logic import locks
from cardvault.logic.notifications import create_notification
from cardvault.utils.errors import ErrorKind, PipelineError, classify_status
from cardvault.utils.retry import backoff_seconds

logger = logging.getLogger(__name__)

RETRY_TITLE = "Failed to create product, retrying..."
STALLED_TITLE = "Product creation stalled and will be reprocessed"


def as_pipeline_error(exc: Exception) -> PipelineError:
    """Tag any failure escaping an import step with the kind that decides its retry."""
    if isinstance(exc, PipelineError):
        return exc
    if isinstance(exc, ShopifyError):
        kind = classify_status(exc.status_code) if exc.status_code else ErrorKind.NETWORK_ERROR
        return PipelineError(kind, str(exc))
    return PipelineError(ErrorKind.NETWORK_ERROR, str(exc) or exc.__class__.__name__)


def retry_countdown(error: PipelineError, retries: int, max_retries: int | None) -> float | None:
    """Seconds until the next attempt, or None when the job should fail now."""
    if not error.retryable:
        return None
    if max_retries is not None and retries >= max_retries:
        return None
    return backoff_seconds(retries)


class ImportTask(Task):
    """Import job that reports retries, stalls and failures as admin notifications.

    Subclasses set ``notification_type`` and the keyword argument holding the
    external id whose lock is released once the job finishes either way.
    """

    notification_type = "PSA"
    lock_argument = "cert_number"

    def run_pipeline(self, coro_factory, **kwargs):  # pragma: no cover - executed by worker
        try:
            return asyncio.run(coro_factory(shared_engine(), **kwargs))
        except Exception as exc:
            error = as_pipeline_error(exc)
            countdown = retry_countdown(error, self.request.retries, self.max_retries)
            if countdown is None:
                raise error from exc
            logger.warning("Retrying %s in %.0fs: %s", self.name, countdown, error)
            raise self.retry(exc=error, countdown=countdown)

    def before_start(self, task_id, args, kwargs):
        if redelivered(self.request):
            logger.warning("Task %s was redelivered after a lost worker", task_id)
            create_notification(shared_engine(), STALLED_TITLE, self.notification_type)

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        create_notification(shared_engine(), RETRY_TITLE, self.notification_type)

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error("Task %s failed: %s", task_id, exc)
        create_notification(shared_engine(), failure_title(exc), self.notification_type)
        self._release(kwargs)

    def on_success(self, retval, task_id, args, kwargs):
        logger.info("Task %s succeeded with %s", task_id, retval)
        self._release(kwargs)

    def _release(self, kwargs) -> None:
        external_id = (kwargs or {}).get(self.lock_argument)
        if external_id:
            locks.release(shared_engine(), str(external_id))


def redelivered(request) -> bool:
    """True when the broker handed this message out before and it was never acked."""
    delivery_info = getattr(request, "delivery_info", None) or {}
    headers = getattr(request, "headers", None) or {}
    return bool(delivery_info.get("redelivered") or headers.get("redelivered"))


def failure_title(exc: BaseException) -> str:
    if isinstance(exc, PipelineError):
        if exc.kind is ErrorKind.QUOTA_EXHAUSTED:
            return "No PSA API keys available for today."
        return f"Error processing import: {exc.message}"
    return f"Error processing import: {exc}"
