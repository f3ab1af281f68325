"""Celery worker entrypoint.

Run with: celery -A apps.worker.main:celery_app worker -Q default --loglevel=info
Beat:     celery -A apps.worker.main:celery_app beat --loglevel=info

This module imports the Celery app and explicitly registers all tasks.
Task definitions are in the onechat.tasks package - no autodiscovery.

Logging Convention:
- All task log entries include request_id, task_name, task_id when available
- Tasks accept `request_id: str | None = None` for correlation with the API request
- configure_task_logging() runs at the start of each task

Scheduled:
- sweep_stale_messages: every minute, finalizes assistant messages whose stream died
"""

from celery.signals import worker_process_init

from onechat.celery import celery_app
from onechat.logging import configure_logging, get_logger

# =============================================================================
# Task Registration (explicit imports - no autodiscovery)
# =============================================================================

from onechat.tasks import generate_thread_title, sweep_stale_messages  # noqa: F401, E402

# =============================================================================
# Worker Lifecycle
# =============================================================================


@worker_process_init.connect
def setup_worker_logging(**kwargs):
    """Configure structlog when a worker process starts, with the API's JSON format."""
    configure_logging()
    logger = get_logger(__name__)
    logger.info("celery_worker_started", queue="default")


# Command: celery -A apps.worker.main:celery_app worker ...
__all__ = ["celery_app"]
