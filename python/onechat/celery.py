"""Celery application shared by the API (enqueue) and the worker (execute).

Tasks:
- sweep_stale_messages: beat, every SWEEP_INTERVAL_SECONDS; finalizes
  assistant messages whose stream died
- generate_thread_title: enqueued by POST /threads/{id}/title with
  background=true; one short LLM call, bounded by TITLE_TASK_TIME_LIMIT_S

Both run on the default queue. Results are kept briefly for debugging only;
nothing in the API waits on them.
"""

from celery import Celery

from onechat.config import get_settings

SWEEP_INTERVAL_SECONDS = 60.0
TITLE_TASK_TIME_LIMIT_S = 90
RESULT_EXPIRES_S = 3600

settings = get_settings()

celery_app = Celery("onechat")
celery_app.conf.update(
    broker_url=settings.effective_celery_broker_url,
    result_backend=settings.effective_celery_result_backend,
    result_expires=RESULT_EXPIRES_S,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_default_queue="default",
    # A sweep that runs long must not overlap the next beat tick.
    task_annotations={
        "generate_thread_title": {"time_limit": TITLE_TASK_TIME_LIMIT_S},
        "sweep_stale_messages": {"time_limit": int(SWEEP_INTERVAL_SECONDS)},
    },
    beat_schedule={
        "sweep-stale-messages": {
            "task": "sweep_stale_messages",
            "schedule": SWEEP_INTERVAL_SECONDS,
        },
    },
)
