"""Celery tasks for OneChat.

Tasks are explicitly imported here to register them with Celery.
No autodiscovery - all tasks must be imported in this module.

Usage in API (enqueue):
    from onechat.tasks import generate_thread_title
    generate_thread_title.apply_async(
        args=[thread_id, user_id, user_query],
        kwargs={"request_id": request_id},
    )
"""

from onechat.tasks.generate_thread_title import generate_thread_title
from onechat.tasks.sweep_stale_messages import sweep_stale_messages

__all__ = ["generate_thread_title", "sweep_stale_messages"]
