"""Sidebar grouping of a user's threads.

Pinned threads come first, in list order. The rest are bucketed by their
activity time (last message, else updated_at) relative to the viewer's
local day:

- Today: since local midnight
- Yesterday: the previous local day
- Last 7 Days / Last 30 Days: rolling windows back from local midnight
- Older: everything else

Empty groups are omitted.
"""

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime, timedelta, tzinfo

from onechat.schemas.thread import GroupedThreadsOut, ThreadGroupOut, ThreadListItemOut

GROUP_LABELS = ("Pinned", "Today", "Yesterday", "Last 7 Days", "Last 30 Days", "Older")


def activity_time(thread: ThreadListItemOut) -> datetime:
    return thread.last_message_at or thread.updated_at


def filter_threads(threads: Iterable[ThreadListItemOut], query: str | None) -> list[ThreadListItemOut]:
    """Case-insensitive title substring match. A blank query keeps everything."""
    threads = list(threads)
    if not query or not query.strip():
        return threads
    needle = query.strip().lower()
    return [t for t in threads if needle in (t.title or "").lower()]


def _bucket(when: datetime, today_start: datetime) -> str:
    if when >= today_start:
        return "Today"
    if when >= today_start - timedelta(days=1):
        return "Yesterday"
    if when >= today_start - timedelta(days=7):
        return "Last 7 Days"
    if when >= today_start - timedelta(days=30):
        return "Last 30 Days"
    return "Older"


def group_threads(
    threads: Sequence[ThreadListItemOut],
    pinned_ids: Iterable[str] = (),
    *,
    now: datetime | None = None,
    tz: tzinfo = UTC,
) -> GroupedThreadsOut:
    """Group threads for the sidebar.

    Args:
        threads: Threads, already ordered most recent first.
        pinned_ids: Ids pinned by the viewer. Unknown ids are ignored.
        now: Reference time (defaults to the current time).
        tz: The viewer's timezone, which decides where a day starts.
    """
    pinned = set(pinned_ids)
    local_now = (now or datetime.now(UTC)).astimezone(tz)
    today_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)

    buckets: dict[str, list[ThreadListItemOut]] = {label: [] for label in GROUP_LABELS}
    for thread in threads:
        if thread.id in pinned:
            buckets["Pinned"].append(thread)
            continue
        buckets[_bucket(activity_time(thread).astimezone(tz), today_start)].append(thread)

    return GroupedThreadsOut(
        groups=[
            ThreadGroupOut(label=label, threads=buckets[label])
            for label in GROUP_LABELS
            if buckets[label]
        ],
        pinned_thread_ids=[t.id for t in buckets["Pinned"]],
    )
