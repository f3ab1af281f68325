"""Optimistic local mutations with rollback.

Every mutation on a locally held list follows the same steps:

    snapshot -> apply local update -> remote call
        failure: restore snapshot, re-raise
        success: invalidate (refetch) the local copy

There is no locking; the backing store is last-writer-wins and local state
is refreshed after settlement.
"""

import copy
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from onechat.logging import get_logger

logger = get_logger(__name__)

S = TypeVar("S")
R = TypeVar("R")
T = TypeVar("T")


class OptimisticMutation(Generic[S, R]):
    """One optimistic mutation.

    Args:
        snapshot: Captures the current local state.
        apply: Applies the optimistic local update.
        remote: The server operation.
        rollback: Restores a captured snapshot.
        invalidate: Called after the remote call settles successfully.
    """

    def __init__(
        self,
        *,
        snapshot: Callable[[], S],
        apply: Callable[[], None],
        remote: Callable[[], Awaitable[R]],
        rollback: Callable[[S], None],
        invalidate: Callable[[R], None] | None = None,
    ):
        self._snapshot = snapshot
        self._apply = apply
        self._remote = remote
        self._rollback = rollback
        self._invalidate = invalidate

    async def run(self) -> R:
        saved = self._snapshot()
        self._apply()
        try:
            result = await self._remote()
        except Exception:
            self._rollback(saved)
            logger.info("optimistic_mutation_rolled_back")
            raise
        if self._invalidate is not None:
            self._invalidate(result)
        return result


class LocalList(Generic[T]):
    """A locally cached list, e.g. the sidebar thread list.

    `stale` is set when the list should be refetched.
    """

    def __init__(self, items: list[T] | None = None):
        self.items: list[T] = list(items or [])
        self.stale = False

    def snapshot(self) -> list[T]:
        return copy.deepcopy(self.items)

    def restore(self, items: list[T]) -> None:
        self.items = items

    def prepend(self, item: T) -> None:
        self.items.insert(0, item)

    def remove_where(self, predicate: Callable[[T], bool]) -> None:
        self.items = [item for item in self.items if not predicate(item)]

    def invalidate(self) -> None:
        self.stale = True
