import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")


class ChangeFeed:
    """Path-keyed, level-triggered snapshot fan-out.

    ``watch`` yields a freshly loaded snapshot immediately and again after
    every ``notify`` touching one of its paths. Notifications that arrive while
    a consumer is still processing the previous snapshot coalesce into a single
    re-emission, so consumers always converge on the latest state but may skip
    intermediate ones.
    """

    def __init__(self) -> None:
        self._watchers: dict[str, set[asyncio.Event]] = defaultdict(set)

    def notify(self, *paths: str) -> None:
        for path in dict.fromkeys(paths):
            for event in list(self._watchers.get(path, ())):
                event.set()

    def watcher_count(self, path: str) -> int:
        watchers = self._watchers.get(path)
        if watchers is None:
            return 0
        return len(watchers)

    async def watch(
        self,
        paths: str | Sequence[str],
        load: Callable[[], Awaitable[T]],
    ) -> AsyncIterator[T]:
        watched = [paths] if isinstance(paths, str) else list(dict.fromkeys(paths))
        changed = asyncio.Event()
        for path in watched:
            self._watchers[path].add(changed)

        try:
            while True:
                # Cleared before loading: a write racing the load re-triggers.
                changed.clear()
                yield await load()
                await changed.wait()
        finally:
            for path in watched:
                watchers = self._watchers.get(path)
                if watchers is None:
                    continue
                watchers.discard(changed)
                if not watchers:
                    self._watchers.pop(path, None)
