from __future__ import annotations

import threading
from collections import OrderedDict, deque
from collections.abc import Callable, Hashable
from typing import Any, TypeVar

from app.core.config import get_settings
from app.metrics import observe_read_cache_hit, observe_read_cache_miss

T = TypeVar("T")

CacheKey = tuple[str, Hashable]


def _family(tag: str) -> str:
    return "-".join(tag.split("-")[:2])


class TagCache:
    """Process-local LRU read cache keyed by tag and an optional variant.

    Mutations call ``revalidate_tag``/``revalidate_path`` so the next read is
    loaded again. A load that overlaps a revalidation of its tag is returned
    to its caller but not stored. The most recent revalidated paths and tags
    are kept for the web layer to pick up.
    """

    def __init__(self, max_entries: int = 1024, history_size: int = 256) -> None:
        self._lock = threading.Lock()
        self._max_entries = max_entries
        self._entries: OrderedDict[CacheKey, Any] = OrderedDict()
        self._loading: dict[CacheKey, object] = {}
        self.revalidated_paths: deque[str] = deque(maxlen=history_size)
        self.revalidated_tags: deque[str] = deque(maxlen=history_size)

    def __len__(self) -> int:
        return len(self._entries)

    def get_or_load(
        self, tag: str, loader: Callable[[], T], *, variant: Hashable = None, fresh: bool = False
    ) -> T:
        key = (tag, variant)
        token = object()
        with self._lock:
            if not fresh and key in self._entries:
                self._entries.move_to_end(key)
                observe_read_cache_hit(_family(tag))
                return self._entries[key]
            self._loading[key] = token
        observe_read_cache_miss(_family(tag))
        try:
            value = loader()
        except Exception:
            with self._lock:
                if self._loading.get(key) is token:
                    del self._loading[key]
            raise
        with self._lock:
            if self._loading.get(key) is token:
                del self._loading[key]
                self._entries[key] = value
                self._entries.move_to_end(key)
                while len(self._entries) > self._max_entries:
                    self._entries.popitem(last=False)
        return value

    def revalidate_tag(self, tag: str) -> None:
        with self._lock:
            for key in [key for key in self._entries if key[0] == tag]:
                del self._entries[key]
            for key in [key for key in self._loading if key[0] == tag]:
                del self._loading[key]
            self.revalidated_tags.append(tag)

    def revalidate_path(self, path: str) -> None:
        with self._lock:
            self.revalidated_paths.append(path)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._loading.clear()
            self.revalidated_paths.clear()
            self.revalidated_tags.clear()


_settings = get_settings()
tag_cache = TagCache(
    max_entries=_settings.read_cache_max_entries, history_size=_settings.read_cache_history_size
)


def promise_logs_tag(promise_id: object) -> str:
    return f"promise-logs-{promise_id}"


def promises_path(studio_slug: str) -> str:
    return f"/{studio_slug}/studio/commercial/promises"


def promise_path(studio_slug: str, promise_id: object) -> str:
    return f"/{studio_slug}/studio/commercial/promises/{promise_id}"


def offers_path(studio_slug: str) -> str:
    return f"/{studio_slug}/studio/commercial/ofertas"


def revalidate_promise(studio_slug: str, promise_id: object | None = None) -> None:
    tag_cache.revalidate_path(promises_path(studio_slug))
    if promise_id is not None:
        tag_cache.revalidate_path(promise_path(studio_slug, promise_id))


def revalidate_promise_logs(studio_slug: str, promise_id: object) -> None:
    tag_cache.revalidate_tag(promise_logs_tag(promise_id))
    tag_cache.revalidate_path(promise_path(studio_slug, promise_id))
