from __future__ import annotations

from app.commercial.cache import TagCache


def test_revalidation_during_load_is_not_stored() -> None:
    cache = TagCache()
    rows = ["promise_created"]
    calls: list[list[str]] = []

    def load_then_race() -> list[str]:
        snapshot = list(rows)
        # a writer commits and revalidates while this read is in flight
        rows.append("user_note")
        cache.revalidate_tag("promise-logs-1")
        calls.append(snapshot)
        return snapshot

    assert cache.get_or_load("promise-logs-1", load_then_race) == ["promise_created"]

    def load() -> list[str]:
        calls.append(list(rows))
        return list(rows)

    assert cache.get_or_load("promise-logs-1", load) == ["promise_created", "user_note"]
    assert cache.get_or_load("promise-logs-1", load) == ["promise_created", "user_note"]
    assert len(calls) == 2


def test_entries_are_evicted_least_recently_used() -> None:
    cache = TagCache(max_entries=2)
    loads: list[str] = []

    def loader(tag: str):
        def load() -> str:
            loads.append(tag)
            return tag

        return load

    cache.get_or_load("promise-logs-a", loader("a"))
    cache.get_or_load("promise-logs-b", loader("b"))
    cache.get_or_load("promise-logs-a", loader("a"))
    cache.get_or_load("promise-logs-c", loader("c"))
    cache.get_or_load("promise-logs-a", loader("a"))
    cache.get_or_load("promise-logs-b", loader("b"))

    assert loads == ["a", "b", "c", "b"]
    assert len(cache) == 2


def test_revalidating_a_tag_drops_every_variant() -> None:
    cache = TagCache()
    cache.get_or_load("promise-logs-1", lambda: "all")
    cache.get_or_load("promise-logs-1", lambda: "event", variant="EVENT")

    cache.revalidate_tag("promise-logs-1")

    assert cache.get_or_load("promise-logs-1", lambda: "reloaded", variant="EVENT") == "reloaded"
    assert len(cache) == 1


def test_revalidation_history_is_bounded() -> None:
    cache = TagCache(history_size=3)

    for index in range(200):
        cache.revalidate_path(f"/luna-studio/studio/commercial/promises/{index}")
        cache.revalidate_tag(f"promise-logs-{index}")

    assert list(cache.revalidated_paths)[-1] == "/luna-studio/studio/commercial/promises/199"
    assert len(cache.revalidated_paths) == 3
    assert len(cache.revalidated_tags) == 3
