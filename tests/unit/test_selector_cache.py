from __future__ import annotations

import pytest

from qarunner.engine.selector_cache import CachedSelector, SelectorCache, hash_description, normalize_url


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://shop.example.com/", "https://shop.example.com"),
        ("https://shop.example.com/cart?item=4#top", "https://shop.example.com/cart"),
        ("https://shop.example.com/orders/1234/items", "https://shop.example.com/orders/{id}/items"),
        (
            "https://shop.example.com/users/0b6f4a1e-3c2d-4e5f-9a8b-7c6d5e4f3a2b",
            "https://shop.example.com/users/{id}",
        ),
        ("https://shop.example.com/v2beta", "https://shop.example.com/v2beta"),
    ],
)
def test_normalize_url(url: str, expected: str) -> None:
    assert normalize_url(url) == expected


def test_description_hash_ignores_case_and_padding() -> None:
    assert hash_description("  Buy Button ") == hash_description("buy button")
    assert len(hash_description("buy button")) == 64
    with pytest.raises(ValueError):
        hash_description("   ")


def test_entry_reliability_thresholds() -> None:
    fresh = CachedSelector("h", "u", "@e1", "Buy")
    proven = CachedSelector("h", "u", "@e1", "Buy", success_count=4, failure_count=1)
    broken = CachedSelector("h", "u", "@e1", "Buy", success_count=1, failure_count=3)

    assert fresh.success_rate_percent() == 100
    assert not fresh.is_reliable()
    assert proven.is_reliable()
    assert proven.success_rate_percent() == 80
    assert broken.should_invalidate()
    assert not proven.should_invalidate()


def test_store_and_find_share_entries_across_matching_pages(clock) -> None:
    cache = SelectorCache(clock=clock)
    cache.store("Buy button", "https://shop.example.com/item/1", "@e7")

    found = cache.find("buy BUTTON", "https://shop.example.com/item/2?ref=home")

    assert found is not None
    assert found.selector == "@e7"
    assert found.success_count == 1
    assert cache.find("Buy button", "https://shop.example.com/cart") is None


def test_success_and_failure_counts_update_entry(clock) -> None:
    cache = SelectorCache(clock=clock)
    cache.store("Buy", "https://shop.example.com", "@e1")

    cache.record_success("Buy", "https://shop.example.com")
    clock.advance(minutes=1)
    cache.record_failure("Buy", "https://shop.example.com")

    entry = cache.find("Buy", "https://shop.example.com")
    assert (entry.success_count, entry.failure_count) == (2, 1)
    assert entry.last_used_at == clock()


def test_repeated_failures_drop_the_entry(clock) -> None:
    cache = SelectorCache(clock=clock)
    cache.store("Buy", "https://shop.example.com", "@e1")

    for _ in range(3):
        cache.record_failure("Buy", "https://shop.example.com")

    assert cache.find("Buy", "https://shop.example.com") is None
    assert len(cache) == 0


def test_recording_for_unknown_entry_is_ignored(clock) -> None:
    cache = SelectorCache(clock=clock)

    cache.record_success("Buy", "https://shop.example.com")
    cache.record_failure("Buy", "https://shop.example.com")

    assert len(cache) == 0


def test_invalidate_and_cleanup_stale(clock) -> None:
    cache = SelectorCache(clock=clock)
    cache.store("Old", "https://shop.example.com", "@e1")
    clock.advance(days=10)
    cache.store("New", "https://shop.example.com", "@e2")
    cache.store("Gone", "https://shop.example.com", "@e3")

    cache.invalidate("Gone", "https://shop.example.com")
    removed = cache.cleanup_stale(older_than_days=7)

    assert removed == 1
    assert cache.find("Old", "https://shop.example.com") is None
    assert cache.find("New", "https://shop.example.com").selector == "@e2"
    assert len(cache) == 1
