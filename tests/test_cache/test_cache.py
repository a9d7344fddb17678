"""Tests for the per-class ResourceCache and the Resource cache API."""

from __future__ import annotations

import math

import pytest

from restresource.cache import CacheEntry, ResourceCache
from restresource.exceptions import CacheError


# ------------------------------------------------------------------ #
# ResourceCache
# ------------------------------------------------------------------ #


class TestResourceCache:
    def test_set_and_get(self, models, clock) -> None:
        cache = ResourceCache("User", clock=clock)
        user = models.User({"id": 1, "name": "Ada"})
        cache.set("1", user, max_age=60)

        entry = cache.get("1")
        assert isinstance(entry, CacheEntry)
        assert entry.resource is user
        assert entry.expires == clock.now + 60

    def test_get_missing_returns_none(self, clock) -> None:
        cache = ResourceCache("User", clock=clock)
        assert cache.get("404") is None

    def test_stale_entry_reads_as_absent(self, models, clock) -> None:
        cache = ResourceCache("User", clock=clock)
        cache.set("1", models.User({"id": 1}), max_age=60)

        clock.advance(59)
        assert cache.get("1") is not None
        clock.advance(1)
        assert cache.get("1") is None
        # Lazily evicted: the slot is still there.
        assert "1" in cache

    def test_zero_max_age_is_always_stale(self, models, clock) -> None:
        cache = ResourceCache("User", clock=clock)
        cache.set("1", models.User({"id": 1}), max_age=0)
        assert cache.get("1") is None

    def test_infinite_max_age_never_expires(self, models, clock) -> None:
        cache = ResourceCache("User", clock=clock)
        cache.set("1", models.User({"id": 1}), max_age=math.inf)
        clock.advance(10**9)
        assert cache.get("1") is not None

    def test_set_overwrites_slot(self, models, clock) -> None:
        cache = ResourceCache("User", clock=clock)
        first = models.User({"id": 1, "name": "First"})
        second = models.User({"id": 1, "name": "Second"})
        cache.set("1", first, max_age=60)
        cache.set("1", second, max_age=60)
        assert cache.get("1").resource is second

    def test_replace_merges_onto_cached_instance(self, models, clock) -> None:
        cache = ResourceCache("User", clock=clock)
        cached = models.User({"id": 1, "name": "Old", "email": "old@example.com"})
        cache.set("1", cached, max_age=60)

        clock.advance(30)
        incoming = models.User({"id": 1, "name": "New"})
        entry = cache.replace("1", incoming, max_age=60)

        assert entry.resource is cached
        assert cached.get("name") == "New"
        assert cached.get("email") == "old@example.com"
        assert entry.expires == clock.now + 60

    def test_replace_missing_raises(self, models, clock) -> None:
        cache = ResourceCache("User", clock=clock)
        with pytest.raises(CacheError):
            cache.replace("1", models.User({"id": 1}), max_age=60)

    def test_entries_only_fresh(self, models, clock) -> None:
        cache = ResourceCache("User", clock=clock)
        cache.set("1", models.User({"id": 1}), max_age=10)
        cache.set("2", models.User({"id": 2}), max_age=100)
        clock.advance(50)

        fresh = cache.entries()
        assert [entry.resource.id for entry in fresh] == [2]
        assert cache.stats() == {"size": 2, "fresh": 1}

    def test_invalidate_and_clear(self, models, clock) -> None:
        cache = ResourceCache("User", clock=clock)
        cache.set("1", models.User({"id": 1}), max_age=60)
        cache.set("2", models.User({"id": 2}), max_age=60)

        cache.invalidate("1")
        cache.invalidate("missing")
        assert "1" not in cache
        assert len(cache) == 1

        cache.clear()
        assert len(cache) == 0


# ------------------------------------------------------------------ #
# Resource class cache API
# ------------------------------------------------------------------ #


class TestResourceCacheApi:
    def test_cache_resource_requires_identity(self, models) -> None:
        with pytest.raises(CacheError):
            models.User.cache_resource(models.User({"name": "No id"}))

    def test_cache_resource_and_get_cached(self, models) -> None:
        user = models.User({"id": 7, "name": "Seven"})
        models.User.cache_resource(user)
        assert models.User.get_cached(7).resource is user
        assert models.User.get_cached("7").resource is user
        assert user.get_cached_entry().resource is user

    def test_manual_construction_does_not_cache(self, models) -> None:
        models.User({"id": 7})
        assert models.User.get_cached(7) is None

    def test_replace_falls_back_to_insert(self, models) -> None:
        user = models.User({"id": 7})
        models.User.cache_resource(user, replace=True)
        assert models.User.get_cached(7).resource is user

    def test_replace_keeps_existing_instance(self, models) -> None:
        original = models.User({"id": 7, "name": "Original"}).cache()
        models.User({"id": 7, "name": "Updated"}).cache(replace=True)

        assert models.User.get_cached(7).resource is original
        assert original.get("name") == "Updated"

    def test_replace_cache_missing_raises(self, models) -> None:
        with pytest.raises(CacheError):
            models.User.replace_cache(models.User({"id": 7}))

    def test_cache_max_age_disables_caching(self, models) -> None:
        models.User.cache_max_age = 0
        models.User({"id": 7}).cache()
        assert models.User.get_cached(7) is None

    def test_get_cached_all(self, models, clock) -> None:
        models.User({"id": 1}).cache()
        models.User({"id": 2}).cache()
        assert sorted(entry.resource.id for entry in models.User.get_cached_all()) == [1, 2]

        clock.advance(models.User.cache_max_age)
        assert models.User.get_cached_all() == []

    def test_clear_cache_only_affects_own_class(self, models) -> None:
        models.User({"id": 1}).cache()
        models.Post({"id": 1}).cache()

        models.User.clear_cache()
        assert models.User.get_cached(1) is None
        assert models.Post.get_cached(1) is not None

    def test_subclasses_never_share_a_cache(self, models) -> None:
        class Admin(models.User):
            pass

        Admin.resource_cache.clock = models.User.resource_cache.clock
        assert Admin.resource_cache is not models.User.resource_cache
        assert Admin.in_flight is not models.User.in_flight
        assert Admin.uuid != models.User.uuid

        models.User({"id": 1, "name": "Base"}).cache()
        assert Admin.get_cached(1) is None

        Admin({"id": 1, "name": "Admin"}).cache()
        assert models.User.get_cached(1).resource.get("name") == "Base"

    def test_extend_gets_its_own_cache(self, models) -> None:
        Custom = models.User.extend(fields=["username"])
        assert Custom.fields == ["username"]
        assert Custom.resource_cache is not models.User.resource_cache
        assert Custom.resource_name() == "User"
