"""Tests for the per-unit TTL report cache."""

from tests._support.engines import FakeClock
from tilespine.core.cache import CacheEntry, ReportCache
from tilespine.core.models import Report


class TestCacheEntry:
    """Tests for CacheEntry expiry arithmetic."""

    def test_age_and_expiry(self):
        """Test an entry expires strictly after its ttl."""
        entry = CacheEntry(key="k", payload=Report.ok(1), written_at=10.0, ttl=5.0)
        assert entry.age(12.0) == 2.0
        assert entry.is_expired(15.0) is False
        assert entry.is_expired(15.001) is True


class TestReportCache:
    """Tests for ReportCache."""

    def test_miss(self):
        """Test an unknown key returns None."""
        assert ReportCache().get("missing") is None

    def test_set_and_get(self, clock: FakeClock):
        """Test a stored report is returned while fresh."""
        cache = ReportCache(clock=clock)
        report = Report.ok(1)
        entry = cache.set("default", report, ttl_seconds=60)

        assert entry.written_at == clock.now
        assert cache.get("default") is report
        assert cache.size() == 1

    def test_lazy_eviction(self, clock: FakeClock):
        """Test an expired entry is evicted on read."""
        cache = ReportCache(clock=clock)
        cache.set("default", Report.ok(1), ttl_seconds=1.0)

        clock.advance(1.0)
        assert cache.get("default") is not None

        clock.advance(0.01)
        assert cache.size() == 1
        assert cache.get("default") is None
        assert cache.size() == 0

    def test_entry_does_not_evict(self, clock: FakeClock):
        """Test entry() returns expired entries untouched."""
        cache = ReportCache(clock=clock)
        cache.set("default", Report.ok(1), ttl_seconds=1.0)
        clock.advance(5)

        entry = cache.entry("default")
        assert entry is not None
        assert entry.is_expired(clock.now)
        assert cache.size() == 1

    def test_overwrite_refreshes_timestamp(self, clock: FakeClock):
        """Test writing a key again restarts its ttl."""
        cache = ReportCache(clock=clock)
        cache.set("default", Report.ok(1), ttl_seconds=1.0)
        clock.advance(0.9)
        newer = Report.ok(2)
        cache.set("default", newer, ttl_seconds=1.0)
        clock.advance(0.9)
        assert cache.get("default") is newer

    def test_delete_and_clear(self):
        """Test delete() drops one key and clear() drops all."""
        cache = ReportCache()
        cache.set("a", Report.ok(1), ttl_seconds=60)
        cache.set("b", Report.ok(2), ttl_seconds=60)

        cache.delete("a")
        cache.delete("a")
        assert cache.get("a") is None
        assert cache.size() == 1

        cache.clear()
        assert cache.size() == 0
