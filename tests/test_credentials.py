"""
Tests for the TOTP refresh-ahead cache and the device id cache.
"""

import pytest

from cpenlink.credentials import CachedCredential, CredentialCache, DeviceIdCache


class TestCredentialCache:
    """Refresh-ahead window behaviour."""

    def test_empty_cache_returns_none(self, clock):
        cache = CredentialCache(clock=clock)
        assert cache.get() is None

    def test_value_served_before_refresh_point(self, clock):
        """A code read at t is handed out for any t' < t + 25."""
        cache = CredentialCache(window=30, lead=5, clock=clock)
        cache.put("123456")

        clock.advance(24.9)
        assert cache.get() == "123456"

    def test_value_refetched_at_refresh_point(self, clock):
        """At t + 25 the cached code is no longer handed out."""
        cache = CredentialCache(window=30, lead=5, clock=clock)
        cache.put("123456")

        clock.advance(25)
        assert cache.get() is None

    def test_put_restarts_window(self, clock):
        cache = CredentialCache(window=30, lead=5, clock=clock)
        cache.put("111111")
        clock.advance(26)
        cache.put("222222")
        clock.advance(10)
        assert cache.get() == "222222"

    def test_clear(self, clock):
        cache = CredentialCache(clock=clock)
        cache.put("123456")
        cache.clear()
        assert cache.get() is None
        assert cache.entry is None

    def test_entry_records_capture_time(self, clock):
        cache = CredentialCache(clock=clock)
        cache.put("123456")
        assert isinstance(cache.entry, CachedCredential)
        assert cache.entry.captured_at == clock.now
        clock.advance(3)
        assert cache.entry.age(clock()) == pytest.approx(3)

    def test_repr_hides_value(self, clock):
        cache = CredentialCache(clock=clock)
        cache.put("987654")
        assert "987654" not in repr(cache.entry)


class TestDeviceIdCache:
    """Sticky identifier cache."""

    def test_sticky_until_cleared(self):
        cache = DeviceIdCache()
        assert cache.get() is None
        cache.put("CPEN-1")
        assert cache.get() == "CPEN-1"
        cache.clear()
        assert cache.get() is None
