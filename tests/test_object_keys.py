"""Tests for the capture key convention and collision-free allocation."""

import pytest

from app.errors import ObjectKeyError
from app.utils.object_keys import KeyAllocator, build_object_key, parse_object_key


class TestBuildObjectKey:
    def test_key_format(self):
        assert build_object_key("user-1", 1700000000123) == "user-1/1700000000123.jpg"

    @pytest.mark.parametrize("subject", ["", "a/b"])
    def test_rejects_unusable_subject(self, subject):
        with pytest.raises(ObjectKeyError):
            build_object_key(subject, 1)

    def test_rejects_negative_timestamp(self):
        with pytest.raises(ObjectKeyError):
            build_object_key("user-1", -1)


class TestParseObjectKey:
    def test_parses_subject_and_millis(self):
        assert parse_object_key("user-1/1700000000123.jpg") == ("user-1", 1700000000123)

    def test_roundtrip_with_build(self):
        key = build_object_key("3f1c9a52-7d0e", 42)
        assert parse_object_key(key) == ("3f1c9a52-7d0e", 42)

    @pytest.mark.parametrize(
        "key",
        [
            "1700000000123.jpg",
            "user-1/1700000000123.png",
            "user-1/abc.jpg",
            "a/b/1700000000123.jpg",
            "/1700000000123.jpg",
        ],
    )
    def test_rejects_foreign_keys(self, key):
        with pytest.raises(ObjectKeyError):
            parse_object_key(key)


class TestKeyAllocator:
    def test_uses_clock_millis(self):
        allocator = KeyAllocator(clock=lambda: 1000)
        assert allocator.allocate("user-1") == "user-1/1000.jpg"

    def test_same_millisecond_gets_distinct_keys(self):
        """Two tickets in one millisecond must not share a key (no overwrite)."""
        allocator = KeyAllocator(clock=lambda: 1000)
        keys = [allocator.allocate("user-1") for _ in range(3)]
        assert keys == ["user-1/1000.jpg", "user-1/1001.jpg", "user-1/1002.jpg"]

    def test_clock_going_backwards_stays_monotonic(self):
        ticks = iter([2000, 1500])
        allocator = KeyAllocator(clock=lambda: next(ticks))
        assert allocator.allocate("user-1") == "user-1/2000.jpg"
        assert allocator.allocate("user-1") == "user-1/2001.jpg"

    def test_subjects_are_independent(self):
        allocator = KeyAllocator(clock=lambda: 1000)
        assert allocator.allocate("alice") == "alice/1000.jpg"
        assert allocator.allocate("bob") == "bob/1000.jpg"
