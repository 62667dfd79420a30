# tests/unit/test_cache.py
"""
针对 `trans_relay.cache` 模块的单元测试。

验证缓存的基本读写、失效与过期清理，以及缓存键在指纹碰撞时
依然能够区分不同文本。
"""

import pytest

from trans_relay.cache import CacheConfig, CacheEntry, CacheKey, TranslationCache
from trans_relay.exceptions import CacheInconsistencyError
from trans_relay.types import TranslationRequest


class _FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def sample_key() -> CacheKey:
    return CacheKey.build("debug", "en", "de", "Hello")


def test_put_then_get_returns_same_entry(sample_key: CacheKey) -> None:
    cache = TranslationCache()
    assert cache.get(sample_key) is None

    entry = cache.new_entry("Hello", "Hallo")
    cache.put(sample_key, entry)

    assert cache.get(sample_key) is entry
    assert entry.hits == 1
    assert cache.hits == 1
    assert cache.misses == 1
    assert cache.hit_rate() == 0.5


def test_key_is_stable_across_instances() -> None:
    request = TranslationRequest(text="Hello", source_lang="en", target_lang="de")
    key1 = CacheKey.for_request(request, "debug")
    key2 = CacheKey.build("debug", "en", "de", "Hello")

    assert key1 == key2
    assert hash(key1) == hash(key2)
    assert "Hello" not in key1.fingerprint


@pytest.mark.parametrize(
    "other",
    [
        ("other", "en", "de", "Hello"),
        ("debug", "fr", "de", "Hello"),
        ("debug", "en", "fr", "Hello"),
        ("debug", "en", "de", "Hello!"),
    ],
)
def test_keys_differ_when_any_field_differs(other: tuple[str, str, str, str]) -> None:
    assert CacheKey.build("debug", "en", "de", "Hello") != CacheKey.build(*other)


def test_fingerprint_collision_does_not_alias_entries() -> None:
    """两个文本即使指纹相同，也必须落在不同的缓存槽位上。"""
    cache = TranslationCache()
    key_a = CacheKey("debug", "en", "de", "same-fingerprint", "apple")
    key_b = CacheKey("debug", "en", "de", "same-fingerprint", "banana")
    assert hash(key_a) == hash(key_b)

    cache.put(key_a, cache.new_entry("apple", "Apfel"))
    assert cache.get(key_b) is None

    cache.put(key_b, cache.new_entry("banana", "Banane"))
    entry_a = cache.get(key_a)
    entry_b = cache.get(key_b)
    assert entry_a is not None and entry_a.translated_text == "Apfel"
    assert entry_b is not None and entry_b.translated_text == "Banane"


def test_put_rejects_entry_for_a_different_text(sample_key: CacheKey) -> None:
    cache = TranslationCache()
    with pytest.raises(CacheInconsistencyError):
        cache.put(sample_key, cache.new_entry("Goodbye", "Tschüss"))


def test_corrupted_entry_is_reported_and_purged(sample_key: CacheKey) -> None:
    cache = TranslationCache()
    entry = cache.new_entry("Hello", "Hallo")
    cache.put(sample_key, entry)
    entry.original_text = "Something else"

    with pytest.raises(CacheInconsistencyError):
        cache.get(sample_key)
    assert len(cache) == 0


def test_invalidate_removes_entry(sample_key: CacheKey) -> None:
    cache = TranslationCache()
    entry = cache.new_entry("Hello", "Hallo")
    cache.put(sample_key, entry)

    assert cache.invalidate(sample_key) is True
    assert entry.valid is False
    assert cache.get(sample_key) is None
    assert cache.invalidate(sample_key) is False


def test_invalid_entry_is_purged_on_lookup(sample_key: CacheKey) -> None:
    cache = TranslationCache()
    cache.put(sample_key, CacheEntry("Hello", "Hallo", created_at=0.0, valid=False))

    assert cache.get(sample_key) is None
    assert len(cache) == 0


def test_entries_never_expire_by_default(sample_key: CacheKey) -> None:
    clock = _FakeClock()
    cache = TranslationCache(clock=clock)
    cache.put(sample_key, cache.new_entry("Hello", "Hallo"))

    clock.now += 10 * 365 * 24 * 3600
    assert cache.get(sample_key) is not None


def test_max_age_makes_old_entries_stale(sample_key: CacheKey) -> None:
    """测试配置 max_age 后，超龄条目在查找时被视为未命中并清除（确定性测试）。"""
    clock = _FakeClock()
    cache = TranslationCache(CacheConfig(max_age=60), clock=clock)
    cache.put(sample_key, cache.new_entry("Hello", "Hallo"))

    clock.now += 59
    assert cache.get(sample_key) is not None

    clock.now += 2
    assert cache.get(sample_key) is None
    assert len(cache) == 0


def test_sweep_removes_only_stale_entries() -> None:
    clock = _FakeClock()
    cache = TranslationCache(clock=clock)
    old_key = CacheKey.build("debug", "en", "de", "old")
    new_key = CacheKey.build("debug", "en", "de", "new")
    cache.put(old_key, cache.new_entry("old", "alt"))
    clock.now += 100
    cache.put(new_key, cache.new_entry("new", "neu"))
    clock.now += 10

    assert cache.sweep(max_age=50) == 1
    assert cache.get(old_key) is None
    assert cache.get(new_key) is not None


def test_clear_empties_the_cache(sample_key: CacheKey) -> None:
    cache = TranslationCache()
    cache.put(sample_key, cache.new_entry("Hello", "Hallo"))
    cache.clear()
    assert len(cache) == 0


def test_least_recently_used_entry_is_evicted_when_full() -> None:
    cache = TranslationCache(CacheConfig(max_size=2))
    keys = [CacheKey.build("debug", "en", "de", text) for text in ("a", "b", "c")]
    cache.put(keys[0], cache.new_entry("a", "A"))
    cache.put(keys[1], cache.new_entry("b", "B"))
    assert cache.get(keys[0]) is not None  # "a" 变为最近使用

    cache.put(keys[2], cache.new_entry("c", "C"))

    assert len(cache) == 2
    assert cache.get(keys[1]) is None
    assert cache.get(keys[0]) is not None
    assert cache.get(keys[2]) is not None
