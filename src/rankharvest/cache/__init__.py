from .store import GLOBAL_KEY, CacheEntry, CacheStore, target_cache_key

__all__ = ["GLOBAL_KEY", "CacheEntry", "CacheStore", "target_cache_key"]
