from .cache_layer import CacheLayer

__all__ = ["CacheLayer"]
