from .kv_store import InMemoryKeyValueStore

__all__ = [
    "InMemoryKeyValueStore",
]
