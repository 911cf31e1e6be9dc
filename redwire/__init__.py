"""A compact Redis client: reply reader, command encoder, connections and a hash table."""

__version__ = "0.1.0"