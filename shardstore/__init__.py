"""Sharded data access for SQL databases and Redis.

Clients route every call through an execution ``Context``: the context picks
the shard, carries the ambient transaction and bounds the call with its
deadline.
"""

__version__ = "0.1.0"
