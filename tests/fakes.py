"""In-memory stand-in for ``redis.asyncio.Redis`` used by the Redis client tests.

Only the commands the clients issue are implemented, with
``decode_responses=True`` semantics (values come back as ``str``).
"""

import fnmatch
import time
from datetime import datetime
from typing import Any, Dict, List, Optional


def _encode(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        return value
    return str(value)


class FakeRedis:
    def __init__(self):
        self.strings: Dict[str, Any] = {}
        self.hashes: Dict[str, Dict[str, Any]] = {}
        self.expires: Dict[str, float] = {}
        self.scripts: Dict[str, str] = {}
        self.closed = False
        self.calls: List[str] = []

    def _purge(self, key: str) -> None:
        deadline = self.expires.get(key)
        if deadline is not None and deadline <= time.time():
            self.strings.pop(key, None)
            self.hashes.pop(key, None)
            self.expires.pop(key, None)

    def _exists(self, key: str) -> bool:
        self._purge(key)
        return key in self.strings or key in self.hashes

    def _all_keys(self) -> List[str]:
        for key in list(self.strings) + list(self.hashes):
            self._purge(key)
        return sorted(set(self.strings) | set(self.hashes))

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        self.closed = True

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        return FakePipeline(self, transaction)

    # Keys

    async def keys(self, pattern: str = "*") -> List[str]:
        return [k for k in self._all_keys() if fnmatch.fnmatchcase(k, pattern)]

    async def scan(self, cursor: int = 0, match: Optional[str] = None, count: Optional[int] = None):
        matched = [k for k in self._all_keys() if fnmatch.fnmatchcase(k, match or "*")]
        size = count or 10
        page = matched[cursor : cursor + size]
        next_cursor = cursor + size if cursor + size < len(matched) else 0
        return next_cursor, page

    async def delete(self, *keys: str) -> int:
        self.calls.append("delete")
        removed = 0
        for key in keys:
            if self._exists(key):
                removed += 1
            self.strings.pop(key, None)
            self.hashes.pop(key, None)
            self.expires.pop(key, None)
        return removed

    async def exists(self, *keys: str) -> int:
        return sum(1 for key in keys if self._exists(key))

    async def dump(self, key: str) -> Optional[bytes]:
        if not self._exists(key):
            return None
        return repr(self.strings.get(key, self.hashes.get(key))).encode()

    async def rename(self, src: str, dst: str) -> bool:
        if not self._exists(src):
            raise Exception("ERR no such key")
        if src in self.strings:
            self.strings[dst] = self.strings.pop(src)
        else:
            self.hashes[dst] = self.hashes.pop(src)
        if src in self.expires:
            self.expires[dst] = self.expires.pop(src)
        return True

    async def pexpire(self, key: str, ms: int) -> bool:
        if not self._exists(key):
            return False
        self.expires[key] = time.time() + ms / 1000
        return True

    async def expireat(self, key: str, when: datetime) -> bool:
        if not self._exists(key):
            return False
        self.expires[key] = when.timestamp()
        return True

    async def pttl(self, key: str) -> int:
        if not self._exists(key):
            return -2
        deadline = self.expires.get(key)
        if deadline is None:
            return -1
        return max(int((deadline - time.time()) * 1000), 0)

    # Strings

    async def set(self, key: str, value: Any, px: Optional[int] = None, nx: bool = False):
        self.calls.append("set")
        if nx and self._exists(key):
            return None
        self.strings[key] = _encode(value)
        self.hashes.pop(key, None)
        if px:
            self.expires[key] = time.time() + px / 1000
        else:
            self.expires.pop(key, None)
        return True

    async def get(self, key: str) -> Optional[Any]:
        if not self._exists(key):
            return None
        return self.strings.get(key)

    async def mget(self, keys: List[str]) -> List[Optional[Any]]:
        return [await self.get(key) for key in keys]

    # Hashes

    async def hset(self, key: str, mapping: Dict[str, Any]) -> int:
        self.calls.append("hset")
        bucket = self.hashes.setdefault(key, {})
        added = sum(1 for field in mapping if field not in bucket)
        bucket.update({field: _encode(value) for field, value in mapping.items()})
        return added

    async def hgetall(self, key: str) -> Dict[str, Any]:
        if not self._exists(key):
            return {}
        return dict(self.hashes.get(key, {}))

    async def hget(self, key: str, field: str) -> Optional[Any]:
        if not self._exists(key):
            return None
        return self.hashes.get(key, {}).get(field)

    async def hexists(self, key: str, field: str) -> bool:
        return field in (await self.hgetall(key))

    async def hdel(self, key: str, *fields: str) -> int:
        bucket = self.hashes.get(key, {})
        removed = 0
        for field in fields:
            if bucket.pop(field, None) is not None:
                removed += 1
        if key in self.hashes and not bucket:
            del self.hashes[key]
        return removed

    async def hscan(self, key: str, cursor: int = 0, match: Optional[str] = None, count: Optional[int] = None):
        items = {
            f: v for f, v in (await self.hgetall(key)).items() if fnmatch.fnmatchcase(f, match or "*")
        }
        return 0, items

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        bucket = self.hashes.setdefault(key, {})
        value = int(bucket.get(field, 0)) + amount
        bucket[field] = str(value)
        return value

    async def hincrbyfloat(self, key: str, field: str, amount: float = 1.0) -> float:
        bucket = self.hashes.setdefault(key, {})
        value = float(bucket.get(field, 0)) + amount
        bucket[field] = str(value)
        return value

    async def hkeys(self, key: str) -> List[str]:
        return list((await self.hgetall(key)).keys())

    async def hlen(self, key: str) -> int:
        return len(await self.hgetall(key))

    async def hmget(self, key: str, keys: List[str]) -> List[Optional[Any]]:
        bucket = await self.hgetall(key)
        return [bucket.get(field) for field in keys]

    async def hvals(self, key: str) -> List[Any]:
        return list((await self.hgetall(key)).values())

    async def hsetnx(self, key: str, field: str, value: Any) -> bool:
        bucket = self.hashes.setdefault(key, {})
        if field in bucket:
            return False
        bucket[field] = _encode(value)
        return True

    # Scripting

    async def eval(self, script: str, numkeys: int, *keys_and_args: Any) -> Any:
        return [script, list(keys_and_args[:numkeys]), list(keys_and_args[numkeys:])]

    async def evalsha(self, sha: str, numkeys: int, *keys_and_args: Any) -> Any:
        if sha not in self.scripts:
            raise Exception("NOSCRIPT No matching script")
        return await self.eval(self.scripts[sha], numkeys, *keys_and_args)

    async def script_load(self, script: str) -> str:
        sha = f"sha-{len(self.scripts)}"
        self.scripts[sha] = script
        return sha

    async def script_exists(self, *hashes: str) -> List[bool]:
        return [sha in self.scripts for sha in hashes]


class FakePipeline:
    """Queues commands until ``execute``; ``reset`` drops them."""

    def __init__(self, redis: FakeRedis, transaction: bool):
        self._redis = redis
        self.transaction = transaction
        self.queued: List[tuple] = []
        self.executed = False
        self.was_reset = False

    def __getattr__(self, name: str):
        if name.startswith("_") or not hasattr(self._redis, name):
            raise AttributeError(name)

        def queue(*args: Any, **kwargs: Any) -> "FakePipeline":
            self.queued.append((name, args, kwargs))
            return self

        return queue

    async def execute(self) -> List[Any]:
        results = []
        for name, args, kwargs in self.queued:
            results.append(await getattr(self._redis, name)(*args, **kwargs))
        self.queued = []
        self.executed = True
        return results

    async def reset(self) -> None:
        self.queued = []
        self.was_reset = True
