"""Redis lock backend."""

import json
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

import redis
import structlog

from ..exceptions import StorageUnavailableError
from ..models import LockEntry, utcnow
from .lock import LockBackend


logger = structlog.get_logger()

_TOKEN_SUFFIX = "#token"

# Keys stay readable for a while after expiry so holders get a clear
# LockExpiredError instead of a vanished entry.
_EXPIRY_GRACE_MS = 60_000

# KEYS[1] entry hash
# ARGV[1] expected token ("" for absent), ARGV[2] new token ("" to delete),
# ARGV[3] entry json, ARGV[4] key ttl in ms
_COMPARE_AND_SET = """
local current = redis.call('HGET', KEYS[1], 'token')
if (current or '') ~= ARGV[1] then
  return 0
end
redis.call('DEL', KEYS[1])
if ARGV[2] ~= '' then
  redis.call('HSET', KEYS[1], 'token', ARGV[2], 'data', ARGV[3])
  redis.call('PEXPIRE', KEYS[1], ARGV[4])
end
return 1
"""


class RedisLockBackend(LockBackend):
    """Lock entries as Redis hashes, swapped by a Lua compare-and-set script."""

    name = "redis"

    def __init__(
        self,
        redis_url: str = "",
        prefix: str = "remotestate:lock:",
        client: Any = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.prefix = prefix
        self.clock = clock
        self.client = client or redis.from_url(redis_url, decode_responses=True)
        self._compare_and_set = self.client.register_script(_COMPARE_AND_SET)

    def _key(self, path: str) -> str:
        return f"{self.prefix}{path}"

    def get(self, path: str) -> Optional[LockEntry]:
        try:
            data = self.client.hget(self._key(path), "data")
        except redis.RedisError as e:
            raise StorageUnavailableError("redis", str(e)) from e
        return LockEntry.from_dict(json.loads(data)) if data else None

    def compare_and_set(
        self, path: str, expected_token: Optional[int], entry: Optional[LockEntry]
    ) -> bool:
        if entry is None:
            args = [_token_arg(expected_token), "", "", 0]
        else:
            remaining_ms = int((entry.expires_at - self.clock()).total_seconds() * 1000)
            args = [
                _token_arg(expected_token),
                str(entry.fencing_token),
                json.dumps(entry.to_dict()),
                max(remaining_ms, 0) + _EXPIRY_GRACE_MS,
            ]

        try:
            result = self._compare_and_set(keys=[self._key(path)], args=args)
        except redis.RedisError as e:
            raise StorageUnavailableError("redis", str(e)) from e
        return bool(result)

    def next_token(self, path: str) -> int:
        try:
            return int(self.client.incr(f"{self._key(path)}{_TOKEN_SUFFIX}"))
        except redis.RedisError as e:
            raise StorageUnavailableError("redis", str(e)) from e

    def entries(self) -> Iterable[LockEntry]:
        try:
            for key in self.client.scan_iter(match=f"{self.prefix}*"):
                if key.endswith(_TOKEN_SUFFIX):
                    continue
                data = self.client.hget(key, "data")
                if data:
                    yield LockEntry.from_dict(json.loads(data))
        except redis.RedisError as e:
            raise StorageUnavailableError("redis", str(e)) from e


def _token_arg(token: Optional[int]) -> str:
    return "" if token is None else str(token)
