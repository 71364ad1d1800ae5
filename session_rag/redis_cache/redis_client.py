import json
import os
from abc import ABC, abstractmethod
from typing import List, Optional

import redis

from session_rag.logger import GLOBAL_LOGGER as log
from session_rag.schemas import SourceMetadata

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

SESSION_TTL = 86400  # 24 hours in seconds
DEFAULT_TOKENS = 10

# Returned by the consume script when the counter is already non-positive
QUOTA_EXHAUSTED = -1

# Atomic check-and-decrement with a floor at zero:
#   KEYS[1] = token counter, ARGV[1] = default quota, ARGV[2] = ttl seconds
# A missing counter is initialised to the default first. A non-positive
# counter is left untouched and reported as exhausted.
_CONSUME_TOKEN_LUA = """
local current = redis.call('GET', KEYS[1])
if not current then
  redis.call('SET', KEYS[1], ARGV[1], 'EX', tonumber(ARGV[2]))
  current = ARGV[1]
end
if tonumber(current) <= 0 then
  return -1
end
local remaining = redis.call('DECR', KEYS[1])
redis.call('EXPIRE', KEYS[1], tonumber(ARGV[2]))
return remaining
"""


def tokens_key(session_id: str) -> str:
    """
    example : session:3f9a-demo:tokens  -> "7"
    """
    return f"session:{session_id}:tokens"


def files_key(session_id: str) -> str:
    """
    example : session:3f9a-demo:files -> ['{"id": "1718...", "name": "notes.pdf", ...}', ...]
    """
    return f"session:{session_id}:files"


class SessionStore(ABC):
    """
    Per-session bookkeeping: a quota counter and the ordered list of
    attached sources, both expiring after ttl seconds without writes.
    Quota consumption must be a single atomic store operation.
    """

    default_tokens: int = DEFAULT_TOKENS
    ttl: int = SESSION_TTL

    @abstractmethod
    def get_tokens(self, session_id: str) -> int:
        """Read the counter, initialising it to the default on first access."""

    @abstractmethod
    def consume_token(self, session_id: str) -> int:
        """Atomically decrement with a floor; QUOTA_EXHAUSTED when nothing is left."""

    @abstractmethod
    def reset_tokens(self, session_id: str) -> None:
        ...

    @abstractmethod
    def add_source(self, session_id: str, source: SourceMetadata) -> None:
        ...

    @abstractmethod
    def list_sources(self, session_id: str) -> List[SourceMetadata]:
        ...

    @abstractmethod
    def remove_source(self, session_id: str, name: str) -> bool:
        ...

    @abstractmethod
    def clear(self, session_id: str) -> None:
        ...

    def ping(self) -> bool:
        return True


class RedisSessionStore(SessionStore):
    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        default_tokens: int = DEFAULT_TOKENS,
        ttl: int = SESSION_TTL,
    ):
        self.client = client or redis.Redis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
        )
        self.default_tokens = default_tokens
        self.ttl = ttl
        self._consume = self.client.register_script(_CONSUME_TOKEN_LUA)

    def get_tokens(self, session_id: str) -> int:
        key = tokens_key(session_id)
        # NX keeps an existing counter, so this only seeds new sessions
        self.client.set(key, self.default_tokens, ex=self.ttl, nx=True)
        value = self.client.get(key)
        if value is None:
            # expired between the two calls
            return self.default_tokens
        return int(value)

    def consume_token(self, session_id: str) -> int:
        remaining = int(
            self._consume(
                keys=[tokens_key(session_id)], args=[self.default_tokens, self.ttl]
            )
        )
        log.debug("Consume token", session_id=session_id, remaining=remaining)
        return remaining

    def reset_tokens(self, session_id: str) -> None:
        self.client.set(tokens_key(session_id), self.default_tokens, ex=self.ttl)

    def add_source(self, session_id: str, source: SourceMetadata) -> None:
        key = files_key(session_id)
        pipe = self.client.pipeline(transaction=True)
        pipe.rpush(key, source.model_dump_json())
        pipe.expire(key, self.ttl)
        pipe.execute()

    def list_sources(self, session_id: str) -> List[SourceMetadata]:
        raw = self.client.lrange(files_key(session_id), 0, -1)
        out: List[SourceMetadata] = []
        for item in raw:
            try:
                out.append(SourceMetadata.model_validate_json(item))
            except ValueError as e:
                log.warning("Skipping unreadable source entry", error=str(e))
        return out

    def remove_source(self, session_id: str, name: str) -> bool:
        key = files_key(session_id)
        for item in self.client.lrange(key, 0, -1):
            try:
                entry = json.loads(item)
            except json.JSONDecodeError:
                continue
            if entry.get("name") == name:
                # LREM on the exact serialised value keeps removal atomic
                removed = self.client.lrem(key, 1, item)
                log.info("Removed source from session", session_id=session_id, name=name)
                return bool(removed)
        return False

    def clear(self, session_id: str) -> None:
        self.client.delete(tokens_key(session_id), files_key(session_id))

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            log.warning("Redis ping failed", error=str(e))
            return False
