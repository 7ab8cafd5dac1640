# shopcart/services/cache_service.py
from datetime import datetime, timezone

import redis
from pydantic import ValidationError
from redis.exceptions import RedisError

from shopcart.domain.errors import CacheUnavailable
from shopcart.domain.schemas import CartOut, OwnerKey
from shopcart.utils.logging import get_logger
from shopcart.utils.retry import redis_retry

logger = get_logger(__name__)

#LUA porownaj generacje i zapisz, atomowo
#czytelnik ktory wczytal store przed invalidate nie nadpisze cache starym snapshotem
_SET_IF_GENERATION_LUA = """
local current = redis.call('GET', KEYS[2])
if (current or '0') == ARGV[2] then
    return redis.call('SET', KEYS[1], ARGV[1], 'EX', ARGV[3])
end
return 0
"""


class CartCache:
    """
    Cache-aside dla snapshotow koszyka, klucz = owner key.

    - odczyt: hit -> snapshot, miss -> None (engine czyta store i robi set)
    - zapis w engine -> invalidate (INCR generacji + DEL), nigdy update w miejscu
    - TTL: CART_TTL dla userow, SESSION_TTL dla gosci, nigdy dalej niz expires_at
    Kazdy blad redisa -> CacheUnavailable, engine robi fallback do store.
    """

    def __init__(self, client: redis.Redis, cart_ttl: int, session_ttl: int, invalidate_attempts: int = 3):
        self.redis = client
        self.cart_ttl = cart_ttl
        self.session_ttl = session_ttl
        self._invalidate = redis_retry(invalidate_attempts)(self._invalidate_once)

    @classmethod
    def from_url(cls, url: str, cart_ttl: int, session_ttl: int, timeout: float = 0.5) -> "CartCache":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client, cart_ttl=cart_ttl, session_ttl=session_ttl)

    def ttl_for(self, owner: OwnerKey) -> int:
        return self.session_ttl if owner.is_guest else self.cart_ttl

    @staticmethod
    def generation_key(owner: OwnerKey) -> str:
        return f"{owner.cache_key}:gen"

    def get(self, owner: OwnerKey) -> CartOut | None:
        key = owner.cache_key
        try:
            raw = self.redis.get(key)
        except RedisError as e:
            raise CacheUnavailable("Cart cache read failed", key=key) from e

        if raw is None:
            return None

        try:
            return CartOut.model_validate_json(raw)
        except ValidationError:
            # uszkodzony wpis traktujemy jak miss
            logger.warning(f"Dropping unreadable cache entry {key}")
            self.invalidate(owner)
            return None

    def generation(self, owner: OwnerKey) -> str:
        """Czytane PRZED odczytem ze store, przekazywane potem do set()."""
        try:
            return self.redis.get(self.generation_key(owner)) or "0"
        except RedisError as e:
            raise CacheUnavailable("Cart cache read failed", key=owner.cache_key) from e

    def ttl_for_snapshot(self, owner: OwnerKey, snapshot: CartOut) -> int:
        """TTL ownera, ale nie dluzej niz do expires_at koszyka."""
        ttl = self.ttl_for(owner)
        if snapshot.expires_at is None:
            return ttl
        expires_at = snapshot.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        remaining = int((expires_at - datetime.now(timezone.utc)).total_seconds())
        return min(ttl, remaining)

    def set(self, owner: OwnerKey, snapshot: CartOut, generation: str = "0") -> bool:
        key = owner.cache_key
        ttl = self.ttl_for_snapshot(owner, snapshot)
        if ttl <= 0:
            # koszyk juz logicznie wygasl, nie ma czego cachowac
            return False
        try:
            #SET cart:user:42 "{...}" EX 604800, tylko jesli nikt nie zinwalidowal w miedzyczasie
            res = self.redis.eval(
                _SET_IF_GENERATION_LUA,
                2,
                key,
                self.generation_key(owner),
                snapshot.model_dump_json(),
                generation,
                ttl,
            )
        except RedisError as e:
            raise CacheUnavailable("Cart cache write failed", key=key) from e
        return bool(res)

    def _invalidate_once(self, owner: OwnerKey) -> None:
        gen_key = self.generation_key(owner)
        pipe = self.redis.pipeline(transaction=True)
        pipe.incr(gen_key)
        pipe.expire(gen_key, max(self.cart_ttl, self.session_ttl))
        pipe.delete(owner.cache_key)
        pipe.execute()

    def invalidate(self, owner: OwnerKey) -> None:
        key = owner.cache_key
        try:
            self._invalidate(owner)
        except RedisError as e:
            raise CacheUnavailable("Cart cache invalidation failed", key=key) from e

    def ping(self) -> bool:
        try:
            return bool(self.redis.ping())
        except RedisError as e:
            raise CacheUnavailable("Cart cache is unreachable") from e

    def close(self) -> None:
        self.redis.close()
