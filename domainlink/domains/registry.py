"""
Domain registry: persistent store for custom domain connection records.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import redis.asyncio as redis

from .errors import DomainNotFoundError, DuplicateDomainError
from .models import DomainRecord, MAX_RETRIES, normalize_domain

logger = logging.getLogger("domainlink.domains.registry")

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


class DomainRegistry:
    """
    Registry of custom domain connection records.

    Uses Redis for persistence with in-memory fallback. Holds no business
    logic: callers decide what to store, the registry only stores it.
    Concurrent updates to the same record are last-write-wins.
    """

    def __init__(
        self,
        redis_url: Optional[str] = "redis://localhost:6379",
        key_prefix: str = "domainlink:",
    ):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._redis: Optional[redis.Redis] = None
        self._use_redis = bool(redis_url)
        # In-memory fallback
        self._memory_store: Dict[str, dict] = {}

    async def _get_redis(self) -> Optional[redis.Redis]:
        """Get Redis connection."""
        if not self._use_redis:
            return None

        if self._redis is None:
            try:
                self._redis = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
                await self._redis.ping()
                logger.info("Domain registry connected to Redis")
            except Exception as e:
                logger.warning(
                    f"Redis unavailable for domain registry, using in-memory: {e}"
                )
                self._redis = None
                self._use_redis = False
                return None

        return self._redis

    def _domain_key(self, domain: str) -> str:
        return f"{self.key_prefix}domain:{domain}"

    @property
    def _index_key(self) -> str:
        return f"{self.key_prefix}domains"

    async def create(self, record: DomainRecord) -> DomainRecord:
        """
        Store a new record.

        Raises DuplicateDomainError if the domain already has a record.
        """
        domain = normalize_domain(record.domain)
        record.domain = domain
        data = record.to_dict()

        r = await self._get_redis()
        if r:
            created = await r.set(self._domain_key(domain), json.dumps(data), nx=True)
            if not created:
                raise DuplicateDomainError(domain)
            await r.sadd(self._index_key, domain)
        else:
            if domain in self._memory_store:
                raise DuplicateDomainError(domain)
            self._memory_store[domain] = data

        logger.info(f"Created domain record: {domain} -> {record.target_id}")
        return record

    async def get(self, domain: str) -> Optional[DomainRecord]:
        """Get a record by domain name."""
        domain = normalize_domain(domain)
        r = await self._get_redis()

        if r:
            data = await r.get(self._domain_key(domain))
            if not data:
                return None
            info = json.loads(data) if isinstance(data, str) else data
        else:
            info = self._memory_store.get(domain)
            if not info:
                return None

        return DomainRecord.from_dict(info)

    async def exists(self, domain: str) -> bool:
        domain = normalize_domain(domain)
        r = await self._get_redis()
        if r:
            return await r.exists(self._domain_key(domain)) > 0
        return domain in self._memory_store

    async def update(self, record: DomainRecord) -> DomainRecord:
        """
        Overwrite an existing record.

        Raises DomainNotFoundError if the record was deleted meanwhile, so a
        late write never resurrects a removed domain.
        """
        domain = normalize_domain(record.domain)
        record.touch()
        data = record.to_dict()

        r = await self._get_redis()
        if r:
            updated = await r.set(self._domain_key(domain), json.dumps(data), xx=True)
            if not updated:
                raise DomainNotFoundError(domain)
        else:
            if domain not in self._memory_store:
                raise DomainNotFoundError(domain)
            self._memory_store[domain] = data

        logger.debug(f"Updated domain record: {domain}")
        return record

    async def delete(self, domain: str) -> bool:
        """Delete a record. Returns False if it did not exist."""
        domain = normalize_domain(domain)

        r = await self._get_redis()
        if r:
            removed = await r.delete(self._domain_key(domain))
            await r.srem(self._index_key, domain)
            if not removed:
                return False
        else:
            if self._memory_store.pop(domain, None) is None:
                return False

        logger.info(f"Deleted domain record: {domain}")
        return True

    async def list_all(self) -> List[DomainRecord]:
        """List all records, newest first."""
        r = await self._get_redis()
        records: List[DomainRecord] = []

        if r:
            members = await r.smembers(self._index_key)
            for d in members:
                entry = await self.get(d)
                if entry:
                    records.append(entry)
                else:
                    # Stale index member
                    await r.srem(self._index_key, d)
        else:
            for data in list(self._memory_store.values()):
                records.append(DomainRecord.from_dict(data))

        records.sort(key=lambda rec: rec.created_at, reverse=True)
        return records

    async def _filter(self, predicate: Callable[[DomainRecord], bool]) -> List[DomainRecord]:
        return [rec for rec in await self.list_all() if predicate(rec)]

    async def find_by_connected(self, connected: bool) -> List[DomainRecord]:
        return await self._filter(lambda rec: rec.connected == connected)

    async def find_pending(self, max_retries: int = MAX_RETRIES) -> List[DomainRecord]:
        """Records not yet connected and still under the retry cap, least recently checked first."""
        records = await self._filter(
            lambda rec: not rec.connected and rec.retry_count < max_retries
        )
        records.sort(
            key=lambda rec: rec.last_checked_at or _NEVER
        )
        return records

    async def find_failed(
        self,
        created_before: datetime,
        min_retries: int = MAX_RETRIES,
    ) -> List[DomainRecord]:
        """Unconnected records at or over the retry cap created before the cutoff."""
        return await self._filter(
            lambda rec: (
                not rec.connected
                and rec.retry_count >= min_retries
                and rec.created_at < created_before
            )
        )

    async def find_with_certificate(self) -> List[DomainRecord]:
        return await self._filter(lambda rec: rec.certificate_issued)

    async def find_expiring(self, before: datetime) -> List[DomainRecord]:
        """Certificate-bearing records whose certificate expires at or before the cutoff."""
        return await self._filter(
            lambda rec: (
                rec.certificate_issued
                and rec.certificate_expiry is not None
                and rec.certificate_expiry <= before
            )
        )

    async def count(self) -> int:
        r = await self._get_redis()
        if r:
            return await r.scard(self._index_key)
        return len(self._memory_store)

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("Domain registry Redis connection closed")
