"""
Tests for the domain record store.
"""

import pytest
from datetime import datetime, timezone, timedelta
from unittest.mock import AsyncMock, patch

from domainlink.domains.errors import DomainNotFoundError, DuplicateDomainError
from domainlink.domains.models import DomainRecord
from domainlink.domains.registry import DomainRegistry


def _record(domain, **kwargs):
    return DomainRecord(domain=domain, target_id=kwargs.pop("target_id", "site-1"), **kwargs)


class TestDomainRegistry:
    @pytest.mark.asyncio
    async def test_create_and_get(self, registry):
        await registry.create(_record("example.com"))
        result = await registry.get("example.com")
        assert result is not None
        assert result.domain == "example.com"
        assert result.target_id == "site-1"

    @pytest.mark.asyncio
    async def test_lookup_is_normalized(self, registry):
        await registry.create(_record("Gallery.Example.COM"))
        assert await registry.get("www.gallery.example.com") is not None
        assert await registry.exists("GALLERY.example.com")

    @pytest.mark.asyncio
    async def test_duplicate_rejection(self, registry):
        await registry.create(_record("example.com"))
        with pytest.raises(DuplicateDomainError, match="already registered"):
            await registry.create(_record("www.example.com", target_id="site-2"))

        assert await registry.count() == 1
        assert (await registry.get("example.com")).target_id == "site-1"

    @pytest.mark.asyncio
    async def test_update(self, registry):
        record = await registry.create(_record("example.com"))
        before = record.updated_at

        record.dns_verified = True
        await registry.update(record)

        result = await registry.get("example.com")
        assert result.dns_verified is True
        assert result.updated_at >= before

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, registry):
        with pytest.raises(DomainNotFoundError):
            await registry.update(_record("ghost.example.com"))
        assert await registry.get("ghost.example.com") is None

    @pytest.mark.asyncio
    async def test_delete(self, registry):
        await registry.create(_record("example.com"))
        assert await registry.delete("example.com") is True
        assert await registry.get("example.com") is None
        assert await registry.delete("example.com") is False

    @pytest.mark.asyncio
    async def test_list_all_newest_first(self, registry):
        now = datetime.now(timezone.utc)
        await registry.create(_record("old.example.com", created_at=now - timedelta(days=2)))
        await registry.create(_record("new.example.com", created_at=now))
        await registry.create(_record("mid.example.com", created_at=now - timedelta(days=1)))

        domains = [r.domain for r in await registry.list_all()]
        assert domains == ["new.example.com", "mid.example.com", "old.example.com"]

    @pytest.mark.asyncio
    async def test_find_by_connected(self, registry):
        await registry.create(_record(
            "live.example.com",
            dns_verified=True, proxy_configured=True, certificate_issued=True,
        ))
        await registry.create(_record("waiting.example.com", dns_verified=True))

        connected = await registry.find_by_connected(True)
        pending = await registry.find_by_connected(False)
        assert [r.domain for r in connected] == ["live.example.com"]
        assert [r.domain for r in pending] == ["waiting.example.com"]

    @pytest.mark.asyncio
    async def test_find_pending_excludes_capped_and_orders_by_last_check(self, registry):
        now = datetime.now(timezone.utc)
        await registry.create(_record("recent.example.com", last_checked_at=now))
        await registry.create(_record("stale.example.com", last_checked_at=now - timedelta(hours=3)))
        await registry.create(_record("never.example.com"))
        await registry.create(_record("capped.example.com", retry_count=10))

        pending = [r.domain for r in await registry.find_pending(max_retries=10)]
        assert pending == ["never.example.com", "stale.example.com", "recent.example.com"]

    @pytest.mark.asyncio
    async def test_find_failed(self, registry):
        now = datetime.now(timezone.utc)
        old = now - timedelta(days=8)
        await registry.create(_record("old-failed.example.com", retry_count=10, created_at=old))
        await registry.create(_record("new-failed.example.com", retry_count=10, created_at=now))
        await registry.create(_record("old-retrying.example.com", retry_count=9, created_at=old))

        cutoff = now - timedelta(days=7)
        failed = [r.domain for r in await registry.find_failed(created_before=cutoff)]
        assert failed == ["old-failed.example.com"]

    @pytest.mark.asyncio
    async def test_find_expiring(self, registry):
        now = datetime.now(timezone.utc)
        await registry.create(_record(
            "soon.example.com", certificate_issued=True,
            certificate_expiry=now + timedelta(days=10),
        ))
        await registry.create(_record(
            "later.example.com", certificate_issued=True,
            certificate_expiry=now + timedelta(days=80),
        ))
        await registry.create(_record("unknown.example.com", certificate_issued=True))

        expiring = await registry.find_expiring(now + timedelta(days=30))
        assert [r.domain for r in expiring] == ["soon.example.com"]
        assert len(await registry.find_with_certificate()) == 3


class TestRedisFallback:
    @pytest.mark.asyncio
    async def test_falls_back_to_memory_when_redis_unreachable(self):
        reg = DomainRegistry(redis_url="redis://127.0.0.1:1")

        fake_client = AsyncMock()
        fake_client.ping.side_effect = ConnectionError("refused")
        with patch("domainlink.domains.registry.redis.from_url", return_value=fake_client):
            await reg.create(_record("example.com"))

        assert reg._use_redis is False
        assert "example.com" in reg._memory_store
        assert await reg.get("example.com") is not None

    @pytest.mark.asyncio
    async def test_no_url_means_memory(self):
        reg = DomainRegistry(redis_url=None)
        assert await reg._get_redis() is None
