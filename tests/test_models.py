"""
Tests for the domain record model and domain name handling.
"""

import pytest
from datetime import datetime, timezone, timedelta

from domainlink.domains.errors import InvalidDomainError
from domainlink.domains.models import (
    MAX_RETRIES,
    DomainRecord,
    DomainStatus,
    derive_status,
    is_apex_domain,
    normalize_domain,
    validate_domain,
    validate_target_id,
)


# ── Normalization / validation tests ────────────────────────────────


class TestNormalization:
    @pytest.mark.parametrize("raw,expected", [
        ("Example.COM", "example.com"),
        ("www.example.com", "example.com"),
        ("WWW.Shop.Example.com", "shop.example.com"),
        ("  example.com.  ", "example.com"),
        ("wwwexample.com", "wwwexample.com"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_domain(raw) == expected

    def test_validate_returns_normalized(self):
        assert validate_domain("WWW.Gallery.Example.com") == "gallery.example.com"

    @pytest.mark.parametrize("bad", [
        "",
        "   ",
        "localhost",
        "exa mple.com",
        "-bad.example.com",
        "example.c",
        "example.123",
        "http://example.com",
        "example.com/path",
    ])
    def test_validate_rejects_malformed(self, bad):
        with pytest.raises(InvalidDomainError):
            validate_domain(bad)

    def test_validate_rejects_too_long(self):
        label = "a" * 60
        domain = ".".join([label] * 5) + ".com"
        with pytest.raises(InvalidDomainError):
            validate_domain(domain)

    def test_validate_rejects_reserved_name(self):
        with pytest.raises(InvalidDomainError, match="reserved"):
            validate_domain("assets.json", reserved_names=["assets.json"])

    def test_reserved_name_only_matches_whole_domain(self):
        assert validate_domain("api.example.com", reserved_names=["api"]) == "api.example.com"

    def test_invalid_domain_error_is_value_error(self):
        with pytest.raises(ValueError):
            validate_domain("nope")

    @pytest.mark.parametrize("target", ["site-1", "Site_2", "1758087450044"])
    def test_target_id_valid(self, target):
        assert validate_target_id(target) == target

    @pytest.mark.parametrize("target", ["", "../etc", "site 1", "site/1", "site;rm"])
    def test_target_id_invalid(self, target):
        with pytest.raises(InvalidDomainError):
            validate_target_id(target)

    def test_apex_heuristic(self):
        assert is_apex_domain("example.com") is True
        assert is_apex_domain("shop.example.com") is False
        # Known misclassification of multi-part public suffixes
        assert is_apex_domain("example.co.uk") is False


# ── DomainRecord model tests ────────────────────────────────────────


class TestDomainRecord:
    def test_creation_defaults(self):
        record = DomainRecord(domain="example.com", target_id="site-1")
        assert record.dns_verified is False
        assert record.proxy_configured is False
        assert record.certificate_issued is False
        assert record.certificate_expiry is None
        assert record.retry_count == 0
        assert record.last_error is None
        assert record.last_checked_at is None
        assert record.connected is False
        assert isinstance(record.created_at, datetime)

    def test_connected_requires_all_steps(self):
        record = DomainRecord(domain="example.com", target_id="site-1")
        record.dns_verified = True
        record.proxy_configured = True
        assert record.connected is False
        record.certificate_issued = True
        assert record.connected is True

    def test_serialization_roundtrip(self):
        now = datetime.now(timezone.utc)
        record = DomainRecord(
            domain="example.com",
            target_id="site-1",
            dns_verified=True,
            proxy_configured=True,
            certificate_issued=True,
            certificate_expiry=now + timedelta(days=90),
            retry_count=2,
            last_error="boom",
            last_checked_at=now,
        )
        restored = DomainRecord.from_dict(record.to_dict())

        assert restored == record

    def test_stored_form_has_no_derived_fields(self):
        data = DomainRecord(domain="example.com", target_id="site-1").to_dict()
        assert "connected" not in data
        assert "status" not in data

    def test_expiry_dropped_without_certificate(self):
        record = DomainRecord(
            domain="example.com",
            target_id="site-1",
            certificate_expiry=datetime.now(timezone.utc),
        )
        assert record.to_dict()["certificate_expiry"] is None
        assert DomainRecord.from_dict(record.to_dict()).certificate_expiry is None

    def test_naive_timestamps_read_as_utc(self):
        data = DomainRecord(domain="example.com", target_id="site-1").to_dict()
        data["created_at"] = "2024-01-01T00:00:00"
        restored = DomainRecord.from_dict(data)
        assert restored.created_at.tzinfo is not None

    def test_api_response_includes_derived_fields(self):
        record = DomainRecord(
            domain="example.com",
            target_id="site-1",
            dns_verified=True,
            proxy_configured=True,
            certificate_issued=True,
        )
        resp = record.to_api_response()
        assert resp["connected"] is True
        assert resp["status"] == "active"

    def test_record_failure_increments(self):
        record = DomainRecord(domain="example.com", target_id="site-1")
        record.record_failure("DNS mismatch")
        record.record_failure("DNS mismatch again")
        assert record.retry_count == 2
        assert record.last_error == "DNS mismatch again"


# ── Derived status tests ────────────────────────────────────────────


class TestDerivedStatus:
    def _record(self, **kwargs):
        return DomainRecord(domain="example.com", target_id="site-1", **kwargs)

    def test_pending(self):
        assert derive_status(self._record()) is DomainStatus.PENDING

    def test_dns_verified(self):
        assert derive_status(self._record(dns_verified=True)) is DomainStatus.DNS_VERIFIED

    def test_connected_no_ssl(self):
        record = self._record(dns_verified=True, proxy_configured=True)
        assert derive_status(record) is DomainStatus.CONNECTED_NO_SSL

    def test_active(self):
        record = self._record(
            dns_verified=True, proxy_configured=True, certificate_issued=True
        )
        assert derive_status(record) is DomainStatus.ACTIVE
        assert record.status == "active"

    def test_failed_at_retry_cap(self):
        assert derive_status(self._record(retry_count=MAX_RETRIES)) is DomainStatus.FAILED
        assert derive_status(self._record(retry_count=MAX_RETRIES - 1)) is DomainStatus.PENDING

    def test_active_wins_over_retry_count(self):
        record = self._record(
            dns_verified=True,
            proxy_configured=True,
            certificate_issued=True,
            retry_count=MAX_RETRIES,
        )
        assert derive_status(record) is DomainStatus.ACTIVE

    def test_connected_implies_all_steps_over_all_flag_combinations(self):
        for dns in (False, True):
            for proxy in (False, True):
                for cert in (False, True):
                    record = self._record(
                        dns_verified=dns, proxy_configured=proxy, certificate_issued=cert
                    )
                    if record.connected:
                        assert dns and proxy and cert
                    assert (derive_status(record) is DomainStatus.ACTIVE) == record.connected
