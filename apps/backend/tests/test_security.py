from __future__ import annotations

import threading

import pytest

from folio_finance import models
from folio_finance.core import crypto
from folio_finance.services.security import (
    InMemoryCounterStore,
    RateLimiter,
    Severity,
    ThreatTracker,
)

KEY = "k" * 32


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


def test_rate_limiter_fixed_window(clock):
    limiter = RateLimiter(InMemoryCounterStore(clock), limit=2, window_seconds=60, clock=clock)
    assert limiter.hit("u1").remaining == 1
    assert limiter.hit("u1").remaining == 0

    denied = limiter.hit("u1")
    assert denied.allowed is False
    assert denied.retry_after == 60
    assert limiter.hit("u2").allowed is True

    clock.advance(60)
    assert limiter.hit("u1").allowed is True


def test_threat_score_decays_and_blocks(clock):
    tracker = ThreatTracker(
        InMemoryCounterStore(clock), threshold=50, decay_per_minute=2, ttl_seconds=1800, clock=clock
    )
    assert tracker.record("user:1", Severity.HIGH, "XSS") == 30
    clock.advance(5 * 60)
    assert tracker.score("user:1") == 20
    assert tracker.is_blocked("user:1") is False

    assert tracker.record("user:1", Severity.HIGH, "XSS") == 50
    assert tracker.is_blocked("user:1") is True
    assert tracker.is_blocked("user:2") is False

    tracker.reset("user:1")
    assert tracker.score("user:1") == 0


def test_threat_record_expires_with_ttl(clock):
    tracker = ThreatTracker(
        InMemoryCounterStore(clock), threshold=50, decay_per_minute=0, ttl_seconds=60, clock=clock
    )
    tracker.record("ip:10.0.0.1", Severity.CRITICAL, "PORT_SCAN")
    assert tracker.is_blocked("ip:10.0.0.1") is True
    clock.advance(61)
    assert tracker.score("ip:10.0.0.1") == 0


def test_expired_entries_are_swept_on_write(clock):
    store = InMemoryCounterStore(clock, sweep_interval=60)
    for i in range(1000):
        store.set(f"threat:ip:10.0.{i // 256}.{i % 256}", {"score": 15}, 1800)
    assert store.size() == 1000

    clock.advance(1801)
    store.set("threat:ip:192.168.0.1", {"score": 15}, 1800)
    assert store.size() == 1
    assert store.get("threat:ip:192.168.0.1") == {"score": 15}


def test_sweep_keeps_live_entries(clock):
    store = InMemoryCounterStore(clock, sweep_interval=10)
    store.set("short", 1, 5)
    store.set("long", 2, 600)
    clock.advance(30)
    store.set("fresh", 3, 5)
    assert store.size() == 2
    assert store.get("long") == 2


def test_concurrent_threat_events_are_all_counted(clock):
    tracker = ThreatTracker(
        InMemoryCounterStore(clock), threshold=1_000_000, decay_per_minute=0, ttl_seconds=1800, clock=clock
    )

    def burst():
        for _ in range(200):
            tracker.record("user:7", Severity.LOW, "PERMISSION_DENIED")

    workers = [threading.Thread(target=burst) for _ in range(8)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    assert tracker.score("user:7") == 8 * 200 * 5


def test_encrypt_round_trip_and_tamper_detection():
    token = crypto.encrypt_data("ana@example.com", KEY)
    assert len(token.split(":")) == 3
    assert crypto.decrypt_data(token, KEY) == "ana@example.com"
    assert crypto.encrypt_data("ana@example.com", KEY) != token

    with pytest.raises(ValueError):
        crypto.decrypt_data(token, "z" * 32)
    with pytest.raises(ValueError):
        crypto.decrypt_data("not-a-token", KEY)


def test_email_hash_is_normalized_and_keyed():
    encrypted, digest = crypto.encrypt_email("  Ana@Example.COM ", KEY)
    assert digest == crypto.hash_email("ana@example.com", KEY)
    assert digest != crypto.hash_email("ana@example.com", "y" * 32)
    assert crypto.decrypt_data(encrypted, KEY) == "ana@example.com"


def test_short_key_and_password_are_refused():
    with pytest.raises(crypto.EncryptionKeyError):
        crypto.encrypt_data("x", "short")
    with pytest.raises(ValueError):
        crypto.hash_password("too-short")
    hashed = crypto.hash_password("a-long-enough-password")
    assert crypto.verify_password("a-long-enough-password", hashed)
    assert not crypto.verify_password("wrong-password!!", hashed)


def test_missing_or_unknown_user_is_401(client, db_session):
    for headers in ({}, {"X-User-Id": "abc"}, {"X-User-Id": "999999"}):
        resp = client.get("/api/finance/accounts", headers=headers)
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}
    logged = db_session.query(models.AuditLog).filter(models.AuditLog.action == "security.unauthorized_access").all()
    assert len(logged) == 3
    assert all(row.category == "security" for row in logged)


def test_inactive_user_is_401(client, db_session, users):
    user = db_session.get(models.User, users["admin"])
    user.is_active = False
    db_session.commit()
    assert client.get("/api/finance/accounts", headers={"X-User-Id": str(users["admin"])}).status_code == 401


def test_missing_permission_is_403_and_audited(client, db_session, member_headers, users):
    resp = client.get("/api/finance/accounts", headers=member_headers)
    assert resp.status_code == 403
    assert resp.json() == {"error": "Forbidden"}
    row = db_session.query(models.AuditLog).filter(models.AuditLog.action == "security.permission_denied").one()
    assert row.user_id == users["member"]
    assert row.details["permission"] == "finance.accounts.view"


def test_validation_errors_use_error_envelope(client, admin_headers):
    resp = client.post("/api/finance/accounts", json={"name": "Sin tipo"}, headers=admin_headers)
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Invalid data"
    assert [d["field"] for d in body["details"]] == ["type"]


def test_audit_log_rows_are_immutable(client, db_session, admin_headers, create_account):
    create_account(admin_headers, "Auditada")
    row = db_session.query(models.AuditLog).filter(models.AuditLog.action == "finance.account.created").one()

    row.action = "tampered"
    with pytest.raises(models.AuditLogImmutableError):
        db_session.flush()
    db_session.rollback()

    with pytest.raises(models.AuditLogImmutableError):
        db_session.delete(row)
        db_session.flush()
    db_session.rollback()
