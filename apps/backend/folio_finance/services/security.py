"""Rate limiting, threat scoring and security event recording.

State lives behind the ``CounterStore`` protocol. The in-memory store is
per-process and lost on restart; a shared cache can be plugged in through
the FastAPI dependencies in ``folio_finance.core.deps``.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from sqlalchemy.orm import Session

from folio_finance import models
from folio_finance.core.config import settings
from folio_finance.services.audit_service import AuditService


logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class CounterStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl_seconds: float) -> None: ...

    def update(self, key: str, fn: Callable[[Any | None], Any], ttl_seconds: float) -> Any:
        """Atomically replace the value at ``key`` with ``fn(current)``."""
        ...

    def delete(self, key: str) -> None: ...


class InMemoryCounterStore:
    """Per-process TTL store. Expired entries are swept at most once per ``sweep_interval``."""

    def __init__(self, clock: Clock = time.time, sweep_interval: float = 60.0) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    def _live(self, key: str, now: float) -> Any | None:
        item = self._entries.get(key)
        if item is None:
            return None
        expires_at, value = item
        if expires_at <= now:
            del self._entries[key]
            return None
        return value

    def _store(self, key: str, value: Any, ttl_seconds: float, now: float) -> None:
        if now >= self._next_sweep:
            expired = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
            for k in expired:
                del self._entries[k]
            self._next_sweep = now + self._sweep_interval
        self._entries[key] = (now + ttl_seconds, value)

    def get(self, key: str) -> Any | None:
        with self._lock:
            return self._live(key, self._clock())

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        with self._lock:
            self._store(key, value, ttl_seconds, self._clock())

    def update(self, key: str, fn: Callable[[Any | None], Any], ttl_seconds: float) -> Any:
        with self._lock:
            now = self._clock()
            value = fn(self._live(key, now))
            self._store(key, value, ttl_seconds, now)
            return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._entries)


# ===== Rate limiting =====

@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int


class RateLimiter:
    """Fixed-window counter: at most ``limit`` hits per ``window_seconds``."""

    def __init__(self, store: CounterStore, limit: int, window_seconds: int, *, namespace: str = "rl", clock: Clock = time.time) -> None:
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self.namespace = namespace
        self._clock = clock

    def hit(self, key: str) -> RateLimitResult:
        now = self._clock()
        denied: list[bool] = []

        def bump(state: dict[str, Any] | None) -> dict[str, Any]:
            if state is None or now - state["window_start"] >= self.window_seconds:
                state = {"window_start": now, "count": 0}
            if state["count"] >= self.limit:
                denied.append(True)
                return state
            return {"window_start": state["window_start"], "count": state["count"] + 1}

        state = self.store.update(f"{self.namespace}:{key}", bump, self.window_seconds)
        if denied:
            reset_in = max(1, math.ceil(state["window_start"] + self.window_seconds - now))
            return RateLimitResult(False, self.limit, 0, reset_in)
        return RateLimitResult(True, self.limit, self.limit - state["count"], 0)


# ===== Threat scoring =====

class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


SEVERITY_SCORES: dict[Severity, int] = {
    Severity.LOW: 5,
    Severity.MEDIUM: 15,
    Severity.HIGH: 30,
    Severity.CRITICAL: 50,
}


class ThreatTracker:
    """Accumulate a decaying threat score per actor (user or client address)."""

    def __init__(
        self,
        store: CounterStore,
        *,
        threshold: int | None = None,
        decay_per_minute: int | None = None,
        ttl_seconds: int | None = None,
        clock: Clock = time.time,
    ) -> None:
        self.store = store
        self.threshold = settings.THREAT_THRESHOLD if threshold is None else threshold
        self.decay_per_minute = settings.THREAT_DECAY_PER_MINUTE if decay_per_minute is None else decay_per_minute
        self.ttl_seconds = settings.THREAT_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._clock = clock

    def _key(self, actor: str) -> str:
        return f"threat:{actor}"

    def _decayed(self, record: dict[str, Any], now: float) -> int:
        minutes = int((now - record["last_update"]) // 60)
        return max(0, record["score"] - minutes * self.decay_per_minute)

    def record(self, actor: str, severity: Severity, event_type: str) -> int:
        now = self._clock()
        previous_scores: list[int] = []

        def bump(record: dict[str, Any] | None) -> dict[str, Any]:
            previous = self._decayed(record, now) if record else 0
            previous_scores.append(previous)
            events = list(record["events"]) if record else []
            events.append(event_type)
            return {"score": previous + SEVERITY_SCORES[severity], "events": events, "last_update": now}

        record = self.store.update(self._key(actor), bump, self.ttl_seconds)
        previous, score, events = previous_scores[-1], record["score"], record["events"]
        if score >= self.threshold > previous:
            logger.error("threat threshold exceeded for %s (score=%s, events=%s)", actor, score, events)
        return score

    def score(self, actor: str) -> int:
        record = self.store.get(self._key(actor))
        if not record:
            return 0
        return self._decayed(record, self._clock())

    def is_blocked(self, actor: str) -> bool:
        return self.score(actor) >= self.threshold

    def reset(self, actor: str) -> None:
        self.store.delete(self._key(actor))


# ===== Security events =====

class SecurityEvent(str, Enum):
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SUSPICIOUS_FILE_UPLOAD = "SUSPICIOUS_FILE_UPLOAD"
    XSS_INJECTION_ATTEMPT = "XSS_INJECTION_ATTEMPT"


EVENT_SEVERITY: dict[SecurityEvent, Severity] = {
    SecurityEvent.UNAUTHORIZED_ACCESS: Severity.MEDIUM,
    SecurityEvent.PERMISSION_DENIED: Severity.MEDIUM,
    SecurityEvent.RATE_LIMIT_EXCEEDED: Severity.MEDIUM,
    SecurityEvent.SUSPICIOUS_FILE_UPLOAD: Severity.HIGH,
    SecurityEvent.XSS_INJECTION_ATTEMPT: Severity.HIGH,
}


@dataclass
class RequestContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    user_id: Optional[int] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def actor(self) -> str:
        if self.user_id is not None:
            return f"user:{self.user_id}"
        return f"ip:{self.ip_address or 'unknown'}"


class SecurityRecorder:
    """Send a security event to the log, the threat tracker and the audit log."""

    def __init__(self, db: Session, tracker: ThreatTracker) -> None:
        self.db = db
        self.tracker = tracker

    def record(self, event: SecurityEvent, ctx: RequestContext, **details: Any) -> int:
        severity = EVENT_SEVERITY[event]
        score = self.tracker.record(ctx.actor, severity, event.value)
        logger.warning(
            "security event %s severity=%s actor=%s score=%s",
            event.value,
            severity.value,
            ctx.actor,
            score,
            extra={"user_id": ctx.user_id, "action": event.value},
        )
        AuditService(self.db).record_now(
            f"security.{event.value.lower()}",
            category=models.AuditCategory.SECURITY,
            user_id=ctx.user_id,
            details={"severity": severity.value, "threat_score": score, **details},
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )
        return score
